"""Migration step bodies, grouped by the collection they change."""
