"""Migration engine: leased lock, runner, batch pipeline and the step catalog."""
