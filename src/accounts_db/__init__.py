"""Accounts store schema, migration engine and CLI."""

from .metadata import NAMING_CONVENTION, Base
from .settings import Settings, get_settings, reload_settings
from .types import Document, UTCDateTime

__version__ = "0.4.0"

__all__ = [
    "Base",
    "NAMING_CONVENTION",
    "Document",
    "UTCDateTime",
    "Settings",
    "get_settings",
    "reload_settings",
    "__version__",
]
