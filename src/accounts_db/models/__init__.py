"""Central exports for accounts SQLAlchemy models."""

from .migration_state import MIGRATION_STATE_ID, MigrationState
from .permittable import Permittable
from .role import Role
from .user import User
from .user_sub import UserSub
from .workspace import Workspace

__all__ = [
    "MIGRATION_STATE_ID",
    "MigrationState",
    "Permittable",
    "Role",
    "User",
    "UserSub",
    "Workspace",
]
