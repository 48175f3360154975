"""Identity/role store interface and the bundled implementations."""

from .base import AssignmentStore, IdentityStore
from .memory import InMemoryIdentityStore
from .sql import SqlIdentityStore

__all__ = ["AssignmentStore", "IdentityStore", "InMemoryIdentityStore", "SqlIdentityStore"]
