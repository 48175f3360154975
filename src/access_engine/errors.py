"""Error taxonomy for the access engine."""

from __future__ import annotations


class AccessEngineError(Exception):
    """Base class for every error raised by the access engine."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(AccessEngineError, ValueError):
    """Raised when the role/entity/permission tables are inconsistent."""


class UnknownRole(ConfigurationError, LookupError):
    """Raised when a role identifier is not part of the hierarchy."""

    def __init__(self, role_id: str) -> None:
        super().__init__(f"Role '{role_id}' is not defined in the hierarchy")
        self.role_id = role_id


class UnknownVirtualEntity(ConfigurationError, LookupError):
    """Raised when a virtual entity name is not configured."""

    def __init__(self, entity_name: str) -> None:
        super().__init__(f"Virtual entity '{entity_name}' is not configured")
        self.entity_name = entity_name


class UnknownPermissionKey(ConfigurationError, LookupError):
    """Raised when a permission key is not registered."""

    def __init__(self, permission_key: str) -> None:
        super().__init__(f"Permission '{permission_key}' is not registered")
        self.permission_key = permission_key


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


class ContextMissing(AccessEngineError):
    """Raised when the request context lacks an identity component."""


class NoActor(ContextMissing):
    """Raised when no authenticated actor is attached to the request."""


class NoTenant(ContextMissing):
    """Raised when the actor is not bound to a tenant."""


# ---------------------------------------------------------------------------
# External store
# ---------------------------------------------------------------------------


class StoreUnavailable(AccessEngineError):
    """Raised when the identity store cannot serve a read."""


class StoreError(AccessEngineError, ValueError):
    """Raised when a store write is rejected."""


class AssignmentNotFoundError(StoreError, LookupError):
    """Raised when a role assignment cannot be located."""


class PersonNotFoundError(StoreError, LookupError):
    """Raised when a person cannot be located."""


class DelegationDenied(StoreError):
    """Raised when an assigner lacks the authority for a role or permission write."""

    def __init__(self, assigner_id: str, message: str) -> None:
        super().__init__(message)
        self.assigner_id = assigner_id


__all__ = [
    "AccessEngineError",
    "AssignmentNotFoundError",
    "ConfigurationError",
    "ContextMissing",
    "DelegationDenied",
    "NoActor",
    "NoTenant",
    "PersonNotFoundError",
    "StoreError",
    "StoreUnavailable",
    "UnknownPermissionKey",
    "UnknownRole",
    "UnknownVirtualEntity",
]
