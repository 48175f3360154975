"""Hierarchical role-based permission engine with virtual entity projection."""

from .audit import AuditEvent, AuditSink, InMemoryAuditSink, LoggingAuditSink
from .delegation import RoleDelegator
from .engine import PermissionEngine
from .errors import (
    AccessEngineError,
    AssignmentNotFoundError,
    ConfigurationError,
    ContextMissing,
    DelegationDenied,
    NoActor,
    NoTenant,
    PersonNotFoundError,
    StoreError,
    StoreUnavailable,
    UnknownPermissionKey,
    UnknownRole,
    UnknownVirtualEntity,
)
from .filters import filter_fields, is_wildcard, narrow_record
from .hierarchy import RoleHierarchy
from .projection import VirtualEntityProjector
from .rbac import (
    AccessConfig,
    Actor,
    DecisionCode,
    EntityAction,
    GrantedPermission,
    PermissionDecision,
    PermissionScope,
    PersonSummary,
    RoleAssignment,
    SiteAccess,
    Target,
    default_access_config,
    get_access_config,
    load_access_config,
    reload_access_config,
    validate_access_config,
)
from .store import AssignmentStore, IdentityStore, InMemoryIdentityStore, SqlIdentityStore

__version__ = "0.1.0"

__all__ = [
    "AccessConfig",
    "AccessEngineError",
    "Actor",
    "AssignmentNotFoundError",
    "AssignmentStore",
    "AuditEvent",
    "AuditSink",
    "ConfigurationError",
    "ContextMissing",
    "DecisionCode",
    "DelegationDenied",
    "EntityAction",
    "GrantedPermission",
    "IdentityStore",
    "InMemoryAuditSink",
    "InMemoryIdentityStore",
    "LoggingAuditSink",
    "NoActor",
    "NoTenant",
    "PermissionDecision",
    "PermissionEngine",
    "PermissionScope",
    "PersonNotFoundError",
    "PersonSummary",
    "RoleAssignment",
    "RoleDelegator",
    "RoleHierarchy",
    "SiteAccess",
    "SqlIdentityStore",
    "StoreError",
    "StoreUnavailable",
    "Target",
    "UnknownPermissionKey",
    "UnknownRole",
    "UnknownVirtualEntity",
    "VirtualEntityProjector",
    "default_access_config",
    "filter_fields",
    "get_access_config",
    "is_wildcard",
    "load_access_config",
    "narrow_record",
    "reload_access_config",
    "validate_access_config",
]
