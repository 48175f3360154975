"""Role, permission, and virtual entity definitions."""

from .config import (
    AccessConfig,
    default_access_config,
    get_access_config,
    load_access_config,
    parse_access_config,
    reload_access_config,
    validate_access_config,
)
from .types import (
    WILDCARD,
    WILDCARD_FIELDS,
    Actor,
    DecisionCode,
    EntityAction,
    GrantedPermission,
    PermissionDecision,
    PermissionDefinition,
    PermissionScope,
    PersonSummary,
    RoleAssignment,
    RoleDefinition,
    SiteAccess,
    Target,
    VirtualEntityDefinition,
    normalize_action,
    normalize_resource,
    permission_key_for,
)

__all__ = [
    "AccessConfig",
    "Actor",
    "DecisionCode",
    "EntityAction",
    "GrantedPermission",
    "PermissionDecision",
    "PermissionDefinition",
    "PermissionScope",
    "PersonSummary",
    "RoleAssignment",
    "RoleDefinition",
    "SiteAccess",
    "Target",
    "VirtualEntityDefinition",
    "WILDCARD",
    "WILDCARD_FIELDS",
    "default_access_config",
    "get_access_config",
    "load_access_config",
    "normalize_action",
    "normalize_resource",
    "parse_access_config",
    "permission_key_for",
    "reload_access_config",
    "validate_access_config",
]
