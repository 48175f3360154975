"""Value types shared by the hierarchy, projection, and resolution layers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

WILDCARD = "*"
WILDCARD_FIELDS: tuple[str, ...] = (WILDCARD,)


class PermissionScope(str, Enum):
    """Breadth of a permission grant."""

    GLOBAL = "global"
    COMPANY = "company"
    SELF = "self"

    @classmethod
    def _missing_(cls, value: object) -> PermissionScope | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def rank(self) -> int:
        """Higher rank is more permissive."""
        return _SCOPE_RANK[self]


_SCOPE_RANK = {
    PermissionScope.GLOBAL: 2,
    PermissionScope.COMPANY: 1,
    PermissionScope.SELF: 0,
}


class SiteAccess(str, Enum):
    """Sub-company visibility granted alongside a permission."""

    ALL_COMPANY_SITES = "ALL_COMPANY_SITES"
    ASSIGNED_SITE_ONLY = "ASSIGNED_SITE_ONLY"


class EntityAction(str, Enum):
    """CRUD action vocabulary used to build permission keys."""

    VIEW = "VIEW"
    CREATE = "CREATE"
    EDIT = "EDIT"
    DELETE = "DELETE"

    @classmethod
    def coerce(cls, value: str | EntityAction) -> EntityAction:
        if isinstance(value, EntityAction):
            return value
        try:
            return cls(normalize_action(value))
        except ValueError:
            raise ValueError(f"Unknown action '{value}'") from None


_ACTION_ALIASES = {
    "READ": "VIEW",
    "LIST": "VIEW",
    "UPDATE": "EDIT",
    "REMOVE": "DELETE",
}


def normalize_action(value: str | Enum) -> str:
    """Uppercase an action name and fold the REST-style aliases onto CRUD verbs."""

    raw = value.value if isinstance(value, Enum) else value
    normalized = str(raw).strip().upper()
    if not normalized:
        raise ValueError("Action cannot be blank")
    return _ACTION_ALIASES.get(normalized, normalized)


def normalize_resource(value: str) -> str:
    normalized = str(value).strip().upper().replace("-", "_")
    if not normalized:
        raise ValueError("Resource cannot be blank")
    return normalized


def permission_key_for(resource: str, action: str | Enum) -> str:
    """Build the ``ACTION_RESOURCE`` key used by the registry (``VIEW_COMPANIES``)."""

    return f"{normalize_action(action)}_{normalize_resource(resource)}"


class DecisionCode(str, Enum):
    """Which branch of the resolution cascade produced a decision."""

    BYPASS = "bypass"
    DIRECT = "direct"
    VIRTUAL_ENTITY = "virtual_entity"
    LEGACY = "legacy"
    NO_MATCH = "no_match"
    SCOPE_DENIED = "scope_denied"
    SITE_DENIED = "site_denied"
    CONFIGURATION_ERROR = "configuration_error"
    UNAUTHENTICATED = "unauthenticated"


_ALLOW_CODES = frozenset(
    {DecisionCode.BYPASS, DecisionCode.DIRECT, DecisionCode.VIRTUAL_ENTITY, DecisionCode.LEGACY}
)


# ---------------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleDefinition:
    """A role in the static hierarchy. Lower level means more authority."""

    role_id: str
    level: int
    default_parent: str | None = None
    name: str = ""
    description: str = ""
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class PermissionDefinition:
    """Describes a permission entry in the registry."""

    key: str
    resource: str
    action: str
    label: str = ""


@dataclass(frozen=True)
class VirtualEntityDefinition:
    """A named slice of the Person population selected by role metadata."""

    name: str
    role_types: frozenset[str]
    min_level: int
    max_level: int
    permission_keys: Mapping[EntityAction, str]
    display_name: str = ""
    description: str = ""
    legacy_permission_keys: Mapping[EntityAction, tuple[str, ...]] = field(
        default_factory=dict
    )


# ---------------------------------------------------------------------------
# Store snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GrantedPermission:
    """A permission attached to a role assignment."""

    permission_key: str
    is_granted: bool = True
    scope: PermissionScope = PermissionScope.GLOBAL
    site_access: SiteAccess = SiteAccess.ALL_COMPANY_SITES
    site_id: str | None = None
    allowed_fields: frozenset[str] | None = None
    granted_by: str | None = None
    granted_at: datetime | None = None
    role_assignment_id: str | None = None
    id: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.allowed_fields is None or WILDCARD in self.allowed_fields


@dataclass(frozen=True)
class RoleAssignment:
    """Snapshot of a person's role assignment with its granted permissions."""

    id: str
    person_id: str
    role_type: str
    company_id: str | None = None
    tenant_id: str | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    permissions: tuple[GrantedPermission, ...] = ()

    def is_effective(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now

    @property
    def permission_keys(self) -> frozenset[str]:
        return frozenset(grant.permission_key for grant in self.permissions if grant.is_granted)

    @property
    def identity(self) -> tuple[str, str, str | None, str | None]:
        """The tuple that may hold at most one active assignment."""
        return (self.person_id, self.role_type, self.company_id, self.tenant_id)


@dataclass(frozen=True)
class PersonSummary:
    """A person as seen by projections: identity plus effective role types."""

    id: str
    tenant_id: str | None = None
    company_id: str | None = None
    role_types: frozenset[str] = frozenset()
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """The authenticated person performing a request."""

    person_id: str | None
    tenant_id: str | None
    company_id: str | None = None
    site_id: str | None = None


@dataclass(frozen=True)
class Target:
    """What the request touches. ``None`` fields are list-level (unscoped)."""

    company_id: str | None = None
    site_id: str | None = None
    person_id: str | None = None
    requested_fields: tuple[str, ...] | None = None

    @classmethod
    def with_fields(cls, fields: Iterable[str], **kwargs: str | None) -> Target:
        return cls(requested_fields=tuple(fields), **kwargs)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of a permission check. Build through :meth:`allow` / :meth:`deny`."""

    allowed: bool
    code: DecisionCode
    reason: str
    scope: PermissionScope | None = None
    allowed_fields: tuple[str, ...] = ()
    permission_key: str | None = None

    def __post_init__(self) -> None:
        if self.allowed != (self.code in _ALLOW_CODES):
            raise ValueError(
                f"Decision code {self.code.value} does not match allowed={self.allowed}"
            )
        if self.allowed and self.scope is None:
            raise ValueError("Allow decisions require a scope")

    @classmethod
    def allow(
        cls,
        *,
        scope: PermissionScope,
        code: DecisionCode,
        reason: str,
        allowed_fields: Iterable[str] = WILDCARD_FIELDS,
        permission_key: str | None = None,
    ) -> PermissionDecision:
        return cls(
            allowed=True,
            code=code,
            reason=reason,
            scope=scope,
            allowed_fields=tuple(allowed_fields),
            permission_key=permission_key,
        )

    @classmethod
    def deny(cls, reason: str, *, code: DecisionCode = DecisionCode.NO_MATCH) -> PermissionDecision:
        return cls(allowed=False, code=code, reason=reason)

    @property
    def http_status(self) -> int:
        if self.allowed:
            return 200
        if self.code == DecisionCode.UNAUTHENTICATED:
            return 401
        return 403


__all__ = [
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
    "normalize_action",
    "normalize_resource",
    "permission_key_for",
]
