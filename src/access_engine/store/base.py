"""Interfaces the engine and the delegation layer consume from the store."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from access_engine.rbac.types import (
    GrantedPermission,
    PermissionScope,
    PersonSummary,
    RoleAssignment,
    SiteAccess,
)


@runtime_checkable
class IdentityStore(Protocol):
    """Snapshot reads of persons and their role assignments.

    Implementations raise :class:`access_engine.errors.StoreUnavailable` when a
    read cannot be served. Results are never cached by the engine.
    """

    def get_active_role_assignments(
        self, person_id: str, tenant_id: str | None = None
    ) -> Sequence[RoleAssignment]: ...

    def get_person_population(
        self, tenant_id: str, company_id: str | None = None
    ) -> Sequence[PersonSummary]: ...


@runtime_checkable
class AssignmentStore(IdentityStore, Protocol):
    """The write surface shared by the bundled stores."""

    def get_person(self, person_id: str) -> PersonSummary | None: ...

    def get_assignment(self, assignment_id: str) -> RoleAssignment: ...

    def assign_role(
        self,
        person_id: str,
        role_type: str,
        *,
        company_id: str | None = None,
        tenant_id: str | None = None,
        expires_at: datetime | None = None,
        with_default_permissions: bool = False,
        granted_by: str | None = None,
    ) -> RoleAssignment: ...

    def grant_permission(
        self,
        assignment_id: str,
        permission_key: str,
        *,
        is_granted: bool = True,
        scope: PermissionScope | str = PermissionScope.GLOBAL,
        site_access: SiteAccess = SiteAccess.ALL_COMPANY_SITES,
        site_id: str | None = None,
        allowed_fields: Iterable[str] | None = None,
        granted_by: str | None = None,
    ) -> GrantedPermission: ...


__all__ = ["AssignmentStore", "IdentityStore"]
