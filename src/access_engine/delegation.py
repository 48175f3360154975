"""Role and permission writes performed on behalf of an assigner.

An assigner may only hand out roles strictly beneath their own most senior
role, and only permissions their own roles carry (bypass roles may delegate
the whole catalogue). Both checks read the assigner's effective assignments
in the tenant the write lands in. Failures raise :class:`DelegationDenied`
before anything is written.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from access_engine.common.logging import log_context
from access_engine.errors import DelegationDenied, PersonNotFoundError, UnknownPermissionKey
from access_engine.hierarchy import RoleHierarchy
from access_engine.projection import Clock, utc_now
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.types import (
    GrantedPermission,
    PermissionScope,
    RoleAssignment,
    SiteAccess,
)
from access_engine.store.base import AssignmentStore

logger = logging.getLogger(__name__)


class RoleDelegator:
    """Hierarchy-checked front for :meth:`assign_role` and :meth:`grant_permission`."""

    def __init__(
        self,
        config: AccessConfig,
        store: AssignmentStore,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock or utc_now
        self._hierarchy = RoleHierarchy(config)

    # ------------------------------------------------------------------
    # What an assigner may hand out
    # ------------------------------------------------------------------

    def assigner_roles(self, assigner_id: str, tenant_id: str | None) -> frozenset[str]:
        if self._store.get_person(assigner_id) is None:
            raise PersonNotFoundError(f"Person '{assigner_id}' not found")
        now = self._clock()
        return frozenset(
            assignment.role_type
            for assignment in self._store.get_active_role_assignments(assigner_id, tenant_id)
            if assignment.is_effective(now) and self._hierarchy.role_exists(assignment.role_type)
        )

    def assignable_roles(self, assigner_id: str, tenant_id: str | None) -> frozenset[str]:
        return self._hierarchy.assignable_roles(self.assigner_roles(assigner_id, tenant_id))

    def assignable_permissions(self, assigner_id: str, tenant_id: str | None) -> frozenset[str]:
        return self._hierarchy.assignable_permissions(self.assigner_roles(assigner_id, tenant_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def assign_role(
        self,
        assigner_id: str,
        person_id: str,
        role_type: str,
        *,
        company_id: str | None = None,
        tenant_id: str | None = None,
        expires_at: datetime | None = None,
        with_default_permissions: bool = False,
    ) -> RoleAssignment:
        """Assign ``role_type`` to ``person_id`` if the assigner outranks it.

        Default permissions seeded with the role travel with it and are not
        checked against the assigner's own permissions.
        """

        role_type = role_type.strip().upper()
        self._hierarchy.get_role(role_type)
        person = self._store.get_person(person_id)
        if person is None:
            raise PersonNotFoundError(f"Person '{person_id}' not found")
        tenant = tenant_id if tenant_id is not None else person.tenant_id

        held = self.assigner_roles(assigner_id, tenant)
        if not self._hierarchy.can_assign(held, role_type):
            self._deny(assigner_id, tenant, role_type=role_type)
            raise DelegationDenied(
                assigner_id, f"Person '{assigner_id}' may not assign role {role_type}"
            )

        return self._store.assign_role(
            person_id,
            role_type,
            company_id=company_id,
            tenant_id=tenant,
            expires_at=expires_at,
            with_default_permissions=with_default_permissions,
            granted_by=assigner_id,
        )

    def grant_permissions(
        self,
        assigner_id: str,
        assignment_id: str,
        permission_keys: Iterable[str],
        *,
        scope: PermissionScope | str = PermissionScope.GLOBAL,
        site_access: SiteAccess = SiteAccess.ALL_COMPANY_SITES,
        site_id: str | None = None,
        allowed_fields: Iterable[str] | None = None,
    ) -> list[GrantedPermission]:
        """Grant every key or none: one key outside the assigner's reach rejects the batch."""

        keys = list(dict.fromkeys(key.strip().upper() for key in permission_keys))
        for key in keys:
            if key not in self._config.permissions:
                raise UnknownPermissionKey(key)
        assignment = self._store.get_assignment(assignment_id)

        allowed = self.assignable_permissions(assigner_id, assignment.tenant_id)
        refused = [key for key in keys if key not in allowed]
        if refused:
            self._deny(assigner_id, assignment.tenant_id, permissions=refused)
            raise DelegationDenied(
                assigner_id,
                f"Person '{assigner_id}' may not grant: {', '.join(refused)}",
            )

        fields = list(allowed_fields) if allowed_fields is not None else None
        return [
            self._store.grant_permission(
                assignment_id,
                key,
                scope=scope,
                site_access=site_access,
                site_id=site_id,
                allowed_fields=fields,
                granted_by=assigner_id,
            )
            for key in keys
        ]

    def grant_permission(
        self,
        assigner_id: str,
        assignment_id: str,
        permission_key: str,
        *,
        scope: PermissionScope | str = PermissionScope.GLOBAL,
        site_access: SiteAccess = SiteAccess.ALL_COMPANY_SITES,
        site_id: str | None = None,
        allowed_fields: Iterable[str] | None = None,
    ) -> GrantedPermission:
        [grant] = self.grant_permissions(
            assigner_id,
            assignment_id,
            [permission_key],
            scope=scope,
            site_access=site_access,
            site_id=site_id,
            allowed_fields=allowed_fields,
        )
        return grant

    def _deny(self, assigner_id: str, tenant_id: str | None, **fields: object) -> None:
        logger.info(
            "access.delegation.denied",
            extra=log_context(tenant_id=tenant_id, actor_id=assigner_id, **fields),
        )


__all__ = ["RoleDelegator"]
