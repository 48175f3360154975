"""Thread-safe in-memory identity store."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from access_engine.errors import (
    AssignmentNotFoundError,
    PersonNotFoundError,
    StoreError,
    UnknownPermissionKey,
    UnknownRole,
)
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.schemas import StoreFixture
from access_engine.rbac.types import (
    GrantedPermission,
    PermissionScope,
    PersonSummary,
    RoleAssignment,
    SiteAccess,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


@dataclass
class _PersonRow:
    id: str
    tenant_id: str
    company_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    deleted: bool = False


@dataclass
class _AssignmentRow:
    id: str
    person_id: str
    role_type: str
    company_id: str | None
    tenant_id: str | None
    is_active: bool = True
    expires_at: datetime | None = None
    permissions: dict[str, GrantedPermission] = field(default_factory=dict)

    def snapshot(self) -> RoleAssignment:
        return RoleAssignment(
            id=self.id,
            person_id=self.person_id,
            role_type=self.role_type,
            company_id=self.company_id,
            tenant_id=self.tenant_id,
            is_active=self.is_active,
            expires_at=self.expires_at,
            permissions=tuple(self.permissions.values()),
        )

    @property
    def identity(self) -> tuple[str, str, str | None, str | None]:
        return (self.person_id, self.role_type, self.company_id, self.tenant_id)


class InMemoryIdentityStore:
    """Persons, role assignments, and grants held in process memory.

    Reads return frozen snapshots. Writes are serialized by a re-entrant lock,
    and each write is atomic with respect to readers.
    """

    def __init__(
        self,
        *,
        config: AccessConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._persons: dict[str, _PersonRow] = {}
        self._assignments: dict[str, _AssignmentRow] = {}

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        config: AccessConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> InMemoryIdentityStore:
        """Build a store from a decoded JSON fixture (see ``StoreFixture``)."""

        try:
            fixture = StoreFixture.model_validate(payload)
        except ValidationError as exc:
            raise StoreError(f"Invalid store fixture: {exc}") from exc

        store = cls(config=config, clock=clock)
        for person in fixture.persons:
            store.add_person(
                person.id,
                person.tenant_id,
                company_id=person.company_id,
                first_name=person.first_name,
                last_name=person.last_name,
                email=person.email,
            )
            # Inactive rows first so they never absorb an active assignment.
            for role in sorted(person.roles, key=lambda item: item.is_active):
                assignment = store.assign_role(
                    person.id,
                    role.role,
                    company_id=(
                        role.company_id if role.company_id is not None else person.company_id
                    ),
                    tenant_id=role.tenant_id if role.tenant_id is not None else person.tenant_id,
                    expires_at=role.expires_at,
                    assignment_id=role.id,
                )
                for grant in role.permissions:
                    store.grant_permission(
                        assignment.id,
                        grant.permission,
                        is_granted=grant.is_granted,
                        scope=grant.scope,
                        site_access=grant.site_access,
                        site_id=grant.site_id,
                        allowed_fields=grant.allowed_fields,
                        granted_by=grant.granted_by,
                    )
                if not role.is_active:
                    store.revoke_role(assignment.id)
            if person.deleted:
                store.soft_delete_person(person.id)
        logger.debug(
            "access.store.fixture_loaded",
            extra={"persons": len(store._persons), "assignments": len(store._assignments)},
        )
        return store

    @classmethod
    def from_file(
        cls,
        path: Path,
        *,
        config: AccessConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> InMemoryIdentityStore:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Cannot load store fixture {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StoreError(f"Store fixture {path} must be a JSON object")
        return cls.from_payload(payload, config=config, clock=clock)

    # ------------------------------------------------------------------
    # Reads (IdentityStore)
    # ------------------------------------------------------------------

    def get_active_role_assignments(
        self, person_id: str, tenant_id: str | None = None
    ) -> list[RoleAssignment]:
        now = self._clock()
        with self._lock:
            person = self._persons.get(person_id)
            if person is None or person.deleted:
                return []
            return [
                row.snapshot()
                for row in self._assignments.values()
                if row.person_id == person_id and self._is_effective(row, now, tenant_id)
            ]

    def get_person_population(
        self, tenant_id: str, company_id: str | None = None
    ) -> list[PersonSummary]:
        now = self._clock()
        with self._lock:
            roles_by_person: dict[str, set[str]] = {}
            for row in self._assignments.values():
                if self._is_effective(row, now, tenant_id):
                    roles_by_person.setdefault(row.person_id, set()).add(row.role_type)

            return [
                PersonSummary(
                    id=person.id,
                    tenant_id=person.tenant_id,
                    company_id=person.company_id,
                    role_types=frozenset(roles_by_person.get(person.id, ())),
                    first_name=person.first_name,
                    last_name=person.last_name,
                    email=person.email,
                )
                for person in self._persons.values()
                if not person.deleted
                and person.tenant_id == tenant_id
                and (company_id is None or person.company_id == company_id)
            ]

    def get_person(self, person_id: str) -> PersonSummary | None:
        with self._lock:
            person = self._persons.get(person_id)
            if person is None or person.deleted:
                return None
            return PersonSummary(
                id=person.id,
                tenant_id=person.tenant_id,
                company_id=person.company_id,
                first_name=person.first_name,
                last_name=person.last_name,
                email=person.email,
            )

    def list_assignments(
        self, person_id: str, *, include_inactive: bool = True
    ) -> list[RoleAssignment]:
        with self._lock:
            return [
                row.snapshot()
                for row in self._assignments.values()
                if row.person_id == person_id and (include_inactive or row.is_active)
            ]

    def get_assignment(self, assignment_id: str) -> RoleAssignment:
        with self._lock:
            return self._require_assignment(assignment_id).snapshot()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_person(
        self,
        person_id: str,
        tenant_id: str,
        *,
        company_id: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
    ) -> PersonSummary:
        with self._lock:
            if person_id in self._persons:
                raise StoreError(f"Person '{person_id}' already exists")
            self._persons[person_id] = _PersonRow(
                id=person_id,
                tenant_id=tenant_id,
                company_id=company_id,
                first_name=first_name,
                last_name=last_name,
                email=email,
            )
        return PersonSummary(
            id=person_id,
            tenant_id=tenant_id,
            company_id=company_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
        )

    def soft_delete_person(self, person_id: str) -> None:
        with self._lock:
            person = self._persons.get(person_id)
            if person is None:
                raise PersonNotFoundError(f"Person '{person_id}' not found")
            person.deleted = True

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
        assignment_id: str | None = None,
    ) -> RoleAssignment:
        """Create or refresh the single active assignment for this identity tuple."""

        role_type = role_type.strip().upper()
        self._check_role(role_type)
        with self._lock:
            person = self._persons.get(person_id)
            if person is None:
                raise PersonNotFoundError(f"Person '{person_id}' not found")
            tenant = tenant_id if tenant_id is not None else person.tenant_id
            identity = (person_id, role_type, company_id, tenant)

            row = next(
                (
                    candidate
                    for candidate in self._assignments.values()
                    if candidate.is_active and candidate.identity == identity
                ),
                None,
            )
            if row is None:
                row = _AssignmentRow(
                    id=assignment_id or _new_id(),
                    person_id=person_id,
                    role_type=role_type,
                    company_id=company_id,
                    tenant_id=tenant,
                )
                if row.id in self._assignments:
                    raise StoreError(f"Role assignment '{row.id}' already exists")
                self._assignments[row.id] = row
            row.expires_at = expires_at

            if with_default_permissions and self._config is not None:
                scope = PermissionScope.COMPANY if company_id else PermissionScope.GLOBAL
                for key in self._config.roles[role_type].permissions:
                    row.permissions.setdefault(
                        key,
                        GrantedPermission(
                            permission_key=key,
                            scope=scope,
                            granted_by=granted_by,
                            granted_at=self._clock(),
                            role_assignment_id=row.id,
                            id=_new_id(),
                        ),
                    )
            logger.debug(
                "access.store.role_assigned",
                extra={"person_id": person_id, "role_type": role_type, "assignment_id": row.id},
            )
            return row.snapshot()

    def revoke_role(self, assignment_id: str) -> RoleAssignment:
        """Deactivate an assignment and delete its grants. The row is kept."""

        with self._lock:
            row = self._require_assignment(assignment_id)
            row.is_active = False
            row.permissions.clear()
            return row.snapshot()

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
    ) -> GrantedPermission:
        """Attach (or replace) the grant for ``permission_key`` on an assignment."""

        permission_key = permission_key.strip().upper()
        if self._config is not None and permission_key not in self._config.permissions:
            raise UnknownPermissionKey(permission_key)
        with self._lock:
            row = self._require_assignment(assignment_id)
            if not row.is_active:
                raise StoreError(f"Role assignment '{assignment_id}' is not active")
            grant = GrantedPermission(
                permission_key=permission_key,
                is_granted=is_granted,
                scope=PermissionScope(scope),
                site_access=SiteAccess(site_access),
                site_id=site_id,
                allowed_fields=frozenset(allowed_fields) if allowed_fields is not None else None,
                granted_by=granted_by,
                granted_at=self._clock(),
                role_assignment_id=row.id,
                id=_new_id(),
            )
            row.permissions[permission_key] = grant
            return grant

    def revoke_permissions(self, assignment_id: str, permission_keys: Iterable[str]) -> int:
        """Remove a set of grants from one assignment in a single step."""

        keys = {key.strip().upper() for key in permission_keys}
        with self._lock:
            row = self._require_assignment(assignment_id)
            removed = [key for key in row.permissions if key in keys]
            for key in removed:
                del row.permissions[key]
            return len(removed)

    def expire_assignments(self, now: datetime | None = None) -> int:
        """Deactivate every assignment whose expiry has passed."""

        moment = now or self._clock()
        expired = 0
        with self._lock:
            for row in self._assignments.values():
                if row.is_active and row.expires_at is not None and row.expires_at <= moment:
                    row.is_active = False
                    row.permissions.clear()
                    expired += 1
        if expired:
            logger.info("access.store.assignments_expired", extra={"count": expired})
        return expired

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_role(self, role_type: str) -> None:
        if self._config is not None and role_type not in self._config.roles:
            raise UnknownRole(role_type)

    def _require_assignment(self, assignment_id: str) -> _AssignmentRow:
        row = self._assignments.get(assignment_id)
        if row is None:
            raise AssignmentNotFoundError(f"Role assignment '{assignment_id}' not found")
        return row

    @staticmethod
    def _is_effective(row: _AssignmentRow, now: datetime, tenant_id: str | None) -> bool:
        if not row.is_active:
            return False
        if row.expires_at is not None and row.expires_at <= now:
            return False
        if tenant_id is not None and row.tenant_id is not None and row.tenant_id != tenant_id:
            return False
        return True


__all__ = ["InMemoryIdentityStore"]
