"""SQLAlchemy-backed identity store."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from access_engine.errors import (
    AssignmentNotFoundError,
    PersonNotFoundError,
    StoreError,
    StoreUnavailable,
    UnknownPermissionKey,
    UnknownRole,
)
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.types import (
    GrantedPermission,
    PermissionScope,
    PersonSummary,
    RoleAssignment,
    SiteAccess,
)

from .models import GrantedPermissionRecord, PersonRecord, RoleAssignmentRecord, utc_now

logger = logging.getLogger(__name__)


def _to_permission(record: GrantedPermissionRecord) -> GrantedPermission:
    return GrantedPermission(
        id=record.id,
        role_assignment_id=record.role_assignment_id,
        permission_key=record.permission_key,
        is_granted=record.is_granted,
        scope=record.scope,
        site_access=record.site_access,
        site_id=record.site_id,
        allowed_fields=(
            frozenset(record.allowed_fields) if record.allowed_fields is not None else None
        ),
        granted_by=record.granted_by,
        granted_at=record.granted_at,
    )


def _to_assignment(record: RoleAssignmentRecord) -> RoleAssignment:
    return RoleAssignment(
        id=record.id,
        person_id=record.person_id,
        role_type=record.role_type,
        company_id=record.company_id,
        tenant_id=record.tenant_id,
        is_active=record.is_active,
        expires_at=record.expires_at,
        permissions=tuple(_to_permission(item) for item in record.permissions),
    )


def _is_current(record: RoleAssignmentRecord, now: datetime) -> bool:
    return record.expires_at is None or record.expires_at > now


class SqlIdentityStore:
    """Identity store over a synchronous SQLAlchemy ``Session``.

    Reads translate :class:`SQLAlchemyError` into :class:`StoreUnavailable`.
    Writes run in a savepoint and never commit; the caller owns the
    transaction. A failed write raises :class:`StoreError` carrying the
    database message and leaves earlier pending writes in place.
    """

    def __init__(
        self,
        session: Session,
        *,
        config: AccessConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Reads (IdentityStore)
    # ------------------------------------------------------------------

    def get_active_role_assignments(
        self, person_id: str, tenant_id: str | None = None
    ) -> list[RoleAssignment]:
        stmt = (
            select(RoleAssignmentRecord)
            .join(PersonRecord, PersonRecord.id == RoleAssignmentRecord.person_id)
            .where(
                RoleAssignmentRecord.person_id == person_id,
                RoleAssignmentRecord.is_active.is_(True),
                PersonRecord.deleted_at.is_(None),
            )
            .options(selectinload(RoleAssignmentRecord.permissions))
            .order_by(RoleAssignmentRecord.assigned_at, RoleAssignmentRecord.id)
        )
        if tenant_id is not None:
            stmt = stmt.where(
                or_(
                    RoleAssignmentRecord.tenant_id.is_(None),
                    RoleAssignmentRecord.tenant_id == tenant_id,
                )
            )
        now = self._clock()
        try:
            records = self._session.execute(stmt).scalars().all()
            return [_to_assignment(record) for record in records if _is_current(record, now)]
        except SQLAlchemyError as exc:
            logger.error(
                "access.store.read_failed",
                extra={"person_id": person_id, "tenant_id": tenant_id, "error": str(exc)},
            )
            raise StoreUnavailable(f"Cannot load role assignments for '{person_id}'") from exc

    def get_person_population(
        self, tenant_id: str, company_id: str | None = None
    ) -> list[PersonSummary]:
        stmt = (
            select(PersonRecord)
            .where(PersonRecord.tenant_id == tenant_id, PersonRecord.deleted_at.is_(None))
            .options(selectinload(PersonRecord.assignments))
            .order_by(PersonRecord.created_at, PersonRecord.id)
        )
        if company_id is not None:
            stmt = stmt.where(PersonRecord.company_id == company_id)
        now = self._clock()
        try:
            persons = self._session.execute(stmt).scalars().all()
            return [
                PersonSummary(
                    id=person.id,
                    tenant_id=person.tenant_id,
                    company_id=person.company_id,
                    role_types=frozenset(
                        assignment.role_type
                        for assignment in person.assignments
                        if assignment.is_active
                        and _is_current(assignment, now)
                        and assignment.tenant_id in (None, tenant_id)
                    ),
                    first_name=person.first_name,
                    last_name=person.last_name,
                    email=person.email,
                )
                for person in persons
            ]
        except SQLAlchemyError as exc:
            logger.error(
                "access.store.read_failed",
                extra={"tenant_id": tenant_id, "company_id": company_id, "error": str(exc)},
            )
            raise StoreUnavailable(f"Cannot load the population of tenant '{tenant_id}'") from exc

    def get_person(self, person_id: str) -> PersonSummary | None:
        person = self._session.get(PersonRecord, person_id)
        if person is None or person.deleted_at is not None:
            return None
        return PersonSummary(
            id=person.id,
            tenant_id=person.tenant_id,
            company_id=person.company_id,
            first_name=person.first_name,
            last_name=person.last_name,
            email=person.email,
        )

    def get_assignment(self, assignment_id: str) -> RoleAssignment:
        return _to_assignment(self._require_assignment(assignment_id))

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
        if self._session.get(PersonRecord, person_id) is not None:
            raise StoreError(f"Person '{person_id}' already exists")
        person = PersonRecord(
            id=person_id,
            tenant_id=tenant_id,
            company_id=company_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
        )
        with self._savepoint(f"Cannot add person '{person_id}'"):
            self._session.add(person)
        return PersonSummary(
            id=person_id,
            tenant_id=tenant_id,
            company_id=company_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
        )

    def soft_delete_person(self, person_id: str) -> None:
        person = self._session.get(PersonRecord, person_id)
        if person is None:
            raise PersonNotFoundError(f"Person '{person_id}' not found")
        person.deleted_at = self._clock()
        self._session.flush([person])

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
    ) -> RoleAssignment:
        """Create or refresh the single active assignment for this identity tuple."""

        role_type = role_type.strip().upper()
        if self._config is not None and role_type not in self._config.roles:
            raise UnknownRole(role_type)
        person = self._session.get(PersonRecord, person_id)
        if person is None:
            raise PersonNotFoundError(f"Person '{person_id}' not found")
        tenant = tenant_id if tenant_id is not None else person.tenant_id

        stmt = select(RoleAssignmentRecord).where(
            RoleAssignmentRecord.person_id == person_id,
            RoleAssignmentRecord.role_type == role_type,
            RoleAssignmentRecord.is_active.is_(True),
            RoleAssignmentRecord.company_id.is_(None)
            if company_id is None
            else RoleAssignmentRecord.company_id == company_id,
            RoleAssignmentRecord.tenant_id.is_(None)
            if tenant is None
            else RoleAssignmentRecord.tenant_id == tenant,
        )
        record = self._session.execute(stmt).scalars().first()
        with self._savepoint(f"Cannot assign role {role_type} to '{person_id}'"):
            if record is None:
                record = RoleAssignmentRecord(
                    person=person,
                    role_type=role_type,
                    company_id=company_id,
                    tenant_id=tenant,
                    assigned_at=self._clock(),
                )
                self._session.add(record)
            record.expires_at = expires_at

            if with_default_permissions and self._config is not None:
                existing = {item.permission_key for item in record.permissions}
                scope = PermissionScope.COMPANY if company_id else PermissionScope.GLOBAL
                for key in self._config.roles[role_type].permissions:
                    if key in existing:
                        continue
                    record.permissions.append(
                        GrantedPermissionRecord(
                            permission_key=key,
                            scope=scope,
                            granted_by=granted_by,
                            granted_at=self._clock(),
                        )
                    )

        logger.debug(
            "access.store.role_assigned",
            extra={"person_id": person_id, "role_type": role_type, "assignment_id": record.id},
        )
        return _to_assignment(record)

    def revoke_role(self, assignment_id: str) -> RoleAssignment:
        """Deactivate an assignment and delete its grants. The row is kept."""

        record = self._require_assignment(assignment_id)
        record.is_active = False
        record.deactivated_at = self._clock()
        record.permissions.clear()
        self._session.flush()
        return _to_assignment(record)

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
        permission_key = permission_key.strip().upper()
        if self._config is not None and permission_key not in self._config.permissions:
            raise UnknownPermissionKey(permission_key)
        record = self._require_assignment(assignment_id)
        if not record.is_active:
            raise StoreError(f"Role assignment '{assignment_id}' is not active")

        scope = PermissionScope(scope)
        site_access = SiteAccess(site_access)
        grant = next(
            (item for item in record.permissions if item.permission_key == permission_key),
            None,
        )
        with self._savepoint(f"Cannot grant {permission_key} on '{assignment_id}'"):
            if grant is None:
                grant = GrantedPermissionRecord(permission_key=permission_key)
                record.permissions.append(grant)
            grant.is_granted = is_granted
            grant.scope = scope
            grant.site_access = site_access
            grant.site_id = site_id
            grant.allowed_fields = sorted(allowed_fields) if allowed_fields is not None else None
            grant.granted_by = granted_by
            grant.granted_at = self._clock()
        return _to_permission(grant)

    def revoke_permissions(self, assignment_id: str, permission_keys: Iterable[str]) -> int:
        """Remove a set of grants from one assignment in a single statement."""

        keys = {key.strip().upper() for key in permission_keys}
        record = self._require_assignment(assignment_id)
        if not keys:
            return 0
        result = self._session.execute(
            delete(GrantedPermissionRecord).where(
                GrantedPermissionRecord.role_assignment_id == record.id,
                GrantedPermissionRecord.permission_key.in_(keys),
            )
        )
        self._session.expire(record, ["permissions"])
        return int(result.rowcount or 0)

    def expire_assignments(self, now: datetime | None = None) -> int:
        moment = now or self._clock()
        records = (
            self._session.execute(
                select(RoleAssignmentRecord).where(
                    RoleAssignmentRecord.is_active.is_(True),
                    RoleAssignmentRecord.expires_at.is_not(None),
                )
            )
            .scalars()
            .all()
        )
        expired = 0
        for record in records:
            if record.expires_at is not None and record.expires_at <= moment:
                record.is_active = False
                record.deactivated_at = moment
                record.permissions.clear()
                expired += 1
        if expired:
            self._session.flush()
            logger.info("access.store.assignments_expired", extra={"count": expired})
        return expired

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_assignment(self, assignment_id: str) -> RoleAssignmentRecord:
        record = self._session.get(RoleAssignmentRecord, assignment_id)
        if record is None:
            raise AssignmentNotFoundError(f"Role assignment '{assignment_id}' not found")
        return record

    @contextmanager
    def _savepoint(self, action: str) -> Iterator[None]:
        """Run one write in a SAVEPOINT; a constraint failure undoes only that write."""

        try:
            with self._session.begin_nested():
                yield
        except IntegrityError as exc:
            logger.debug("access.store.conflict", extra={"action": action, "error": str(exc.orig)})
            raise StoreError(f"{action}: {exc.orig}") from exc


__all__ = ["SqlIdentityStore"]
