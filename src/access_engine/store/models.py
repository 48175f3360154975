"""SQLAlchemy models backing :class:`SqlIdentityStore`."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    MetaData,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import DateTime, TypeDecorator

from access_engine.rbac.types import PermissionScope, SiteAccess

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Base(DeclarativeBase):
    metadata = metadata


def utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid4().hex


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC (SQLite hands back naive values)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect):
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value: Any, dialect):
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=UTC)
            return value.astimezone(UTC)
        return value


permission_scope_enum = SAEnum(
    PermissionScope,
    name="permission_scope",
    native_enum=False,
    length=20,
    values_callable=_enum_values,
)

site_access_enum = SAEnum(
    SiteAccess,
    name="site_access",
    native_enum=False,
    length=30,
    values_callable=_enum_values,
)


class PersonRecord(Base):
    """The single person aggregate; virtual entities are projections of it."""

    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    assignments: Mapped[list[RoleAssignmentRecord]] = relationship(
        "RoleAssignmentRecord",
        back_populates="person",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_persons_tenant_id", "tenant_id"),
        Index("ix_persons_tenant_company", "tenant_id", "company_id"),
    )


class RoleAssignmentRecord(Base):
    """A role held by a person, optionally bound to a company and tenant."""

    __tablename__ = "role_assignments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    person_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("persons.id", ondelete="CASCADE"),
        nullable=False,
    )
    role_type: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    person: Mapped[PersonRecord] = relationship("PersonRecord", back_populates="assignments")
    permissions: Mapped[list[GrantedPermissionRecord]] = relationship(
        "GrantedPermissionRecord",
        back_populates="assignment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_role_assignments_person_id", "person_id"),
        Index("ix_role_assignments_role_type", "role_type"),
        Index("ix_role_assignments_person_active", "person_id", "is_active"),
    )


# At most one active row per identity tuple. A missing company or tenant is part
# of the identity, so both are coalesced before comparison.
Index(
    "uq_role_assignments_active_identity",
    RoleAssignmentRecord.person_id,
    RoleAssignmentRecord.role_type,
    func.coalesce(RoleAssignmentRecord.company_id, ""),
    func.coalesce(RoleAssignmentRecord.tenant_id, ""),
    unique=True,
    sqlite_where=text("is_active = 1"),
    postgresql_where=text("is_active"),
)


class GrantedPermissionRecord(Base):
    """A permission attached to one role assignment."""

    __tablename__ = "granted_permissions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    role_assignment_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("role_assignments.id", ondelete="CASCADE"),
        nullable=False,
    )
    permission_key: Mapped[str] = mapped_column(String(100), nullable=False)
    is_granted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    scope: Mapped[PermissionScope] = mapped_column(
        permission_scope_enum,
        nullable=False,
        default=PermissionScope.GLOBAL,
        server_default=PermissionScope.GLOBAL.value,
    )
    site_access: Mapped[SiteAccess] = mapped_column(
        site_access_enum,
        nullable=False,
        default=SiteAccess.ALL_COMPANY_SITES,
        server_default=SiteAccess.ALL_COMPANY_SITES.value,
    )
    site_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    allowed_fields: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    assignment: Mapped[RoleAssignmentRecord] = relationship(
        "RoleAssignmentRecord", back_populates="permissions"
    )

    __table_args__ = (
        UniqueConstraint(
            "role_assignment_id",
            "permission_key",
            name="uq_granted_permissions_assignment_key",
        ),
        Index("ix_granted_permissions_role_assignment_id", "role_assignment_id"),
    )


__all__ = [
    "Base",
    "GrantedPermissionRecord",
    "NAMING_CONVENTION",
    "PersonRecord",
    "RoleAssignmentRecord",
    "UTCDateTime",
    "metadata",
    "utc_now",
]
