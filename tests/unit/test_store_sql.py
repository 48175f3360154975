from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from access_engine.delegation import RoleDelegator
from access_engine.engine import PermissionEngine
from access_engine.errors import (
    AssignmentNotFoundError,
    ConfigurationError,
    DelegationDenied,
    PersonNotFoundError,
    StoreError,
    StoreUnavailable,
    UnknownPermissionKey,
    UnknownRole,
)
from access_engine.projection import VirtualEntityProjector
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.types import Actor, DecisionCode, PermissionScope, SiteAccess, Target
from access_engine.settings import Settings
from access_engine.store import AssignmentStore, IdentityStore, SqlIdentityStore
from access_engine.store.db import build_engine, build_sessionmaker, create_schema, session_scope
from access_engine.store.models import RoleAssignmentRecord


@pytest.fixture()
def session() -> Iterator[Session]:
    engine = build_engine(Settings(_env_file=None, database_url="sqlite://"))
    create_schema(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


@pytest.fixture()
def sql_store(
    session: Session, config: AccessConfig, clock: Callable[[], datetime]
) -> SqlIdentityStore:
    return SqlIdentityStore(session, config=config, clock=clock)


def test_satisfies_identity_store_protocol(sql_store: SqlIdentityStore) -> None:
    assert isinstance(sql_store, IdentityStore)


def test_assign_role_is_an_upsert(sql_store: SqlIdentityStore, now: datetime) -> None:
    sql_store.add_person("p-1", "tenant-1", company_id="company-1")

    first = sql_store.assign_role("p-1", "trainer", company_id="company-1")
    second = sql_store.assign_role(
        "p-1", "TRAINER", company_id="company-1", expires_at=now + timedelta(days=1)
    )

    assert first.id == second.id
    assert second.tenant_id == "tenant-1"
    assert second.expires_at == now + timedelta(days=1)
    assert len(sql_store.get_active_role_assignments("p-1", "tenant-1")) == 1


def test_null_company_is_part_of_the_identity(sql_store: SqlIdentityStore) -> None:
    sql_store.add_person("p-1", "tenant-1")

    first = sql_store.assign_role("p-1", "EMPLOYEE")
    second = sql_store.assign_role("p-1", "EMPLOYEE")
    other = sql_store.assign_role("p-1", "EMPLOYEE", company_id="company-1")

    assert first.id == second.id
    assert other.id != first.id


def test_write_validation(sql_store: SqlIdentityStore) -> None:
    sql_store.add_person("p-1", "tenant-1")

    with pytest.raises(StoreError, match="already exists"):
        sql_store.add_person("p-1", "tenant-1")
    with pytest.raises(UnknownRole):
        sql_store.assign_role("p-1", "JANITOR")
    with pytest.raises(PersonNotFoundError):
        sql_store.assign_role("ghost", "TRAINER")
    with pytest.raises(AssignmentNotFoundError):
        sql_store.grant_permission("missing", "VIEW_EMPLOYEES")


def test_failed_write_keeps_earlier_pending_writes() -> None:
    engine = build_engine(Settings(_env_file=None, database_url="sqlite://"))
    create_schema(engine)
    factory = build_sessionmaker(engine)
    try:
        with session_scope(factory) as session:
            store = SqlIdentityStore(session)
            store.add_person("alice", "tenant-1")
            with pytest.raises(StoreError, match="Cannot add person 'bob'.*NOT NULL"):
                store.add_person("bob", None)  # type: ignore[arg-type]
            assert store.get_person("alice") is not None
        with session_scope(factory) as session:
            store = SqlIdentityStore(session)
            assert store.get_person("alice") is not None
            assert store.get_person("bob") is None
    finally:
        engine.dispose()


def test_database_allows_one_active_assignment_per_identity(
    sql_store: SqlIdentityStore, session: Session
) -> None:
    sql_store.add_person("p-1", "tenant-1", company_id="company-1")
    trainer = sql_store.assign_role("p-1", "TRAINER", company_id="company-1")
    sql_store.assign_role("p-1", "EMPLOYEE")

    with pytest.raises(IntegrityError), session.begin_nested():
        session.add(
            RoleAssignmentRecord(
                person_id="p-1", role_type="TRAINER", company_id="company-1", tenant_id="tenant-1"
            )
        )
    with pytest.raises(IntegrityError), session.begin_nested():
        session.add(
            RoleAssignmentRecord(person_id="p-1", role_type="EMPLOYEE", tenant_id="tenant-1")
        )

    sql_store.revoke_role(trainer.id)
    renewed = sql_store.assign_role("p-1", "TRAINER", company_id="company-1")

    assert renewed.id != trainer.id
    active = sql_store.get_active_role_assignments("p-1")
    assert sorted(item.role_type for item in active) == ["EMPLOYEE", "TRAINER"]


def test_grants_round_trip_through_the_session(sql_store: SqlIdentityStore) -> None:
    sql_store.add_person("p-1", "tenant-1", company_id="company-1")
    assignment = sql_store.assign_role("p-1", "HR_MANAGER", company_id="company-1")

    sql_store.grant_permission(assignment.id, "VIEW_EMPLOYEES")
    grant = sql_store.grant_permission(
        assignment.id,
        "view_employees",
        scope=PermissionScope.COMPANY,
        site_access=SiteAccess.ASSIGNED_SITE_ONLY,
        site_id="site-1",
        allowed_fields=["name", "email"],
    )

    [stored] = sql_store.get_assignment(assignment.id).permissions
    assert stored == grant
    assert stored.scope is PermissionScope.COMPANY
    assert stored.site_access is SiteAccess.ASSIGNED_SITE_ONLY
    assert stored.allowed_fields == frozenset({"name", "email"})
    with pytest.raises(UnknownPermissionKey):
        sql_store.grant_permission(assignment.id, "FLY_PLANES")


def test_default_permissions_are_seeded(sql_store: SqlIdentityStore, config: AccessConfig) -> None:
    sql_store.add_person("p-1", "tenant-1", company_id="company-1")

    assignment = sql_store.assign_role(
        "p-1", "HR_MANAGER", company_id="company-1", with_default_permissions=True
    )

    assert assignment.permission_keys == frozenset(config.roles["HR_MANAGER"].permissions)


def test_revoke_role_deactivates_and_clears(sql_store: SqlIdentityStore) -> None:
    sql_store.add_person("p-1", "tenant-1")
    assignment = sql_store.assign_role("p-1", "HR_MANAGER")
    sql_store.grant_permission(assignment.id, "VIEW_EMPLOYEES")

    revoked = sql_store.revoke_role(assignment.id)

    assert not revoked.is_active
    assert revoked.permissions == ()
    assert sql_store.get_active_role_assignments("p-1") == []
    with pytest.raises(StoreError, match="not active"):
        sql_store.grant_permission(assignment.id, "VIEW_EMPLOYEES")


def test_revoke_permissions(sql_store: SqlIdentityStore) -> None:
    sql_store.add_person("p-1", "tenant-1")
    assignment = sql_store.assign_role("p-1", "HR_MANAGER")
    for key in ("VIEW_EMPLOYEES", "EDIT_EMPLOYEES", "VIEW_TRAINERS"):
        sql_store.grant_permission(assignment.id, key)

    assert sql_store.revoke_permissions(assignment.id, ["VIEW_EMPLOYEES", "edit_employees"]) == 2
    assert sql_store.revoke_permissions(assignment.id, []) == 0
    assert sql_store.get_assignment(assignment.id).permission_keys == frozenset({"VIEW_TRAINERS"})


def test_active_assignments_filter_expiry_tenant_and_deletion(
    sql_store: SqlIdentityStore, now: datetime
) -> None:
    sql_store.add_person("p-1", "tenant-1")
    sql_store.assign_role("p-1", "TRAINER", expires_at=now - timedelta(seconds=1))
    sql_store.assign_role("p-1", "EMPLOYEE")
    sql_store.assign_role("p-1", "GUEST", tenant_id="tenant-2")

    assert [row.role_type for row in sql_store.get_active_role_assignments("p-1", "tenant-1")] == [
        "EMPLOYEE"
    ]

    sql_store.soft_delete_person("p-1")

    assert sql_store.get_active_role_assignments("p-1") == []
    with pytest.raises(PersonNotFoundError):
        sql_store.soft_delete_person("ghost")


def test_expire_assignments(sql_store: SqlIdentityStore, now: datetime) -> None:
    sql_store.add_person("p-1", "tenant-1")
    stale = sql_store.assign_role("p-1", "TRAINER", expires_at=now - timedelta(hours=1))
    sql_store.grant_permission(stale.id, "VIEW_TRAINERS")
    sql_store.assign_role("p-1", "EMPLOYEE", expires_at=now + timedelta(hours=1))

    assert sql_store.expire_assignments() == 1
    assert sql_store.expire_assignments() == 0
    assert sql_store.get_assignment(stale.id).permissions == ()


def test_population_and_projection(sql_store: SqlIdentityStore, config: AccessConfig) -> None:
    for person_id, role, company in (
        ("emp-1", "EMPLOYEE", "company-1"),
        ("trn-1", "TRAINER", "company-1"),
        ("guest-1", "GUEST", "company-1"),
        ("emp-2", "EMPLOYEE", "company-2"),
    ):
        sql_store.add_person(person_id, "tenant-1", company_id=company)
        sql_store.assign_role(person_id, role, company_id=company)

    population = {person.id: person for person in sql_store.get_person_population("tenant-1")}
    projector = VirtualEntityProjector(config, sql_store)

    assert population["trn-1"].role_types == frozenset({"TRAINER"})
    assert {person.id for person in sql_store.get_person_population("tenant-1", "company-2")} == {
        "emp-2"
    }
    assert {person.id for person in projector.project("EMPLOYEES", "tenant-1")} == {
        "emp-1",
        "trn-1",
        "emp-2",
    }
    assert [person.id for person in projector.project("TRAINERS", "tenant-1", "company-1")] == [
        "trn-1"
    ]


def test_engine_over_sql_store(
    sql_store: SqlIdentityStore, config: AccessConfig, clock: Callable[[], datetime]
) -> None:
    sql_store.add_person("hr-1", "tenant-1", company_id="company-1")
    assignment = sql_store.assign_role("hr-1", "HR_MANAGER", company_id="company-1")
    sql_store.grant_permission(assignment.id, "VIEW_EMPLOYEES", scope=PermissionScope.COMPANY)
    engine = PermissionEngine(config, sql_store, clock=clock)
    actor = Actor(person_id="hr-1", tenant_id="tenant-1", company_id="company-1")

    allowed = engine.check_permission(actor, "EMPLOYEES", "VIEW", Target(company_id="company-1"))
    denied = engine.check_permission(actor, "EMPLOYEES", "VIEW", Target(company_id="company-2"))

    assert allowed.allowed
    assert not denied.allowed
    assert denied.code is DecisionCode.SCOPE_DENIED


def test_read_failures_become_store_unavailable(
    sql_store: SqlIdentityStore, session: Session, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken(*args: object, **kwargs: object) -> None:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "execute", broken)

    with pytest.raises(StoreUnavailable):
        sql_store.get_active_role_assignments("p-1", "tenant-1")
    with pytest.raises(StoreUnavailable):
        sql_store.get_person_population("tenant-1")


def test_build_engine_requires_url() -> None:
    with pytest.raises(ConfigurationError, match="ACCESS_DATABASE_URL"):
        build_engine(Settings(_env_file=None))


def test_memory_database_is_shared_across_sessions() -> None:
    engine = build_engine(Settings(_env_file=None, database_url="sqlite://"))
    try:
        assert isinstance(engine.pool, StaticPool)
        assert "persons" in create_schema(engine)
        factory = build_sessionmaker(engine)
        with session_scope(factory) as session:
            SqlIdentityStore(session).add_person("p-1", "tenant-1")
        with session_scope(factory) as session:
            assert SqlIdentityStore(session).get_person("p-1") is not None
    finally:
        engine.dispose()


def test_session_scope_rolls_back_on_error() -> None:
    engine = build_engine(Settings(_env_file=None, database_url="sqlite://"))
    create_schema(engine)
    factory = build_sessionmaker(engine)
    try:
        with pytest.raises(RuntimeError), session_scope(factory) as session:
            SqlIdentityStore(session).add_person("p-1", "tenant-1")
            raise RuntimeError("abort")
        with session_scope(factory) as session:
            assert SqlIdentityStore(session).get_person("p-1") is None
    finally:
        engine.dispose()


def test_delegated_writes_over_the_sql_store(
    sql_store: SqlIdentityStore, config: AccessConfig, clock: Callable[[], datetime]
) -> None:
    sql_store.add_person("hr-1", "tenant-1", company_id="company-1")
    sql_store.assign_role("hr-1", "HR_MANAGER", company_id="company-1")
    sql_store.add_person("new-1", "tenant-1", company_id="company-1")
    delegator = RoleDelegator(config, sql_store, clock=clock)

    assert isinstance(sql_store, AssignmentStore)
    with pytest.raises(DelegationDenied):
        delegator.assign_role("hr-1", "new-1", "ADMIN")
    assigned = delegator.assign_role("hr-1", "new-1", "EMPLOYEE", company_id="company-1")
    [grant] = delegator.grant_permissions("hr-1", assigned.id, ["view_employees"])

    assert grant.granted_by == "hr-1"
    assert sql_store.get_assignment(assigned.id).permission_keys == frozenset({"VIEW_EMPLOYEES"})
