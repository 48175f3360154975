"""Shared pytest fixtures for access engine tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from access_engine.audit import InMemoryAuditSink
from access_engine.engine import PermissionEngine
from access_engine.rbac.config import AccessConfig, default_access_config, reload_access_config
from access_engine.rbac.types import RoleAssignment
from access_engine.settings import reload_settings
from access_engine.store.memory import InMemoryIdentityStore

_ACCESS_ENV = (
    "ACCESS_LOG_LEVEL",
    "ACCESS_LOG_FORMAT",
    "ACCESS_DATABASE_LOG_LEVEL",
    "ACCESS_CONFIG_FILE",
    "ACCESS_BYPASS_LEVEL_CEILING",
    "ACCESS_LENIENT_ON_MISSING_TARGET",
    "ACCESS_AUDIT_ENABLED",
    "ACCESS_DATABASE_URL",
    "ACCESS_DATABASE_ECHO",
)


@pytest.fixture(scope="session")
def _settings_workdir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """A directory without a ``.env`` file so settings only see the environment."""

    return tmp_path_factory.mktemp("access-engine")


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, _settings_workdir: Path) -> Iterator[None]:
    """Keep ACCESS_* variables and cached settings from leaking between tests."""

    for name in _ACCESS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(_settings_workdir)
    reload_settings()
    yield
    monkeypatch.undo()
    reload_settings()
    reload_access_config()


@pytest.fixture()
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture()
def config() -> AccessConfig:
    return default_access_config()


@pytest.fixture()
def store(config: AccessConfig, clock: Callable[[], datetime]) -> InMemoryIdentityStore:
    return InMemoryIdentityStore(config=config, clock=clock)


@pytest.fixture()
def audit() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture()
def engine(
    config: AccessConfig,
    store: InMemoryIdentityStore,
    audit: InMemoryAuditSink,
    clock: Callable[[], datetime],
) -> PermissionEngine:
    return PermissionEngine(config, store, audit=audit, clock=clock)


@pytest.fixture()
def hire(store: InMemoryIdentityStore) -> Callable[..., RoleAssignment]:
    """Add a person (if missing) to tenant-1 and give them one role, by default in company-1."""

    def _hire(
        person_id: str,
        role: str,
        *,
        company_id: str | None = "company-1",
        tenant_id: str = "tenant-1",
    ) -> RoleAssignment:
        if store.get_person(person_id) is None:
            store.add_person(person_id, tenant_id, company_id=company_id)
        return store.assign_role(person_id, role, company_id=company_id, tenant_id=tenant_id)

    return _hire
