from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from access_engine import cli
from access_engine.rbac.types import PermissionScope
from access_engine.settings import get_settings, reload_settings
from access_engine.store.db import build_engine, build_sessionmaker, session_scope
from access_engine.store.sql import SqlIdentityStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda settings: None)


@pytest.fixture()
def fixture_file(tmp_path: Path) -> Path:
    payload = {
        "persons": [
            {
                "id": "hr-1",
                "tenant_id": "tenant-1",
                "company_id": "company-1",
                "roles": [
                    {
                        "role": "HR_MANAGER",
                        "permissions": [
                            {
                                "permission": "VIEW_EMPLOYEES",
                                "scope": "company",
                                "allowed_fields": ["name", "email"],
                            }
                        ],
                    }
                ],
            },
            {
                "id": "trn-1",
                "tenant_id": "tenant-1",
                "company_id": "company-1",
                "roles": [{"role": "TRAINER"}],
            },
            {
                "id": "emp-1",
                "tenant_id": "tenant-1",
                "company_id": "company-2",
                "roles": [{"role": "EMPLOYEE"}],
            },
        ]
    }
    path = tmp_path / "store.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_roles_lists_hierarchy() -> None:
    result = runner.invoke(cli.app, ["roles"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert "SUPER_ADMIN" in lines[0]
    assert "(bypass)" in lines[0]
    assert "GUEST" in lines[-1]
    assert len(lines) == 22


def test_entities_lists_bands() -> None:
    result = runner.invoke(cli.app, ["entities"])

    assert result.exit_code == 0
    assert "EMPLOYEES  levels=2-8" in result.stdout
    assert "TRAINERS  levels=4-7" in result.stdout


def test_assignable_roles() -> None:
    result = runner.invoke(cli.app, ["assignable", "trainer"])

    assert result.exit_code == 0
    roles = result.stdout.split()
    assert "GUEST" in roles
    assert "EMPLOYEE" in roles
    assert "TRAINER" not in roles
    assert "SENIOR_TRAINER" not in roles


def test_assignable_for_unrecognized_roles() -> None:
    result = runner.invoke(cli.app, ["assignable", "JANITOR"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "(none)"


def test_distance() -> None:
    result = runner.invoke(cli.app, ["distance", "admin", "trainer"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "6"


def test_distance_unknown_role_fails() -> None:
    result = runner.invoke(cli.app, ["distance", "ADMIN", "JANITOR"])

    assert result.exit_code == 1
    assert "error: Role 'JANITOR' is not defined" in result.output


def test_validate_default_and_file(tmp_path: Path) -> None:
    default = runner.invoke(cli.app, ["validate"])
    assert default.exit_code == 0
    assert "ok: version=builtin-1 roles=22 entities=2" in default.stdout

    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps({"version": "x", "roles": []}), encoding="utf-8")
    result = runner.invoke(cli.app, ["validate", "--config", str(broken)])

    assert result.exit_code == 1
    assert "error: Invalid access configuration" in result.output


def test_members_projects_entity(fixture_file: Path) -> None:
    result = runner.invoke(
        cli.app, ["members", "employees", "--fixture", str(fixture_file), "--tenant", "tenant-1"]
    )

    assert result.exit_code == 0
    ids = [line.split()[0] for line in result.stdout.splitlines()]
    assert ids == ["emp-1", "hr-1", "trn-1"]


def test_members_company_filter_and_unknown_entity(fixture_file: Path) -> None:
    trainers = runner.invoke(
        cli.app,
        [
            "members",
            "TRAINERS",
            "--fixture",
            str(fixture_file),
            "--tenant",
            "tenant-1",
            "--company",
            "company-1",
        ],
    )
    unknown = runner.invoke(
        cli.app, ["members", "PATIENTS", "--fixture", str(fixture_file), "--tenant", "tenant-1"]
    )

    assert trainers.exit_code == 0
    assert trainers.stdout.splitlines() == ["trn-1  roles=TRAINER"]
    assert unknown.exit_code == 1
    assert "PATIENTS" in unknown.output


def test_check_allows_within_company(fixture_file: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "check",
            "EMPLOYEES",
            "view",
            "--fixture",
            str(fixture_file),
            "--actor",
            "hr-1",
            "--tenant",
            "tenant-1",
            "--company",
            "company-1",
            "--field",
            "email",
            "--field",
            "salary",
        ],
    )

    assert result.exit_code == 0
    assert result.stdout.startswith("ALLOW scope=company fields=email via=DIRECT")


def test_check_denies_other_company(fixture_file: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "check",
            "EMPLOYEES",
            "VIEW",
            "--fixture",
            str(fixture_file),
            "--actor",
            "hr-1",
            "--tenant",
            "tenant-1",
            "--company",
            "company-2",
        ],
    )

    assert result.exit_code == 1
    assert result.stdout.startswith("DENY code=SCOPE_DENIED")


def test_check_without_grants_denies(fixture_file: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "check",
            "TRAINERS",
            "DELETE",
            "--fixture",
            str(fixture_file),
            "--actor",
            "trn-1",
            "--tenant",
            "tenant-1",
        ],
    )

    assert result.exit_code == 1
    assert "DENY code=NO_MATCH" in result.stdout


def test_check_with_missing_fixture(tmp_path: Path) -> None:
    result = runner.invoke(
        cli.app,
        [
            "check",
            "EMPLOYEES",
            "VIEW",
            "--fixture",
            str(tmp_path / "missing.json"),
            "--actor",
            "hr-1",
            "--tenant",
            "tenant-1",
        ],
    )

    assert result.exit_code == 1
    assert "error: Cannot load store fixture" in result.output


def test_store_commands_require_a_database_without_fixture() -> None:
    result = runner.invoke(cli.app, ["members", "EMPLOYEES", "--tenant", "tenant-1"])

    assert result.exit_code == 1
    assert "error: ACCESS_DATABASE_URL is required" in result.output


def test_init_db_then_check_against_sql_store(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("ACCESS_DATABASE_URL", f"sqlite:///{tmp_path / 'access.db'}")
    reload_settings()

    created = runner.invoke(cli.app, ["init-db"])
    assert created.exit_code == 0
    assert "role_assignments" in created.stdout

    engine = build_engine(get_settings())
    try:
        with session_scope(build_sessionmaker(engine)) as session:
            store = SqlIdentityStore(session)
            store.add_person("hr-1", "tenant-1", company_id="company-1")
            assignment = store.assign_role("hr-1", "HR_MANAGER", company_id="company-1")
            store.grant_permission(assignment.id, "VIEW_TRAINERS", scope=PermissionScope.COMPANY)
    finally:
        engine.dispose()

    allowed = runner.invoke(
        cli.app,
        [
            "check",
            "TRAINERS",
            "VIEW",
            "--actor",
            "hr-1",
            "--tenant",
            "tenant-1",
            "--company",
            "company-1",
        ],
    )
    members = runner.invoke(cli.app, ["members", "EMPLOYEES", "--tenant", "tenant-1"])

    assert allowed.exit_code == 0
    assert allowed.stdout.startswith("ALLOW scope=company")
    assert members.stdout.splitlines() == ["hr-1  roles=HR_MANAGER"]
