from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from access_engine.engine import PermissionEngine
from access_engine.errors import ConfigurationError, UnknownPermissionKey, UnknownRole
from access_engine.rbac.config import (
    AccessConfig,
    default_access_config,
    get_access_config,
    load_access_config,
    parse_access_config,
    reload_access_config,
    validate_access_config,
)
from access_engine.rbac.registry import PERMISSION_REGISTRY, ROLE_BY_ID, VIRTUAL_ENTITY_BY_NAME
from access_engine.rbac.types import Actor, DecisionCode, EntityAction, RoleDefinition
from access_engine.settings import reload_settings
from access_engine.store.memory import InMemoryIdentityStore


def _document(**overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "version": "clinic-2",
        "bypass_level_ceiling": 0,
        "roles": [
            {"id": "owner", "level": 0},
            {"id": "lead", "level": 1, "parent": "owner"},
            {"id": "member", "level": 2, "parent": "lead", "permissions": ["VIEW_COURSES"]},
        ],
        "virtual_entities": [
            {
                "name": "staff",
                "role_types": ["lead", "member"],
                "min_level": 1,
                "max_level": 2,
                "permissions": {
                    "view": "VIEW_PERSONS",
                    "create": "CREATE_PERSONS",
                    "edit": "EDIT_PERSONS",
                    "delete": "DELETE_PERSONS",
                },
                "legacy_permissions": {"VIEW": ["VIEW_USERS"]},
            }
        ],
    }
    document.update(overrides)
    return document


def _write(tmp_path: Path, payload: dict[str, Any]) -> Path:
    path = tmp_path / "access.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_default_config_is_valid_and_read_only() -> None:
    config = default_access_config()

    validate_access_config(config)
    assert config.roles["SUPER_ADMIN"].level == 0
    assert config.virtual_entities["EMPLOYEES"].min_level == 2
    assert config.virtual_entities["TRAINERS"].max_level == 7
    assert config.level_range == (0, 10)
    with pytest.raises(TypeError):
        config.roles["NEW"] = RoleDefinition("NEW", 3)  # type: ignore[index]


def test_registry_tables_are_consistent() -> None:
    assert len(ROLE_BY_ID) == 22
    employees = VIRTUAL_ENTITY_BY_NAME["EMPLOYEES"]
    assert employees.permission_keys[EntityAction.DELETE] == "DELETE_EMPLOYEES"
    assert employees.legacy_permission_keys[EntityAction.VIEW] == ("VIEW_PERSONS",)
    assert "COMPANY_ADMIN" in employees.role_types
    assert "COMPANY_ADMIN" not in VIRTUAL_ENTITY_BY_NAME["TRAINERS"].role_types
    assert PERMISSION_REGISTRY["VIEW_TRAINERS"].resource == "TRAINERS"


def test_load_access_config_from_file(tmp_path: Path) -> None:
    config = load_access_config(_write(tmp_path, _document()))

    assert config.version == "clinic-2"
    assert config.bypass_level_ceiling == 0
    assert config.roles["MEMBER"].default_parent == "LEAD"
    staff = config.virtual_entities["STAFF"]
    assert staff.role_types == frozenset({"LEAD", "MEMBER"})
    assert staff.permission_keys[EntityAction.EDIT] == "EDIT_PERSONS"
    assert staff.legacy_permission_keys[EntityAction.VIEW] == ("VIEW_USERS",)
    assert "VIEW_COURSES" in config.permissions


def test_loaded_config_drives_virtual_entity_tier(tmp_path: Path) -> None:
    config = load_access_config(_write(tmp_path, _document()))
    store = InMemoryIdentityStore(config=config)
    store.add_person("m-1", "tenant-1", company_id="company-1")
    assignment = store.assign_role("m-1", "MEMBER", company_id="company-1")
    store.grant_permission(assignment.id, "VIEW_PERSONS")
    engine = PermissionEngine(config, store)

    decision = engine.check_permission(
        Actor(person_id="m-1", tenant_id="tenant-1", company_id="company-1"), "staff", "VIEW"
    )

    assert decision.allowed
    assert decision.code is DecisionCode.VIRTUAL_ENTITY
    assert engine.explain("STAFF", "VIEW") == ["VIEW_PERSONS", "VIEW_USERS"]
    assert engine.projector.is_member("m-1", "STAFF")


def test_custom_permissions_are_registered(tmp_path: Path) -> None:
    payload = _document(
        permissions=[{"key": "EXPORT_REPORTS", "resource": "reports", "action": "export"}],
    )

    config = load_access_config(_write(tmp_path, payload))

    assert config.permissions["EXPORT_REPORTS"].action == "EXPORT"
    assert "VIEW_COURSES" in config.permissions


def test_without_default_permissions_unknown_keys_fail(tmp_path: Path) -> None:
    payload = _document(include_default_permissions=False, permissions=[])

    with pytest.raises(UnknownPermissionKey):
        load_access_config(_write(tmp_path, payload))


def test_invalid_json_is_a_configuration_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_access_config(path)


def test_missing_file_is_a_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_access_config(tmp_path / "missing.json")


def test_schema_violations_are_configuration_errors() -> None:
    with pytest.raises(ConfigurationError):
        parse_access_config(_document(roles=[]))
    with pytest.raises(ConfigurationError):
        parse_access_config(_document(surprise=True))


def test_unknown_parent_is_rejected() -> None:
    payload = _document(roles=[{"id": "owner", "level": 0, "parent": "ghost"}], virtual_entities=[])

    with pytest.raises(UnknownRole):
        validate_access_config(parse_access_config(payload))


def test_parent_with_less_authority_is_rejected() -> None:
    payload = _document(
        roles=[{"id": "owner", "level": 0, "parent": "member"}, {"id": "member", "level": 2}],
        virtual_entities=[],
    )

    with pytest.raises(ConfigurationError, match="lower authority"):
        validate_access_config(parse_access_config(payload))


def test_parent_cycle_is_rejected() -> None:
    payload = _document(
        roles=[
            {"id": "alpha", "level": 1, "parent": "beta"},
            {"id": "beta", "level": 1, "parent": "alpha"},
        ],
        virtual_entities=[],
    )

    with pytest.raises(ConfigurationError, match="cycle"):
        validate_access_config(parse_access_config(payload))


def test_entity_band_must_fit_role_levels() -> None:
    document = _document()
    document["virtual_entities"][0]["max_level"] = 5

    with pytest.raises(ConfigurationError, match="outside the role levels"):
        validate_access_config(parse_access_config(document))


def test_entity_band_must_be_ordered() -> None:
    document = _document()
    document["virtual_entities"][0]["min_level"] = 2
    document["virtual_entities"][0]["max_level"] = 1

    with pytest.raises(ConfigurationError, match="above max_level"):
        validate_access_config(parse_access_config(document))


def test_entity_whitelist_must_name_known_roles() -> None:
    document = _document()
    document["virtual_entities"][0]["role_types"] = ["member", "ghost"]

    with pytest.raises(UnknownRole):
        validate_access_config(parse_access_config(document))


def test_entity_must_map_every_action() -> None:
    document = _document()
    document["virtual_entities"][0]["permissions"] = {"view": "VIEW_PERSONS"}

    with pytest.raises(ConfigurationError, match="CREATE"):
        validate_access_config(parse_access_config(document))


def test_entity_keys_must_be_registered() -> None:
    document = _document()
    document["virtual_entities"][0]["legacy_permissions"] = {"VIEW": ["VIEW_NOTHING"]}

    with pytest.raises(UnknownPermissionKey):
        validate_access_config(parse_access_config(document))


def test_active_config_follows_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = _write(tmp_path, _document())
    monkeypatch.setenv("ACCESS_CONFIG_FILE", str(path))
    reload_settings()

    config = reload_access_config()

    assert config.version == "clinic-2"
    assert get_access_config() is config


def test_explicit_bypass_setting_overrides_the_file(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("ACCESS_CONFIG_FILE", str(_write(tmp_path, _document())))
    reload_settings()
    assert reload_access_config().bypass_level_ceiling == 0

    monkeypatch.setenv("ACCESS_BYPASS_LEVEL_CEILING", "1")
    reload_settings()
    assert reload_access_config().bypass_level_ceiling == 1


def test_reload_replaces_the_object(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACCESS_BYPASS_LEVEL_CEILING", "0")
    reload_settings()

    first = reload_access_config()
    second = reload_access_config()

    assert isinstance(first, AccessConfig)
    assert first is not second
    assert first == second
    assert first.bypass_level_ceiling == 0
