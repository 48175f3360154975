"""Immutable, versioned role/entity configuration and its startup validation."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType

from pydantic import ValidationError

from access_engine.errors import (
    ConfigurationError,
    UnknownPermissionKey,
    UnknownRole,
)
from access_engine.settings import get_settings

from .registry import (
    DEFAULT_BYPASS_LEVEL_CEILING,
    PERMISSIONS,
    ROLES,
    VIRTUAL_ENTITIES,
)
from .schemas import AccessConfigFile
from .types import (
    EntityAction,
    PermissionDefinition,
    RoleDefinition,
    VirtualEntityDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_VERSION = "builtin-1"


@dataclass(frozen=True)
class AccessConfig:
    """Read-only role hierarchy, permission registry, and virtual entity table.

    Instances are never mutated; a reload builds a new object and callers swap
    the reference.
    """

    version: str
    roles: Mapping[str, RoleDefinition]
    virtual_entities: Mapping[str, VirtualEntityDefinition]
    permissions: Mapping[str, PermissionDefinition]
    bypass_level_ceiling: int = DEFAULT_BYPASS_LEVEL_CEILING

    @classmethod
    def build(
        cls,
        *,
        version: str,
        roles: Iterable[RoleDefinition],
        virtual_entities: Iterable[VirtualEntityDefinition],
        permissions: Iterable[PermissionDefinition],
        bypass_level_ceiling: int = DEFAULT_BYPASS_LEVEL_CEILING,
    ) -> AccessConfig:
        return cls(
            version=version,
            roles=MappingProxyType({role.role_id: role for role in roles}),
            virtual_entities=MappingProxyType({entity.name: entity for entity in virtual_entities}),
            permissions=MappingProxyType({item.key: item for item in permissions}),
            bypass_level_ceiling=bypass_level_ceiling,
        )

    @property
    def level_range(self) -> tuple[int, int]:
        levels = [role.level for role in self.roles.values()]
        return min(levels), max(levels)


def default_access_config(*, bypass_level_ceiling: int | None = None) -> AccessConfig:
    """Return the built-in table."""

    return AccessConfig.build(
        version=DEFAULT_CONFIG_VERSION,
        roles=ROLES,
        virtual_entities=VIRTUAL_ENTITIES,
        permissions=PERMISSIONS,
        bypass_level_ceiling=(
            DEFAULT_BYPASS_LEVEL_CEILING if bypass_level_ceiling is None else bypass_level_ceiling
        ),
    )


def parse_access_config(payload: Mapping[str, object]) -> AccessConfig:
    """Build an :class:`AccessConfig` from a decoded JSON document."""

    try:
        document = AccessConfigFile.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid access configuration: {exc}") from exc

    roles = [
        RoleDefinition(
            role_id=role.role_id,
            level=role.level,
            default_parent=role.parent.upper() if role.parent else None,
            name=role.name,
            description=role.description,
            permissions=tuple(role.permissions),
        )
        for role in document.roles
    ]

    permissions: list[PermissionDefinition] = []
    if document.include_default_permissions:
        permissions.extend(PERMISSIONS)
    for item in document.permissions or ():
        permissions.append(
            PermissionDefinition(
                key=item.key,
                resource=item.resource.upper(),
                action=item.action.upper(),
                label=item.label,
            )
        )

    entities = [
        VirtualEntityDefinition(
            name=entity.name,
            display_name=entity.display_name,
            description=entity.description,
            role_types=frozenset(role.upper() for role in entity.role_types),
            min_level=entity.min_level,
            max_level=entity.max_level,
            permission_keys=MappingProxyType(dict(entity.permissions)),
            legacy_permission_keys=MappingProxyType(
                {action: tuple(keys) for action, keys in entity.legacy_permissions.items()}
            ),
        )
        for entity in document.virtual_entities
    ]

    return AccessConfig.build(
        version=document.version,
        roles=roles,
        virtual_entities=entities,
        permissions=permissions,
        bypass_level_ceiling=(
            DEFAULT_BYPASS_LEVEL_CEILING
            if document.bypass_level_ceiling is None
            else document.bypass_level_ceiling
        ),
    )


def load_access_config(path: Path) -> AccessConfig:
    """Read, parse, and validate a JSON configuration file."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read access configuration {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Access configuration {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Access configuration {path} must be a JSON object")

    config = parse_access_config(payload)
    validate_access_config(config)
    logger.info(
        "access.config.loaded",
        extra={"path": str(path), "version": config.version, "roles": len(config.roles)},
    )
    return config


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_access_config(config: AccessConfig) -> None:
    """Fail fast on an inconsistent table. Intended for process start."""

    if not config.roles:
        raise ConfigurationError("At least one role must be defined")

    _validate_parents(config)

    for role in config.roles.values():
        for key in role.permissions:
            if key not in config.permissions:
                raise UnknownPermissionKey(key)

    low, high = config.level_range
    for entity in config.virtual_entities.values():
        if entity.min_level > entity.max_level:
            raise ConfigurationError(
                f"Virtual entity '{entity.name}' has min_level {entity.min_level} "
                f"above max_level {entity.max_level}"
            )
        if entity.min_level < low or entity.max_level > high:
            raise ConfigurationError(
                f"Virtual entity '{entity.name}' band [{entity.min_level}, {entity.max_level}] "
                f"is outside the role levels [{low}, {high}]"
            )
        for role_type in entity.role_types:
            if role_type not in config.roles:
                raise UnknownRole(role_type)
        missing = [action.value for action in EntityAction if action not in entity.permission_keys]
        if missing:
            raise ConfigurationError(
                f"Virtual entity '{entity.name}' has no permission key for: {', '.join(missing)}"
            )
        for key in entity.permission_keys.values():
            if key not in config.permissions:
                raise UnknownPermissionKey(key)
        for keys in entity.legacy_permission_keys.values():
            for key in keys:
                if key not in config.permissions:
                    raise UnknownPermissionKey(key)


def _validate_parents(config: AccessConfig) -> None:
    for role in config.roles.values():
        parent_id = role.default_parent
        if parent_id is None:
            continue
        parent = config.roles.get(parent_id)
        if parent is None:
            raise UnknownRole(parent_id)
        if parent.level > role.level:
            raise ConfigurationError(
                f"Role '{role.role_id}' (level {role.level}) cannot default to parent "
                f"'{parent_id}' with lower authority (level {parent.level})"
            )

    for role_id in config.roles:
        seen = {role_id}
        current = config.roles[role_id].default_parent
        while current is not None:
            if current in seen:
                raise ConfigurationError(f"Default parent chain of '{role_id}' forms a cycle")
            seen.add(current)
            current = config.roles[current].default_parent


# ---------------------------------------------------------------------------
# Process-wide accessors
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _build_active_config() -> AccessConfig:
    settings = get_settings()
    if settings.config_file is not None:
        config = load_access_config(settings.config_file)
        # An explicit ACCESS_BYPASS_LEVEL_CEILING wins over the file.
        if "bypass_level_ceiling" in settings.model_fields_set:
            config = replace(config, bypass_level_ceiling=settings.bypass_level_ceiling)
        return config
    config = default_access_config(bypass_level_ceiling=settings.bypass_level_ceiling)
    validate_access_config(config)
    return config


def get_access_config() -> AccessConfig:
    """Return the active configuration object."""
    return _build_active_config()


def reload_access_config() -> AccessConfig:
    """Replace the active configuration object with a freshly loaded one."""
    _build_active_config.cache_clear()
    config = _build_active_config()
    logger.info("access.config.reloaded", extra={"version": config.version})
    return config


__all__ = [
    "AccessConfig",
    "DEFAULT_CONFIG_VERSION",
    "default_access_config",
    "get_access_config",
    "load_access_config",
    "parse_access_config",
    "reload_access_config",
    "validate_access_config",
]
