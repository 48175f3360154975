"""Pydantic models for the JSON role/entity table and store fixtures."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import EntityAction, PermissionScope, SiteAccess, normalize_resource


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class RoleDefinitionIn(_Schema):
    role_id: str = Field(min_length=1, alias="id")
    level: int = Field(ge=0)
    parent: str | None = None
    name: str = ""
    description: str = ""
    permissions: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", populate_by_name=True, str_strip_whitespace=True)

    @field_validator("role_id")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class PermissionDefinitionIn(_Schema):
    key: str = Field(min_length=1)
    resource: str = Field(min_length=1)
    action: str = Field(min_length=1)
    label: str = ""


class VirtualEntityIn(_Schema):
    name: str = Field(min_length=1)
    display_name: str = ""
    description: str = ""
    role_types: list[str] = Field(min_length=1)
    min_level: int = Field(ge=0)
    max_level: int = Field(ge=0)
    permissions: dict[EntityAction, str]
    legacy_permissions: dict[EntityAction, list[str]] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return normalize_resource(value)

    @field_validator("permissions", "legacy_permissions", mode="before")
    @classmethod
    def _upper_actions(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(key).strip().upper(): item for key, item in value.items()}
        return value


class AccessConfigFile(_Schema):
    """Top-level document accepted by ``load_access_config``."""

    version: str = Field(min_length=1)
    bypass_level_ceiling: int | None = Field(default=None, ge=0)
    roles: list[RoleDefinitionIn] = Field(min_length=1)
    virtual_entities: list[VirtualEntityIn] = Field(default_factory=list)
    permissions: list[PermissionDefinitionIn] | None = None
    include_default_permissions: bool = True


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


class GrantedPermissionIn(_Schema):
    permission: str = Field(min_length=1)
    is_granted: bool = True
    scope: PermissionScope = PermissionScope.GLOBAL
    site_access: SiteAccess = SiteAccess.ALL_COMPANY_SITES
    site_id: str | None = None
    allowed_fields: list[str] | None = None
    granted_by: str | None = None


class RoleAssignmentIn(_Schema):
    id: str | None = None
    role: str = Field(min_length=1)
    company_id: str | None = None
    tenant_id: str | None = None
    is_active: bool = True
    expires_at: datetime | None = None
    permissions: list[GrantedPermissionIn] = Field(default_factory=list)


class PersonIn(_Schema):
    id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    company_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    deleted: bool = False
    roles: list[RoleAssignmentIn] = Field(default_factory=list)


class StoreFixture(_Schema):
    """A JSON snapshot of persons and their assignments for the in-memory store."""

    persons: list[PersonIn] = Field(default_factory=list)


__all__ = [
    "AccessConfigFile",
    "GrantedPermissionIn",
    "PermissionDefinitionIn",
    "PersonIn",
    "RoleAssignmentIn",
    "RoleDefinitionIn",
    "StoreFixture",
    "VirtualEntityIn",
]
