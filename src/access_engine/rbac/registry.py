"""Canonical role hierarchy, permission registry, and virtual entity table."""

from __future__ import annotations

from collections.abc import Mapping

from .types import (
    EntityAction,
    PermissionDefinition,
    RoleDefinition,
    VirtualEntityDefinition,
    permission_key_for,
)

CRUD_ACTIONS: tuple[EntityAction, ...] = tuple(EntityAction)

CRUD_RESOURCES: tuple[str, ...] = (
    "COMPANIES",
    "EMPLOYEES",
    "TRAINERS",
    "PERSONS",
    "USERS",
    "COURSES",
    "SCHEDULES",
    "DOCUMENTS",
    "REPORTS",
    "ROLES",
    "PATIENTS",
    "APPOINTMENTS",
    "MEDICAL_RECORDS",
)


def _crud(resource: str, *actions: EntityAction) -> tuple[str, ...]:
    selected = actions or CRUD_ACTIONS
    return tuple(permission_key_for(resource, action) for action in selected)


V, C, E = EntityAction.VIEW, EntityAction.CREATE, EntityAction.EDIT


PERMISSIONS: tuple[PermissionDefinition, ...] = (
    *(
        PermissionDefinition(
            key=permission_key_for(resource, action),
            resource=resource,
            action=action.value,
            label=f"{action.value.title()} {resource.replace('_', ' ').lower()}",
        )
        for resource in CRUD_RESOURCES
        for action in CRUD_ACTIONS
    ),
    # Administrative permissions -----------------------------------------
    PermissionDefinition("ROLE_MANAGEMENT", "ROLES", "MANAGE", "Manage role definitions"),
    PermissionDefinition("USER_MANAGEMENT", "USERS", "MANAGE", "Manage user accounts"),
    PermissionDefinition("TENANT_MANAGEMENT", "TENANTS", "MANAGE", "Manage tenant settings"),
    PermissionDefinition("MANAGE_USERS", "USERS", "MANAGE_ALL", "Manage users across companies"),
    PermissionDefinition("ASSIGN_ROLES", "ROLES", "ASSIGN", "Assign roles to persons"),
    PermissionDefinition("REVOKE_ROLES", "ROLES", "REVOKE", "Revoke roles from persons"),
    PermissionDefinition("VIEW_HIERARCHY", "HIERARCHY", "VIEW", "Inspect the role hierarchy"),
    PermissionDefinition("EDIT_HIERARCHY", "HIERARCHY", "EDIT", "Edit the role hierarchy"),
    PermissionDefinition("VIEW_ADMINISTRATION", "ADMINISTRATION", "VIEW", "Open the admin area"),
    PermissionDefinition("SYSTEM_SETTINGS", "SYSTEM", "SETTINGS", "Change system settings"),
)

PERMISSION_REGISTRY: Mapping[str, PermissionDefinition] = {
    definition.key: definition for definition in PERMISSIONS
}


ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(
        role_id="SUPER_ADMIN",
        level=0,
        name="Super Administrator",
        description="Unrestricted access to the whole platform.",
    ),
    RoleDefinition(
        role_id="ADMIN",
        level=1,
        default_parent="SUPER_ADMIN",
        name="Administrator",
        description="Full management of a tenant.",
    ),
    RoleDefinition(
        role_id="COMPANY_ADMIN",
        level=2,
        default_parent="ADMIN",
        name="Company Administrator",
        description="Manages one company and its workforce.",
        permissions=(
            *_crud("ROLES", V, C, E),
            "ASSIGN_ROLES",
            "VIEW_HIERARCHY",
            *_crud("COMPANIES", V, E),
            *_crud("EMPLOYEES", V, C, E),
            *_crud("TRAINERS", V, C, E),
            *_crud("USERS", V, C, E),
            *_crud("COURSES", V, C, E),
            *_crud("DOCUMENTS", V, C, E),
        ),
    ),
    RoleDefinition(
        role_id="TENANT_ADMIN",
        level=2,
        default_parent="ADMIN",
        name="Tenant Administrator",
        description="Manages tenant-wide configuration.",
        permissions=(
            "TENANT_MANAGEMENT",
            *_crud("ROLES"),
            "ASSIGN_ROLES",
            "REVOKE_ROLES",
            "VIEW_HIERARCHY",
            "EDIT_HIERARCHY",
            *_crud("COMPANIES", V, C, E),
            *_crud("EMPLOYEES", V, C, E),
            *_crud("TRAINERS", V, C, E),
            *_crud("USERS", V, C, E),
            *_crud("COURSES", V, C, E),
        ),
    ),
    RoleDefinition(
        role_id="TRAINING_ADMIN",
        level=3,
        default_parent="COMPANY_ADMIN",
        name="Training Administrator",
        description="Runs training and workforce programmes.",
        permissions=(
            *_crud("EMPLOYEES"),
            *_crud("TRAINERS"),
            *_crud("COURSES"),
            *_crud("DOCUMENTS"),
            *_crud("REPORTS", V, C, E),
        ),
    ),
    RoleDefinition(
        role_id="CLINIC_ADMIN",
        level=3,
        default_parent="COMPANY_ADMIN",
        name="Clinic Administrator",
        description="Runs an outpatient clinic.",
        permissions=(
            *_crud("EMPLOYEES"),
            *_crud("PATIENTS", V, C, E),
            *_crud("APPOINTMENTS", V, C, E),
            *_crud("MEDICAL_RECORDS", V, C, E),
            *_crud("DOCUMENTS"),
            *_crud("REPORTS", V, C, E),
        ),
    ),
    RoleDefinition(
        role_id="HR_MANAGER",
        level=4,
        default_parent="TRAINING_ADMIN",
        name="HR Manager",
        description="Human resources management.",
        permissions=(
            *_crud("EMPLOYEES"),
            *_crud("TRAINERS", V, C, E),
            *_crud("COURSES", V),
            *_crud("DOCUMENTS", V, C),
        ),
    ),
    RoleDefinition(
        role_id="MANAGER",
        level=4,
        default_parent="TRAINING_ADMIN",
        name="Manager",
        description="Operational management and coordination.",
        permissions=(
            *_crud("EMPLOYEES", V, C, E),
            *_crud("TRAINERS", V, C, E),
            *_crud("COURSES", V, C, E),
            *_crud("DOCUMENTS", V, C, E),
            *_crud("REPORTS", V),
        ),
    ),
    RoleDefinition(
        role_id="DEPARTMENT_HEAD",
        level=4,
        default_parent="MANAGER",
        name="Department Head",
        description="Leads a single department.",
        permissions=(
            *_crud("EMPLOYEES", V, C, E),
            *_crud("TRAINERS", V, C),
            *_crud("COURSES", V, C, E),
            *_crud("DOCUMENTS", V, C),
        ),
    ),
    RoleDefinition(
        role_id="TRAINER_COORDINATOR",
        level=5,
        default_parent="HR_MANAGER",
        name="Trainer Coordinator",
        description="Coordinates training activities.",
        permissions=(
            *_crud("TRAINERS", V, C, E),
            *_crud("COURSES", V, C, E),
            *_crud("DOCUMENTS", V, C),
        ),
    ),
    RoleDefinition(
        role_id="COMPANY_MANAGER",
        level=5,
        default_parent="HR_MANAGER",
        name="Company Manager",
        description="Company-level responsibilities.",
        permissions=(
            *_crud("EMPLOYEES", V, E),
            *_crud("COURSES", V, E),
            *_crud("DOCUMENTS", V, C),
            *_crud("REPORTS", V),
        ),
    ),
    RoleDefinition(
        role_id="SUPERVISOR",
        level=5,
        default_parent="DEPARTMENT_HEAD",
        name="Supervisor",
        description="Operational supervision.",
        permissions=(*_crud("EMPLOYEES", V, E), *_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="AUDITOR",
        level=5,
        default_parent="MANAGER",
        name="Auditor",
        description="Compliance control and audit.",
        permissions=(*_crud("REPORTS", V), *_crud("DOCUMENTS", V), *_crud("EMPLOYEES", V)),
    ),
    RoleDefinition(
        role_id="SENIOR_TRAINER",
        level=6,
        default_parent="TRAINER_COORDINATOR",
        name="Senior Trainer",
        description="Advanced training and mentoring.",
        permissions=(
            *_crud("COURSES", V, C, E),
            *_crud("EMPLOYEES", V),
            *_crud("DOCUMENTS", V, C),
        ),
    ),
    RoleDefinition(
        role_id="COORDINATOR",
        level=6,
        default_parent="SUPERVISOR",
        name="Coordinator",
        description="Coordinates day-to-day activities.",
        permissions=(*_crud("EMPLOYEES", V), *_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="TRAINER",
        level=7,
        default_parent="SENIOR_TRAINER",
        name="Trainer",
        description="Delivers courses.",
        permissions=(
            *_crud("COURSES", V, E),
            *_crud("EMPLOYEES", V),
            *_crud("DOCUMENTS", V, C),
        ),
    ),
    RoleDefinition(
        role_id="EXTERNAL_TRAINER",
        level=7,
        default_parent="SENIOR_TRAINER",
        name="External Trainer",
        description="Specialist trainer from outside the company.",
        permissions=(*_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="OPERATOR",
        level=7,
        default_parent="COORDINATOR",
        name="Operator",
        description="Basic operations.",
        permissions=(*_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="CONSULTANT",
        level=7,
        default_parent="COORDINATOR",
        name="Consultant",
        description="Specialist consulting.",
        permissions=(*_crud("COURSES", V), *_crud("DOCUMENTS", V), *_crud("REPORTS", V)),
    ),
    RoleDefinition(
        role_id="EMPLOYEE",
        level=8,
        default_parent="OPERATOR",
        name="Employee",
        description="Baseline workforce access.",
        permissions=(*_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="VIEWER",
        level=9,
        default_parent="EMPLOYEE",
        name="Viewer",
        description="Read-only access.",
        permissions=(*_crud("COURSES", V), *_crud("DOCUMENTS", V)),
    ),
    RoleDefinition(
        role_id="GUEST",
        level=10,
        default_parent="VIEWER",
        name="Guest",
        description="Limited temporary access.",
        permissions=(*_crud("COURSES", V),),
    ),
)

ROLE_BY_ID: Mapping[str, RoleDefinition] = {definition.role_id: definition for definition in ROLES}


def _entity_keys(resource: str) -> dict[EntityAction, str]:
    return {action: permission_key_for(resource, action) for action in CRUD_ACTIONS}


def _legacy_keys(*resources: str) -> dict[EntityAction, tuple[str, ...]]:
    return {
        action: tuple(permission_key_for(resource, action) for resource in resources)
        for action in CRUD_ACTIONS
    }


VIRTUAL_ENTITIES: tuple[VirtualEntityDefinition, ...] = (
    VirtualEntityDefinition(
        name="EMPLOYEES",
        display_name="Employees",
        description="Persons holding a company-admin-or-below workforce role.",
        role_types=frozenset(
            {
                "COMPANY_ADMIN",
                "HR_MANAGER",
                "MANAGER",
                "TRAINER_COORDINATOR",
                "SENIOR_TRAINER",
                "TRAINER",
                "EMPLOYEE",
            }
        ),
        min_level=2,
        max_level=8,
        permission_keys=_entity_keys("EMPLOYEES"),
        legacy_permission_keys=_legacy_keys("PERSONS"),
    ),
    VirtualEntityDefinition(
        name="TRAINERS",
        display_name="Trainers",
        description="Persons holding a trainer-coordinator-or-below training role.",
        role_types=frozenset(
            {"TRAINER_COORDINATOR", "SENIOR_TRAINER", "TRAINER", "EXTERNAL_TRAINER"}
        ),
        min_level=4,
        max_level=7,
        permission_keys=_entity_keys("TRAINERS"),
        legacy_permission_keys=_legacy_keys("EMPLOYEES", "PERSONS"),
    ),
)

VIRTUAL_ENTITY_BY_NAME: Mapping[str, VirtualEntityDefinition] = {
    definition.name: definition for definition in VIRTUAL_ENTITIES
}

# Roles at or above this level (numerically <=) short-circuit every check.
DEFAULT_BYPASS_LEVEL_CEILING = 1


__all__ = [
    "CRUD_ACTIONS",
    "CRUD_RESOURCES",
    "DEFAULT_BYPASS_LEVEL_CEILING",
    "PERMISSIONS",
    "PERMISSION_REGISTRY",
    "ROLES",
    "ROLE_BY_ID",
    "VIRTUAL_ENTITIES",
    "VIRTUAL_ENTITY_BY_NAME",
]
