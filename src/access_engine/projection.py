"""Virtual entities: role-defined slices of the person population.

A virtual entity (``EMPLOYEES``, ``TRAINERS``) has no storage of its own. A
person belongs to it while one of their effective role assignments names a
whitelisted role whose level lies inside the entity's band. Membership is
recomputed on every call, so assignment changes show up on the next read.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from typing import Any

from access_engine.errors import UnknownVirtualEntity
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.types import (
    EntityAction,
    PersonSummary,
    RoleAssignment,
    VirtualEntityDefinition,
    normalize_resource,
)
from access_engine.store.base import IdentityStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class VirtualEntityProjector:
    """Membership tests and lazy projections over an :class:`IdentityStore`."""

    def __init__(
        self,
        config: AccessConfig,
        store: IdentityStore,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def is_virtual_entity(self, name: str) -> bool:
        try:
            return normalize_resource(name) in self._config.virtual_entities
        except ValueError:
            return False

    def definition(self, entity_name: str) -> VirtualEntityDefinition:
        try:
            return self._config.virtual_entities[normalize_resource(entity_name)]
        except (KeyError, ValueError):
            raise UnknownVirtualEntity(entity_name) from None

    def definitions(self) -> list[VirtualEntityDefinition]:
        return list(self._config.virtual_entities.values())

    def role_qualifies(self, entity_name: str, role_type: str) -> bool:
        """Whitelist AND level band; a level match alone never qualifies."""

        entity = self.definition(entity_name)
        return self._qualifies(entity, role_type)

    def _qualifies(self, entity: VirtualEntityDefinition, role_type: str) -> bool:
        if role_type not in entity.role_types:
            return False
        role = self._config.roles.get(role_type)
        if role is None:
            return False
        return entity.min_level <= role.level <= entity.max_level

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def is_member(self, person_id: str, entity_name: str, tenant_id: str | None = None) -> bool:
        entity = self.definition(entity_name)
        now = self._clock()
        assignments = self._store.get_active_role_assignments(person_id, tenant_id)
        return any(
            self._qualifies(entity, assignment.role_type)
            for assignment in assignments
            if assignment.is_effective(now)
        )

    def entities_for(self, role_types: Iterable[str]) -> list[str]:
        """Names of every virtual entity the given role types place a person in."""

        held = set(role_types)
        return [
            entity.name
            for entity in self._config.virtual_entities.values()
            if any(self._qualifies(entity, role_type) for role_type in held)
        ]

    def memberships(self, person_id: str, tenant_id: str | None = None) -> list[str]:
        now = self._clock()
        assignments = self._store.get_active_role_assignments(person_id, tenant_id)
        return self.entities_for(
            assignment.role_type for assignment in assignments if assignment.is_effective(now)
        )

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project(
        self,
        entity_name: str,
        tenant_id: str,
        company_id: str | None = None,
        *,
        order_by: Callable[[PersonSummary], Any] | None = None,
    ) -> Iterable[PersonSummary]:
        """Filter the tenant's population down to members of ``entity_name``.

        Without ``order_by`` this returns a lazy iterator preserving the store's
        order. With it, the members are materialized and sorted.
        """

        entity = self.definition(entity_name)
        members = self._iter_members(entity, tenant_id, company_id)
        if order_by is not None:
            return sorted(members, key=order_by)
        return members

    def _iter_members(
        self,
        entity: VirtualEntityDefinition,
        tenant_id: str,
        company_id: str | None,
    ) -> Iterator[PersonSummary]:
        population = self._store.get_person_population(tenant_id, company_id)
        scanned = 0
        kept = 0
        for person in population:
            scanned += 1
            if any(self._qualifies(entity, role_type) for role_type in person.role_types):
                kept += 1
                yield person
        logger.debug(
            "access.projection.scanned",
            extra={
                "entity": entity.name,
                "tenant_id": tenant_id,
                "company_id": company_id,
                "scanned": scanned,
                "kept": kept,
            },
        )

    # ------------------------------------------------------------------
    # Permission keys
    # ------------------------------------------------------------------

    def permission_key(self, entity_name: str, action: str | EntityAction) -> str:
        entity = self.definition(entity_name)
        return entity.permission_keys[EntityAction.coerce(action)]

    def legacy_permission_keys(
        self, entity_name: str, action: str | EntityAction
    ) -> tuple[str, ...]:
        entity = self.definition(entity_name)
        return tuple(entity.legacy_permission_keys.get(EntityAction.coerce(action), ()))

    def permission_keys_for(
        self, entity_name: str, actions: Iterable[str | EntityAction]
    ) -> list[str]:
        """Translate entity actions into the permission keys to grant."""

        keys = [self.permission_key(entity_name, action) for action in actions]
        return list(dict.fromkeys(keys))

    def actions_granted(self, assignment: RoleAssignment) -> dict[str, list[str]]:
        """Entity actions covered by the granted permissions on ``assignment``."""

        granted = assignment.permission_keys
        result: dict[str, list[str]] = {}
        for entity in self._config.virtual_entities.values():
            actions = [
                action.value
                for action in EntityAction
                if entity.permission_keys.get(action) in granted
            ]
            if actions:
                result[entity.name] = actions
        return result


__all__ = ["Clock", "VirtualEntityProjector", "utc_now"]
