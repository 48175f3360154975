"""Role hierarchy lookups: levels, ancestry, distance, and assignability."""

from __future__ import annotations

from collections.abc import Iterable

from access_engine.errors import UnknownRole
from access_engine.rbac.config import AccessConfig
from access_engine.rbac.types import RoleDefinition


class RoleHierarchy:
    """Pure queries over the role table of an :class:`AccessConfig`.

    Lower level means more authority. Every method that takes a single role
    identifier raises :class:`UnknownRole` for identifiers missing from the
    table; set-valued inputs (an actor's held roles) skip unrecognized entries.
    """

    def __init__(self, config: AccessConfig) -> None:
        self._config = config
        self._order = {role_id: index for index, role_id in enumerate(config.roles)}

    @property
    def config(self) -> AccessConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def role_exists(self, role_id: str) -> bool:
        return role_id in self._config.roles

    def get_role(self, role_id: str) -> RoleDefinition:
        try:
            return self._config.roles[role_id]
        except KeyError:
            raise UnknownRole(role_id) from None

    def level_of(self, role_id: str) -> int:
        return self.get_role(role_id).level

    def all_roles(self) -> list[RoleDefinition]:
        """Roles ordered from most to least senior, table order within a level."""
        return sorted(self._config.roles.values(), key=self._rank)

    def roles_by_level(self, level: int) -> list[str]:
        return [role.role_id for role in self.all_roles() if role.level == level]

    def default_parent_role(self, role_id: str) -> str | None:
        return self.get_role(role_id).default_parent

    def default_permissions(self, role_id: str) -> tuple[str, ...]:
        return self.get_role(role_id).permissions

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def is_ancestor(self, role_a: str, role_b: str) -> bool:
        """True when ``role_a`` outranks ``role_b``. Equal levels never do."""
        return self.level_of(role_a) < self.level_of(role_b)

    def hierarchical_distance(self, role_a: str, role_b: str) -> int:
        return abs(self.level_of(role_a) - self.level_of(role_b))

    def same_level(self, role_a: str, role_b: str) -> bool:
        return self.level_of(role_a) == self.level_of(role_b)

    def subordinate_roles(self, role_id: str) -> list[str]:
        level = self.level_of(role_id)
        return [role.role_id for role in self.all_roles() if role.level > level]

    def superior_roles(self, role_id: str) -> list[str]:
        level = self.level_of(role_id)
        return [role.role_id for role in self.all_roles() if role.level < level]

    def sibling_roles(self, role_id: str) -> list[str]:
        level = self.level_of(role_id)
        return [
            role.role_id
            for role in self.all_roles()
            if role.level == level and role.role_id != role_id
        ]

    def path_to_root(self, role_id: str) -> list[str]:
        """Follow default parents from ``role_id`` to the top of its chain."""

        path = [self.get_role(role_id).role_id]
        current = self.default_parent_role(role_id)
        while current is not None and current not in path:
            path.append(current)
            current = self.default_parent_role(current)
        return path

    # ------------------------------------------------------------------
    # Actor-centric helpers
    # ------------------------------------------------------------------

    def best_level(self, actor_roles: Iterable[str]) -> int | None:
        """Minimum level among recognized roles, or ``None`` when none are known."""

        levels = [
            self._config.roles[role_id].level
            for role_id in actor_roles
            if role_id in self._config.roles
        ]
        return min(levels) if levels else None

    def highest_role(self, actor_roles: Iterable[str]) -> str | None:
        recognized = [
            self._config.roles[role_id] for role_id in actor_roles if role_id in self._config.roles
        ]
        if not recognized:
            return None
        return min(recognized, key=self._rank).role_id

    def assignable_roles(self, actor_roles: Iterable[str]) -> frozenset[str]:
        """Roles strictly beneath the actor's most senior recognized role."""

        best = self.best_level(actor_roles)
        if best is None:
            return frozenset()
        return frozenset(
            role.role_id for role in self._config.roles.values() if role.level > best
        )

    def can_assign(self, actor_roles: Iterable[str], target_role: str) -> bool:
        self.get_role(target_role)
        return target_role in self.assignable_roles(actor_roles)

    def closest_role(self, target_role: str, candidates: Iterable[str]) -> str | None:
        """Candidate nearest to ``target_role``; ties go to the more senior role."""

        target_level = self.level_of(target_role)
        known = [
            self._config.roles[role_id]
            for role_id in candidates
            if role_id in self._config.roles and role_id != target_role
        ]
        if not known:
            return None
        best = min(known, key=lambda role: (abs(role.level - target_level), *self._rank(role)))
        return best.role_id

    # ------------------------------------------------------------------
    # Permission delegation
    # ------------------------------------------------------------------

    def effective_permissions(self, actor_roles: Iterable[str]) -> frozenset[str]:
        """Union of the default permissions carried by every recognized role."""

        return frozenset(
            key
            for role_id in actor_roles
            if role_id in self._config.roles
            for key in self._config.roles[role_id].permissions
        )

    def assignable_permissions(self, actor_roles: Iterable[str]) -> frozenset[str]:
        """Permissions an actor may hand out to others.

        Bypass roles may delegate the whole catalogue; everyone else only what
        their own roles carry.
        """

        held = [role_id for role_id in actor_roles if role_id in self._config.roles]
        if any(self.is_bypass_role(role_id) for role_id in held):
            return frozenset(self._config.permissions)
        return self.effective_permissions(held)

    def can_assign_permission(self, actor_roles: Iterable[str], permission_key: str) -> bool:
        return permission_key in self.assignable_permissions(actor_roles)

    # ------------------------------------------------------------------
    # Bypass
    # ------------------------------------------------------------------

    @property
    def bypass_roles(self) -> frozenset[str]:
        ceiling = self._config.bypass_level_ceiling
        return frozenset(
            role.role_id for role in self._config.roles.values() if role.level <= ceiling
        )

    def is_bypass_role(self, role_id: str) -> bool:
        return self.level_of(role_id) <= self._config.bypass_level_ceiling

    def _rank(self, role: RoleDefinition) -> tuple[int, int]:
        return role.level, self._order[role.role_id]


__all__ = ["RoleHierarchy"]
