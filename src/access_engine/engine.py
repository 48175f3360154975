"""Permission resolution: bypass, direct, virtual entity, and legacy tiers.

Every call to :meth:`PermissionEngine.check_permission` terminates in an allow
or deny :class:`PermissionDecision`. Configuration and context problems become
deny decisions at this boundary; only :class:`StoreUnavailable` escapes so the
caller can choose between failing the request and retrying.

A tier is skipped when every key it would try was already tried by an earlier
one. The built-in table maps each entity action to its ``ACTION_RESOURCE``
key, so for ``EMPLOYEES`` and ``TRAINERS`` the direct tier covers the entity
key and decisions report ``DIRECT``; ``VIRTUAL_ENTITY`` appears only for
tables whose entity keys differ from the resource name.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from access_engine.audit import AuditEvent, AuditSink, LoggingAuditSink, safe_record
from access_engine.common.logging import log_context
from access_engine.errors import (
    ConfigurationError,
    ContextMissing,
    NoActor,
    NoTenant,
    UnknownPermissionKey,
)
from access_engine.filters import (
    evaluate_scope,
    evaluate_site,
    filter_fields,
    permissiveness,
)
from access_engine.hierarchy import RoleHierarchy
from access_engine.projection import Clock, VirtualEntityProjector, utc_now
from access_engine.rbac.config import AccessConfig, get_access_config
from access_engine.rbac.types import (
    Actor,
    DecisionCode,
    EntityAction,
    GrantedPermission,
    PermissionDecision,
    PermissionScope,
    RoleAssignment,
    Target,
    normalize_action,
    normalize_resource,
    permission_key_for,
)
from access_engine.settings import Settings, get_settings
from access_engine.store.base import IdentityStore

logger = logging.getLogger(__name__)

_UNAUTHENTICATED = "unauthenticated"
_NO_MATCH = "no matching permission"


@dataclass(frozen=True)
class ResolutionTier:
    """One step of the cascade and the permission keys it tries."""

    code: DecisionCode
    keys: tuple[str, ...]


class PermissionEngine:
    """Resolve ``(actor, resource, action, target)`` to a decision."""

    def __init__(
        self,
        config: AccessConfig,
        store: IdentityStore,
        *,
        audit: AuditSink | None = None,
        lenient_on_missing_target: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._audit = audit
        self._lenient = lenient_on_missing_target
        self._clock = clock or utc_now
        self._hierarchy = RoleHierarchy(config)
        self._projector = VirtualEntityProjector(config, store, clock=self._clock)

    @classmethod
    def from_settings(
        cls,
        store: IdentityStore,
        *,
        settings: Settings | None = None,
        config: AccessConfig | None = None,
        audit: AuditSink | None = None,
    ) -> PermissionEngine:
        settings = settings or get_settings()
        if audit is None and settings.audit_enabled:
            audit = LoggingAuditSink()
        return cls(
            config or get_access_config(),
            store,
            audit=audit,
            lenient_on_missing_target=settings.lenient_on_missing_target,
        )

    def with_config(self, config: AccessConfig) -> PermissionEngine:
        """Engine bound to a replacement configuration; this one is untouched."""

        return type(self)(
            config,
            self._store,
            audit=self._audit,
            lenient_on_missing_target=self._lenient,
            clock=self._clock,
        )

    @property
    def config(self) -> AccessConfig:
        return self._config

    @property
    def hierarchy(self) -> RoleHierarchy:
        return self._hierarchy

    @property
    def projector(self) -> VirtualEntityProjector:
        return self._projector

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check_permission(
        self,
        actor: Actor | None,
        resource: str,
        action: str | EntityAction,
        target: Target | None = None,
    ) -> PermissionDecision:
        target = target or Target()
        try:
            decision = self._resolve(actor, resource, action, target)
        except ContextMissing as exc:
            logger.info(
                "access.decision.unauthenticated",
                extra=log_context(resource=str(resource), detail=str(exc)),
            )
            decision = PermissionDecision.deny(_UNAUTHENTICATED, code=DecisionCode.UNAUTHENTICATED)
        except ConfigurationError as exc:
            logger.warning(
                "access.decision.configuration_error",
                extra=log_context(
                    tenant_id=actor.tenant_id if actor else None,
                    actor_id=actor.person_id if actor else None,
                    resource=str(resource),
                    error=str(exc),
                ),
            )
            decision = PermissionDecision.deny(
                f"configuration error: {exc}", code=DecisionCode.CONFIGURATION_ERROR
            )

        self._record(actor, resource, action, target, decision)
        return decision

    def has_permission(
        self,
        actor: Actor | None,
        resource: str,
        action: str | EntityAction,
        target: Target | None = None,
    ) -> bool:
        return self.check_permission(actor, resource, action, target).allowed

    def explain(self, resource: str, action: str | EntityAction) -> list[str]:
        """Permission keys the cascade would try for ``(resource, action)``, in order."""

        return [key for tier in self._tiers(resource, action) for key in tier.keys]

    def tiers(self, resource: str, action: str | EntityAction) -> list[ResolutionTier]:
        return self._tiers(resource, action)

    def assignable_roles_for(self, actor: Actor) -> frozenset[str]:
        """Roles ``actor`` may grant to others, based on their effective roles."""

        self._require_context(actor)
        held = {assignment.role_type for assignment in self._effective_assignments(actor)}
        return self._hierarchy.assignable_roles(held)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _resolve(
        self,
        actor: Actor | None,
        resource: str,
        action: str | EntityAction,
        target: Target,
    ) -> PermissionDecision:
        actor = self._require_context(actor)
        assignments = self._effective_assignments(actor)

        bypass_role = self._bypass_role(assignments)
        if bypass_role is not None:
            return PermissionDecision.allow(
                scope=PermissionScope.GLOBAL,
                code=DecisionCode.BYPASS,
                reason=f"bypass role {bypass_role}",
                allowed_fields=filter_fields(target.requested_fields, None),
            )

        last_failure: tuple[DecisionCode, str] | None = None
        for tier in self._tiers(resource, action):
            candidates = self._candidates(assignments, tier.keys)
            for permission in candidates:
                scope_check = evaluate_scope(
                    permission, actor, target, lenient_on_missing_target=self._lenient
                )
                if not scope_check.passed:
                    last_failure = (DecisionCode.SCOPE_DENIED, scope_check.reason)
                    continue
                site_check = evaluate_site(
                    permission, target, lenient_on_missing_target=self._lenient
                )
                if not site_check.passed:
                    last_failure = (DecisionCode.SITE_DENIED, site_check.reason)
                    continue
                return PermissionDecision.allow(
                    scope=permission.scope,
                    code=tier.code,
                    reason=f"granted by {permission.permission_key}",
                    allowed_fields=filter_fields(
                        target.requested_fields, permission.allowed_fields
                    ),
                    permission_key=permission.permission_key,
                )

        if last_failure is not None:
            code, reason = last_failure
            return PermissionDecision.deny(reason, code=code)
        return PermissionDecision.deny(_NO_MATCH)

    def _tiers(self, resource: str, action: str | EntityAction) -> list[ResolutionTier]:
        try:
            resource_name = normalize_resource(resource)
            action_name = normalize_action(action)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        direct_key = permission_key_for(resource_name, action_name)
        if not self._projector.is_virtual_entity(resource_name):
            if direct_key not in self._config.permissions:
                raise UnknownPermissionKey(direct_key)
            return [ResolutionTier(DecisionCode.DIRECT, (direct_key,))]

        entity = self._projector.definition(resource_name)
        try:
            entity_action = EntityAction.coerce(action_name)
        except ValueError as exc:
            raise ConfigurationError(
                f"Virtual entity '{entity.name}' does not support action '{action_name}'"
            ) from exc

        tiers: list[ResolutionTier] = []
        seen: set[str] = set()

        def add(code: DecisionCode, keys: Sequence[str]) -> None:
            fresh = tuple(key for key in dict.fromkeys(keys) if key not in seen)
            if fresh:
                seen.update(fresh)
                tiers.append(ResolutionTier(code, fresh))

        if direct_key in self._config.permissions:
            add(DecisionCode.DIRECT, (direct_key,))
        add(DecisionCode.VIRTUAL_ENTITY, (entity.permission_keys[entity_action],))
        add(DecisionCode.LEGACY, entity.legacy_permission_keys.get(entity_action, ()))
        return tiers

    @staticmethod
    def _candidates(
        assignments: Sequence[RoleAssignment], keys: tuple[str, ...]
    ) -> list[GrantedPermission]:
        matches = [
            permission
            for assignment in assignments
            for permission in assignment.permissions
            if permission.is_granted and permission.permission_key in keys
        ]
        return sorted(matches, key=permissiveness)

    def _bypass_role(self, assignments: Sequence[RoleAssignment]) -> str | None:
        for assignment in assignments:
            if self._hierarchy.is_bypass_role(assignment.role_type):
                return assignment.role_type
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_context(actor: Actor | None) -> Actor:
        if actor is None or not actor.person_id:
            raise NoActor("No authenticated actor")
        if not actor.tenant_id:
            raise NoTenant("Actor is not bound to a tenant")
        return actor

    def _effective_assignments(self, actor: Actor) -> list[RoleAssignment]:
        now = self._clock()
        effective: list[RoleAssignment] = []
        for assignment in self._store.get_active_role_assignments(
            actor.person_id, actor.tenant_id
        ):
            if not assignment.is_effective(now):
                continue
            if not self._hierarchy.role_exists(assignment.role_type):
                logger.warning(
                    "access.assignment.unknown_role",
                    extra=log_context(
                        tenant_id=actor.tenant_id,
                        person_id=actor.person_id,
                        role_type=assignment.role_type,
                        assignment_id=assignment.id,
                    ),
                )
                continue
            effective.append(assignment)
        return effective

    def _record(
        self,
        actor: Actor | None,
        resource: str,
        action: str | EntityAction,
        target: Target,
        decision: PermissionDecision,
    ) -> None:
        action_label = action.value if isinstance(action, EntityAction) else str(action)
        context = log_context(
            tenant_id=actor.tenant_id if actor else None,
            company_id=target.company_id,
            actor_id=actor.person_id if actor else None,
            resource=str(resource),
            action=action_label,
            code=decision.code.value,
            reason=decision.reason,
        )
        if decision.allowed:
            logger.debug("access.decision.allow", extra=context)
        else:
            logger.info("access.decision.deny", extra=context)

        if self._audit is None:
            return
        safe_record(
            self._audit,
            AuditEvent(
                actor_id=actor.person_id if actor else None,
                tenant_id=actor.tenant_id if actor else None,
                company_id=target.company_id,
                resource=str(resource),
                action=action_label,
                decision=decision,
            ),
        )


__all__ = ["PermissionEngine", "ResolutionTier"]
