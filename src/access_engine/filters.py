"""Scope, site, and field narrowing applied to resolved grants."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from access_engine.rbac.types import (
    WILDCARD,
    WILDCARD_FIELDS,
    Actor,
    GrantedPermission,
    PermissionScope,
    SiteAccess,
    Target,
)


@dataclass(frozen=True)
class CheckResult:
    """Pass/fail outcome of a single scope or site evaluation."""

    passed: bool
    reason: str = ""


_PASS = CheckResult(True)


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


def is_wildcard(fields: Iterable[str] | None) -> bool:
    """Unset or ``"*"``-containing field lists grant every field."""
    if fields is None:
        return True
    return WILDCARD in set(fields)


def filter_fields(
    requested: Iterable[str] | None,
    allowed: Iterable[str] | None,
) -> list[str]:
    """Narrow ``requested`` to what ``allowed`` permits, keeping request order.

    * wildcard ``allowed``: the request is returned unchanged, or ``["*"]``
      when nothing specific was requested;
    * explicit ``allowed`` with no request: the allowed list itself, sorted when
      it comes from an unordered set;
    * otherwise the intersection.
    """

    requested_list = list(requested) if requested is not None else []
    if is_wildcard(allowed):
        return requested_list or list(WILDCARD_FIELDS)

    if isinstance(allowed, (set, frozenset)):
        allowed_list = sorted(allowed)
    else:
        allowed_list = list(dict.fromkeys(allowed or ()))
    if not requested_list or WILDCARD in requested_list:
        return allowed_list
    permitted = set(allowed_list)
    return [field for field in dict.fromkeys(requested_list) if field in permitted]


def narrow_record(record: Mapping[str, Any], fields: Iterable[str] | None) -> dict[str, Any]:
    """Copy of ``record`` holding only the permitted keys."""

    if is_wildcard(fields):
        return dict(record)
    keep = set(fields or ())
    return {key: value for key, value in record.items() if key in keep}


# ---------------------------------------------------------------------------
# Scope and site
# ---------------------------------------------------------------------------


def evaluate_scope(
    permission: GrantedPermission,
    actor: Actor,
    target: Target,
    *,
    lenient_on_missing_target: bool = True,
) -> CheckResult:
    scope = permission.scope
    if scope is PermissionScope.GLOBAL:
        return _PASS

    if scope is PermissionScope.COMPANY:
        if actor.company_id is None:
            return CheckResult(False, "company scope requires the actor to belong to a company")
        if target.company_id is None:
            if lenient_on_missing_target:
                return _PASS
            return CheckResult(False, "company scope requires a target company")
        if target.company_id != actor.company_id:
            return CheckResult(False, "target company is outside the actor's company")
        return _PASS

    if target.person_id is None:
        if lenient_on_missing_target:
            return _PASS
        return CheckResult(False, "self scope requires a target person")
    if target.person_id != actor.person_id:
        return CheckResult(False, "self scope only covers the actor's own record")
    return _PASS


def evaluate_site(
    permission: GrantedPermission,
    target: Target,
    *,
    lenient_on_missing_target: bool = True,
) -> CheckResult:
    if permission.site_access is SiteAccess.ALL_COMPANY_SITES:
        return _PASS
    if permission.site_id is None:
        return CheckResult(False, "site-restricted permission has no assigned site")
    if target.site_id is None:
        if lenient_on_missing_target:
            return _PASS
        return CheckResult(False, "site-restricted permission requires a target site")
    if target.site_id != permission.site_id:
        return CheckResult(False, "target site is outside the assigned site")
    return _PASS


def permissiveness(permission: GrantedPermission) -> tuple[int, int]:
    """Sort key placing the broadest grant first."""
    return (-permission.scope.rank, 0 if permission.is_wildcard else 1)


__all__ = [
    "CheckResult",
    "evaluate_scope",
    "evaluate_site",
    "filter_fields",
    "is_wildcard",
    "narrow_record",
    "permissiveness",
]
