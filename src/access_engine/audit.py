"""Audit sinks receiving one event per permission decision."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from access_engine.common.logging import log_context
from access_engine.rbac.types import PermissionDecision

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AuditEvent:
    """What was asked, by whom, and what the engine answered."""

    actor_id: str | None
    tenant_id: str | None
    resource: str
    action: str
    decision: PermissionDecision
    timestamp: datetime = field(default_factory=_now)
    company_id: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "tenant_id": self.tenant_id,
            "company_id": self.company_id,
            "resource": self.resource,
            "action": self.action,
            "decision": "allow" if self.decision.allowed else "deny",
            "code": self.decision.code.value,
            "reason": self.decision.reason,
            "scope": self.decision.scope.value if self.decision.scope else None,
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class AuditSink(Protocol):
    """Fire-and-forget consumer of decision events."""

    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Emit each event as a structured log record."""

    def __init__(self, logger_name: str = "access_engine.audit.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, event: AuditEvent) -> None:
        level = logging.INFO if event.allowed else logging.WARNING
        self._logger.log(
            level,
            "access.audit.decision",
            extra=log_context(
                tenant_id=event.tenant_id,
                company_id=event.company_id,
                actor_id=event.actor_id,
                resource=event.resource,
                action=event.action,
                decision="allow" if event.allowed else "deny",
                code=event.decision.code.value,
                reason=event.decision.reason,
            ),
        )


class InMemoryAuditSink:
    """Collect events in a list; useful in tests and the CLI."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


def safe_record(sink: AuditSink | None, event: AuditEvent) -> None:
    """Deliver ``event`` without letting a sink failure reach the caller."""

    if sink is None:
        return
    try:
        sink.record(event)
    except Exception:  # noqa: BLE001
        logger.exception(
            "access.audit.record_failed",
            extra=log_context(
                tenant_id=event.tenant_id,
                actor_id=event.actor_id,
                resource=event.resource,
                action=event.action,
            ),
        )


__all__ = [
    "AuditEvent",
    "AuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "safe_record",
]
