"""
Audit emitter.

Services depend on the ``AuditSink`` capability rather than on the audit
table directly:

    DatabaseAuditSink  — default; writes AuditEvent rows into the caller's
                         transaction (flush only), so state change and
                         audit commit or roll back together.
    InMemoryAuditSink  — records events in a list; used by tests and by
                         callers that batch audit elsewhere.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from app.models.audit import AUDIT_EVENT_TYPES, write_audit_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    event_type: str
    actor_user_id: int
    tenant_id: int | None
    case_id: int | None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def emit(
        self,
        event_type: str,
        *,
        actor_user_id: int,
        tenant_id: int | None = None,
        case_id: int | None = None,
        metadata: dict | None = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Append AuditEvent rows in the current SQLAlchemy session."""

    def emit(self, event_type, *, actor_user_id, tenant_id=None, case_id=None, metadata=None):
        write_audit_event(
            event_type=event_type,
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case_id,
            metadata=metadata,
        )
        logger.debug(
            "Audit %s", event_type,
            extra={"event_type": event_type, "case_id": case_id, "tenant_id": tenant_id},
        )


class InMemoryAuditSink:
    """Collects AuditRecord entries in ``self.events``."""

    def __init__(self):
        self.events: list[AuditRecord] = []

    def emit(self, event_type, *, actor_user_id, tenant_id=None, case_id=None, metadata=None):
        if event_type not in AUDIT_EVENT_TYPES:
            raise ValueError(f"Unknown audit event type: {event_type}")
        self.events.append(
            AuditRecord(
                event_type=event_type,
                actor_user_id=actor_user_id,
                tenant_id=tenant_id,
                case_id=case_id,
                metadata=dict(metadata or {}),
            )
        )

    def of_type(self, event_type: str) -> list[AuditRecord]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


def default_sink(audit_sink: AuditSink | None) -> AuditSink:
    return audit_sink if audit_sink is not None else DatabaseAuditSink()
