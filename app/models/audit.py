"""
Succession Case Platform
Audit domain model.

Models:
    - AuditEvent: immutable, append-only audit trail for case workflow events.
"""

import json
from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_EVENT_TYPES = {
    # Plan engine
    "CasePlanGenerated",
    "PlaybookApplied",
    "CasePlanReadinessRecalculated",
    "CasePlanReadinessOverridden",
    "WorkflowTaskStatusUpdated",
    "CaseNotificationQueued",
    "CaseAccessDenied",
    # Case lifecycle collaborator
    "CaseCreated",
    "CaseStatusChanged",
    "CaseIntakeSubmitted",
    # Playbook collaborator
    "PlaybookCreated",
    "PlaybookActivated",
}


class AuditEvent(db.Model):
    """
    Immutable audit trail entry.

    One row per event.  ``metadata_json`` carries the structured payload
    (step keys, previous/new status, rationale, denial reason, …).
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("idx_audit_event_case", "case_id"),
        db.Index("idx_audit_event_type", "event_type"),
        db.Index("idx_audit_event_actor", "actor_user_id"),
        db.Index("idx_audit_event_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    case_id = db.Column(
        db.Integer,
        db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=True,
        comment="NULL for tenant-level events (playbooks)",
    )
    actor_user_id = db.Column(db.Integer, nullable=False)

    event_type = db.Column(
        db.String(60), nullable=False,
        comment="CasePlanGenerated | WorkflowTaskStatusUpdated | CaseAccessDenied | …",
    )
    metadata_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def event_metadata(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "case_id": self.case_id,
            "actor_user_id": self.actor_user_id,
            "event_type": self.event_type,
            "metadata": self.event_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditEvent {self.id}: {self.event_type} case={self.case_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit_event(
    *,
    event_type: str,
    actor_user_id: int,
    case_id: int | None = None,
    tenant_id: int | None = None,
    metadata: dict | None = None,
) -> AuditEvent:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditEvent instance.
    """
    if event_type not in AUDIT_EVENT_TYPES:
        raise ValueError(f"Unknown audit event type: {event_type}")

    event = AuditEvent(
        tenant_id=tenant_id,
        case_id=case_id,
        actor_user_id=actor_user_id,
        event_type=event_type,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(event)
    db.session.flush()
    return event
