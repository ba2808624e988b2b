"""
Succession Case Platform
Case domain models.

Models:
    - Case:             succession case handled by an agency (one workflow plan per case)
    - CaseParticipant:  user invited onto a case with a case-scoped role

Architecture:
    Tenant ──1:N──▶ Case ──1:N──▶ WorkflowStep
    Case ──1:N──▶ CaseParticipant

Lifecycle states:
    Case:   draft → intake → active → review → closed → archived
            draft → active (direct activation) | draft/intake → cancelled
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

CASE_STATUSES = {
    "draft", "intake", "active", "review",
    "closed", "archived", "cancelled",
}

# Once a case reaches one of these, its workflow steps are immutable history.
CASE_FROZEN_STATUSES = {"closed", "archived", "cancelled"}

CASE_ROLES = {"reader", "editor", "manager"}

PARTICIPANT_STATUSES = {"pending", "accepted", "revoked"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

CASE_TRANSITIONS = {
    "draft":     ["intake", "active", "cancelled"],
    "intake":    ["active", "cancelled"],
    "active":    ["review"],
    "review":    ["closed"],
    "closed":    ["archived"],
    "archived":  [],
    "cancelled": [],
}


def validate_case_transition(old_status, new_status):
    """Return True if Case status transition is valid."""
    return new_status in CASE_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. Case
# ═════════════════════════════════════════════════════════════════════════════


class Case(TenantModel):
    """
    Succession case.  Owned by the case lifecycle collaborator; the
    workflow engine reads intake data and reports the Active hand-off.
    """

    __tablename__ = "cases"

    id = db.Column(db.Integer, primary_key=True)
    case_number = db.Column(db.String(30), nullable=False, comment="CASE-2026-0001")
    deceased_full_name = db.Column(db.String(200), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | intake | active | review | closed | archived | cancelled",
    )
    manager_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # Structured intake (JSON blob at the persistence boundary only)
    intake_data = db.Column(db.Text, nullable=True)
    intake_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    intake_completed_by_user_id = db.Column(db.Integer, nullable=True)

    # Playbook snapshot taken at case creation
    playbook_id = db.Column(
        db.Integer, db.ForeignKey("agency_playbooks.id", ondelete="SET NULL"), nullable=True,
    )
    playbook_version = db.Column(db.Integer, nullable=True)

    plan_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "case_number", name="uq_case_tenant_number"),
        db.CheckConstraint(
            "status IN ('draft','intake','active','review','closed','archived','cancelled')",
            name="ck_case_status",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    participants = db.relationship(
        "CaseParticipant", backref="case", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    workflow_steps = db.relationship(
        "WorkflowStep", backref="case", lazy="dynamic",
        order_by="WorkflowStep.sequence",
    )

    @property
    def is_frozen(self) -> bool:
        return self.status in CASE_FROZEN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "case_number": self.case_number,
            "deceased_full_name": self.deceased_full_name,
            "status": self.status,
            "manager_user_id": self.manager_user_id,
            "intake_completed_at": (
                self.intake_completed_at.isoformat() if self.intake_completed_at else None
            ),
            "playbook_id": self.playbook_id,
            "playbook_version": self.playbook_version,
            "plan_generated_at": (
                self.plan_generated_at.isoformat() if self.plan_generated_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Case {self.id}: {self.case_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. CaseParticipant
# ═════════════════════════════════════════════════════════════════════════════


class CaseParticipant(TenantModel):
    """User invited onto a case.  Only accepted participants hold a case role."""

    __tablename__ = "case_participants"

    id = db.Column(db.Integer, primary_key=True)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    role = db.Column(db.String(20), nullable=False, default="reader", comment="reader | editor | manager")
    status = db.Column(db.String(20), nullable=False, default="pending", comment="pending | accepted | revoked")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("case_id", "user_id", name="uq_case_participant"),
        db.CheckConstraint("role IN ('reader','editor','manager')", name="ck_case_participant_role"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
