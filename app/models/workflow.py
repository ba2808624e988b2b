"""
Succession Case Platform
Case workflow plan models.

Models:
    - WorkflowStep:            one unit of work within a case's generated plan
    - WorkflowStepDependency:  step → depends-on-step edge (same case, DAG)

Architecture:
    Case ──1:N──▶ WorkflowStep
    WorkflowStep ──N:M──▶ WorkflowStep  (via WorkflowStepDependency)

Lifecycle states:
    WorkflowStep:  blocked → ready → in_progress → complete
                   (blocked ⇄ ready also via supervisor override)
"""

import heapq
import uuid
from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel


def _uuid():
    return str(uuid.uuid4())


# ── Constants ────────────────────────────────────────────────────────────────

STEP_STATUSES = {"blocked", "ready", "in_progress", "complete"}

OVERRIDE_TARGET_STATUSES = {"ready", "blocked"}

# Request vocabulary accepted by update_task_status → canonical status.
# "needs_review" is a request, not a status: it leaves the step where it is.
NEEDS_REVIEW_REQUEST = "needs_review"

STATUS_REQUEST_ALIASES = {
    "started": "in_progress",
    "start": "in_progress",
    "in_progress": "in_progress",
    "inprogress": "in_progress",
    "completed": "complete",
    "complete": "complete",
    "needs_review": NEEDS_REVIEW_REQUEST,
    "needsreview": NEEDS_REVIEW_REQUEST,
}

BLOCKED_REASON_CODES = {
    "EvidenceMissing",
    "ExternalDependency",
    "PolicyRestriction",
    "RolePermission",
    "DeadlineRisk",
    "PaymentOrBilling",
    "IdentityOrAuth",
    "DataMismatch",
    "SystemError",
}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STEP_TRANSITIONS = {
    "blocked":     [],
    "ready":       ["in_progress"],
    "in_progress": ["complete"],
    "complete":    [],
}


def validate_step_transition(old_status, new_status):
    """Return True if a manual WorkflowStep status update is valid."""
    return new_status in STEP_TRANSITIONS.get(old_status, [])


# ── Cycle Detection ──────────────────────────────────────────────────────────


def topological_sort(nodes, edges, priority=None):
    """
    Kahn's algorithm over ``edges`` given as (node, depends_on) pairs.

    Returns nodes with every prerequisite before its dependents.  Ties are
    broken by ``priority[node]`` (then the node itself) so the order is
    deterministic.  Raises ValueError when the edge set contains a cycle
    or references an unknown node.
    """
    priority = priority or {}
    nodes = list(nodes)
    known = set(nodes)
    indegree = {n: 0 for n in nodes}
    dependents = {n: [] for n in nodes}

    for node, depends_on in edges:
        if node not in known or depends_on not in known:
            raise ValueError(f"Edge {node!r} → {depends_on!r} references an unknown node")
        if node == depends_on:
            raise ValueError(f"Self dependency on {node!r}")
        indegree[node] += 1
        dependents[depends_on].append(node)

    heap = [(priority.get(n, 0), n) for n in nodes if indegree[n] == 0]
    heapq.heapify(heap)
    ordered = []
    while heap:
        _, current = heapq.heappop(heap)
        ordered.append(current)
        for dependent in dependents[current]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(heap, (priority.get(dependent, 0), dependent))

    if len(ordered) != len(nodes):
        stuck = sorted(n for n in nodes if indegree[n] > 0)
        raise ValueError(f"Dependency cycle detected among: {', '.join(map(str, stuck))}")
    return ordered


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkflowStep
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStep(TenantModel):
    """
    Concrete step instantiated from a catalog template for one case.
    ``step_key`` is unique within the case; a step never moves between cases.
    """

    __tablename__ = "workflow_steps"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    step_key = db.Column(db.String(100), nullable=False, comment="Stable catalog key")
    title = db.Column(db.String(300), nullable=False)
    sequence = db.Column(db.Integer, nullable=False, default=0, comment="Catalog order hint")
    status = db.Column(
        db.String(20), nullable=False, default="blocked",
        comment="blocked | ready | in_progress | complete",
    )

    # Scheduling
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline_source = db.Column(db.String(30), nullable=True, comment="catalog | manual")
    assigned_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    # Supervisor override (sticky until the next explicit update/override)
    is_readiness_overridden = db.Column(db.Boolean, nullable=False, default=False)
    override_rationale = db.Column(db.Text, nullable=True)
    override_by_user_id = db.Column(db.Integer, nullable=True)
    overridden_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # External block cause (only meaningful while blocked)
    blocked_reason_code = db.Column(
        db.String(30), nullable=True,
        comment="EvidenceMissing | ExternalDependency | PolicyRestriction | PaymentOrBilling | …",
    )
    blocked_reason_detail = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1, comment="Bumped on every mutation")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint("case_id", "step_key", name="uq_workflow_step_case_key"),
        db.CheckConstraint(
            "status IN ('blocked','ready','in_progress','complete')",
            name="ck_workflow_step_status",
        ),
        db.Index("ix_workflow_steps_tenant_case", "tenant_id", "case_id"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    dependencies = db.relationship(
        "WorkflowStepDependency",
        foreign_keys="WorkflowStepDependency.step_id",
        backref="step",
        lazy="select",
    )
    dependents = db.relationship(
        "WorkflowStepDependency",
        foreign_keys="WorkflowStepDependency.depends_on_step_id",
        backref="depends_on_step",
        lazy="select",
    )

    @property
    def depends_on_step_ids(self) -> list[str]:
        return sorted(d.depends_on_step_id for d in self.dependencies)

    def touch(self, now: datetime | None = None) -> None:
        """Stamp a mutation: bump version and updated_at."""
        self.version = (self.version or 0) + 1
        self.updated_at = now or datetime.now(timezone.utc)

    def clear_blocked_reason(self) -> None:
        self.blocked_reason_code = None
        self.blocked_reason_detail = None

    def to_dict(self, include_dependencies=True):
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "case_id": self.case_id,
            "step_key": self.step_key,
            "title": self.title,
            "sequence": self.sequence,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "deadline_source": self.deadline_source,
            "assigned_user_id": self.assigned_user_id,
            "is_readiness_overridden": self.is_readiness_overridden,
            "override_rationale": self.override_rationale,
            "override_by_user_id": self.override_by_user_id,
            "overridden_at": self.overridden_at.isoformat() if self.overridden_at else None,
            "blocked_reason_code": self.blocked_reason_code,
            "blocked_reason_detail": self.blocked_reason_detail,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_dependencies:
            result["depends_on_step_ids"] = self.depends_on_step_ids
        return result

    def __repr__(self):
        return f"<WorkflowStep {self.step_key} case={self.case_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkflowStepDependency
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStepDependency(TenantModel):
    """
    ``step_id`` may only start once ``depends_on_step_id`` is complete.
    Written exclusively by the plan generator; both endpoints share case_id.
    """

    __tablename__ = "workflow_step_dependencies"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    case_id = db.Column(
        db.Integer, db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint("step_id", "depends_on_step_id", name="uq_workflow_step_dep"),
        db.CheckConstraint("step_id != depends_on_step_id", name="ck_workflow_dep_no_self_loop"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "case_id": self.case_id,
            "step_id": self.step_id,
            "depends_on_step_id": self.depends_on_step_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowStepDependency {self.step_id} → {self.depends_on_step_id}>"
