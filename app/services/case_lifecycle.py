"""
Case Lifecycle — Service Layer.

Business logic for:
    - Case number generation:  CASE-2026-0001 (tenant-scoped, per year)
    - Case creation:           snapshots the tenant's active playbook
    - Structured intake:       validated CaseIntake stored on the case
    - Lifecycle transitions:   CASE_TRANSITIONS guard + CaseStatusChanged audit
    - Timeline:                chronological audit events of one case

The workflow plan engine consumes this module through ``activate_for_plan``
(Active hand-off at plan generation).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.core.exceptions import CaseStateError, ValidationError
from app.models import db
from app.models.audit import AuditEvent
from app.models.auth import User
from app.models.case import Case, validate_case_transition
from app.services.audit_sink import default_sink
from app.services.case_access import CaseRole, ensure_case_role
from app.services.case_locks import case_transaction
from app.services.helpers.scoped_queries import get_scoped
from app.services.intake import CaseIntake
from app.services.playbook_service import get_active_playbook

logger = logging.getLogger(__name__)


# ── Code Generation ──────────────────────────────────────────────────────────


def generate_case_number(tenant_id: int, *, now: datetime | None = None) -> str:
    """Next case number for the tenant: CASE-<year>-0001, CASE-<year>-0002, ..."""
    year = (now or datetime.now(timezone.utc)).year
    prefix = f"CASE-{year}-"
    count = db.session.execute(
        select(func.count(Case.id)).where(
            Case.tenant_id == tenant_id,
            Case.case_number.like(f"{prefix}%"),
        )
    ).scalar() or 0
    return f"{prefix}{count + 1:04d}"


# ── Creation & Intake ────────────────────────────────────────────────────────


def create_case(
    tenant_id: int,
    *,
    actor_user_id: int,
    deceased_full_name: str,
    manager_user_id: int | None = None,
    audit_sink=None,
) -> Case:
    """Create a draft case; the actor becomes manager unless one is given."""
    if not deceased_full_name or not deceased_full_name.strip():
        raise ValidationError("deceased_full_name is required", details={"deceased_full_name": "required"})

    manager_id = manager_user_id if manager_user_id is not None else actor_user_id
    get_scoped(User, manager_id, tenant_id=tenant_id)

    playbook = get_active_playbook(tenant_id)
    case = Case(
        tenant_id=tenant_id,
        case_number=generate_case_number(tenant_id),
        deceased_full_name=deceased_full_name.strip(),
        status="draft",
        manager_user_id=manager_id,
        playbook_id=playbook.id if playbook else None,
        playbook_version=playbook.version if playbook else None,
    )
    db.session.add(case)
    db.session.flush()

    default_sink(audit_sink).emit(
        "CaseCreated",
        actor_user_id=actor_user_id,
        tenant_id=tenant_id,
        case_id=case.id,
        metadata={
            "case_number": case.case_number,
            "manager_user_id": manager_id,
            "playbook_id": case.playbook_id,
            "playbook_version": case.playbook_version,
        },
    )
    db.session.commit()
    logger.info("Case %s created", case.case_number, extra={"case_id": case.id, "tenant_id": tenant_id})
    return case


def submit_intake(
    case_id: int,
    payload: dict,
    *,
    tenant_id: int,
    actor_user_id: int,
    audit_sink=None,
) -> Case:
    """Validate and store the structured intake; draft cases move to intake."""
    intake = CaseIntake.from_dict(payload)
    sink = default_sink(audit_sink)

    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.EDITOR,
                     action="SubmitIntake", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        if case.status not in ("draft", "intake"):
            raise CaseStateError(
                f"Intake cannot be submitted for a case in status '{case.status}'",
                case_id=case.id,
                details={"status": case.status},
            )
        case.intake_data = intake.to_json()
        case.intake_completed_at = datetime.now(timezone.utc)
        case.intake_completed_by_user_id = actor_user_id
        if case.status == "draft":
            _apply_transition(case, "intake", actor_user_id=actor_user_id, sink=sink)
        sink.emit(
            "CaseIntakeSubmitted",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={
                "has_will": intake.has_will,
                "requires_legal_support": intake.requires_legal_support,
                "requires_financial_support": intake.requires_financial_support,
            },
        )

    logger.info("Intake submitted", extra={"case_id": case_id, "tenant_id": tenant_id})
    return case


def load_intake(case: Case) -> CaseIntake | None:
    if case.intake_completed_at is None:
        return None
    return CaseIntake.from_json(case.intake_data)


# ── Lifecycle Transitions ────────────────────────────────────────────────────


def _apply_transition(case: Case, new_status: str, *, actor_user_id: int, sink) -> None:
    old_status = case.status
    if not validate_case_transition(old_status, new_status):
        raise CaseStateError(
            f"Invalid case transition: {old_status} → {new_status}",
            case_id=case.id,
            details={"from": old_status, "to": new_status},
        )
    now = datetime.now(timezone.utc)
    case.status = new_status
    case.updated_at = now
    if new_status == "closed":
        case.closed_at = now
    elif new_status == "archived":
        case.archived_at = now

    sink.emit(
        "CaseStatusChanged",
        actor_user_id=actor_user_id,
        tenant_id=case.tenant_id,
        case_id=case.id,
        metadata={"from": old_status, "to": new_status},
    )


def activate_for_plan(case: Case, *, actor_user_id: int, sink) -> None:
    """Move a draft/intake case to active as part of plan generation."""
    if case.status != "active":
        _apply_transition(case, "active", actor_user_id=actor_user_id, sink=sink)


def transition_case(
    case_id: int,
    new_status: str,
    *,
    tenant_id: int,
    actor_user_id: int,
    audit_sink=None,
) -> Case:
    """Manager-initiated lifecycle transition (review, close, archive, cancel)."""
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.MANAGER,
                     action="TransitionCase", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        _apply_transition(case, new_status, actor_user_id=actor_user_id, sink=default_sink(audit_sink))

    logger.info("Case moved to %s", new_status, extra={"case_id": case_id, "tenant_id": tenant_id})
    return case


# ── Reads ────────────────────────────────────────────────────────────────────


def get_case(case_id: int, *, tenant_id: int, actor_user_id: int) -> Case:
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.READER, action="ViewCase")
    return case


# ── Timeline ─────────────────────────────────────────────────────────────────


def get_case_timeline(case_id: int, *, tenant_id: int, actor_user_id: int) -> list[dict]:
    """Audit events of the case, oldest first."""
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.READER, action="ViewTimeline")

    events = db.session.execute(
        select(AuditEvent)
        .where(AuditEvent.case_id == case_id, AuditEvent.tenant_id == tenant_id)
        .order_by(AuditEvent.created_at, AuditEvent.id)
    ).scalars().all()
    return [e.to_dict() for e in events]
