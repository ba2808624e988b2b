"""
Readiness Engine — step readiness state machine.

States:
    blocked → ready → in_progress → complete

Operations:
    - bootstrap_status:       initial status at plan generation
    - recalculate_readiness:  unblock every non-overridden blocked step whose
                              prerequisites are all complete (never regresses)
    - update_task_status:     manual ready → in_progress → complete; completing
                              a step recalculates the case automatically
                              (a needs_review request keeps the status and
                              queues a missing-input notification)
    - override_readiness:     supervisor forces ready/blocked with rationale;
                              the override is sticky until the next explicit
                              status update or override

Every mutation runs under ``case_transaction`` (per-case lock + row lock)
and writes its audit events into the same unit of work.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from app.core.exceptions import CaseConflictError, CaseStateError, ValidationError
from app.models.case import Case
from app.models.workflow import (
    BLOCKED_REASON_CODES,
    NEEDS_REVIEW_REQUEST,
    OVERRIDE_TARGET_STATUSES,
    STATUS_REQUEST_ALIASES,
    WorkflowStep,
    validate_step_transition,
)
from app.services.audit_sink import default_sink
from app.services.case_access import CaseRole, ensure_case_role
from app.services.case_locks import case_transaction
from app.services.helpers.scoped_queries import get_scoped
from app.services.workspace_ranker import build_plan, build_workspace, load_case_steps

logger = logging.getLogger(__name__)

DEFAULT_RATIONALE_MAX_LENGTH = 1000
DEFAULT_NOTES_MAX_LENGTH = 1000


def bootstrap_status(dependency_count: int) -> str:
    """Initial status at plan generation: no prerequisites → ready."""
    return "ready" if dependency_count == 0 else "blocked"


# ── Guards ───────────────────────────────────────────────────────────────────


def normalize_task_status(raw) -> str:
    """Map request vocabulary (started / completed / needs_review / canonical) to a step status."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("target_status is required", details={"target_status": "required"})
    key = raw.strip().lower().replace("-", "_")
    status = STATUS_REQUEST_ALIASES.get(key) or STATUS_REQUEST_ALIASES.get(key.replace("_", ""))
    if status is None:
        raise ValidationError(
            f"Unsupported target status '{raw}'",
            details={"target_status": "must be one of: started, completed, needs_review"},
        )
    return status


def _ensure_open(case: Case) -> None:
    if case.is_frozen:
        raise CaseStateError(
            f"Case in status '{case.status}' is read-only",
            case_id=case.id,
            details={"status": case.status},
        )


def _check_version(step: WorkflowStep, expected_version: int | None) -> None:
    if expected_version is not None and step.version != expected_version:
        raise CaseConflictError(
            "Step was modified concurrently; reload and retry",
            case_id=step.case_id,
            details={"step_id": step.id, "expected_version": expected_version, "actual_version": step.version},
        )


def _clear_override(step: WorkflowStep) -> None:
    step.is_readiness_overridden = False
    step.override_rationale = None
    step.override_by_user_id = None
    step.overridden_at = None


# ── Recalculation ────────────────────────────────────────────────────────────


def _recalculate(case: Case, *, now: datetime | None = None) -> list[str]:
    """Promote eligible blocked steps to ready; returns the unblocked step keys."""
    now = now or datetime.now(timezone.utc)
    steps = load_case_steps(case.id, case.tenant_id)
    status_by_id = {s.id: s.status for s in steps}

    unblocked = []
    for step in steps:
        if step.status != "blocked" or step.is_readiness_overridden:
            continue
        if all(status_by_id.get(d.depends_on_step_id) == "complete" for d in step.dependencies):
            step.status = "ready"
            step.clear_blocked_reason()
            step.touch(now)
            unblocked.append(step.step_key)

    if unblocked:
        logger.info(
            "Unblocked %d step(s): %s", len(unblocked), ", ".join(unblocked),
            extra={"case_id": case.id, "tenant_id": case.tenant_id},
        )
    return unblocked


def recalculate_readiness(case_id: int, *, tenant_id: int, actor_user_id: int, audit_sink=None) -> dict:
    """Explicit recalculation (Manager-or-above).  Returns the plan view."""
    sink = default_sink(audit_sink)
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    role = ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.MANAGER,
                            action="RecalculateReadiness", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        _ensure_open(case)
        unblocked = _recalculate(case)
        sink.emit(
            "CasePlanReadinessRecalculated",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={"unblocked_step_keys": unblocked},
        )
        plan = build_plan(case, role=role)

    plan["unblocked_step_keys"] = unblocked
    return plan


# ── Manual status update ─────────────────────────────────────────────────────


def update_task_status(
    case_id: int,
    step_id: str,
    target_status: str,
    *,
    tenant_id: int,
    actor_user_id: int,
    notes: str | None = None,
    expected_version: int | None = None,
    audit_sink=None,
) -> dict:
    """
    Advance one step (Editor-or-above) and return the refreshed workspace.

    Raises:
        ValidationError: unknown target status or notes too long.
        CaseStateError: case frozen or transition not allowed.
        CaseConflictError: expected_version mismatch.
    """
    new_status = normalize_task_status(target_status)
    max_notes = current_app.config.get("TASK_NOTES_MAX_LENGTH", DEFAULT_NOTES_MAX_LENGTH)
    if notes is not None and len(notes) > max_notes:
        raise ValidationError(
            f"notes must be at most {max_notes} characters",
            details={"notes": f"max {max_notes} characters"},
        )

    sink = default_sink(audit_sink)
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.EDITOR,
                     action="UpdateTaskStatus", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        _ensure_open(case)
        step = get_scoped(WorkflowStep, step_id, tenant_id=tenant_id, case_id=case.id)
        _check_version(step, expected_version)

        previous = step.status
        needs_review = new_status == NEEDS_REVIEW_REQUEST
        if needs_review:
            if previous == "complete":
                raise CaseStateError(
                    "A completed step cannot be sent back for review",
                    case_id=case.id,
                    details={"step_id": step.id, "status": previous},
                )
            # A review request leaves the step row unchanged.
            new_status = previous
            unblocked = []
        elif not validate_step_transition(previous, new_status):
            raise CaseStateError(
                f"Invalid step transition: {previous} → {new_status}",
                case_id=case.id,
                details={"step_id": step.id, "from": previous, "to": new_status},
            )
        else:
            now = datetime.now(timezone.utc)
            step.status = new_status
            step.clear_blocked_reason()
            _clear_override(step)
            step.touch(now)

            unblocked = _recalculate(case, now=now) if new_status == "complete" else []

        sink.emit(
            "WorkflowTaskStatusUpdated",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={
                "step_id": step.id,
                "step_key": step.step_key,
                "previous_status": previous,
                "new_status": new_status,
                "needs_review": needs_review,
                "notes": notes,
                "unblocked_step_keys": unblocked,
            },
        )
        recipients = sorted(uid for uid in {case.manager_user_id, step.assigned_user_id} if uid)
        sink.emit(
            "CaseNotificationQueued",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={
                "notification_type": "TaskStatusUpdated",
                "step_key": step.step_key,
                "new_status": new_status,
                "recipient_user_ids": recipients,
            },
        )
        if needs_review:
            sink.emit(
                "CaseNotificationQueued",
                actor_user_id=actor_user_id,
                tenant_id=tenant_id,
                case_id=case.id,
                metadata={
                    "notification_type": "MissingInputRequired",
                    "step_id": step.id,
                    "step_key": step.step_key,
                    "notes": notes,
                    "recipient_user_ids": recipients,
                },
            )
        workspace = build_workspace(case)

    logger.info(
        "Step %s: %s → %s", step_id, previous, new_status,
        extra={"case_id": case_id, "tenant_id": tenant_id, "step_id": step_id,
               "event_type": "WorkflowTaskStatusUpdated"},
    )
    return workspace


# ── Supervisor override ──────────────────────────────────────────────────────


def override_readiness(
    case_id: int,
    step_id: str,
    target_status: str,
    rationale: str,
    *,
    tenant_id: int,
    actor_user_id: int,
    blocked_reason_code: str | None = None,
    blocked_reason_detail: str | None = None,
    expected_version: int | None = None,
    audit_sink=None,
) -> dict:
    """
    Force a step to ready or blocked (Manager-or-above).  Returns the plan view.

    The step stays pinned at the forced status through recalculations until
    the next explicit status update or override.
    """
    target = (target_status or "").strip().lower() if isinstance(target_status, str) else ""
    if target not in OVERRIDE_TARGET_STATUSES:
        raise ValidationError(
            "target_status must be 'ready' or 'blocked'",
            details={"target_status": "must be one of: ready, blocked"},
        )
    max_len = current_app.config.get("OVERRIDE_RATIONALE_MAX_LENGTH", DEFAULT_RATIONALE_MAX_LENGTH)
    rationale = rationale.strip() if isinstance(rationale, str) else ""
    if not rationale:
        raise ValidationError("rationale is required", details={"rationale": "required"})
    if len(rationale) > max_len:
        raise ValidationError(
            f"rationale must be at most {max_len} characters",
            details={"rationale": f"max {max_len} characters"},
        )
    if blocked_reason_code is not None:
        if target != "blocked":
            raise ValidationError(
                "blocked_reason_code is only allowed when overriding to blocked",
                details={"blocked_reason_code": "requires target_status=blocked"},
            )
        if blocked_reason_code not in BLOCKED_REASON_CODES:
            raise ValidationError(
                f"Unknown blocked_reason_code '{blocked_reason_code}'",
                details={"blocked_reason_code": "unknown code"},
            )
    if blocked_reason_detail is not None and len(blocked_reason_detail) > max_len:
        raise ValidationError(
            f"blocked_reason_detail must be at most {max_len} characters",
            details={"blocked_reason_detail": f"max {max_len} characters"},
        )

    sink = default_sink(audit_sink)
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    role = ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.MANAGER,
                            action="OverrideReadiness", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        _ensure_open(case)
        step = get_scoped(WorkflowStep, step_id, tenant_id=tenant_id, case_id=case.id)
        _check_version(step, expected_version)
        if step.status == "complete":
            raise CaseStateError(
                "A completed step cannot be overridden",
                case_id=case.id,
                details={"step_id": step.id, "status": step.status},
            )

        now = datetime.now(timezone.utc)
        previous = step.status
        step.status = target
        step.is_readiness_overridden = True
        step.override_rationale = rationale
        step.override_by_user_id = actor_user_id
        step.overridden_at = now
        if target == "blocked":
            step.blocked_reason_code = blocked_reason_code
            step.blocked_reason_detail = blocked_reason_detail
        else:
            step.clear_blocked_reason()
        step.touch(now)

        sink.emit(
            "CasePlanReadinessOverridden",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={
                "step_id": step.id,
                "step_key": step.step_key,
                "previous_status": previous,
                "new_status": target,
                "rationale": rationale,
                "blocked_reason_code": step.blocked_reason_code,
            },
        )
        plan = build_plan(case, role=role)

    logger.info(
        "Step %s overridden: %s → %s", step_id, previous, target,
        extra={"case_id": case_id, "tenant_id": tenant_id, "step_id": step_id,
               "event_type": "CasePlanReadinessOverridden"},
    )
    return plan
