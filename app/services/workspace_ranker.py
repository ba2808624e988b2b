"""
Task Workspace Ranker — priority-ordered view of a case's workflow steps.

Sort key (ascending):
    1. status priority   in_progress 0 · ready / override-pinned blocked 1 ·
                         blocked 2 · complete 3
    2. urgency           overdue 0 · due_soon 1 · normal 2 · none 3
    3. sequence
    4. step_key

``rank_steps`` is a pure function; ``get_task_workspace`` and
``get_plan_steps`` add the case scoping and Reader-or-above access check.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.models import db
from app.models.case import Case
from app.models.workflow import STEP_STATUSES, WorkflowStep
from app.services.blocked_state import get_blocked_info
from app.services.case_access import CaseRole, ensure_case_role
from app.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_DAYS = 3
DEFAULT_EXCLUDED_STATUSES = ("complete",)

URGENCY_RANK = {"overdue": 0, "due_soon": 1, "normal": 2, "none": 3}


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on read
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def urgency_indicator(due_date: datetime | None, *, now: datetime, due_soon_days: int) -> str:
    due_date = _aware(due_date)
    if due_date is None:
        return "none"
    if due_date < now:
        return "overdue"
    if due_date <= now + timedelta(days=due_soon_days):
        return "due_soon"
    return "normal"


def status_priority(step) -> int:
    if step.status == "in_progress":
        return 0
    if step.status == "ready":
        return 1
    if step.status == "blocked":
        return 1 if step.is_readiness_overridden else 2
    return 3


def _row(step, *, rank: int, urgency: str) -> dict:
    due_date = _aware(step.due_date)
    return {
        "step_id": step.id,
        "step_key": step.step_key,
        "title": step.title,
        "sequence": step.sequence,
        "priority_rank": rank,
        "status": step.status,
        "assigned_user_id": step.assigned_user_id,
        "due_date": due_date.isoformat() if due_date else None,
        "deadline_source": step.deadline_source,
        "urgency_indicator": urgency,
        "is_readiness_overridden": bool(step.is_readiness_overridden),
        "depends_on_step_ids": step.depends_on_step_ids,
        "version": step.version,
    }


def rank_steps(steps, *, now: datetime, due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
               include_statuses=None) -> list[dict]:
    """Filter *steps* to *include_statuses* and return ranked workspace rows."""
    now = _aware(now)
    include = set(include_statuses) if include_statuses is not None else STEP_STATUSES

    keyed = []
    for step in steps:
        if step.status not in include:
            continue
        urgency = urgency_indicator(step.due_date, now=now, due_soon_days=due_soon_days)
        key = (status_priority(step), URGENCY_RANK[urgency], step.sequence, step.step_key)
        keyed.append((key, step, urgency))

    keyed.sort(key=lambda item: item[0])
    return [_row(step, rank=i, urgency=urgency) for i, (_, step, urgency) in enumerate(keyed, start=1)]


# ── Case-scoped reads ────────────────────────────────────────────────────────


def load_case_steps(case_id: int, tenant_id: int) -> list[WorkflowStep]:
    return db.session.execute(
        select(WorkflowStep)
        .options(selectinload(WorkflowStep.dependencies))
        .where(WorkflowStep.case_id == case_id, WorkflowStep.tenant_id == tenant_id)
        .order_by(WorkflowStep.sequence, WorkflowStep.step_key)
    ).scalars().all()


def _included_statuses(include_complete: bool | None) -> set[str]:
    excluded = set(current_app.config.get("WORKSPACE_EXCLUDED_STATUSES", DEFAULT_EXCLUDED_STATUSES))
    if include_complete is True:
        excluded.discard("complete")
    elif include_complete is False:
        excluded.add("complete")
    return STEP_STATUSES - excluded


def build_workspace(case: Case, *, include_complete: bool | None = None, now: datetime | None = None) -> dict:
    steps = load_case_steps(case.id, case.tenant_id)
    rows = rank_steps(
        steps,
        now=now or datetime.now(timezone.utc),
        due_soon_days=current_app.config.get("WORKSPACE_DUE_SOON_DAYS", DEFAULT_DUE_SOON_DAYS),
        include_statuses=_included_statuses(include_complete),
    )
    return {
        "case_id": case.id,
        "case_status": case.status,
        "tasks": rows,
        "total": len(rows),
    }


def get_task_workspace(
    case_id: int,
    *,
    tenant_id: int,
    actor_user_id: int,
    include_complete: bool | None = None,
    now: datetime | None = None,
) -> dict:
    """Ranked task list for the case.  Read-only."""
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.READER, action="ViewWorkspace")
    return build_workspace(case, include_complete=include_complete, now=now)


def build_plan(case: Case, *, role: CaseRole | None) -> dict:
    steps = load_case_steps(case.id, case.tenant_id)
    by_id = {s.id: s for s in steps}

    items = []
    for step in steps:
        data = step.to_dict()
        prerequisites = [by_id[d.depends_on_step_id] for d in step.dependencies if d.depends_on_step_id in by_id]
        data["blocked_info"] = get_blocked_info(step, dependencies=prerequisites, role=role)
        items.append(data)

    return {
        "case_id": case.id,
        "case_status": case.status,
        "plan_generated_at": case.plan_generated_at.isoformat() if case.plan_generated_at else None,
        "steps": items,
        "dependency_count": sum(len(s.dependencies) for s in steps),
    }


def get_plan_steps(case_id: int, *, tenant_id: int, actor_user_id: int) -> dict:
    """Every step of the plan in sequence order with dependency ids and blocked info."""
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    role = ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.READER, action="ViewPlan")
    return build_plan(case, role=role)
