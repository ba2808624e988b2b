"""
Plan Generator — instantiates a case's workflow plan from its intake.

Flow (one unit of work under the per-case lock):
    1. Manager-or-above access check (denial audited)
    2. case must be open, intake completed, and have no plan yet
    3. resolve the catalog: explicit argument → case playbook template → default
    4. create one WorkflowStep per included template and one
       WorkflowStepDependency per edge whose endpoints are both included
    5. bootstrap readiness (no prerequisites → ready, else blocked)
    6. case → active, plan_generated_at set
    7. audit CasePlanGenerated (+ PlaybookApplied when a playbook was used)
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from app.core.exceptions import CaseConflictError, CaseStateError
from app.models import db
from app.models.case import Case
from app.models.workflow import WorkflowStep, WorkflowStepDependency
from app.services.audit_sink import default_sink
from app.services.case_access import CaseRole, ensure_case_role
from app.services.case_lifecycle import activate_for_plan, load_intake
from app.services.case_locks import case_transaction
from app.services.helpers.scoped_queries import get_scoped
from app.services.playbook_service import get_playbook_catalog
from app.services.readiness_engine import bootstrap_status
from app.services.step_catalog import DEFAULT_CATALOG, StepCatalog

logger = logging.getLogger(__name__)


def _existing_step_count(case_id: int, tenant_id: int) -> int:
    return db.session.execute(
        select(func.count(WorkflowStep.id)).where(
            WorkflowStep.case_id == case_id,
            WorkflowStep.tenant_id == tenant_id,
        )
    ).scalar() or 0


def _resolve_catalog(case: Case, catalog: StepCatalog | None):
    if catalog is not None:
        return catalog, None
    playbook_catalog, playbook = get_playbook_catalog(case)
    if playbook_catalog is not None:
        return playbook_catalog, playbook
    return DEFAULT_CATALOG, None


def generate_plan(
    case_id: int,
    *,
    tenant_id: int,
    actor_user_id: int,
    catalog: StepCatalog | None = None,
    audit_sink=None,
) -> dict:
    """
    Generate the workflow plan of a case exactly once.

    Returns:
        {"case_id", "catalog_version", "steps": [...], "dependency_count"}

    Raises:
        NotFoundError: case not in tenant.
        CaseAccessDeniedError: actor below Manager.
        CaseStateError: case frozen or intake not completed.
        CaseConflictError: a plan already exists.
    """
    sink = default_sink(audit_sink)

    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    ensure_case_role(case, actor_user_id=actor_user_id, required=CaseRole.MANAGER,
                     action="GeneratePlan", audit_sink=audit_sink)

    with case_transaction(tenant_id, case_id) as case:
        if case.is_frozen:
            raise CaseStateError(
                f"Case in status '{case.status}' cannot receive a workflow plan",
                case_id=case.id,
                details={"status": case.status},
            )
        intake = load_intake(case)
        if intake is None:
            raise CaseStateError(
                "structured intake must be completed before plan generation",
                case_id=case.id,
            )
        if case.plan_generated_at is not None or _existing_step_count(case.id, tenant_id) > 0:
            raise CaseConflictError(
                "A workflow plan has already been generated for this case",
                case_id=case.id,
            )

        resolved, playbook = _resolve_catalog(case, catalog)
        templates = resolved.select(intake)
        now = datetime.now(timezone.utc)

        included_keys = {t.key for t in templates}
        edges = {t.key: [k for k in t.depends_on if k in included_keys] for t in templates}

        steps_by_key = {}
        for template in templates:
            step = WorkflowStep(
                tenant_id=tenant_id,
                case_id=case.id,
                step_key=template.key,
                title=template.title,
                sequence=template.sequence,
                status=bootstrap_status(len(edges[template.key])),
                assigned_user_id=case.manager_user_id,
                due_date=now + timedelta(days=template.due_in_days) if template.due_in_days is not None else None,
                deadline_source="catalog" if template.due_in_days is not None else None,
                version=1,
                created_at=now,
                updated_at=now,
            )
            steps_by_key[template.key] = step
            db.session.add(step)
        db.session.flush()

        dependency_count = 0
        for template in templates:
            step = steps_by_key[template.key]
            for key in edges[template.key]:
                db.session.add(WorkflowStepDependency(
                    tenant_id=tenant_id,
                    case_id=case.id,
                    step_id=step.id,
                    depends_on_step_id=steps_by_key[key].id,
                ))
            dependency_count += len(edges[template.key])
        db.session.flush()

        activate_for_plan(case, actor_user_id=actor_user_id, sink=sink)
        case.plan_generated_at = now

        ready_keys = sorted(k for k, s in steps_by_key.items() if s.status == "ready")
        sink.emit(
            "CasePlanGenerated",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            case_id=case.id,
            metadata={
                "catalog_version": resolved.version,
                "step_count": len(steps_by_key),
                "dependency_count": dependency_count,
                "step_keys": [t.key for t in templates],
                "ready_step_keys": ready_keys,
            },
        )
        if playbook is not None:
            sink.emit(
                "PlaybookApplied",
                actor_user_id=actor_user_id,
                tenant_id=tenant_id,
                case_id=case.id,
                metadata={"playbook_id": playbook.id, "playbook_version": playbook.version},
            )

        result = {
            "case_id": case.id,
            "case_status": case.status,
            "catalog_version": resolved.version,
            "steps": [steps_by_key[t.key].to_dict(include_dependencies=False) for t in templates],
            "dependency_count": dependency_count,
        }

    logger.info(
        "Plan generated: %d steps, %d dependencies", len(result["steps"]), dependency_count,
        extra={"case_id": case_id, "tenant_id": tenant_id, "event_type": "CasePlanGenerated"},
    )
    return result
