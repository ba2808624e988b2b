"""
Tests for workflow plan generation.

Covers:
  - step instantiation per intake (with conditional step pruning)
  - dependency edges and bootstrap readiness
  - exactly-once generation, intake and case-state guards
  - catalog resolution: explicit catalog, case playbook, default
  - tenant isolation and Manager-only access
"""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import CaseAccessDeniedError, CaseConflictError, CaseStateError, NotFoundError
from app.models import db
from app.models.audit import AuditEvent
from app.models.case import Case
from app.models.workflow import WorkflowStep, WorkflowStepDependency, topological_sort
from app.services.audit_sink import InMemoryAuditSink
from app.services.plan_generator import generate_plan
from app.services.playbook_service import activate_playbook, create_playbook
from app.services.case_lifecycle import create_case, submit_intake
from app.services.step_catalog import StepCatalog, StepTemplate


def _steps_by_key(case_id):
    return {s.step_key: s for s in WorkflowStep.query.filter_by(case_id=case_id).all()}


def _edges(case_id):
    steps = {s.id: s.step_key for s in WorkflowStep.query.filter_by(case_id=case_id).all()}
    return sorted(
        (steps[d.step_id], steps[d.depends_on_step_id])
        for d in WorkflowStepDependency.query.filter_by(case_id=case_id).all()
    )


class TestGeneration:
    def test_base_intake(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload())
        result = generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        assert result["catalog_version"] == "succession-v1"
        assert result["case_status"] == "active"
        assert result["dependency_count"] == 2
        assert [s["step_key"] for s in result["steps"]] == [
            "collect-civil-records",
            "gather-estate-inventory",
            "submit-succession-notification",
        ]

        steps = _steps_by_key(case.id)
        assert steps["collect-civil-records"].status == "ready"
        assert steps["gather-estate-inventory"].status == "ready"
        assert steps["submit-succession-notification"].status == "blocked"
        assert _edges(case.id) == [
            ("submit-succession-notification", "collect-civil-records"),
            ("submit-succession-notification", "gather-estate-inventory"),
        ]

        db.session.expire_all()
        refreshed = db.session.get(Case, case.id)
        assert refreshed.status == "active"
        assert refreshed.plan_generated_at is not None

    def test_will_and_legal_support(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload(has_will=True, requires_legal_support=True))
        result = generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        assert len(result["steps"]) == 5
        assert result["dependency_count"] == 4
        steps = _steps_by_key(case.id)
        assert steps["validate-will"].status == "blocked"
        assert steps["engage-legal-support"].status == "blocked"
        assert ("engage-legal-support", "validate-will") in _edges(case.id)

    def test_excluded_prerequisite_edge_is_pruned(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload(requires_legal_support=True))
        result = generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        assert len(result["steps"]) == 4
        assert result["dependency_count"] == 2
        assert _steps_by_key(case.id)["engage-legal-support"].status == "ready"

    def test_steps_scheduled_and_assigned(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload())
        before = datetime.now(timezone.utc)
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        for step in _steps_by_key(case.id).values():
            assert step.assigned_user_id == manager.id
            assert step.deadline_source == "catalog"
            assert step.version == 1
            assert step.is_readiness_overridden is False
            due = step.due_date.replace(tzinfo=timezone.utc) if step.due_date.tzinfo is None else step.due_date
            assert due > before

    def test_generated_graph_is_acyclic(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload(has_will=True, requires_legal_support=True))
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)
        keys = list(_steps_by_key(case.id))
        assert len(topological_sort(keys, _edges(case.id))) == 5

    def test_explicit_catalog(self, make_case, manager, intake_payload):
        catalog = StepCatalog("custom-v2", (
            StepTemplate("register-death", "Register death", 1),
            StepTemplate("notify-bank", "Notify bank", 2, depends_on=("register-death",)),
        ))
        case = make_case(intake=intake_payload())
        result = generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id, catalog=catalog)

        assert result["catalog_version"] == "custom-v2"
        assert [s["status"] for s in result["steps"]] == ["ready", "blocked"]
        assert all(s["due_date"] is None for s in result["steps"])


class TestGuards:
    def test_intake_required(self, make_case, manager):
        case = make_case()
        with pytest.raises(CaseStateError, match="intake must be completed"):
            generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)
        assert WorkflowStep.query.filter_by(case_id=case.id).count() == 0

    def test_second_generation_conflicts(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload())
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        with pytest.raises(CaseConflictError):
            generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)
        assert WorkflowStep.query.filter_by(case_id=case.id).count() == 3
        assert AuditEvent.query.filter_by(case_id=case.id, event_type="CasePlanGenerated").count() == 1

    @pytest.mark.parametrize("status", ["closed", "archived", "cancelled"])
    def test_frozen_case_rejected(self, make_case, manager, intake_payload, status):
        case = make_case(intake=intake_payload(), status=status)
        with pytest.raises(CaseStateError):
            generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

    def test_editor_denied(self, make_case, editor, intake_payload):
        case = make_case(intake=intake_payload())
        with pytest.raises(CaseAccessDeniedError) as exc:
            generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=editor.id)
        assert exc.value.required_role == "manager"
        assert WorkflowStep.query.filter_by(case_id=case.id).count() == 0
        assert AuditEvent.query.filter_by(case_id=case.id, event_type="CaseAccessDenied").count() == 1

    def test_tenant_admin_allowed(self, make_case, admin, intake_payload):
        case = make_case(intake=intake_payload())
        result = generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=admin.id)
        assert len(result["steps"]) == 3

    def test_other_tenant_cannot_see_case(self, make_case, manager, other_tenant, intake_payload):
        case = make_case(intake=intake_payload())
        with pytest.raises(NotFoundError):
            generate_plan(case.id, tenant_id=other_tenant.id, actor_user_id=manager.id)


class TestAuditAndPlaybook:
    def test_audit_events(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload(has_will=True))
        sink = InMemoryAuditSink()
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id, audit_sink=sink)

        assert [e.event_type for e in sink.events] == ["CaseStatusChanged", "CasePlanGenerated"]
        generated = sink.of_type("CasePlanGenerated")[0]
        assert generated.metadata["step_count"] == 4
        assert generated.metadata["dependency_count"] == 3
        assert generated.metadata["ready_step_keys"] == ["collect-civil-records", "gather-estate-inventory"]
        assert sink.of_type("CaseStatusChanged")[0].metadata == {"from": "intake", "to": "active"}

    def test_active_playbook_template_applied(self, tenant, admin, manager, intake_payload):
        template = {
            "version": "agency-lisbon-1",
            "steps": [
                {"key": "open-file", "title": "Open case file", "due_in_days": 2},
                {"key": "notify-heirs", "title": "Notify heirs", "depends_on": ["open-file"]},
            ],
        }
        playbook = create_playbook(tenant.id, actor_user_id=admin.id, name="Lisbon", template=template)
        activate_playbook(playbook.id, tenant_id=tenant.id, actor_user_id=admin.id)

        case = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="Rui Santos")
        submit_intake(case.id, intake_payload(), tenant_id=tenant.id, actor_user_id=manager.id)

        sink = InMemoryAuditSink()
        result = generate_plan(case.id, tenant_id=tenant.id, actor_user_id=manager.id, audit_sink=sink)

        assert result["catalog_version"] == "agency-lisbon-1"
        assert [s["step_key"] for s in result["steps"]] == ["open-file", "notify-heirs"]
        (applied,) = sink.of_type("PlaybookApplied")
        assert applied.metadata == {"playbook_id": playbook.id, "playbook_version": 1}
