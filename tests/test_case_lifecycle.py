"""
Tests for the case lifecycle collaborator: creation, intake, transitions, timeline.
"""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import CaseAccessDeniedError, CaseStateError, NotFoundError, ValidationError
from app.models import db
from app.models.auth import User
from app.models.case import Case
from app.services.audit_sink import InMemoryAuditSink
from app.services.case_lifecycle import (
    create_case,
    generate_case_number,
    get_case_timeline,
    load_intake,
    submit_intake,
    transition_case,
)
from app.services.plan_generator import generate_plan


class TestCreateCase:
    def test_numbering_per_tenant(self, tenant, other_tenant, manager):
        year = datetime.now(timezone.utc).year
        first = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="A")
        second = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="B")
        assert first.case_number == f"CASE-{year}-0001"
        assert second.case_number == f"CASE-{year}-0002"
        assert generate_case_number(other_tenant.id) == f"CASE-{year}-0001"

    def test_actor_becomes_manager_by_default(self, tenant, manager):
        case = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="  Rui Santos ")
        assert case.manager_user_id == manager.id
        assert case.deceased_full_name == "Rui Santos"
        assert case.status == "draft"
        assert case.playbook_id is None

    def test_manager_must_belong_to_tenant(self, tenant, other_tenant, manager):
        stranger = User(tenant_id=other_tenant.id, email="stranger@other.test")
        db.session.add(stranger)
        db.session.commit()
        with pytest.raises(NotFoundError):
            create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="A",
                        manager_user_id=stranger.id)

    def test_name_required(self, tenant, manager):
        with pytest.raises(ValidationError):
            create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="   ")

    def test_created_event(self, tenant, manager):
        sink = InMemoryAuditSink()
        case = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="A", audit_sink=sink)
        (event,) = sink.events
        assert event.event_type == "CaseCreated"
        assert event.case_id == case.id
        assert event.metadata["case_number"] == case.case_number


class TestIntake:
    def test_draft_moves_to_intake(self, make_case, editor, intake_payload):
        case = make_case()
        sink = InMemoryAuditSink()
        submit_intake(case.id, intake_payload(has_will=True), tenant_id=case.tenant_id,
                      actor_user_id=editor.id, audit_sink=sink)

        db.session.expire_all()
        refreshed = db.session.get(Case, case.id)
        assert refreshed.status == "intake"
        assert refreshed.intake_completed_by_user_id == editor.id
        assert load_intake(refreshed).has_will is True
        assert [e.event_type for e in sink.events] == ["CaseStatusChanged", "CaseIntakeSubmitted"]

    def test_resubmission_while_in_intake(self, make_case, editor, intake_payload):
        case = make_case(intake=intake_payload())
        submit_intake(case.id, intake_payload(requires_legal_support=True), tenant_id=case.tenant_id,
                      actor_user_id=editor.id)
        db.session.expire_all()
        assert load_intake(db.session.get(Case, case.id)).requires_legal_support is True

    def test_rejected_after_activation(self, make_case, manager, editor, intake_payload):
        case = make_case(intake=intake_payload())
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)
        with pytest.raises(CaseStateError):
            submit_intake(case.id, intake_payload(), tenant_id=case.tenant_id, actor_user_id=editor.id)

    def test_invalid_payload(self, make_case, editor):
        case = make_case()
        with pytest.raises(ValidationError):
            submit_intake(case.id, {"primary_contact_name": "Ana"}, tenant_id=case.tenant_id,
                          actor_user_id=editor.id)
        assert load_intake(case) is None

    def test_reader_cannot_submit(self, make_case, reader, intake_payload):
        case = make_case()
        with pytest.raises(CaseAccessDeniedError):
            submit_intake(case.id, intake_payload(), tenant_id=case.tenant_id, actor_user_id=reader.id)


class TestTransitions:
    def test_full_lifecycle(self, make_case, manager, intake_payload):
        case = make_case(intake=intake_payload())
        generate_plan(case.id, tenant_id=case.tenant_id, actor_user_id=manager.id)

        transition_case(case.id, "review", tenant_id=case.tenant_id, actor_user_id=manager.id)
        closed = transition_case(case.id, "closed", tenant_id=case.tenant_id, actor_user_id=manager.id)
        assert closed.status == "closed"
        assert closed.closed_at is not None

        archived = transition_case(case.id, "archived", tenant_id=case.tenant_id, actor_user_id=manager.id)
        assert archived.archived_at is not None

    @pytest.mark.parametrize("start,target", [
        ("draft", "closed"),
        ("intake", "review"),
        ("active", "intake"),
        ("cancelled", "active"),
    ])
    def test_illegal(self, make_case, manager, start, target):
        case = make_case(status=start)
        with pytest.raises(CaseStateError):
            transition_case(case.id, target, tenant_id=case.tenant_id, actor_user_id=manager.id)
        db.session.expire_all()
        assert db.session.get(Case, case.id).status == start

    def test_editor_cannot_transition(self, make_case, editor):
        case = make_case()
        with pytest.raises(CaseAccessDeniedError):
            transition_case(case.id, "cancelled", tenant_id=case.tenant_id, actor_user_id=editor.id)


class TestTimeline:
    def test_events_in_order(self, tenant, manager, intake_payload, participant, reader):
        case = create_case(tenant.id, actor_user_id=manager.id, deceased_full_name="Rui Santos")
        participant(case, reader, "reader")
        submit_intake(case.id, intake_payload(), tenant_id=tenant.id, actor_user_id=manager.id)
        generate_plan(case.id, tenant_id=tenant.id, actor_user_id=manager.id)

        events = get_case_timeline(case.id, tenant_id=tenant.id, actor_user_id=reader.id)
        assert [e["event_type"] for e in events] == [
            "CaseCreated",
            "CaseStatusChanged",
            "CaseIntakeSubmitted",
            "CaseStatusChanged",
            "CasePlanGenerated",
        ]

    def test_outsider_denied(self, make_case, outsider):
        case = make_case()
        with pytest.raises(CaseAccessDeniedError):
            get_case_timeline(case.id, tenant_id=case.tenant_id, actor_user_id=outsider.id)
