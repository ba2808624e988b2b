"""
Tests for case-scoped role resolution and audited access denial.
"""

import pytest

from app.core.exceptions import CaseAccessDeniedError
from app.models.audit import AuditEvent
from app.services.audit_sink import InMemoryAuditSink
from app.services.case_access import (
    REASON_NO_CASE_ACCESS,
    REASON_ROLE_INSUFFICIENT,
    CaseRole,
    ensure_case_role,
    has_sufficient_role,
    resolve_effective_role,
)


class FailingSink:
    def emit(self, event_type, **kwargs):
        raise RuntimeError("audit store unavailable")


class TestRoleOrdering:
    @pytest.mark.parametrize("actual,required,ok", [
        (CaseRole.READER, CaseRole.READER, True),
        (CaseRole.READER, CaseRole.EDITOR, False),
        (CaseRole.EDITOR, CaseRole.READER, True),
        (CaseRole.EDITOR, CaseRole.MANAGER, False),
        (CaseRole.MANAGER, CaseRole.EDITOR, True),
        (None, CaseRole.READER, False),
    ])
    def test_has_sufficient_role(self, actual, required, ok):
        assert has_sufficient_role(actual, required) is ok

    def test_parse(self):
        assert CaseRole.parse("Editor") is CaseRole.EDITOR
        assert CaseRole.MANAGER.label == "manager"
        with pytest.raises(ValueError):
            CaseRole.parse("owner")


class TestEffectiveRole:
    def test_case_manager(self, make_case, manager):
        case = make_case()
        assert resolve_effective_role(case, manager.id) is CaseRole.MANAGER

    def test_tenant_admin_is_manager_equivalent(self, make_case, admin):
        case = make_case()
        assert resolve_effective_role(case, admin.id) is CaseRole.MANAGER

    def test_accepted_participant_role(self, make_case, editor, reader):
        case = make_case()
        assert resolve_effective_role(case, editor.id) is CaseRole.EDITOR
        assert resolve_effective_role(case, reader.id) is CaseRole.READER

    def test_pending_participant_has_no_role(self, make_case, outsider, participant):
        case = make_case()
        participant(case, outsider, "editor", status="pending")
        assert resolve_effective_role(case, outsider.id) is None

    def test_participant_of_other_case_has_no_role(self, make_case, outsider, participant):
        first, second = make_case(), make_case()
        participant(first, outsider, "manager")
        assert resolve_effective_role(first, outsider.id) is CaseRole.MANAGER
        assert resolve_effective_role(second, outsider.id) is None


class TestEnsureCaseRole:
    def test_returns_role_when_sufficient(self, make_case, editor):
        case = make_case()
        role = ensure_case_role(case, actor_user_id=editor.id, required=CaseRole.READER, action="ViewPlan")
        assert role is CaseRole.EDITOR

    def test_insufficient_role_denied_and_audited(self, make_case, reader):
        case = make_case()
        sink = InMemoryAuditSink()
        with pytest.raises(CaseAccessDeniedError) as exc:
            ensure_case_role(case, actor_user_id=reader.id, required=CaseRole.EDITOR,
                             action="UpdateTaskStatus", audit_sink=sink)

        assert exc.value.reason_code == REASON_ROLE_INSUFFICIENT
        assert exc.value.actual_role == "reader"
        (event,) = sink.of_type("CaseAccessDenied")
        assert event.case_id == case.id
        assert event.actor_user_id == reader.id
        assert event.metadata == {
            "attempted_action": "UpdateTaskStatus",
            "required_role": "editor",
            "actual_role": "reader",
            "reason_code": REASON_ROLE_INSUFFICIENT,
        }

    def test_no_access_persists_audit_row(self, make_case, outsider):
        case = make_case()
        with pytest.raises(CaseAccessDeniedError) as exc:
            ensure_case_role(case, actor_user_id=outsider.id, required=CaseRole.READER, action="ViewPlan")
        assert exc.value.reason_code == REASON_NO_CASE_ACCESS

        row = AuditEvent.query.filter_by(case_id=case.id, event_type="CaseAccessDenied").one()
        assert row.actor_user_id == outsider.id
        assert row.event_metadata["actual_role"] is None

    def test_denial_raised_even_when_audit_fails(self, make_case, reader):
        case = make_case()
        with pytest.raises(CaseAccessDeniedError):
            ensure_case_role(case, actor_user_id=reader.id, required=CaseRole.MANAGER,
                             action="GeneratePlan", audit_sink=FailingSink())
        assert AuditEvent.query.filter_by(event_type="CaseAccessDenied").count() == 0
