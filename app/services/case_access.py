"""
Case Access — case-scoped role checks for every workflow operation.

Role hierarchy (closed, totally ordered):

    Reader < Editor < Manager

Effective role of a user on a case:
    1. the case manager                     → Manager
    2. tenant admin ("agency_admin" grant)  → Manager
    3. accepted participant                 → participant role
    4. otherwise                            → no access

A denied check writes a ``CaseAccessDenied`` audit event in its own unit
of work (before any mutation has started) and then raises
CaseAccessDeniedError.  If writing the audit row fails, the failure is
logged and the access error is still raised.
"""

import logging
from enum import IntEnum

from app.core.exceptions import CaseAccessDeniedError
from app.models import db
from app.models.auth import TENANT_ADMIN_ROLE, has_platform_role
from app.models.case import CaseParticipant
from app.services.audit_sink import default_sink

logger = logging.getLogger(__name__)

REASON_ROLE_INSUFFICIENT = "ROLE_INSUFFICIENT"
REASON_NO_CASE_ACCESS = "NO_CASE_ACCESS"


class CaseRole(IntEnum):
    READER = 1
    EDITOR = 2
    MANAGER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str) -> "CaseRole":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown case role: {value}") from None


def has_sufficient_role(actual: CaseRole | None, required: CaseRole) -> bool:
    """True when *actual* is at or above *required* in the hierarchy."""
    return actual is not None and actual >= required


def resolve_effective_role(case, user_id: int) -> CaseRole | None:
    if case.manager_user_id is not None and case.manager_user_id == user_id:
        return CaseRole.MANAGER
    if has_platform_role(user_id, case.tenant_id, TENANT_ADMIN_ROLE):
        return CaseRole.MANAGER

    participant = (
        CaseParticipant.query
        .filter_by(case_id=case.id, tenant_id=case.tenant_id, user_id=user_id, status="accepted")
        .first()
    )
    if participant is None:
        return None
    return CaseRole.parse(participant.role)


def ensure_case_role(case, *, actor_user_id: int, required: CaseRole, action: str, audit_sink=None) -> CaseRole:
    """Return the actor's effective role or raise CaseAccessDeniedError."""
    actual = resolve_effective_role(case, actor_user_id)
    if has_sufficient_role(actual, required):
        return actual

    reason_code = REASON_NO_CASE_ACCESS if actual is None else REASON_ROLE_INSUFFICIENT
    denial = CaseAccessDeniedError(
        actor_user_id=actor_user_id,
        case_id=case.id,
        attempted_action=action,
        required_role=required.label,
        actual_role=actual.label if actual is not None else None,
        reason_code=reason_code,
    )
    _record_denial(case, denial, default_sink(audit_sink))
    raise denial


def _record_denial(case, denial: CaseAccessDeniedError, sink) -> None:
    case_id, tenant_id = case.id, case.tenant_id
    logger.warning(
        "Access denied: user=%s action=%s reason=%s",
        denial.actor_user_id, denial.attempted_action, denial.reason_code,
        extra={"case_id": case_id, "tenant_id": tenant_id, "event_type": "CaseAccessDenied"},
    )
    try:
        db.session.rollback()
        sink.emit(
            "CaseAccessDenied",
            actor_user_id=denial.actor_user_id,
            tenant_id=tenant_id,
            case_id=case_id,
            metadata=denial.to_dict(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(
            "Failed to write CaseAccessDenied audit event",
            extra={"case_id": case_id, "tenant_id": tenant_id},
        )
