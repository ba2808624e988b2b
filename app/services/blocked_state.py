"""
Blocked State Advisor — explains why a step is blocked and what the viewer
can do about it.

Reason resolution (first match wins):
    1. persisted ``blocked_reason_code`` + ``blocked_reason_detail``
    2. incomplete prerequisites   → ExternalDependency
    3. otherwise                  → PolicyRestriction

Recovery actions are table-driven per reason code; each entry names the
minimum case role that sees it and the minimum role for which it is
actionable.

Usage:
    info = get_blocked_info(step, dependencies=prereq_steps, role=CaseRole.EDITOR)
    # -> None for non-blocked steps, else
    #    {"reason_code", "reason_label", "reason_detail", "allowed_actions": [...]}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.services.case_access import CaseRole


class RecoveryAction(str, Enum):
    UPLOAD_EVIDENCE = "UploadEvidence"
    CONTACT_MANAGER = "ContactManager"
    REQUEST_OVERRIDE = "RequestOverride"
    COMPLETE_PREREQUISITE = "CompletePrerequisite"
    WAIT_FOR_EXTERNAL = "WaitForExternal"
    CORRECT_DATA = "CorrectData"
    CONTACT_SUPPORT = "ContactSupport"
    UPDATE_BILLING = "UpdateBilling"
    REQUEST_PERMISSION = "RequestPermission"


REASON_LABELS = {
    "EvidenceMissing": "Missing information or document",
    "ExternalDependency": "Waiting on an external institution",
    "PolicyRestriction": "Blocked by policy",
    "RolePermission": "You do not have permission",
    "DeadlineRisk": "Deadline at risk",
    "PaymentOrBilling": "Billing issue",
    "IdentityOrAuth": "Identity or access problem",
    "DataMismatch": "Information conflict",
    "SystemError": "System problem",
}


@dataclass(frozen=True)
class ActionRule:
    action: RecoveryAction
    label: str
    guidance: str
    visible_from: CaseRole | None = None     # None → every viewer
    available_from: CaseRole | None = None   # None → actionable by every viewer


_ACTION_RULES: dict[str, tuple[ActionRule, ...]] = {
    "EvidenceMissing": (
        ActionRule(RecoveryAction.UPLOAD_EVIDENCE, "Upload required documents",
                   "Upload the missing documents or information to unblock this step.",
                   visible_from=CaseRole.EDITOR),
        ActionRule(RecoveryAction.CONTACT_MANAGER, "Contact case manager",
                   "Reach out to your case manager for help with what's needed."),
    ),
    "ExternalDependency": (
        ActionRule(RecoveryAction.COMPLETE_PREREQUISITE, "Complete prerequisite steps",
                   "Finish the required steps before returning to this one.",
                   available_from=CaseRole.EDITOR),
        ActionRule(RecoveryAction.WAIT_FOR_EXTERNAL, "Wait for external update",
                   "This step depends on external institutions and may take time."),
    ),
    "PolicyRestriction": (
        ActionRule(RecoveryAction.REQUEST_OVERRIDE, "Request policy override",
                   "Submit an override with rationale to unblock this step.",
                   visible_from=CaseRole.MANAGER),
        ActionRule(RecoveryAction.CONTACT_MANAGER, "Contact case manager",
                   "Discuss policy restrictions with your case manager."),
    ),
    "RolePermission": (
        ActionRule(RecoveryAction.REQUEST_PERMISSION, "Request permission",
                   "Ask an administrator to grant you the required role permission."),
    ),
    "DeadlineRisk": (
        ActionRule(RecoveryAction.UPLOAD_EVIDENCE, "Complete this step now",
                   "This step is overdue. Complete it immediately to avoid delays.",
                   visible_from=CaseRole.EDITOR),
        ActionRule(RecoveryAction.CONTACT_MANAGER, "Contact case manager urgently",
                   "Reach out to your case manager about the deadline immediately."),
    ),
    "DataMismatch": (
        ActionRule(RecoveryAction.CORRECT_DATA, "Review and correct information",
                   "Check the conflicting data and make necessary corrections.",
                   visible_from=CaseRole.EDITOR),
    ),
    "SystemError": (
        ActionRule(RecoveryAction.CONTACT_SUPPORT, "Contact technical support",
                   "Report this technical issue to support for assistance."),
    ),
    "PaymentOrBilling": (
        ActionRule(RecoveryAction.UPDATE_BILLING, "Update billing information",
                   "Go to billing settings to resolve payment issues."),
    ),
    "IdentityOrAuth": (),
}


def _meets(role: CaseRole | None, minimum: CaseRole | None) -> bool:
    if minimum is None:
        return True
    return role is not None and role >= minimum


def derive_blocked_reason(step, dependencies) -> tuple[str, str]:
    """Return (reason_code, reason_detail) for a blocked step."""
    if step.blocked_reason_code and (step.blocked_reason_detail or "").strip():
        return step.blocked_reason_code, step.blocked_reason_detail

    incomplete = [d for d in dependencies if d.status != "complete"]
    if incomplete:
        return (
            "ExternalDependency",
            f"This step depends on {len(incomplete)} other step(s) that must be completed first.",
        )

    if step.blocked_reason_code:
        return step.blocked_reason_code, REASON_LABELS.get(step.blocked_reason_code, "Blocked")

    return "PolicyRestriction", "This step is blocked by policy rules and cannot proceed yet."


def allowed_actions(reason_code: str, role: CaseRole | None) -> list[dict]:
    return [
        {
            "action": rule.action.value,
            "label": rule.label,
            "guidance": rule.guidance,
            "is_available": _meets(role, rule.available_from),
        }
        for rule in _ACTION_RULES.get(reason_code, ())
        if _meets(role, rule.visible_from)
    ]


def get_blocked_info(step, *, dependencies, role: CaseRole | None) -> dict | None:
    """Blocked explanation for *step*, or None when the step is not blocked."""
    if step.status != "blocked":
        return None

    reason_code, reason_detail = derive_blocked_reason(step, dependencies)
    return {
        "reason_code": reason_code,
        "reason_label": REASON_LABELS.get(reason_code, "Blocked"),
        "reason_detail": reason_detail,
        "allowed_actions": allowed_actions(reason_code, role),
    }
