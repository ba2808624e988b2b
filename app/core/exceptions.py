"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere:

    NotFoundError          → 404
    ValidationError        → 422
    CaseStateError         → 409 (ERR_CONFLICT_STATE)
    CaseConflictError      → 409 (ERR_CONFLICT_DUPLICATE)
    CaseAccessDeniedError  → 403

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Case", resource_id=42)
    raise ValidationError("rationale is required", details={"rationale": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant lookups, so a
    caller cannot learn that another tenant's case exists.

    Args:
        resource: Human-readable model/entity name (e.g. "Case", "WorkflowStep").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a request is well-formed but its values are rejected.

    Examples: unknown target status, empty override rationale, a playbook
    template whose dependency graph has a cycle.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class CaseStateError(Exception):
    """Raised when an operation is not allowed in the current case/step state.

    Examples: generating a plan before intake is completed, mutating a step
    of a closed case, an illegal step status transition.

    Args:
        message: Human-readable explanation.
        case_id: The case the operation targeted.
        details: Optional structured payload (current status, target status, …).
    """

    def __init__(
        self,
        message: str,
        case_id: int | None = None,
        details: dict | None = None,
    ) -> None:
        self.case_id = case_id
        self.details = details or {}
        super().__init__(message)


class CaseConflictError(CaseStateError):
    """Raised when the operation collides with existing state.

    Raised for a second plan generation on a case that already has steps
    and for stale ``expected_version`` tokens on step mutations.
    """


class CaseAccessDeniedError(Exception):
    """Raised when the actor's effective case role is below the required one.

    Args:
        actor_user_id: The user that attempted the action.
        case_id: Target case (None for tenant-level actions such as playbooks).
        attempted_action: Operation name (e.g. "GeneratePlan").
        required_role: Minimum case role name.
        actual_role: Effective case role name, or None when the actor has none.
        reason_code: ROLE_INSUFFICIENT | NO_CASE_ACCESS.
    """

    def __init__(
        self,
        actor_user_id: int,
        case_id: int | None,
        attempted_action: str,
        required_role: str,
        actual_role: str | None,
        reason_code: str,
    ) -> None:
        self.actor_user_id = actor_user_id
        self.case_id = case_id
        self.attempted_action = attempted_action
        self.required_role = required_role
        self.actual_role = actual_role
        self.reason_code = reason_code
        super().__init__(
            f"{attempted_action} requires case role {required_role} "
            f"(actual={actual_role or 'none'}, reason={reason_code})"
        )

    def to_dict(self) -> dict:
        return {
            "attempted_action": self.attempted_action,
            "required_role": self.required_role,
            "actual_role": self.actual_role,
            "reason_code": self.reason_code,
        }
