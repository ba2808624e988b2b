"""
Succession Case Platform
Blueprint registry and shared request helpers.
"""

import logging

from flask import g, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    CaseAccessDeniedError,
    CaseConflictError,
    CaseStateError,
    NotFoundError,
    ValidationError,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def caller_identity() -> tuple[int, int]:
    """(tenant_id, actor_user_id) resolved by the tenant context middleware."""
    return g.tenant_id, g.actor_user_id


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Map the service exception hierarchy to standard API errors on *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(CaseConflictError)
    def _handle_conflict(error: CaseConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details=error.details)

    @bp.errorhandler(CaseStateError)
    def _handle_state(error: CaseStateError):
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(CaseAccessDeniedError)
    def _handle_forbidden(error: CaseAccessDeniedError):
        return api_error(E.FORBIDDEN, "Insufficient case role", details=error.to_dict())

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
