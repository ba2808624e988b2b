"""
Tenant-scoped query helpers.

Every get-by-id in the workflow engine goes through these helpers instead
of Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Usage:
    # Scope by tenant_id (every TenantModel subclass)
    case = get_scoped(Case, case_id, tenant_id=tenant_id)

    # Scope by tenant and case (workflow steps)
    step = get_scoped(WorkflowStep, step_id, tenant_id=tenant_id, case_id=case_id)

    # When None is an acceptable outcome
    playbook = get_scoped_or_none(AgencyPlaybook, pid, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    A scope kwarg naming a column the model lacks raises ValueError, so
    the bug surfaces during testing rather than as an unscoped lookup.
"""

import logging

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db

logger = logging.getLogger(__name__)


def _scoped_statement(model, pk, scopes: dict):
    provided = {k: v for k, v in scopes.items() if v is not None}
    if not provided:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id or case_id). Unscoped lookups are forbidden."
        )

    missing = sorted(field for field in provided if not hasattr(model, field))
    if missing:
        raise ValueError(
            f"{model.__name__} has no column(s) {missing}; refusing a partially scoped lookup"
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided.items():
        stmt = stmt.where(getattr(model, field) == value)
    return stmt, provided


def get_scoped(
    model,
    pk: int | str,
    *,
    tenant_id: int | None = None,
    case_id: int | None = None,
    lock: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        tenant_id: Scope by tenant_id column.
        case_id: Scope by case_id column.
        lock: Issue ``SELECT … FOR UPDATE`` (no-op on SQLite).

    Raises:
        ValueError: If no scope is provided or a scope column is missing.
        NotFoundError: If the entity does not exist OR belongs to a different scope.
    """
    stmt, applied = _scoped_statement(model, pk, {"tenant_id": tenant_id, "case_id": case_id})
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            applied,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(
    model,
    pk: int | str,
    *,
    tenant_id: int | None = None,
    case_id: int | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, case_id=case_id)
    except NotFoundError:
        return None
