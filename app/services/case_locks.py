"""
Per-case serialization.

Every mutation of a case's workflow plan runs inside ``case_transaction``:

    1. acquire the in-process lock for (tenant_id, case_id)
    2. ``SELECT … FOR UPDATE`` the case row (serializes across processes
       on PostgreSQL; SQLite ignores the clause)
    3. run the mutation; commit on success, rollback on any exception

Different cases never share a lock and proceed in parallel.

Tenant-wide changes (playbook activation) use ``tenant_transaction``, which
locks the tenant row instead of a case row.
"""

import logging
import threading
from contextlib import contextmanager

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.auth import Tenant
from app.models.case import Case
from app.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_case_locks: dict[tuple[int, int | None], threading.RLock] = {}


def _lock_for(tenant_id: int, case_id: int | None) -> threading.RLock:
    with _registry_lock:
        lock = _case_locks.get((tenant_id, case_id))
        if lock is None:
            lock = threading.RLock()
            _case_locks[(tenant_id, case_id)] = lock
        return lock


@contextmanager
def case_lock(tenant_id: int, case_id: int):
    """Hold the in-process lock for one case."""
    lock = _lock_for(tenant_id, case_id)
    with lock:
        yield


@contextmanager
def case_transaction(tenant_id: int, case_id: int):
    """
    Lock the case and yield the row-locked Case inside a unit of work.

    Raises NotFoundError (→ 404) when the case is not in the tenant.
    """
    with case_lock(tenant_id, case_id):
        try:
            case = get_scoped(Case, case_id, tenant_id=tenant_id, lock=True)
            yield case
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


@contextmanager
def tenant_transaction(tenant_id: int):
    """Serialize tenant-wide changes: in-process lock plus a row lock on the tenant."""
    with _lock_for(tenant_id, None):
        try:
            tenant = db.session.execute(
                select(Tenant).where(Tenant.id == tenant_id).with_for_update()
            ).scalar_one_or_none()
            if tenant is None:
                raise NotFoundError(resource="Tenant", resource_id=tenant_id)
            yield tenant
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def reset_case_locks() -> None:
    """Drop every registered lock (for testing)."""
    with _registry_lock:
        _case_locks.clear()
