"""
Shared pytest fixtures for the Succession Case Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: pre-created tenants
    - manager / editor / reader / outsider / admin: users with case roles
    - make_case: factory for cases in an arbitrary starting state
    - headers: factory for identity headers of a user
    - intake_payload: factory for valid intake dicts
    - participant: adds a CaseParticipant row

Factories commit: the services under test commit (and roll back on
access denial), so fixture rows must already be durable.
"""

import itertools
import json
from datetime import datetime, timezone

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import Tenant, User, UserRole
from app.models.case import Case, CaseParticipant
from app.services.case_locks import reset_case_locks

INTAKE_BASE = {
    "primary_contact_name": "Ana Silva",
    "relationship_to_deceased": "daughter",
    "primary_contact_phone": "+351 912 000 000",
}

_case_numbers = itertools.count(1)


def _intake_payload(**flags):
    return {**INTAKE_BASE, **flags}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        reset_case_locks()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


def _make_tenant(name, slug):
    t = Tenant(name=name, slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


def _make_user(tenant, email, platform_role=None):
    u = User(tenant_id=tenant.id, email=email, full_name=email.split("@")[0].title())
    _db.session.add(u)
    _db.session.flush()
    if platform_role:
        _db.session.add(UserRole(user_id=u.id, tenant_id=tenant.id, role=platform_role))
    _db.session.commit()
    return u


@pytest.fixture()
def tenant():
    return _make_tenant("Test Agency", "test-agency")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Other Agency", "other-agency")


@pytest.fixture()
def manager(tenant):
    return _make_user(tenant, "manager@agency.test", platform_role="agency_staff")


@pytest.fixture()
def editor(tenant):
    return _make_user(tenant, "editor@agency.test")


@pytest.fixture()
def reader(tenant):
    return _make_user(tenant, "reader@agency.test")


@pytest.fixture()
def outsider(tenant):
    return _make_user(tenant, "outsider@agency.test")


@pytest.fixture()
def admin(tenant):
    return _make_user(tenant, "admin@agency.test", platform_role="agency_admin")


# ── Case factory ─────────────────────────────────────────────────────────


def add_participant(case, user, role, status="accepted"):
    p = CaseParticipant(tenant_id=case.tenant_id, case_id=case.id, user_id=user.id, role=role, status=status)
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def make_case(tenant, manager, editor, reader):
    """
    Build a case directly in the DB (bypasses lifecycle guards).

    ``intake`` — dict of intake fields, or None for "intake not completed".
    The fixture users ``editor`` and ``reader`` are accepted participants.
    """

    def _factory(intake=None, status=None, tenant_obj=None, manager_obj=None, participants=True):
        t = tenant_obj or tenant
        m = manager_obj or manager
        case = Case(
            tenant_id=t.id,
            case_number=f"TEST-{next(_case_numbers):04d}",
            deceased_full_name="João Pereira",
            status=status or ("intake" if intake is not None else "draft"),
            manager_user_id=m.id,
        )
        if intake is not None:
            case.intake_data = json.dumps(intake)
            case.intake_completed_at = datetime.now(timezone.utc)
            case.intake_completed_by_user_id = m.id
        _db.session.add(case)
        _db.session.commit()
        if participants and t.id == tenant.id:
            add_participant(case, editor, "editor")
            add_participant(case, reader, "reader")
        return case

    return _factory


@pytest.fixture()
def headers():
    def _headers(user):
        return {"X-Tenant-Id": str(user.tenant_id), "X-User-Id": str(user.id)}

    return _headers


@pytest.fixture()
def intake_payload():
    """INTAKE_BASE plus boolean flags (has_will, requires_legal_support, …)."""
    return _intake_payload


@pytest.fixture()
def participant():
    """add_participant(case, user, role, status="accepted")."""
    return add_participant
