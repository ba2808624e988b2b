"""
Agency Playbooks — Service Layer.

Only tenant admins ("agency_admin") may create or activate playbooks.
A playbook carries an alternate step template (serialized StepCatalog) for
one tenant.  Versions increase per tenant; at most one playbook is active.
New cases snapshot the active playbook id/version at creation time, so
activating a newer playbook never changes existing cases.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from app.core.exceptions import CaseAccessDeniedError, CaseStateError, ValidationError
from app.models import db
from app.models.auth import TENANT_ADMIN_ROLE, has_platform_role
from app.models.playbook import PLAYBOOK_EDITABLE_STATUSES, AgencyPlaybook
from app.services.audit_sink import default_sink
from app.services.case_locks import tenant_transaction
from app.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from app.services.step_catalog import StepCatalog

logger = logging.getLogger(__name__)


def _ensure_tenant_admin(tenant_id: int, actor_user_id: int, action: str) -> None:
    if not has_platform_role(actor_user_id, tenant_id, TENANT_ADMIN_ROLE):
        logger.warning(
            "Playbook action %s denied for user %s", action, actor_user_id,
            extra={"tenant_id": tenant_id},
        )
        raise CaseAccessDeniedError(
            actor_user_id=actor_user_id,
            case_id=None,
            attempted_action=action,
            required_role=TENANT_ADMIN_ROLE,
            actual_role=None,
            reason_code="ROLE_INSUFFICIENT",
        )


def _next_version(tenant_id: int) -> int:
    current = db.session.execute(
        select(func.max(AgencyPlaybook.version)).where(AgencyPlaybook.tenant_id == tenant_id)
    ).scalar()
    return (current or 0) + 1


def create_playbook(
    tenant_id: int,
    *,
    actor_user_id: int,
    name: str,
    template: dict | None = None,
    description: str | None = None,
    change_notes: str | None = None,
    audit_sink=None,
) -> AgencyPlaybook:
    """Create a draft playbook; *template* is validated as a StepCatalog."""
    _ensure_tenant_admin(tenant_id, actor_user_id, "CreatePlaybook")
    if not name or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})

    template_json = None
    if template is not None:
        catalog = StepCatalog.from_dict(template)
        template_json = json.dumps(catalog.to_dict(), sort_keys=True)

    playbook = AgencyPlaybook(
        tenant_id=tenant_id,
        name=name.strip(),
        description=description,
        version=_next_version(tenant_id),
        status="draft",
        change_notes=change_notes,
        template_json=template_json,
        created_by_user_id=actor_user_id,
    )
    db.session.add(playbook)
    db.session.flush()

    default_sink(audit_sink).emit(
        "PlaybookCreated",
        actor_user_id=actor_user_id,
        tenant_id=tenant_id,
        metadata={"playbook_id": playbook.id, "version": playbook.version},
    )
    db.session.commit()
    logger.info("Playbook %s v%d created", playbook.name, playbook.version, extra={"tenant_id": tenant_id})
    return playbook


def activate_playbook(
    playbook_id: int,
    *,
    tenant_id: int,
    actor_user_id: int,
    audit_sink=None,
) -> AgencyPlaybook:
    """Activate a draft/in-review playbook, archiving the tenant's current active one.

    Runs under ``tenant_transaction`` so concurrent activations for one tenant
    apply one after the other and never leave two active playbooks.
    """
    _ensure_tenant_admin(tenant_id, actor_user_id, "ActivatePlaybook")
    sink = default_sink(audit_sink)

    with tenant_transaction(tenant_id):
        playbook = get_scoped(AgencyPlaybook, playbook_id, tenant_id=tenant_id, lock=True)
        if playbook.status not in PLAYBOOK_EDITABLE_STATUSES:
            raise CaseStateError(
                f"Playbook in status '{playbook.status}' cannot be activated",
                details={"playbook_id": playbook.id, "status": playbook.status},
            )

        now = datetime.now(timezone.utc)
        previous = get_active_playbook(tenant_id)
        if previous is not None:
            previous.status = "archived"
            previous.updated_at = now
            # Archive first so the one-active-per-tenant index never sees two rows.
            db.session.flush()

        playbook.status = "active"
        playbook.activated_by_user_id = actor_user_id
        playbook.activated_at = now

        sink.emit(
            "PlaybookActivated",
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            metadata={
                "playbook_id": playbook.id,
                "version": playbook.version,
                "archived_playbook_id": previous.id if previous else None,
            },
        )

    logger.info("Playbook v%d activated", playbook.version, extra={"tenant_id": tenant_id})
    return playbook


def get_active_playbook(tenant_id: int) -> AgencyPlaybook | None:
    return db.session.execute(
        select(AgencyPlaybook).where(
            AgencyPlaybook.tenant_id == tenant_id,
            AgencyPlaybook.status == "active",
        )
    ).scalar_one_or_none()


def get_playbook_catalog(case) -> tuple[StepCatalog | None, AgencyPlaybook | None]:
    """Catalog snapshotted on *case* via its playbook, if the playbook carries a template."""
    if case.playbook_id is None:
        return None, None
    playbook = get_scoped_or_none(AgencyPlaybook, case.playbook_id, tenant_id=case.tenant_id)
    if playbook is None or playbook.template is None:
        return None, playbook
    return StepCatalog.from_dict(playbook.template), playbook
