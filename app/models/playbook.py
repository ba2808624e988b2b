"""
Succession Case Platform
Agency playbook model.

Models:
    - AgencyPlaybook: tenant-authored alternate step/dependency template

Lifecycle states:
    AgencyPlaybook:  draft → in_review → active → archived
                     (activating one playbook archives the tenant's current active one)
"""

import json
from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel


PLAYBOOK_STATUSES = {"draft", "in_review", "active", "archived"}

PLAYBOOK_EDITABLE_STATUSES = {"draft", "in_review"}


class AgencyPlaybook(TenantModel):
    """
    Versioned playbook for one tenant.  ``template_json`` holds a serialized
    step catalog (see app.services.step_catalog.StepCatalog.to_dict).
    """

    __tablename__ = "agency_playbooks"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1, comment="Per-tenant increasing version")
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | in_review | active | archived",
    )
    change_notes = db.Column(db.Text, nullable=True)
    template_json = db.Column(db.Text, nullable=True, comment="Serialized StepCatalog; NULL = default catalog")

    created_by_user_id = db.Column(db.Integer, nullable=False)
    activated_by_user_id = db.Column(db.Integer, nullable=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "version", name="uq_playbook_tenant_version"),
        db.Index(
            "uq_playbook_one_active_per_tenant", "tenant_id", unique=True,
            postgresql_where=db.text("status = 'active'"),
            sqlite_where=db.text("status = 'active'"),
        ),
        db.CheckConstraint(
            "status IN ('draft','in_review','active','archived')",
            name="ck_playbook_status",
        ),
    )

    @property
    def template(self) -> dict | None:
        """Deserialise *template_json*; None when the playbook has no template."""
        if not self.template_json:
            return None
        return json.loads(self.template_json)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "status": self.status,
            "change_notes": self.change_notes,
            "has_template": bool(self.template_json),
            "created_by_user_id": self.created_by_user_id,
            "activated_by_user_id": self.activated_by_user_id,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<AgencyPlaybook {self.id}: {self.name} v{self.version} [{self.status}]>"
