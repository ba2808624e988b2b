"""
TenantModel — Abstract base class for tenant-scoped models.

All case-workflow tables carry a tenant_id so every lookup can be scoped.
Inheriting from TenantModel adds:
  - tenant_id FK column with index
  - query_for_tenant(tenant_id) classmethod
"""

from sqlalchemy.orm import declared_attr

from app.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    # FK columns on an abstract base must be produced per subclass
    @declared_attr
    def tenant_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)
