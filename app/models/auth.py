"""
Identity Models — tenants, users, platform role assignments.

These tables back the identity/role collaborator the workflow engine
consults for every access check. The engine only reads them:
  - Tenant:    agency account; inactive tenants are rejected at request time
  - User:      agency staff member (case manager, editor, reader)
  - UserRole:  platform role grant; "agency_admin" is Manager-equivalent on
               every case of the tenant
"""

from datetime import datetime, timezone

from app.models import db


PLATFORM_ROLES = {"agency_admin", "agency_staff", "platform_admin"}

TENANT_ADMIN_ROLE = "agency_admin"


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "settings": self.settings or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), default="active")  # active, invited, inactive
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
    )

    # Relationships
    tenant = db.relationship("Tenant", back_populates="users")
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. USER_ROLES (platform role grants, tenant-scoped)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(50), nullable=False, comment="agency_admin | agency_staff | platform_admin")
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "tenant_id", "role", name="uq_user_tenant_role"),
    )

    # Relationships
    user = db.relationship("User", back_populates="user_roles")


def has_platform_role(user_id: int, tenant_id: int, role: str) -> bool:
    """Return True if the user holds the platform role inside the tenant."""
    return (
        UserRole.query
        .filter_by(user_id=user_id, tenant_id=tenant_id, role=role)
        .first()
        is not None
    )
