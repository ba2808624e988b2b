"""workflow_plan_engine

Creates the case workflow plan engine schema:
  - tenants, users, user_roles      — identity collaborator tables
  - agency_playbooks                — tenant playbooks (alternate step templates)
  - cases, case_participants        — case + case-scoped roles
  - workflow_steps                  — per-case plan steps
  - workflow_step_dependencies      — step → prerequisite edges (DAG)
  - audit_events                    — append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) so the revision can
be stamped onto a development database that already ran db.create_all().

Revision ID: a1c0f3e2b7d4
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c0f3e2b7d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Identity ──────────────────────────────────────────────────────────
    if "tenants" not in existing:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        )
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    if "user_roles" not in existing:
        op.create_table(
            "user_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=50), nullable=False,
                      comment="agency_admin | agency_staff | platform_admin"),
            sa.Column("assigned_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "tenant_id", "role", name="uq_user_tenant_role"),
        )
        op.create_index("ix_user_roles_tenant_id", "user_roles", ["tenant_id"])

    # ── Playbooks ─────────────────────────────────────────────────────────
    if "agency_playbooks" not in existing:
        op.create_table(
            "agency_playbooks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="draft | in_review | active | archived"),
            sa.Column("change_notes", sa.Text(), nullable=True),
            sa.Column("template_json", sa.Text(), nullable=True),
            sa.Column("created_by_user_id", sa.Integer(), nullable=False),
            sa.Column("activated_by_user_id", sa.Integer(), nullable=True),
            sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "version", name="uq_playbook_tenant_version"),
            sa.CheckConstraint(
                "status IN ('draft','in_review','active','archived')",
                name="ck_playbook_status",
            ),
        )
        op.create_index("ix_agency_playbooks_tenant_id", "agency_playbooks", ["tenant_id"])
        op.create_index(
            "uq_playbook_one_active_per_tenant", "agency_playbooks", ["tenant_id"], unique=True,
            postgresql_where=sa.text("status = 'active'"),
            sqlite_where=sa.text("status = 'active'"),
        )

    # ── Cases ─────────────────────────────────────────────────────────────
    if "cases" not in existing:
        op.create_table(
            "cases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("case_number", sa.String(length=30), nullable=False),
            sa.Column("deceased_full_name", sa.String(length=200), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("manager_user_id", sa.Integer(), nullable=True),
            sa.Column("intake_data", sa.Text(), nullable=True),
            sa.Column("intake_completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("intake_completed_by_user_id", sa.Integer(), nullable=True),
            sa.Column("playbook_id", sa.Integer(), nullable=True),
            sa.Column("playbook_version", sa.Integer(), nullable=True),
            sa.Column("plan_generated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["manager_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["playbook_id"], ["agency_playbooks.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "case_number", name="uq_case_tenant_number"),
            sa.CheckConstraint(
                "status IN ('draft','intake','active','review','closed','archived','cancelled')",
                name="ck_case_status",
            ),
        )
        op.create_index("ix_cases_tenant_id", "cases", ["tenant_id"])

    if "case_participants" not in existing:
        op.create_table(
            "case_participants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_id", "user_id", name="uq_case_participant"),
            sa.CheckConstraint("role IN ('reader','editor','manager')", name="ck_case_participant_role"),
        )
        op.create_index("ix_case_participants_tenant_id", "case_participants", ["tenant_id"])
        op.create_index("ix_case_participants_case_id", "case_participants", ["case_id"])

    # ── Workflow plan ─────────────────────────────────────────────────────
    if "workflow_steps" not in existing:
        op.create_table(
            "workflow_steps",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("step_key", sa.String(length=100), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="blocked | ready | in_progress | complete"),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("deadline_source", sa.String(length=30), nullable=True),
            sa.Column("assigned_user_id", sa.Integer(), nullable=True),
            sa.Column("is_readiness_overridden", sa.Boolean(), nullable=False,
                      server_default=sa.false()),
            sa.Column("override_rationale", sa.Text(), nullable=True),
            sa.Column("override_by_user_id", sa.Integer(), nullable=True),
            sa.Column("overridden_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("blocked_reason_code", sa.String(length=30), nullable=True),
            sa.Column("blocked_reason_detail", sa.Text(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_id", "step_key", name="uq_workflow_step_case_key"),
            sa.CheckConstraint(
                "status IN ('blocked','ready','in_progress','complete')",
                name="ck_workflow_step_status",
            ),
        )
        op.create_index("ix_workflow_steps_tenant_id", "workflow_steps", ["tenant_id"])
        op.create_index("ix_workflow_steps_case_id", "workflow_steps", ["case_id"])
        op.create_index("ix_workflow_steps_tenant_case", "workflow_steps", ["tenant_id", "case_id"])

    if "workflow_step_dependencies" not in existing:
        op.create_table(
            "workflow_step_dependencies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.String(length=36), nullable=False),
            sa.Column("depends_on_step_id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["depends_on_step_id"], ["workflow_steps.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("step_id", "depends_on_step_id", name="uq_workflow_step_dep"),
            sa.CheckConstraint("step_id != depends_on_step_id", name="ck_workflow_dep_no_self_loop"),
        )
        op.create_index("ix_workflow_step_dependencies_tenant_id", "workflow_step_dependencies", ["tenant_id"])
        op.create_index("ix_workflow_step_dependencies_case_id", "workflow_step_dependencies", ["case_id"])
        op.create_index("ix_workflow_step_dependencies_step_id", "workflow_step_dependencies", ["step_id"])
        op.create_index(
            "ix_workflow_step_dependencies_depends_on_step_id",
            "workflow_step_dependencies", ["depends_on_step_id"],
        )

    # ── Audit ─────────────────────────────────────────────────────────────
    if "audit_events" not in existing:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("case_id", sa.Integer(), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["case_id"], ["cases.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
        op.create_index("idx_audit_event_case", "audit_events", ["case_id"])
        op.create_index("idx_audit_event_type", "audit_events", ["event_type"])
        op.create_index("idx_audit_event_actor", "audit_events", ["actor_user_id"])
        op.create_index("idx_audit_event_ts", "audit_events", ["created_at"])


def downgrade():
    for table in (
        "audit_events",
        "workflow_step_dependencies",
        "workflow_steps",
        "case_participants",
        "cases",
        "agency_playbooks",
        "user_roles",
        "users",
        "tenants",
    ):
        op.drop_table(table)
