"""intake base tables

Create `intake_forms`, `intake_submissions`, `projects` and `audit_logs`.
Governance columns arrive in the governance phase migrations.

Revision ID: a1f0c2d4e001
Revises:
Create Date: 2026-03-02 09:12:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1f0c2d4e001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "intake_forms" not in existing_tables:
        op.create_table(
            "intake_forms",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("fields", sa.JSON(), nullable=True, comment="Form field definitions"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="active"),
            sa.Column("owner_oid", sa.String(length=100), nullable=True),
            sa.Column("source_submission_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by_oid", sa.String(length=100), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_source_submission_id", "projects", ["source_submission_id"])

    if "intake_submissions" not in existing_tables:
        op.create_table(
            "intake_submissions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("form_id", sa.Integer(), nullable=False),
            sa.Column("submitter_oid", sa.String(length=100), nullable=True),
            sa.Column("submitter_name", sa.String(length=200), nullable=True),
            sa.Column("submitter_email", sa.String(length=255), nullable=True),
            sa.Column("form_data", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending",
                      comment="pending | under-review | awaiting-response | approved | rejected"),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("converted_project_id", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["form_id"], ["intake_forms.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["converted_project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_intake_submissions_form_id", "intake_submissions", ["form_id"])
        op.create_index("ix_intake_submissions_submitter_oid", "intake_submissions", ["submitter_oid"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=40), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_oid", sa.String(length=100), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor_oid"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("intake_submissions")
    op.drop_table("projects")
    op.drop_table("intake_forms")
