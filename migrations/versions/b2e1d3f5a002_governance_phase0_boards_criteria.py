"""governance phase 0: settings, boards, memberships, criteria versions

Adds the governance registry tables and layers the governance columns onto
`intake_forms` and `intake_submissions`. Existing submissions land on the
`skipped` path so the legacy intake flow is unchanged.

Revision ID: b2e1d3f5a002
Revises: a1f0c2d4e001
Create Date: 2026-03-05 14:40:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "b2e1d3f5a002"
down_revision = "a1f0c2d4e001"
branch_labels = None
depends_on = None


def _columns(inspector, table):
    return {c["name"] for c in inspector.get_columns(table)}


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "governance_settings" not in existing_tables:
        op.create_table(
            "governance_settings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("governance_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_by_oid", sa.String(length=100), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "governance_boards" not in existing_tables:
        op.create_table(
            "governance_boards",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by_oid", sa.String(length=100), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name", name="uq_governance_boards_name"),
        )

    if "governance_memberships" not in existing_tables:
        op.create_table(
            "governance_memberships",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("board_id", sa.Integer(), nullable=False),
            sa.Column("user_oid", sa.String(length=100), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member",
                      comment="member | chair"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
            sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by_oid", sa.String(length=100), nullable=True),
            sa.ForeignKeyConstraint(["board_id"], ["governance_boards.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_governance_memberships_board_id", "governance_memberships", ["board_id"])
        op.create_index("ix_gov_membership_board_user", "governance_memberships", ["board_id", "user_oid"])

    if "governance_criteria_versions" not in existing_tables:
        op.create_table(
            "governance_criteria_versions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("board_id", sa.Integer(), nullable=False),
            sa.Column("version_no", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft",
                      comment="draft | published | retired"),
            sa.Column("criteria", sa.JSON(), nullable=False),
            sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("published_by_oid", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by_oid", sa.String(length=100), nullable=True),
            sa.ForeignKeyConstraint(["board_id"], ["governance_boards.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("board_id", "version_no", name="uq_gov_criteria_board_version"),
        )
        op.create_index("ix_gov_criteria_board_status", "governance_criteria_versions", ["board_id", "status"])
        # At most one published version per board
        op.create_index(
            "uq_gov_criteria_one_published",
            "governance_criteria_versions",
            ["board_id"],
            unique=True,
            postgresql_where=sa.text("status = 'published'"),
            sqlite_where=sa.text("status = 'published'"),
        )

    form_cols = _columns(inspector, "intake_forms")
    with op.batch_alter_table("intake_forms", schema=None) as batch_op:
        if "governance_mode" not in form_cols:
            batch_op.add_column(sa.Column("governance_mode", sa.String(length=20), nullable=False,
                server_default="off", comment="off | optional | required"))
        if "governance_board_id" not in form_cols:
            batch_op.add_column(sa.Column("governance_board_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key(
                "fk_intake_forms_governance_board_id",
                "governance_boards", ["governance_board_id"], ["id"], ondelete="SET NULL",
            )
            batch_op.create_index("ix_intake_forms_governance_board_id", ["governance_board_id"])

    submission_cols = _columns(inspector, "intake_submissions")
    with op.batch_alter_table("intake_submissions", schema=None) as batch_op:
        if "governance_required" not in submission_cols:
            batch_op.add_column(sa.Column("governance_required", sa.Boolean(), nullable=False,
                server_default=sa.false()))
        if "governance_status" not in submission_cols:
            batch_op.add_column(sa.Column("governance_status", sa.String(length=20), nullable=False,
                server_default="skipped", comment="skipped | not-started | in-review | decided"))
        if "governance_decision" not in submission_cols:
            batch_op.add_column(sa.Column("governance_decision", sa.String(length=30), nullable=True,
                comment="approved-now | approved-backlog | needs-info | rejected"))
        if "governance_reason" not in submission_cols:
            batch_op.add_column(sa.Column("governance_reason", sa.Text(), nullable=True))
        if "priority_score" not in submission_cols:
            batch_op.add_column(sa.Column("priority_score", sa.Float(), nullable=True))
            batch_op.create_index("ix_intake_submissions_governance",
                                  ["governance_required", "governance_status"])
            batch_op.create_index("ix_intake_submissions_priority", ["priority_score", "submitted_at"])


def downgrade():
    with op.batch_alter_table("intake_submissions", schema=None) as batch_op:
        batch_op.drop_index("ix_intake_submissions_priority")
        batch_op.drop_index("ix_intake_submissions_governance")
        batch_op.drop_column("priority_score")
        batch_op.drop_column("governance_reason")
        batch_op.drop_column("governance_decision")
        batch_op.drop_column("governance_status")
        batch_op.drop_column("governance_required")

    with op.batch_alter_table("intake_forms", schema=None) as batch_op:
        batch_op.drop_index("ix_intake_forms_governance_board_id")
        batch_op.drop_constraint("fk_intake_forms_governance_board_id", type_="foreignkey")
        batch_op.drop_column("governance_board_id")
        batch_op.drop_column("governance_mode")

    op.drop_table("governance_criteria_versions")
    op.drop_table("governance_memberships")
    op.drop_table("governance_boards")
    op.drop_table("governance_settings")
