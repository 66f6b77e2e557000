"""governance phase 1: review rounds and votes

Revision ID: c3f2e4a6b003
Revises: b2e1d3f5a002
Create Date: 2026-03-11 10:05:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "c3f2e4a6b003"
down_revision = "b2e1d3f5a002"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "governance_reviews" not in existing_tables:
        op.create_table(
            "governance_reviews",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("submission_id", sa.Integer(), nullable=False),
            sa.Column("board_id", sa.Integer(), nullable=False),
            sa.Column("review_round", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="in-review",
                      comment="in-review | decided | cancelled"),
            sa.Column("decision", sa.String(length=30), nullable=True),
            sa.Column("decision_reason", sa.Text(), nullable=True),
            sa.Column("criteria_version_id", sa.Integer(), nullable=False),
            sa.Column("criteria_snapshot", sa.JSON(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("started_by_oid", sa.String(length=100), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decided_by_oid", sa.String(length=100), nullable=True),
            sa.ForeignKeyConstraint(["submission_id"], ["intake_submissions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["board_id"], ["governance_boards.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(
                ["criteria_version_id"], ["governance_criteria_versions.id"], ondelete="RESTRICT",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("submission_id", "review_round", name="uq_gov_review_round"),
        )
        op.create_index("ix_gov_review_submission_status", "governance_reviews", ["submission_id", "status"])
        # At most one open round per submission
        op.create_index(
            "uq_gov_review_one_open",
            "governance_reviews",
            ["submission_id"],
            unique=True,
            postgresql_where=sa.text("status = 'in-review'"),
            sqlite_where=sa.text("status = 'in-review'"),
        )

    if "governance_votes" not in existing_tables:
        op.create_table(
            "governance_votes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("submission_id", sa.Integer(), nullable=False),
            sa.Column("review_id", sa.Integer(), nullable=False),
            sa.Column("voter_user_oid", sa.String(length=100), nullable=False),
            sa.Column("scores", sa.JSON(), nullable=False),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("conflict_declared", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["submission_id"], ["intake_submissions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["review_id"], ["governance_reviews.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("submission_id", "voter_user_oid", name="uq_gov_vote_submission_voter"),
        )
        op.create_index("ix_governance_votes_submission_id", "governance_votes", ["submission_id"])
        op.create_index("ix_governance_votes_review_id", "governance_votes", ["review_id"])


def downgrade():
    op.drop_table("governance_votes")
    op.drop_table("governance_reviews")
