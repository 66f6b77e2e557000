"""governance phase 2: quorum policy and vote window

Adds the quorum / vote-window policy to `governance_settings` and the
per-review policy snapshot and advisory deadline to `governance_reviews`.

Revision ID: d4a3f5b7c004
Revises: c3f2e4a6b003
Create Date: 2026-03-19 16:22:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "d4a3f5b7c004"
down_revision = "c3f2e4a6b003"
branch_labels = None
depends_on = None


def upgrade():
    inspector = sa_inspect(op.get_bind())

    settings_cols = {c["name"] for c in inspector.get_columns("governance_settings")}
    with op.batch_alter_table("governance_settings", schema=None) as batch_op:
        if "quorum_percent" not in settings_cols:
            batch_op.add_column(sa.Column("quorum_percent", sa.Integer(), nullable=False,
                server_default="60"))
        if "quorum_min_count" not in settings_cols:
            batch_op.add_column(sa.Column("quorum_min_count", sa.Integer(), nullable=False,
                server_default="1"))
        if "decision_requires_quorum" not in settings_cols:
            batch_op.add_column(sa.Column("decision_requires_quorum", sa.Boolean(), nullable=False,
                server_default=sa.true()))
        if "vote_window_days" not in settings_cols:
            batch_op.add_column(sa.Column("vote_window_days", sa.Integer(), nullable=True,
                comment="null or 1..90"))

    review_cols = {c["name"] for c in inspector.get_columns("governance_reviews")}
    with op.batch_alter_table("governance_reviews", schema=None) as batch_op:
        if "policy_snapshot" not in review_cols:
            batch_op.add_column(sa.Column("policy_snapshot", sa.JSON(), nullable=True))
        if "vote_deadline_at" not in review_cols:
            batch_op.add_column(sa.Column("vote_deadline_at", sa.DateTime(timezone=True), nullable=True))


def downgrade():
    with op.batch_alter_table("governance_reviews", schema=None) as batch_op:
        batch_op.drop_column("vote_deadline_at")
        batch_op.drop_column("policy_snapshot")

    with op.batch_alter_table("governance_settings", schema=None) as batch_op:
        batch_op.drop_column("vote_window_days")
        batch_op.drop_column("decision_requires_quorum")
        batch_op.drop_column("quorum_min_count")
        batch_op.drop_column("quorum_percent")
