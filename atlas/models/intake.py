"""
Intake domain model — forms, submissions and the projects they convert into.

Forms and submissions are owned by the intake module; the governance engine
only reads ``IntakeForm.governance_mode`` / ``governance_board_id`` and
reads/writes the ``governance_*`` and ``priority_score`` columns layered onto
``IntakeSubmission``.
"""

from datetime import UTC, datetime

from sqlalchemy.orm import deferred

from atlas.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

GOVERNANCE_MODES = ("off", "optional", "required")

SUBMISSION_STATUSES = ("pending", "under-review", "awaiting-response", "approved", "rejected")
CLOSED_SUBMISSION_STATUSES = frozenset({"approved", "rejected"})

GOVERNANCE_STATUSES = ("skipped", "not-started", "in-review", "decided")
GOVERNANCE_DECISIONS = ("approved-now", "approved-backlog", "needs-info", "rejected")

# Governance columns are mapped as a deferred group so rows still load on a
# database that only carries the base intake tables.
GOVERNANCE_GROUP = "governance"

LEGACY_GOVERNANCE = {
    "governance_required": False,
    "governance_status": "skipped",
    "governance_decision": None,
    "governance_reason": None,
    "priority_score": None,
}


def _utcnow():
    return datetime.now(UTC)


def _iso(value):
    return value.isoformat() if value else None


class IntakeForm(db.Model):
    """Configurable request form; carries the per-form governance policy."""

    __tablename__ = "intake_forms"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    fields = db.Column(db.JSON, nullable=True, comment="Form field definitions")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    governance_mode = deferred(db.Column(
        db.String(20), nullable=False, default="off", server_default="off",
        comment="off | optional | required",
    ), group=GOVERNANCE_GROUP)
    governance_board_id = deferred(db.Column(
        db.Integer,
        db.ForeignKey("governance_boards.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ), group=GOVERNANCE_GROUP)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    governance_board = db.relationship("GovernanceBoard", lazy="select")

    def to_dict(self, governance: bool = True) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "fields": self.fields or [],
            "is_active": self.is_active,
            "governance_mode": (self.governance_mode or "off") if governance else "off",
            "governance_board_id": self.governance_board_id if governance else None,
            "created_at": _iso(self.created_at),
        }


class IntakeSubmission(db.Model):
    """
    A request submitted through an intake form.

    Governance columns:
        governance_required  — True once the submission must pass a board review
        governance_status    — skipped | not-started | in-review | decided
        governance_decision  — approved-now | approved-backlog | needs-info | rejected
        governance_reason    — free-text explanation of the current state
        priority_score       — mean weighted voter score (1–5 scale)
    """

    __tablename__ = "intake_submissions"
    __table_args__ = (
        db.Index("ix_intake_submissions_governance", "governance_required", "governance_status"),
        db.Index("ix_intake_submissions_priority", "priority_score", "submitted_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    form_id = db.Column(
        db.Integer,
        db.ForeignKey("intake_forms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submitter_oid = db.Column(db.String(100), nullable=True, index=True)
    submitter_name = db.Column(db.String(200), nullable=True)
    submitter_email = db.Column(db.String(255), nullable=True)
    form_data = db.Column(db.JSON, nullable=True)
    status = db.Column(
        db.String(30), nullable=False, default="pending",
        comment="pending | under-review | awaiting-response | approved | rejected",
    )
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    converted_project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    governance_required = deferred(
        db.Column(db.Boolean, nullable=False, default=False, server_default="0"),
        group=GOVERNANCE_GROUP,
    )
    governance_status = deferred(db.Column(
        db.String(20), nullable=False, default="skipped", server_default="skipped",
    ), group=GOVERNANCE_GROUP)
    governance_decision = deferred(db.Column(db.String(30), nullable=True), group=GOVERNANCE_GROUP)
    governance_reason = deferred(db.Column(db.Text, nullable=True), group=GOVERNANCE_GROUP)
    priority_score = deferred(db.Column(db.Float, nullable=True), group=GOVERNANCE_GROUP)

    form = db.relationship("IntakeForm", lazy="joined")

    @property
    def is_closed(self) -> bool:
        return (self.status or "").lower() in CLOSED_SUBMISSION_STATUSES

    def governance_dict(self) -> dict:
        return {
            "governance_required": bool(self.governance_required),
            "governance_status": self.governance_status,
            "governance_decision": self.governance_decision,
            "governance_reason": self.governance_reason,
            "priority_score": self.priority_score,
        }

    def to_dict(self, governance: bool = True) -> dict:
        """Serialise the submission.

        ``governance=False`` never touches the deferred governance columns;
        it reports the legacy skipped state instead.
        """
        form = self.form
        board = form.governance_board if form and governance else None
        data = {
            "id": self.id,
            "form_id": self.form_id,
            "form_name": form.name if form else None,
            "submitter_oid": self.submitter_oid,
            "submitter_name": self.submitter_name,
            "submitter_email": self.submitter_email,
            "form_data": self.form_data or {},
            "status": self.status,
            "submitted_at": _iso(self.submitted_at),
            "converted_project_id": self.converted_project_id,
            "governance_board_id": form.governance_board_id if form and governance else None,
            "governance_board_name": board.name if board else None,
        }
        data.update(self.governance_dict() if governance else LEGACY_GOVERNANCE)
        return data

    def __repr__(self) -> str:
        return f"<IntakeSubmission #{self.id} {self.status}>"


class Project(db.Model):
    """Tracked project created from an approved intake submission."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=False, default="active")
    owner_oid = db.Column(db.String(100), nullable=True)
    source_submission_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by_oid = db.Column(db.String(100), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "owner_oid": self.owner_oid,
            "source_submission_id": self.source_submission_id,
            "created_at": _iso(self.created_at),
            "created_by_oid": self.created_by_oid,
        }
