"""
Governance domain model — boards, memberships, criteria versions, reviews, votes.

Models:
    - GovernanceSettings: single-row global switch plus quorum / vote-window policy.
    - GovernanceBoard: named board that reviews intake submissions.
    - GovernanceMembership: time-bounded member / chair assignment on a board.
    - GovernanceCriteriaVersion: immutable-once-published weighted criteria list.
    - GovernanceReview: one review round of a submission against a board.
    - GovernanceVote: one voter's scores for a submission (unique per voter).

Business rules:
    - At most one ``published`` criteria version per board; publishing retires
      the previous one in the same transaction.
    - Boards, memberships and criteria versions are never deleted.
    - A submission has at most one ``in-review`` review at a time.
"""

from datetime import UTC, datetime

from atlas.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

MEMBER_ROLES = ("member", "chair")

VERSION_DRAFT = "draft"
VERSION_PUBLISHED = "published"
VERSION_RETIRED = "retired"
VERSION_STATUSES = (VERSION_DRAFT, VERSION_PUBLISHED, VERSION_RETIRED)

REVIEW_IN_REVIEW = "in-review"
REVIEW_DECIDED = "decided"
REVIEW_CANCELLED = "cancelled"
REVIEW_STATUSES = (REVIEW_IN_REVIEW, REVIEW_DECIDED, REVIEW_CANCELLED)

# Submission governance-status transitions
GOVERNANCE_TRANSITIONS = {
    "apply": {"from": ["skipped", "not-started", "in-review"], "to": None},
    "skip": {"from": ["skipped", "not-started", "in-review"], "to": "skipped"},
    "start": {"from": ["not-started"], "to": "in-review"},
    "vote": {"from": ["in-review"], "to": None},
    "decide": {"from": ["in-review"], "to": "decided"},
}

DEFAULT_QUORUM_PERCENT = 60
DEFAULT_QUORUM_MIN_COUNT = 1


def _utcnow():
    return datetime.now(UTC)


def _iso(value):
    return value.isoformat() if value else None


def as_utc(value):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class GovernanceSettings(db.Model):
    """Global governance switch; lazily created with governance disabled."""

    __tablename__ = "governance_settings"

    id = db.Column(db.Integer, primary_key=True)
    governance_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default="0")
    quorum_percent = db.Column(
        db.Integer, nullable=False, default=DEFAULT_QUORUM_PERCENT,
        server_default=str(DEFAULT_QUORUM_PERCENT),
    )
    quorum_min_count = db.Column(
        db.Integer, nullable=False, default=DEFAULT_QUORUM_MIN_COUNT,
        server_default=str(DEFAULT_QUORUM_MIN_COUNT),
    )
    decision_requires_quorum = db.Column(
        db.Boolean, nullable=False, default=True, server_default="1",
    )
    vote_window_days = db.Column(db.Integer, nullable=True, comment="null or 1..90")
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )
    updated_by_oid = db.Column(db.String(100), nullable=True)

    def policy_dict(self) -> dict:
        return {
            "quorum_percent": self.quorum_percent,
            "quorum_min_count": self.quorum_min_count,
            "decision_requires_quorum": bool(self.decision_requires_quorum),
            "vote_window_days": self.vote_window_days,
        }

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "governance_enabled": bool(self.governance_enabled),
            "updated_at": _iso(self.updated_at),
            "updated_by_oid": self.updated_by_oid,
        }
        data.update(self.policy_dict())
        return data


class GovernanceBoard(db.Model):
    """Review board. Soft-deactivated via ``is_active``; never deleted."""

    __tablename__ = "governance_boards"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default="1")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by_oid = db.Column(db.String(100), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "created_by_oid": self.created_by_oid,
        }

    def __repr__(self):
        return f"<GovernanceBoard {self.id}: {self.name}>"


class GovernanceMembership(db.Model):
    """
    Member or chair assignment on a board.

    The latest row (by ``created_at``) per ``(board_id, user_oid)`` is the
    authoritative one; upserts update it in place.
    """

    __tablename__ = "governance_memberships"
    __table_args__ = (
        db.Index("ix_gov_membership_board_user", "board_id", "user_oid"),
    )

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer,
        db.ForeignKey("governance_boards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_oid = db.Column(db.String(100), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="member", comment="member | chair")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_from = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    effective_to = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by_oid = db.Column(db.String(100), nullable=True)

    def is_current(self, at: datetime | None = None) -> bool:
        """True when the assignment is active and ``at`` lies inside its window."""
        at = as_utc(at) or _utcnow()
        if not self.is_active:
            return False
        start = as_utc(self.effective_from)
        end = as_utc(self.effective_to)
        if start is not None and start > at:
            return False
        return end is None or end > at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "user_oid": self.user_oid,
            "role": self.role,
            "is_active": self.is_active,
            "effective_from": _iso(self.effective_from),
            "effective_to": _iso(self.effective_to),
            "created_at": _iso(self.created_at),
            "created_by_oid": self.created_by_oid,
        }


class GovernanceCriteriaVersion(db.Model):
    """
    Versioned weighted criteria for a board.

    ``criteria`` is a JSON list of ``{id, name, weight, enabled, sortOrder}``.
    Only drafts are mutable.
    """

    __tablename__ = "governance_criteria_versions"
    __table_args__ = (
        db.UniqueConstraint("board_id", "version_no", name="uq_gov_criteria_board_version"),
        db.Index("ix_gov_criteria_board_status", "board_id", "status"),
        db.Index(
            "uq_gov_criteria_one_published", "board_id", unique=True,
            postgresql_where=db.text("status = 'published'"),
            sqlite_where=db.text("status = 'published'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer,
        db.ForeignKey("governance_boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_no = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=VERSION_DRAFT,
        comment="draft | published | retired",
    )
    criteria = db.Column(db.JSON, nullable=False, default=list)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    published_by_oid = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_by_oid = db.Column(db.String(100), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "version_no": self.version_no,
            "status": self.status,
            "criteria": list(self.criteria or []),
            "published_at": _iso(self.published_at),
            "published_by_oid": self.published_by_oid,
            "created_at": _iso(self.created_at),
            "created_by_oid": self.created_by_oid,
        }

    def __repr__(self):
        return f"<GovernanceCriteriaVersion board={self.board_id} v{self.version_no} {self.status}>"


class GovernanceReview(db.Model):
    """
    One review round of a submission.

    ``criteria_snapshot`` and ``policy_snapshot`` freeze the published
    criteria and quorum policy at the moment the review started.
    """

    __tablename__ = "governance_reviews"
    __table_args__ = (
        db.UniqueConstraint("submission_id", "review_round", name="uq_gov_review_round"),
        db.Index("ix_gov_review_submission_status", "submission_id", "status"),
        db.Index(
            "uq_gov_review_one_open", "submission_id", unique=True,
            postgresql_where=db.text("status = 'in-review'"),
            sqlite_where=db.text("status = 'in-review'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer,
        db.ForeignKey("intake_submissions.id", ondelete="CASCADE"),
        nullable=False,
    )
    board_id = db.Column(
        db.Integer,
        db.ForeignKey("governance_boards.id", ondelete="RESTRICT"),
        nullable=False,
    )
    review_round = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(20), nullable=False, default=REVIEW_IN_REVIEW,
        comment="in-review | decided | cancelled",
    )
    decision = db.Column(db.String(30), nullable=True)
    decision_reason = db.Column(db.Text, nullable=True)
    criteria_version_id = db.Column(
        db.Integer,
        db.ForeignKey("governance_criteria_versions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    criteria_snapshot = db.Column(db.JSON, nullable=False, default=list)
    policy_snapshot = db.Column(db.JSON, nullable=True)
    vote_deadline_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    started_by_oid = db.Column(db.String(100), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decided_by_oid = db.Column(db.String(100), nullable=True)

    board = db.relationship("GovernanceBoard", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "board_id": self.board_id,
            "board_name": self.board.name if self.board else None,
            "review_round": self.review_round,
            "status": self.status,
            "decision": self.decision,
            "decision_reason": self.decision_reason,
            "criteria_version_id": self.criteria_version_id,
            "policy_snapshot": self.policy_snapshot or {},
            "vote_deadline_at": _iso(self.vote_deadline_at),
            "started_at": _iso(self.started_at),
            "started_by_oid": self.started_by_oid,
            "decided_at": _iso(self.decided_at),
            "decided_by_oid": self.decided_by_oid,
        }


class GovernanceVote(db.Model):
    """A voter's 1..5 scores keyed by criterion id; re-submission overwrites."""

    __tablename__ = "governance_votes"
    __table_args__ = (
        db.UniqueConstraint("submission_id", "voter_user_oid", name="uq_gov_vote_submission_voter"),
    )

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer,
        db.ForeignKey("intake_submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    review_id = db.Column(
        db.Integer,
        db.ForeignKey("governance_reviews.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_user_oid = db.Column(db.String(100), nullable=False)
    scores = db.Column(db.JSON, nullable=False, default=dict)
    comment = db.Column(db.Text, nullable=True)
    conflict_declared = db.Column(db.Boolean, nullable=False, default=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "review_id": self.review_id,
            "voter_user_oid": self.voter_user_oid,
            "scores": dict(self.scores or {}),
            "comment": self.comment,
            "conflict_declared": bool(self.conflict_declared),
            "submitted_at": _iso(self.submitted_at),
            "updated_at": _iso(self.updated_at),
        }
