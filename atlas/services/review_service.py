"""
Review/Voting Engine — governance state machine for intake submissions.

    skipped ◀──skip── not-started ──start──▶ in-review ──decide──▶ decided
       │                   ▲                    │
       └──────apply────────┘        skip (cancels the open review)

Transitions:
    apply   any status except decided, submission not closed;
            skipped → not-started, other statuses unchanged
    skip    any status except decided; cancels the open review round
    start   not-started only; needs a mapped board with a published criteria
            version and at least one eligible member; opens a new review round
    vote    in-review only; caller must be an eligible voter
    decide  in-review only; caller must be an eligible chair; quorum enforced
            when the review's policy requires it

Every status change is a compare-and-swap:
    UPDATE intake_submissions SET ... WHERE id = :id AND governance_status = :expected
Zero affected rows means a concurrent writer won; the caller gets ConflictError
and nothing is written.

Usage:
    from atlas.services import review_service

    review_service.start_review(submission_id, actor_oid="u-admin")
    review_service.submit_vote(submission_id, "u-1", {"alignment": 5, "cost": 3})
    review_service.decide(submission_id, "approved-now", "Strong case", "u-chair")
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import undefer_group

from atlas.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from atlas.models import db
from atlas.models.governance import (
    GOVERNANCE_TRANSITIONS,
    REVIEW_CANCELLED,
    REVIEW_DECIDED,
    REVIEW_IN_REVIEW,
    GovernanceBoard,
    GovernanceReview,
    GovernanceVote,
    as_utc,
)
from atlas.models.intake import GOVERNANCE_DECISIONS, GOVERNANCE_GROUP, IntakeSubmission
from atlas.services import board_service, criteria_service, scoring, settings_service
from atlas.services.audit_service import emit_audit_event
from atlas.services.permission_service import Principal, has_any_permission, is_admin

logger = logging.getLogger(__name__)

REASON_APPLIED = "Marked for governance review by intake manager."
REASON_SKIPPED = "Governance skipped by intake manager."

DETAIL_VIEW_PERMISSIONS = (
    "can_view_governance_queue",
    "can_manage_governance",
    "can_vote_governance",
    "can_decide_governance",
    "can_manage_intake",
)


# ── Private helpers ────────────────────────────────────────────────────────────


def _score_precision() -> int:
    if has_app_context():
        return int(current_app.config.get("GOVERNANCE_SCORE_PRECISION", 2))
    return 2


def _get_submission(submission_id: int) -> IntakeSubmission:
    submission = db.session.get(
        IntakeSubmission, submission_id, options=[undefer_group(GOVERNANCE_GROUP)],
    )
    if not submission:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    return submission


def _clean_reason(reason, default: str | None) -> str | None:
    if isinstance(reason, str) and reason.strip():
        return reason.strip()
    return default


def _assert_transition(submission: IntakeSubmission, action: str) -> None:
    """Raise ConflictError when *action* is not allowed from the current status."""
    rule = GOVERNANCE_TRANSITIONS[action]
    current = submission.governance_status
    if current not in rule["from"]:
        raise ConflictError(
            f"Cannot '{action}' governance from status '{current}'",
            details={"governanceStatus": current, "allowedFrom": rule["from"]},
        )


def _cas_update(submission_id: int, expected_status: str, **values) -> None:
    """Compare-and-swap the submission's governance columns on *expected_status*."""
    result = db.session.execute(
        update(IntakeSubmission)
        .where(
            IntakeSubmission.id == submission_id,
            IntakeSubmission.governance_status == expected_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError(
            "Submission governance state changed concurrently; reload and retry",
            details={"expectedStatus": expected_status},
        )


def latest_review(submission_id: int) -> GovernanceReview | None:
    stmt = (
        select(GovernanceReview)
        .where(GovernanceReview.submission_id == submission_id)
        .order_by(GovernanceReview.review_round.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalars().first()


def open_review(submission_id: int) -> GovernanceReview | None:
    stmt = (
        select(GovernanceReview)
        .where(
            GovernanceReview.submission_id == submission_id,
            GovernanceReview.status == REVIEW_IN_REVIEW,
        )
        .order_by(GovernanceReview.review_round.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalars().first()


def _review_votes(review_id: int) -> list[GovernanceVote]:
    stmt = (
        select(GovernanceVote)
        .where(GovernanceVote.review_id == review_id)
        .order_by(GovernanceVote.submitted_at.asc(), GovernanceVote.id.asc())
    )
    return list(db.session.execute(stmt).scalars().all())


def _review_policy(review: GovernanceReview) -> dict:
    return review.policy_snapshot or settings_service.quorum_policy()


def build_score_summary(review: GovernanceReview, votes: list[GovernanceVote] | None = None) -> dict:
    """Score, participation, quorum and deadline status of a review."""
    if votes is None:
        votes = _review_votes(review.id)
    eligible = board_service.eligible_members(review.board_id)
    return scoring.score_summary(
        votes=votes,
        criteria=review.criteria_snapshot or [],
        eligible_count=len(eligible),
        policy=_review_policy(review),
        vote_deadline_at=as_utc(review.vote_deadline_at),
        precision=_score_precision(),
    )


# ═════════════════════════════════════════════════════════════════════════════
# apply / skip
# ═════════════════════════════════════════════════════════════════════════════


def apply_governance(submission_id: int, actor_oid: str | None, reason=None) -> IntakeSubmission:
    """Mark a submission as requiring governance."""
    submission = _get_submission(submission_id)
    if submission.is_closed:
        raise ConflictError(
            "Cannot apply governance to a closed submission",
            details={"status": submission.status},
        )
    if submission.governance_status == "decided":
        raise ConflictError("Governance already decided for this submission")
    _assert_transition(submission, "apply")

    before = submission.governance_dict()
    current = submission.governance_status
    new_status = "not-started" if current == "skipped" else current
    reason_text = _clean_reason(reason, REASON_APPLIED)

    _cas_update(
        submission.id, current,
        governance_required=True,
        governance_status=new_status,
        governance_reason=reason_text,
    )
    db.session.commit()
    db.session.refresh(submission)

    logger.info(
        "Governance applied to submission %s", submission.id,
        extra={"submission_id": submission.id, "actor_oid": actor_oid,
               "from_status": current, "to_status": new_status},
    )
    emit_audit_event("governance.review.apply", "intake_submission", submission.id, actor_oid,
                     before=before, after=submission.governance_dict())
    return submission


def skip_governance(submission_id: int, actor_oid: str | None, reason=None) -> IntakeSubmission:
    """Take a submission off the governance path, cancelling any open review."""
    submission = _get_submission(submission_id)
    if submission.governance_status == "decided":
        raise ConflictError("Cannot skip governance after decision")
    _assert_transition(submission, "skip")

    before = submission.governance_dict()
    current = submission.governance_status
    reason_text = _clean_reason(reason, REASON_SKIPPED)

    review = open_review(submission.id) if current == "in-review" else None
    if review is not None:
        review.status = REVIEW_CANCELLED
    _cas_update(
        submission.id, current,
        governance_required=False,
        governance_status="skipped",
        governance_reason=reason_text,
    )
    db.session.commit()
    db.session.refresh(submission)

    logger.info(
        "Governance skipped for submission %s", submission.id,
        extra={"submission_id": submission.id, "actor_oid": actor_oid,
               "from_status": current, "to_status": "skipped",
               "review_id": review.id if review else None},
    )
    emit_audit_event("governance.review.skip", "intake_submission", submission.id, actor_oid,
                     before=before, after=submission.governance_dict())
    return submission


# ═════════════════════════════════════════════════════════════════════════════
# start
# ═════════════════════════════════════════════════════════════════════════════


def start_review(submission_id: int, actor_oid: str | None) -> GovernanceReview:
    """Open the next review round against the form's board."""
    submission = _get_submission(submission_id)
    _assert_transition(submission, "start")

    if not submission.governance_required:
        raise ConflictError("Submission is not marked for governance. Apply governance first.")
    if submission.is_closed:
        raise ConflictError("Cannot start governance for a closed submission.")

    board_id = submission.form.governance_board_id if submission.form else None
    if not board_id:
        raise ConflictError("Intake form is not mapped to a governance board.")
    board = db.session.get(GovernanceBoard, board_id)
    if board is None or not board.is_active:
        raise ConflictError("Governance board is not active.")

    version = criteria_service.get_published_version(board_id)
    if version is None:
        raise ConflictError("No published criteria version available for this board.")
    criteria_snapshot = list(version.criteria or [])
    if not scoring.enabled_criteria(criteria_snapshot):
        raise ConflictError("Published criteria version has no active criteria.")

    now = datetime.now(UTC)
    members = board_service.eligible_members(board_id, at=now)
    if not members:
        raise ConflictError("No active governance members on this board.")

    policy = settings_service.quorum_policy()
    window = policy.get("vote_window_days")
    deadline = now + timedelta(days=window) if window else None

    next_round = (db.session.execute(
        select(func.max(GovernanceReview.review_round))
        .where(GovernanceReview.submission_id == submission.id)
    ).scalar() or 0) + 1

    before = submission.governance_dict()
    try:
        # Votes are unique per (submission, voter); cancelled rounds make way for the new one
        cancelled_ids = select(GovernanceReview.id).where(
            GovernanceReview.submission_id == submission.id,
            GovernanceReview.status == REVIEW_CANCELLED,
        )
        db.session.execute(
            delete(GovernanceVote)
            .where(
                GovernanceVote.submission_id == submission.id,
                GovernanceVote.review_id.in_(cancelled_ids),
            )
            .execution_options(synchronize_session=False)
        )

        review = GovernanceReview(
            submission_id=submission.id,
            board_id=board_id,
            review_round=next_round,
            status=REVIEW_IN_REVIEW,
            criteria_version_id=version.id,
            criteria_snapshot=criteria_snapshot,
            policy_snapshot=policy,
            vote_deadline_at=deadline,
            started_at=now,
            started_by_oid=actor_oid,
        )
        db.session.add(review)
        db.session.flush()

        _cas_update(
            submission.id, "not-started",
            governance_status="in-review",
            governance_decision=None,
            priority_score=None,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A review round was started concurrently; reload and retry") from None

    db.session.refresh(submission)
    logger.info(
        "Governance review round %s started for submission %s", next_round, submission.id,
        extra={"submission_id": submission.id, "review_id": review.id, "board_id": board_id,
               "version_id": version.id, "actor_oid": actor_oid,
               "from_status": "not-started", "to_status": "in-review"},
    )
    emit_audit_event(
        "governance.review.start", "intake_submission", submission.id, actor_oid,
        before=before,
        after={
            **submission.governance_dict(),
            "review_id": review.id,
            "review_round": next_round,
            "board_id": board_id,
            "criteria_version_id": version.id,
            "criteria_version_no": version.version_no,
            "participant_count": len(members),
        },
    )
    return review


# ═════════════════════════════════════════════════════════════════════════════
# vote
# ═════════════════════════════════════════════════════════════════════════════


def _upsert_vote(submission_id: int, review_id: int, voter_oid: str,
                 scores: dict, comment, conflict_declared: bool) -> tuple[GovernanceVote, str]:
    def _find():
        return db.session.execute(
            select(GovernanceVote).where(
                GovernanceVote.submission_id == submission_id,
                GovernanceVote.voter_user_oid == voter_oid,
            )
        ).scalars().first()

    def _overwrite(vote):
        vote.review_id = review_id
        vote.scores = scores
        vote.comment = comment
        vote.conflict_declared = conflict_declared
        vote.updated_at = datetime.now(UTC)
        return vote

    existing = _find()
    if existing is not None:
        return _overwrite(existing), "update"

    vote = GovernanceVote(
        submission_id=submission_id,
        review_id=review_id,
        voter_user_oid=voter_oid,
        scores=scores,
        comment=comment,
        conflict_declared=conflict_declared,
    )
    try:
        with db.session.begin_nested():
            db.session.add(vote)
            db.session.flush()
    except IntegrityError:
        # Lost the insert race to a concurrent request from the same voter
        existing = _find()
        if existing is None:
            raise
        return _overwrite(existing), "update"
    return vote, "create"


def submit_vote(
    submission_id: int,
    voter_oid: str,
    scores,
    comment=None,
    conflict_declared: bool = False,
) -> dict:
    """Create or overwrite the caller's vote and refresh the priority score."""
    submission = _get_submission(submission_id)
    _assert_transition(submission, "vote")
    review = open_review(submission.id)
    if review is None:
        raise ConflictError("Governance review is not open for voting.")

    if not board_service.is_eligible_voter(review.board_id, voter_oid):
        logger.warning(
            "Vote denied: %s is not an eligible voter on board %s", voter_oid, review.board_id,
            extra={"submission_id": submission.id, "board_id": review.board_id},
        )
        raise ForbiddenError("User is not an eligible voter for this review.")

    if criteria_service.get_published_version(review.board_id) is None:
        raise ConflictError("Board has no published criteria version.")

    # Scores always validate against the criteria the review started with;
    # a later publish does not affect rounds already open.
    criteria = review.criteria_snapshot or []
    cleaned = scoring.validate_scores(scores, criteria)
    comment_text = comment.strip() if isinstance(comment, str) and comment.strip() else None

    vote, action = _upsert_vote(
        submission.id, review.id, voter_oid, cleaned, comment_text, conflict_declared is True,
    )
    db.session.flush()

    votes = _review_votes(review.id)
    priority = scoring.priority_score([v.scores or {} for v in votes], criteria, _score_precision())
    # Voting freezes the moment a decision lands
    _cas_update(submission.id, "in-review", priority_score=priority)
    db.session.commit()

    logger.info(
        "Governance vote %sd submission=%s voter=%s", action, submission.id, voter_oid,
        extra={"submission_id": submission.id, "review_id": review.id, "actor_oid": voter_oid},
    )
    emit_audit_event(
        "governance.review.vote", "intake_submission", submission.id, voter_oid,
        after={
            "review_id": review.id,
            "vote_id": vote.id,
            "action": action,
            "conflict_declared": vote.conflict_declared,
            "priority_score": priority,
            "vote_count": len(votes),
        },
    )
    return {
        "review_id": review.id,
        "vote": vote.to_dict(),
        "action": action,
        "priority_score": priority,
        "vote_count": len(votes),
    }


# ═════════════════════════════════════════════════════════════════════════════
# decide
# ═════════════════════════════════════════════════════════════════════════════


def decide(submission_id: int, decision, reason, actor_oid: str | None) -> dict:
    """Record the chair's decision and close the review."""
    decision = decision.strip() if isinstance(decision, str) else ""
    if decision not in GOVERNANCE_DECISIONS:
        raise ValidationError(
            f"decision must be one of: {', '.join(GOVERNANCE_DECISIONS)}",
            details={"allowed": list(GOVERNANCE_DECISIONS)},
        )

    submission = _get_submission(submission_id)
    _assert_transition(submission, "decide")
    review = open_review(submission.id)
    if review is None:
        raise ConflictError("Governance review is not open.")

    if not board_service.is_eligible_chair(review.board_id, actor_oid):
        if board_service.is_eligible_voter(review.board_id, actor_oid):
            logger.warning(
                "Decide denied: %s is a member but not chair of board %s", actor_oid, review.board_id,
                extra={"submission_id": submission.id, "board_id": review.board_id},
            )
            raise ForbiddenError("Only the board chair can record a decision.", advisory=True)
        logger.warning(
            "Decide denied: %s is not on board %s", actor_oid, review.board_id,
            extra={"submission_id": submission.id, "board_id": review.board_id},
        )
        raise ForbiddenError("User is not an eligible chair for this review.")

    votes = _review_votes(review.id)
    summary = build_score_summary(review, votes)
    if summary["decision_requires_quorum"] and not summary["quorum_met"]:
        raise ConflictError(
            f"Quorum not met: {summary['vote_count']} of {summary['required_votes']} required votes",
            details={"scoreSummary": summary},
        )

    reason_text = _clean_reason(reason, None)
    before = submission.governance_dict()
    now = datetime.now(UTC)

    result = db.session.execute(
        update(GovernanceReview)
        .where(GovernanceReview.id == review.id, GovernanceReview.status == REVIEW_IN_REVIEW)
        .values(
            status=REVIEW_DECIDED,
            decision=decision,
            decision_reason=reason_text,
            decided_at=now,
            decided_by_oid=actor_oid,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError("Governance review changed concurrently; reload and retry")

    values = {
        "governance_status": "decided",
        "governance_decision": decision,
        "governance_reason": reason_text,
    }
    if summary["priority_score"] is not None:
        values["priority_score"] = summary["priority_score"]
    _cas_update(submission.id, "in-review", **values)
    db.session.commit()

    db.session.refresh(submission)
    db.session.refresh(review)
    logger.info(
        "Governance decision %s recorded for submission %s", decision, submission.id,
        extra={"submission_id": submission.id, "review_id": review.id, "actor_oid": actor_oid,
               "decision": decision, "from_status": "in-review", "to_status": "decided"},
    )
    emit_audit_event(
        "governance.review.decide", "intake_submission", submission.id, actor_oid,
        before=before,
        after={**submission.governance_dict(), "review_id": review.id,
               "vote_count": summary["vote_count"]},
    )
    return {
        "review": review.to_dict(),
        "submission": submission.to_dict(),
        "decision": decision,
        "score_summary": summary,
    }


# ═════════════════════════════════════════════════════════════════════════════
# details
# ═════════════════════════════════════════════════════════════════════════════


def _can_view(submission: IntakeSubmission, principal: Principal | None) -> bool:
    if principal is None:
        return False
    if is_admin(principal) or has_any_permission(principal, DETAIL_VIEW_PERMISSIONS):
        return True
    return bool(submission.submitter_oid) and submission.submitter_oid == principal.oid


def get_details(submission_id: int, principal: Principal | None) -> dict:
    """Submission plus its latest review round, with viewer capability flags."""
    submission = _get_submission(submission_id)
    if not _can_view(submission, principal):
        raise ForbiddenError("Not allowed to view governance for this submission.")

    viewer_oid = principal.oid if principal else None
    review = latest_review(submission.id)
    if review is None:
        return {
            "submission": submission.to_dict(),
            "review": None,
            "viewer": {
                "can_vote": False,
                "can_decide": False,
                "has_voted": False,
                "decision_advisory": False,
            },
        }

    votes = _review_votes(review.id)
    summary = build_score_summary(review, votes)
    members = board_service.eligible_members(review.board_id)
    voted = {v.voter_user_oid for v in votes}

    participants = [
        {
            "user_oid": m.user_oid,
            "role": m.role,
            "is_eligible_voter": True,
            "is_chair": m.role == "chair",
            "has_voted": m.user_oid in voted,
        }
        for m in sorted(members, key=lambda m: (m.role != "chair", m.user_oid))
    ]
    member_oids = {m.user_oid for m in members}
    participants.extend(
        {
            "user_oid": v.voter_user_oid,
            "role": None,
            "is_eligible_voter": False,
            "is_chair": False,
            "has_voted": True,
        }
        for v in votes if v.voter_user_oid not in member_oids
    )

    is_open = review.status == REVIEW_IN_REVIEW and submission.governance_status == "in-review"
    is_voter = viewer_oid in member_oids
    is_chair = any(m.user_oid == viewer_oid and m.role == "chair" for m in members)

    review_data = review.to_dict()
    review_data["criteria"] = sorted(
        review.criteria_snapshot or [], key=lambda c: c.get("sortOrder") or 0,
    )
    review_data["participants"] = participants
    review_data["votes"] = [v.to_dict() for v in votes]
    review_data["score_summary"] = summary

    return {
        "submission": submission.to_dict(),
        "review": review_data,
        "viewer": {
            "can_vote": is_open and is_voter,
            "can_decide": is_open and is_chair,
            "has_voted": viewer_oid in voted,
            "decision_advisory": is_open and is_voter and not is_chair,
        },
    }
