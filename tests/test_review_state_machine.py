"""
Submission governance state machine.

    skipped ◀──skip── not-started ──start──▶ in-review ──decide──▶ decided

Covers every action against every status (valid → success, invalid → 409),
the start preconditions, review rounds and the closed-submission guards.
"""

import pytest

from atlas.core.exceptions import ConflictError
from atlas.models import db
from atlas.models.governance import GOVERNANCE_TRANSITIONS, GovernanceReview, GovernanceVote
from atlas.models.intake import GOVERNANCE_STATUSES, IntakeSubmission
from atlas.services import review_service

INTAKE = "intake_manager"
ADMIN = "governance_admin"


def _gov_url(sid, action=""):
    suffix = f"/{action}" if action else ""
    return f"/api/v1/intake/submissions/{sid}/governance{suffix}"


@pytest.fixture()
def ready_board(make_settings, make_board, add_member, publish_criteria, make_form):
    """A board that can host a review: chair + member, published criteria, mapped form."""
    make_settings(enabled=True)
    board = make_board()
    add_member(board, "u-chair", role="chair")
    add_member(board, "u-m1")
    publish_criteria(board)
    form = make_form(board=board)
    return board, form


class TestApplySkip:
    def test_apply_from_skipped(self, client, headers, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form, governance_status="skipped", governance_required=False)
        res = client.post(_gov_url(sub.id, "apply"), json={}, headers=headers("u-intake", INTAKE))
        assert res.status_code == 200
        body = res.get_json()
        assert body["governance_required"] is True
        assert body["governance_status"] == "not-started"
        assert body["governance_reason"] == review_service.REASON_APPLIED

    def test_apply_keeps_not_started_and_custom_reason(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form)
        result = review_service.apply_governance(sub.id, "u-intake", reason="  Budget over 1M  ")
        assert result.governance_status == "not-started"
        assert result.governance_reason == "Budget over 1M"

    def test_apply_rejected_for_closed_submission(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form, governance_status="skipped", governance_required=False, status="approved")
        with pytest.raises(ConflictError):
            review_service.apply_governance(sub.id, "u-intake")

    def test_skip_from_not_started(self, client, headers, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form)
        res = client.post(_gov_url(sub.id, "skip"), json={"reason": "Low value"},
                          headers=headers("u-intake", INTAKE))
        assert res.status_code == 200
        body = res.get_json()
        assert body["governance_required"] is False
        assert body["governance_status"] == "skipped"
        assert body["governance_reason"] == "Low value"

    def test_skip_cancels_open_review(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form)
        review = review_service.start_review(sub.id, "u-admin")
        review_service.skip_governance(sub.id, "u-intake")
        assert db.session.get(GovernanceReview, review.id).status == "cancelled"
        assert review_service.open_review(sub.id) is None

    def test_member_cannot_apply(self, client, headers, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form)
        res = client.post(_gov_url(sub.id, "apply"), json={}, headers=headers("u-m1", "governance_member"))
        assert res.status_code == 403
        assert set(res.get_json()["required_any"]) == {"can_manage_intake", "can_manage_governance"}


class TestStartPreconditions:
    def test_start_opens_round_one(self, client, headers, ready_board, make_submission):
        board, form = ready_board
        sub = make_submission(form)
        res = client.post(_gov_url(sub.id, "start"), headers=headers("u-admin", ADMIN))
        assert res.status_code == 201
        review = res.get_json()
        assert review["review_round"] == 1
        assert review["status"] == "in-review"
        assert review["board_id"] == board.id
        assert review["policy_snapshot"]["quorum_percent"] == 60
        assert review["vote_deadline_at"] is None

        db.session.expire_all()
        sub = db.session.get(IntakeSubmission, sub.id)
        assert sub.governance_status == "in-review"
        assert sub.priority_score is None

    def test_vote_window_sets_deadline(self, make_settings, make_board, add_member, publish_criteria,
                                       make_form, make_submission):
        make_settings(enabled=True, vote_window_days=5)
        board = make_board()
        add_member(board, "u-1")
        publish_criteria(board)
        sub = make_submission(make_form(board=board))
        review = review_service.start_review(sub.id, "u-admin")
        assert review.vote_deadline_at is not None
        assert review.policy_snapshot["vote_window_days"] == 5

    def test_requires_governance_flag(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form, governance_required=False)
        with pytest.raises(ConflictError, match="Apply governance first"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_open_submission(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form, status="rejected")
        with pytest.raises(ConflictError, match="closed"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_mapped_board(self, make_settings, make_form, make_submission):
        make_settings(enabled=True)
        sub = make_submission(make_form(board=None))
        with pytest.raises(ConflictError, match="not mapped"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_active_board(self, make_board, add_member, publish_criteria, make_form, make_submission):
        board = make_board(is_active=False)
        add_member(board, "u-1")
        publish_criteria(board)
        sub = make_submission(make_form(board=board))
        with pytest.raises(ConflictError, match="not active"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_published_criteria(self, make_board, add_member, make_form, make_submission):
        board = make_board()
        add_member(board, "u-1")
        sub = make_submission(make_form(board=board))
        with pytest.raises(ConflictError, match="No published criteria"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_enabled_criteria(self, make_board, add_member, publish_criteria, make_form, make_submission):
        board = make_board()
        add_member(board, "u-1")
        publish_criteria(board, criteria=[{"id": "x", "name": "X", "weight": 100, "enabled": False}])
        sub = make_submission(make_form(board=board))
        with pytest.raises(ConflictError, match="no active criteria"):
            review_service.start_review(sub.id, "u-admin")

    def test_requires_eligible_members(self, make_board, add_member, publish_criteria, make_form, make_submission):
        board = make_board()
        add_member(board, "u-1", is_active=False)
        publish_criteria(board)
        sub = make_submission(make_form(board=board))
        with pytest.raises(ConflictError, match="No active governance members"):
            review_service.start_review(sub.id, "u-admin")

    def test_precondition_failure_leaves_state_untouched(self, client, headers, make_board, make_form,
                                                         make_submission):
        board = make_board()
        sub = make_submission(make_form(board=board))
        res = client.post(_gov_url(sub.id, "start"), headers=headers("u-admin", ADMIN))
        assert res.status_code == 409
        db.session.expire_all()
        assert db.session.get(IntakeSubmission, sub.id).governance_status == "not-started"
        assert GovernanceReview.query.count() == 0


class TestReviewRounds:
    def test_second_round_after_skip_and_apply(self, ready_board, make_submission):
        _, form = ready_board
        sub = make_submission(form)
        first = review_service.start_review(sub.id, "u-admin")
        review_service.submit_vote(sub.id, "u-m1", {"alignment": 4, "feasibility": 4})

        review_service.skip_governance(sub.id, "u-intake")
        review_service.apply_governance(sub.id, "u-intake")
        second = review_service.start_review(sub.id, "u-admin")

        assert (first.review_round, second.review_round) == (1, 2)
        assert GovernanceVote.query.filter_by(submission_id=sub.id).count() == 0
        # the fresh round accepts the same voter again
        result = review_service.submit_vote(sub.id, "u-m1", {"alignment": 2, "feasibility": 2})
        assert result["action"] == "create"
        assert result["review_id"] == second.id


# ── Transition matrix ────────────────────────────────────────────────────

_ACTIONS = ("apply", "skip", "start", "vote", "decide")


def _matrix():
    cases = []
    for action in _ACTIONS:
        allowed = GOVERNANCE_TRANSITIONS[action]["from"]
        for status in GOVERNANCE_STATUSES:
            cases.append((action, status, status in allowed))
    return cases


def _setup_status(status, form, make_submission):
    """Bring a submission to *status* using the services where a review is needed."""
    if status in ("skipped", "not-started"):
        return make_submission(form, governance_status=status, governance_required=(status != "skipped"))
    sub = make_submission(form)
    review_service.start_review(sub.id, "u-admin")
    if status == "decided":
        review_service.submit_vote(sub.id, "u-m1", {"alignment": 4, "feasibility": 4})
        review_service.submit_vote(sub.id, "u-chair", {"alignment": 4, "feasibility": 4})
        review_service.decide(sub.id, "approved-backlog", None, "u-chair")
    return sub


def _run(action, sub_id):
    if action == "apply":
        return review_service.apply_governance(sub_id, "u-intake")
    if action == "skip":
        return review_service.skip_governance(sub_id, "u-intake")
    if action == "start":
        return review_service.start_review(sub_id, "u-admin")
    if action == "vote":
        return review_service.submit_vote(sub_id, "u-m1", {"alignment": 3, "feasibility": 3})
    return review_service.decide(sub_id, "needs-info", "More detail", "u-chair")


class TestTransitionMatrix:
    @pytest.mark.parametrize("action,status,allowed", _matrix())
    def test_transition(self, ready_board, make_submission, action, status, allowed):
        _, form = ready_board
        sub = _setup_status(status, form, make_submission)
        if allowed:
            if action == "decide":
                review_service.submit_vote(sub.id, "u-chair", {"alignment": 3, "feasibility": 3})
                review_service.submit_vote(sub.id, "u-m1", {"alignment": 3, "feasibility": 3})
            _run(action, sub.id)
        else:
            with pytest.raises(ConflictError):
                _run(action, sub.id)
            db.session.expire_all()
            assert db.session.get(IntakeSubmission, sub.id).governance_status == status

    def test_decided_is_terminal(self, ready_board, make_submission):
        _, form = ready_board
        sub = _setup_status("decided", form, make_submission)
        for action in _ACTIONS:
            with pytest.raises(ConflictError):
                _run(action, sub.id)
