"""
Voting: one vote per (submission, voter), overwrite on re-submission,
eligibility from board membership and score validation against the
review's criteria snapshot.
"""

import pytest

from atlas.core.exceptions import ConflictError, ForbiddenError, ValidationError
from atlas.models import db
from atlas.models.governance import GovernanceCriteriaVersion, GovernanceVote
from atlas.models.intake import IntakeSubmission
from atlas.services import board_service, criteria_service, review_service

MEMBER = "governance_member"
CHAIR = "governance_chair"


def _vote_url(sid):
    return f"/api/v1/intake/submissions/{sid}/governance/votes"


class TestSubmitVote:
    def test_first_vote_creates(self, client, headers, governed_review):
        sid = governed_review["submission_id"]
        res = client.post(_vote_url(sid), json={
            "scores": {"alignment": 5, "feasibility": 2},
            "comment": "  Strong alignment  ",
        }, headers=headers("u-m1", MEMBER))
        assert res.status_code == 200
        body = res.get_json()
        assert body["action"] == "create"
        assert body["vote_count"] == 1
        assert body["priority_score"] == 3.8
        assert body["review_id"] == governed_review["review_id"]
        assert body["vote"]["scores"] == {"alignment": 5, "feasibility": 2}
        assert body["vote"]["comment"] == "Strong alignment"

        db.session.expire_all()
        assert db.session.get(IntakeSubmission, sid).priority_score == 3.8

    def test_revote_overwrites_single_row(self, client, headers, governed_review):
        sid = governed_review["submission_id"]
        h = headers("u-m1", MEMBER)
        client.post(_vote_url(sid), json={"scores": {"alignment": 5, "feasibility": 2}}, headers=h)
        res = client.post(_vote_url(sid), json={
            "scores": {"alignment": 1, "feasibility": 1},
            "conflictDeclared": True,
        }, headers=h)
        body = res.get_json()
        assert body["action"] == "update"
        assert body["vote_count"] == 1
        assert body["priority_score"] == 1.0
        assert body["vote"]["conflict_declared"] is True
        assert body["vote"]["updated_at"] is not None

        votes = GovernanceVote.query.filter_by(submission_id=sid, voter_user_oid="u-m1").all()
        assert len(votes) == 1
        assert votes[0].scores == {"alignment": 1, "feasibility": 1}

    def test_priority_is_mean_across_voters(self, governed_review):
        sid = governed_review["submission_id"]
        review_service.submit_vote(sid, "u-m1", {"alignment": 5, "feasibility": 2})
        result = review_service.submit_vote(sid, "u-m2", {"alignment": 3, "feasibility": 1})
        assert result["vote_count"] == 2
        assert result["priority_score"] == 3.0

    def test_unknown_score_keys_dropped(self, governed_review):
        result = review_service.submit_vote(
            governed_review["submission_id"], "u-m1",
            {"alignment": 4, "feasibility": 4, "smuggled": 5},
        )
        assert result["vote"]["scores"] == {"alignment": 4, "feasibility": 4}


class TestVoteRejections:
    def test_non_member_forbidden(self, client, headers, governed_review):
        res = client.post(_vote_url(governed_review["submission_id"]),
                          json={"scores": {"alignment": 3, "feasibility": 3}},
                          headers=headers("u-outsider", MEMBER))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_role_without_vote_permission_forbidden(self, client, headers, governed_review):
        res = client.post(_vote_url(governed_review["submission_id"]),
                          json={"scores": {"alignment": 3, "feasibility": 3}},
                          headers=headers("u-m1", "intake_manager"))
        assert res.status_code == 403
        assert set(res.get_json()["required_any"]) == {"can_vote_governance", "can_decide_governance"}

    def test_missing_scores_rejected(self, client, headers, governed_review):
        res = client.post(_vote_url(governed_review["submission_id"]),
                          json={"scores": {"alignment": 3}}, headers=headers("u-m1", MEMBER))
        assert res.status_code == 400
        assert res.get_json()["details"]["missing"] == ["feasibility"]
        assert GovernanceVote.query.count() == 0

    @pytest.mark.parametrize("value", [0, 6, 2.5, "high", None])
    def test_invalid_score_values(self, governed_review, value):
        with pytest.raises(ValidationError):
            review_service.submit_vote(
                governed_review["submission_id"], "u-m1", {"alignment": value, "feasibility": 3},
            )

    def test_scores_must_be_object(self, governed_review):
        with pytest.raises(ValidationError):
            review_service.submit_vote(governed_review["submission_id"], "u-m1", None)

    def test_deactivated_member_loses_vote(self, governed_review):
        board_service.upsert_membership(governed_review["board_id"], "u-m2", is_active=False)
        with pytest.raises(ForbiddenError):
            review_service.submit_vote(
                governed_review["submission_id"], "u-m2", {"alignment": 3, "feasibility": 3},
            )

    def test_republished_criteria_keep_review_open(self, governed_review):
        board_id = governed_review["board_id"]
        sid = governed_review["submission_id"]
        review_service.submit_vote(sid, "u-m1", {"alignment": 4, "feasibility": 4})
        draft = criteria_service.create_draft(board_id, [
            {"id": "alignment", "name": "Strategic alignment", "weight": 50},
            {"id": "feasibility", "name": "Feasibility", "weight": 50},
        ], "u-admin")
        criteria_service.publish(board_id, draft.id, "u-admin")

        result = review_service.submit_vote(sid, "u-m2", {"alignment": 5, "feasibility": 2})
        assert result["vote_count"] == 2
        # still weighted 60 / 40 from the review's snapshot: mean of 4.0 and 3.8
        assert result["priority_score"] == 3.9

    def test_scores_checked_against_review_snapshot(self, governed_review):
        board_id = governed_review["board_id"]
        sid = governed_review["submission_id"]
        draft = criteria_service.create_draft(board_id, [{"name": "Only", "weight": 100}], "u-admin")
        criteria_service.publish(board_id, draft.id, "u-admin")

        with pytest.raises(ValidationError):
            review_service.submit_vote(sid, "u-m1", {"only": 3})
        result = review_service.submit_vote(sid, "u-m1", {"alignment": 3, "feasibility": 3})
        assert result["action"] == "create"

    def test_vote_needs_a_published_version(self, governed_review):
        GovernanceCriteriaVersion.query.filter_by(
            board_id=governed_review["board_id"], status="published",
        ).update({"status": "retired"})
        db.session.commit()
        with pytest.raises(ConflictError):
            review_service.submit_vote(
                governed_review["submission_id"], "u-m1", {"alignment": 3, "feasibility": 3},
            )
        assert GovernanceVote.query.count() == 0

    def test_vote_on_not_started_conflicts(self, client, headers, make_board, make_form, make_submission):
        sub = make_submission(make_form(board=make_board()))
        res = client.post(_vote_url(sub.id), json={"scores": {"alignment": 3, "feasibility": 3}},
                          headers=headers("u-m1", MEMBER))
        assert res.status_code == 409

    def test_unknown_submission_404(self, client, headers, governed_review):
        res = client.post(_vote_url(999999), json={"scores": {}}, headers=headers("u-m1", MEMBER))
        assert res.status_code == 404


class TestGovernanceDetails:
    def _details(self, client, headers, sid, oid, *roles):
        return client.get(f"/api/v1/intake/submissions/{sid}/governance", headers=headers(oid, *roles))

    def test_member_view(self, client, headers, governed_review):
        sid = governed_review["submission_id"]
        review_service.submit_vote(sid, "u-m1", {"alignment": 5, "feasibility": 2}, conflict_declared=True)

        res = self._details(client, headers, sid, "u-m1", MEMBER)
        assert res.status_code == 200
        body = res.get_json()
        review = body["review"]
        assert [c["id"] for c in review["criteria"]] == ["alignment", "feasibility"]
        assert [p["user_oid"] for p in review["participants"]] == ["u-chair", "u-m1", "u-m2"]
        assert review["participants"][1]["has_voted"] is True
        assert review["score_summary"]["vote_count"] == 1
        assert review["score_summary"]["eligible_voter_count"] == 3
        assert review["score_summary"]["required_votes"] == 2
        assert review["score_summary"]["conflict_declared_count"] == 1
        assert body["viewer"] == {
            "can_vote": True,
            "can_decide": False,
            "has_voted": True,
            "decision_advisory": True,
        }

    def test_chair_view(self, client, headers, governed_review):
        body = self._details(client, headers, governed_review["submission_id"], "u-chair", CHAIR).get_json()
        assert body["viewer"]["can_decide"] is True
        assert body["viewer"]["decision_advisory"] is False
        assert body["viewer"]["has_voted"] is False

    def test_submitter_sees_own_submission(self, client, headers, governed_review):
        res = self._details(client, headers, governed_review["submission_id"], "u-submitter")
        assert res.status_code == 200
        assert res.get_json()["viewer"]["can_vote"] is False

    def test_stranger_forbidden(self, client, headers, governed_review):
        res = self._details(client, headers, governed_review["submission_id"], "u-stranger")
        assert res.status_code == 403

    def test_no_review_yet(self, client, headers, make_board, make_form, make_submission):
        sub = make_submission(make_form(board=make_board()))
        body = self._details(client, headers, sub.id, "u-m1", MEMBER).get_json()
        assert body["review"] is None
        assert body["submission"]["governance_status"] == "not-started"
