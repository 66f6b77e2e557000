"""
End-to-end governance flow through the HTTP API:

    settings → board → members → criteria → submission → start → votes
    → decide (approved-now) → convert

plus the audit trail it leaves behind and audit-failure isolation.
"""

from atlas.models import db
from atlas.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, AuditLog
from atlas.models.intake import Project

ADMIN = "governance_admin"
CHAIR = "governance_chair"
MEMBER = "governance_member"
INTAKE = "intake_manager"


def _ok(res, status=200):
    assert res.status_code == status, res.get_json()
    return res.get_json()


def _configure_board(client, h_admin):
    _ok(client.put("/api/v1/governance/settings", json={
        "governanceEnabled": True, "quorumPercent": 50, "quorumMinCount": 2,
    }, headers=h_admin))

    board = _ok(client.post("/api/v1/governance/boards", json={"name": "Clinical Digital Board"},
                            headers=h_admin), 201)
    members_url = f"/api/v1/governance/boards/{board['id']}/members"
    _ok(client.post(members_url, json={"userOid": "u-chair", "role": "chair"}, headers=h_admin))
    _ok(client.post(members_url, json={"userOid": "u-m1"}, headers=h_admin))
    _ok(client.post(members_url, json={"userOid": "u-m2"}, headers=h_admin))

    versions_url = f"/api/v1/governance/boards/{board['id']}/criteria/versions"
    draft = _ok(client.post(versions_url, json={"criteria": [
        {"name": "Patient impact", "weight": 50},
        {"name": "Cost", "weight": 30},
        {"name": "Risk", "weight": 20},
    ]}, headers=h_admin), 201)
    published = _ok(client.post(f"{versions_url}/{draft['id']}/publish", headers=h_admin))
    assert published["status"] == "published"
    return board


class TestEndToEnd:
    def test_full_flow_to_project(self, client, headers, make_form):
        h_admin = headers("u-admin", ADMIN)
        board = _configure_board(client, h_admin)
        form = make_form(board=None, mode="required")
        form.governance_board_id = board["id"]
        db.session.commit()

        sub = _ok(client.post(f"/api/v1/intake/forms/{form.id}/submissions",
                              json={"formData": {"summary": "Virtual wards"}},
                              headers=headers("u-submitter", name="Sam Submitter")), 201)
        assert sub["governance_status"] == "not-started"
        sid = sub["id"]
        gov = f"/api/v1/intake/submissions/{sid}/governance"

        review = _ok(client.post(f"{gov}/start", headers=headers("u-intake", INTAKE)), 201)
        assert review["policy_snapshot"]["quorum_min_count"] == 2

        _ok(client.post(f"{gov}/votes", json={
            "scores": {"patient-impact": 5, "cost": 4, "risk": 3},
        }, headers=headers("u-m1", MEMBER)))
        vote = _ok(client.post(f"{gov}/votes", json={
            "scores": {"patient-impact": 4, "cost": 2, "risk": 2},
            "comment": "Costs look optimistic",
        }, headers=headers("u-m2", MEMBER)))
        # (2.5 + 1.2 + 0.6) and (2.0 + 0.6 + 0.4) → mean of 4.3 and 3.0
        assert vote["priority_score"] == 3.65

        queue = _ok(client.get(f"/api/v1/governance/queue?boardId={board['id']}", headers=h_admin))
        assert [item["id"] for item in queue["items"]] == [sid]

        details = _ok(client.get(gov, headers=headers("u-chair", CHAIR)))
        assert details["review"]["score_summary"]["quorum_met"] is True
        assert details["viewer"]["can_decide"] is True

        blocked = client.post(f"/api/v1/intake/submissions/{sid}/convert",
                              json={"project": {"title": "Virtual wards"}}, headers=headers("u-intake", INTAKE))
        assert blocked.status_code == 409

        decided = _ok(client.post(f"{gov}/decide", json={
            "decision": "approved-now", "reason": "Fund this quarter",
        }, headers=headers("u-chair", CHAIR)))
        assert decided["submission"]["governance_reason"] == "Fund this quarter"

        converted = _ok(client.post(f"/api/v1/intake/submissions/{sid}/convert",
                                    json={"project": {"title": "Virtual wards"}},
                                    headers=headers("u-intake", INTAKE)), 201)
        assert converted["submission"]["status"] == "approved"
        assert Project.query.filter_by(source_submission_id=sid).count() == 1

        actions = [a.action for a in AuditLog.query.order_by(AuditLog.id).all()]
        assert actions == [
            "governance.settings.update",
            "governance.board.create",
            "governance.membership.upsert",
            "governance.membership.upsert",
            "governance.membership.upsert",
            "governance.criteria.create",
            "governance.criteria.publish",
            "intake.submission.create",
            "governance.review.start",
            "governance.review.vote",
            "governance.review.vote",
            "governance.review.decide",
            "intake.submission.convert",
        ]
        assert set(actions) <= AUDIT_ACTIONS
        assert {a.entity_type for a in AuditLog.query.all()} <= AUDIT_ENTITY_TYPES

        decide_entry = AuditLog.query.filter_by(action="governance.review.decide").one()
        assert decide_entry.actor_oid == "u-chair"
        assert decide_entry.entity_id == str(sid)
        assert decide_entry.diff["before"]["governance_status"] == "in-review"
        assert decide_entry.diff["after"]["governance_decision"] == "approved-now"


class TestAuditIsolation:
    def test_audit_failure_does_not_fail_the_action(self, client, headers, governed_review, monkeypatch):
        from atlas.services import audit_service

        def _broken(**kwargs):
            raise RuntimeError("audit store offline")

        monkeypatch.setattr(audit_service, "write_audit", _broken)
        sid = governed_review["submission_id"]
        before = AuditLog.query.count()

        res = client.post(f"/api/v1/intake/submissions/{sid}/governance/votes",
                          json={"scores": {"alignment": 4, "feasibility": 4}},
                          headers=headers("u-m1", MEMBER))
        assert res.status_code == 200
        assert res.get_json()["vote_count"] == 1
        assert AuditLog.query.count() == before
