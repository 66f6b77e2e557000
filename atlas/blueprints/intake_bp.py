"""
Intake Blueprint — submissions and their governance lifecycle.

Endpoints:
    POST   /api/v1/intake/forms/<fid>/submissions
           Body: { "form_data": {...} }
           Creates a submission with resolved governance defaults. Works
           without the governance schema (legacy skipped path).

    GET    /api/v1/intake/submissions/<sid>
    GET    /api/v1/intake/governance-queue                (alias of /governance/queue)
    GET    /api/v1/intake/submissions/<sid>/governance    (review details)

    POST   /api/v1/intake/submissions/<sid>/governance/apply   Body: { "reason"? }
    POST   /api/v1/intake/submissions/<sid>/governance/skip    Body: { "reason"? }
    POST   /api/v1/intake/submissions/<sid>/governance/start
    POST   /api/v1/intake/submissions/<sid>/governance/votes
           Body: { "scores": {criterion_id: 1..5}, "comment"?, "conflict_declared"? }
    POST   /api/v1/intake/submissions/<sid>/governance/decide
           Body: { "decision": "approved-now|approved-backlog|needs-info|rejected",
                   "decision_reason"? }

    POST   /api/v1/intake/submissions/<sid>/convert
           Body: { "project": { "title", "description"?, ... } }

Layer contract:
    - Blueprint: parse input, check capability keys, call service, return JSON.
    - Board membership (voter / chair eligibility) is enforced in review_service.
"""

import logging

from flask import Blueprint, jsonify

from atlas.blueprints.governance_bp import queue_response
from atlas.middleware.permission_required import require_permission, require_principal
from atlas.services import conversion_service, intake_service, review_service
from atlas.services.permission_service import current_principal
from atlas.services.schema_probe import ensure_governance_available
from atlas.utils.errors import register_error_handlers
from atlas.utils.helpers import get_json_body, parse_bool

logger = logging.getLogger(__name__)

intake_bp = Blueprint("intake", __name__, url_prefix="/api/v1/intake")
register_error_handlers(intake_bp)


def _field(data: dict, key: str, alias: str, default=None):
    if key in data:
        return data[key]
    return data.get(alias, default)


# ═════════════════════════════════════════════════════════════════════════
# Submissions
# ═════════════════════════════════════════════════════════════════════════


@intake_bp.route("/forms/<int:form_id>/submissions", methods=["POST"])
@require_principal
def create_submission(form_id):
    data = get_json_body()
    submission = intake_service.create_submission(
        form_id, _field(data, "form_data", "formData"), current_principal(),
    )
    return jsonify(submission), 201


@intake_bp.route("/submissions/<int:submission_id>", methods=["GET"])
@require_principal
def get_submission(submission_id):
    return jsonify(intake_service.get_submission(submission_id, current_principal()))


@intake_bp.route("/governance-queue", methods=["GET"])
@require_permission("can_view_governance_queue", "can_manage_governance", "can_manage_intake")
def governance_queue():
    ensure_governance_available()
    return queue_response()


# ═════════════════════════════════════════════════════════════════════════
# Governance lifecycle
# ═════════════════════════════════════════════════════════════════════════


@intake_bp.route("/submissions/<int:submission_id>/governance", methods=["GET"])
@require_principal
def governance_details(submission_id):
    ensure_governance_available()
    return jsonify(review_service.get_details(submission_id, current_principal()))


@intake_bp.route("/submissions/<int:submission_id>/governance/apply", methods=["POST"])
@require_permission("can_manage_intake", "can_manage_governance")
def apply_governance(submission_id):
    ensure_governance_available()
    data = get_json_body()
    submission = review_service.apply_governance(
        submission_id, current_principal().oid, reason=data.get("reason"),
    )
    return jsonify(submission.to_dict())


@intake_bp.route("/submissions/<int:submission_id>/governance/skip", methods=["POST"])
@require_permission("can_manage_intake", "can_manage_governance")
def skip_governance(submission_id):
    ensure_governance_available()
    data = get_json_body()
    submission = review_service.skip_governance(
        submission_id, current_principal().oid, reason=data.get("reason"),
    )
    return jsonify(submission.to_dict())


@intake_bp.route("/submissions/<int:submission_id>/governance/start", methods=["POST"])
@require_permission("can_manage_governance", "can_manage_intake")
def start_review(submission_id):
    ensure_governance_available()
    review = review_service.start_review(submission_id, current_principal().oid)
    return jsonify(review.to_dict()), 201


@intake_bp.route("/submissions/<int:submission_id>/governance/votes", methods=["POST"])
@require_permission("can_vote_governance", "can_decide_governance")
def submit_vote(submission_id):
    """Create or overwrite the caller's vote; eligibility is board membership."""
    ensure_governance_available()
    data = get_json_body()
    result = review_service.submit_vote(
        submission_id,
        current_principal().oid,
        data.get("scores"),
        comment=data.get("comment"),
        conflict_declared=parse_bool(_field(data, "conflict_declared", "conflictDeclared"), default=False),
    )
    return jsonify(result)


@intake_bp.route("/submissions/<int:submission_id>/governance/decide", methods=["POST"])
@require_permission("can_decide_governance", "can_vote_governance")
def decide(submission_id):
    """Record the chair's decision.

    Non-chair board members reach the service and receive a 403 flagged
    ``advisory`` so the UI can show the review as visible but not actionable.
    """
    ensure_governance_available()
    data = get_json_body()
    reason = _field(data, "decision_reason", "decisionReason")
    if reason is None:
        reason = data.get("reason")
    result = review_service.decide(
        submission_id, data.get("decision"), reason, current_principal().oid,
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Conversion
# ═════════════════════════════════════════════════════════════════════════


@intake_bp.route("/submissions/<int:submission_id>/convert", methods=["POST"])
@require_permission("can_manage_intake", "can_manage_governance")
def convert_submission(submission_id):
    data = get_json_body()
    project_data = data.get("project")
    if project_data is None:
        project_data = {k: v for k, v in data.items() if k != "project"}
    result = conversion_service.convert(submission_id, project_data, current_principal().oid)
    return jsonify(result), 201
