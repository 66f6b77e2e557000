"""
Governance Administration Blueprint.

Settings, boards, memberships, criteria versions and the review queue.
Every route first runs the governance feature probe and answers 503 with
migration guidance when the schema is not installed.

Endpoints:
    GET    /api/v1/governance/settings
    PUT    /api/v1/governance/settings
           Body: { "governance_enabled"?: bool, "quorum_percent"?: 1..100,
                   "quorum_min_count"?: >=1, "decision_requires_quorum"?: bool,
                   "vote_window_days"?: null | 1..90 }
           Absent fields keep their stored value; at least one is required.

    GET    /api/v1/governance/boards?include_inactive=true
    POST   /api/v1/governance/boards            Body: { "name", "is_active" }
    PUT    /api/v1/governance/boards/<id>       Body: { "name"?, "is_active"? }

    GET    /api/v1/governance/boards/<id>/members?include_inactive=true
    POST   /api/v1/governance/boards/<id>/members
           Body: { "user_oid", "role": "member|chair", "is_active",
                   "effective_from"?, "effective_to"? }

    GET    /api/v1/governance/boards/<id>/criteria/versions
    POST   /api/v1/governance/boards/<id>/criteria/versions       Body: { "criteria": [...] }
    PUT    /api/v1/governance/boards/<id>/criteria/versions/<vid> Body: { "criteria": [...] }
    POST   /api/v1/governance/boards/<id>/criteria/versions/<vid>/publish

    GET    /api/v1/governance/queue?board_id=&governance_status=&decision=&page=&limit=

Request bodies accept snake_case keys; the camelCase spelling of each key
is accepted as an alias.

Layer contract:
    - Blueprint: parse input, call service, return JSON response.
    - NO db.session calls here — all writes owned by the services.
"""

import logging

from flask import Blueprint, jsonify, request

from atlas.middleware.permission_required import require_permission
from atlas.services import board_service, criteria_service, queue_service, settings_service
from atlas.services.permission_service import current_principal
from atlas.services.schema_probe import ensure_governance_available
from atlas.utils.errors import register_error_handlers
from atlas.utils.helpers import get_json_body, parse_bool, parse_pagination

logger = logging.getLogger(__name__)

governance_bp = Blueprint("governance", __name__, url_prefix="/api/v1/governance")
register_error_handlers(governance_bp)

_MISSING = object()


@governance_bp.before_request
def _require_governance_schema():
    ensure_governance_available()


def _field(data: dict, key: str, alias: str, default=None):
    if key in data:
        return data[key]
    return data.get(alias, default)


def _actor_oid():
    principal = current_principal()
    return principal.oid if principal else None


# ═════════════════════════════════════════════════════════════════════════
# Settings
# ═════════════════════════════════════════════════════════════════════════


@governance_bp.route("/settings", methods=["GET"])
@require_permission("can_manage_governance", "can_view_governance_queue")
def get_settings():
    return jsonify(settings_service.get_or_create_settings().to_dict())


@governance_bp.route("/settings", methods=["PUT"])
@require_permission("can_manage_governance")
def update_settings():
    data = get_json_body()
    kwargs = {
        "quorum_percent": _field(data, "quorum_percent", "quorumPercent"),
        "quorum_min_count": _field(data, "quorum_min_count", "quorumMinCount"),
        "decision_requires_quorum": _field(data, "decision_requires_quorum", "decisionRequiresQuorum"),
    }
    window = _field(data, "vote_window_days", "voteWindowDays", _MISSING)
    if window is not _MISSING:
        kwargs["vote_window_days"] = window

    settings = settings_service.update_settings(
        _field(data, "governance_enabled", "governanceEnabled"),
        _actor_oid(),
        **kwargs,
    )
    return jsonify(settings.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════


@governance_bp.route("/boards", methods=["GET"])
@require_permission("can_manage_governance", "can_view_governance_queue")
def list_boards():
    include_inactive = parse_bool(request.args.get("include_inactive"), default=False)
    return jsonify({"items": board_service.list_boards(include_inactive=include_inactive)})


@governance_bp.route("/boards", methods=["POST"])
@require_permission("can_manage_governance")
def create_board():
    data = get_json_body()
    board = board_service.create_board(
        data.get("name"),
        is_active=parse_bool(_field(data, "is_active", "isActive"), default=True),
        actor_oid=_actor_oid(),
    )
    return jsonify(board.to_dict()), 201


@governance_bp.route("/boards/<int:board_id>", methods=["PUT"])
@require_permission("can_manage_governance")
def update_board(board_id):
    data = get_json_body()
    board = board_service.update_board(
        board_id,
        name=data.get("name"),
        is_active=parse_bool(_field(data, "is_active", "isActive")),
        actor_oid=_actor_oid(),
    )
    return jsonify(board.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Memberships
# ═════════════════════════════════════════════════════════════════════════


@governance_bp.route("/boards/<int:board_id>/members", methods=["GET"])
@require_permission("can_manage_governance", "can_view_governance_queue")
def list_members(board_id):
    include_inactive = parse_bool(request.args.get("include_inactive"), default=False)
    members = board_service.list_members(board_id, include_inactive=include_inactive)
    return jsonify({"items": [m.to_dict() for m in members]})


@governance_bp.route("/boards/<int:board_id>/members", methods=["POST"])
@require_permission("can_manage_governance")
def upsert_member(board_id):
    data = get_json_body()
    membership = board_service.upsert_membership(
        board_id,
        _field(data, "user_oid", "userOid"),
        role=data.get("role"),
        is_active=parse_bool(_field(data, "is_active", "isActive"), default=True),
        effective_from=_field(data, "effective_from", "effectiveFrom"),
        effective_to=_field(data, "effective_to", "effectiveTo"),
        actor_oid=_actor_oid(),
    )
    return jsonify(membership.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Criteria versions
# ═════════════════════════════════════════════════════════════════════════


@governance_bp.route("/boards/<int:board_id>/criteria/versions", methods=["GET"])
@require_permission("can_manage_governance", "can_view_governance_queue")
def list_criteria_versions(board_id):
    versions = criteria_service.list_versions(board_id)
    return jsonify({"items": [v.to_dict() for v in versions]})


@governance_bp.route("/boards/<int:board_id>/criteria/versions", methods=["POST"])
@require_permission("can_manage_governance")
def create_criteria_version(board_id):
    data = get_json_body()
    version = criteria_service.create_draft(board_id, data.get("criteria"), _actor_oid())
    return jsonify(version.to_dict()), 201


@governance_bp.route("/boards/<int:board_id>/criteria/versions/<int:version_id>", methods=["PUT"])
@require_permission("can_manage_governance")
def update_criteria_version(board_id, version_id):
    data = get_json_body()
    version = criteria_service.update_draft(board_id, version_id, data.get("criteria"), _actor_oid())
    return jsonify(version.to_dict())


@governance_bp.route(
    "/boards/<int:board_id>/criteria/versions/<int:version_id>/publish",
    methods=["POST"],
)
@require_permission("can_manage_governance")
def publish_criteria_version(board_id, version_id):
    """Publish a draft; the board's previous published version is retired."""
    version = criteria_service.publish(board_id, version_id, _actor_oid())
    return jsonify(version.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Queue
# ═════════════════════════════════════════════════════════════════════════


def queue_response():
    """Shared by the governance queue and its intake alias."""
    page, limit = parse_pagination()
    board_id = request.args.get("board_id", request.args.get("boardId"), type=int)
    result = queue_service.list_governance_queue(
        board_id=board_id,
        governance_status=request.args.get("governance_status") or request.args.get("governanceStatus"),
        decision=request.args.get("decision") or None,
        page=page,
        limit=limit,
    )
    return jsonify(result)


@governance_bp.route("/queue", methods=["GET"])
@require_permission("can_view_governance_queue", "can_manage_governance")
def governance_queue():
    return queue_response()
