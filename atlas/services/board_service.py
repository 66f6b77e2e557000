"""
Board & Membership Registry.

Boards are soft-deactivated, never deleted. Memberships are time-bounded
member/chair assignments; the latest row per ``(board_id, user_oid)`` is the
authoritative one and upserts update it in place.

Eligibility at instant ``at``:
    is_active and effective_from <= at and (effective_to is null or effective_to > at)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from atlas.core.exceptions import ConflictError, NotFoundError, ValidationError
from atlas.models import db
from atlas.models.governance import (
    MEMBER_ROLES,
    GovernanceBoard,
    GovernanceMembership,
    as_utc,
)
from atlas.services.audit_service import emit_audit_event
from atlas.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)


def _get_board(board_id: int) -> GovernanceBoard:
    board = db.session.get(GovernanceBoard, board_id)
    if not board:
        raise NotFoundError(resource="GovernanceBoard", resource_id=board_id)
    return board


def _clean_name(name) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError("Board name is required")
    return cleaned


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    stmt = select(GovernanceBoard.id).where(func.lower(GovernanceBoard.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(GovernanceBoard.id != exclude_id)
    return db.session.execute(stmt).first() is not None


# ═════════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════════


def create_board(name, is_active: bool = True, actor_oid: str | None = None) -> GovernanceBoard:
    cleaned = _clean_name(name)
    if _name_taken(cleaned):
        raise ConflictError(f"A board named '{cleaned}' already exists")

    board = GovernanceBoard(
        name=cleaned,
        is_active=bool(is_active),
        created_by_oid=actor_oid,
    )
    db.session.add(board)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"A board named '{cleaned}' already exists") from None

    logger.info("Governance board created id=%s name=%s", board.id, board.name,
                extra={"board_id": board.id, "actor_oid": actor_oid})
    emit_audit_event("governance.board.create", "governance_board", board.id, actor_oid,
                     after=board.to_dict())
    return board


def update_board(board_id: int, name=None, is_active=None, actor_oid: str | None = None) -> GovernanceBoard:
    """Partial update; at least one of ``name`` / ``is_active`` is required."""
    if name is None and is_active is None:
        raise ValidationError("Nothing to update: provide name and/or is_active")

    board = _get_board(board_id)
    before = board.to_dict()

    if name is not None:
        cleaned = _clean_name(name)
        if _name_taken(cleaned, exclude_id=board.id):
            raise ConflictError(f"A board named '{cleaned}' already exists")
        board.name = cleaned
    if is_active is not None:
        board.is_active = bool(is_active)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A board with that name already exists") from None

    logger.info("Governance board updated id=%s", board.id,
                extra={"board_id": board.id, "actor_oid": actor_oid})
    emit_audit_event("governance.board.update", "governance_board", board.id, actor_oid,
                     before=before, after=board.to_dict())
    return board


def list_boards(include_inactive: bool = False) -> list[dict]:
    """Boards ordered by name, each with ``active_member_count``."""
    stmt = select(GovernanceBoard).order_by(GovernanceBoard.name.asc())
    if not include_inactive:
        stmt = stmt.where(GovernanceBoard.is_active.is_(True))
    boards = list(db.session.execute(stmt).scalars().all())

    now = datetime.now(UTC)
    result = []
    for board in boards:
        data = board.to_dict()
        data["active_member_count"] = len(eligible_members(board.id, at=now))
        result.append(data)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Memberships
# ═════════════════════════════════════════════════════════════════════════════


def _latest_membership(board_id: int, user_oid: str) -> GovernanceMembership | None:
    stmt = (
        select(GovernanceMembership)
        .where(
            GovernanceMembership.board_id == board_id,
            GovernanceMembership.user_oid == user_oid,
        )
        .order_by(GovernanceMembership.created_at.desc(), GovernanceMembership.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalars().first()


def _parse_bound(value, field: str):
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date/time") from None


def upsert_membership(
    board_id: int,
    user_oid,
    role=None,
    is_active: bool = True,
    effective_from=None,
    effective_to=None,
    actor_oid: str | None = None,
) -> GovernanceMembership:
    """Update the latest row for ``(board, user)`` or insert a new one."""
    _get_board(board_id)
    oid = user_oid.strip() if isinstance(user_oid, str) else ""
    if not oid:
        raise ValidationError("user_oid is required")

    normalized_role = role.strip().lower() if isinstance(role, str) else ""
    if normalized_role not in MEMBER_ROLES:
        normalized_role = "member"

    start = _parse_bound(effective_from, "effective_from")
    end = _parse_bound(effective_to, "effective_to")

    membership = _latest_membership(board_id, oid)
    before = membership.to_dict() if membership else None

    if membership is None:
        start = start or datetime.now(UTC)
    elif start is None:
        start = as_utc(membership.effective_from)

    if end is not None and end <= start:
        raise ValidationError("effective_to must be later than effective_from")

    if membership is None:
        membership = GovernanceMembership(
            board_id=board_id,
            user_oid=oid,
            created_by_oid=actor_oid,
        )
        db.session.add(membership)

    membership.role = normalized_role
    membership.is_active = bool(is_active)
    membership.effective_from = start
    membership.effective_to = end
    db.session.commit()

    logger.info(
        "Governance membership upserted board=%s user=%s role=%s active=%s",
        board_id, oid, normalized_role, membership.is_active,
        extra={"board_id": board_id, "actor_oid": actor_oid},
    )
    emit_audit_event("governance.membership.upsert", "governance_membership", membership.id,
                     actor_oid, before=before, after=membership.to_dict())
    return membership


def list_members(board_id: int, include_inactive: bool = False) -> list[GovernanceMembership]:
    """Memberships of a board, newest first; current ones only unless *include_inactive*."""
    _get_board(board_id)
    stmt = (
        select(GovernanceMembership)
        .where(GovernanceMembership.board_id == board_id)
        .order_by(GovernanceMembership.created_at.desc(), GovernanceMembership.id.desc())
    )
    rows = list(db.session.execute(stmt).scalars().all())
    if include_inactive:
        return rows
    now = datetime.now(UTC)
    return [m for m in rows if m.is_current(now)]


def eligible_members(board_id: int, at: datetime | None = None) -> list[GovernanceMembership]:
    """Current membership row per user whose window contains *at*."""
    at = as_utc(at) or datetime.now(UTC)
    stmt = (
        select(GovernanceMembership)
        .where(GovernanceMembership.board_id == board_id)
        .order_by(GovernanceMembership.created_at.desc(), GovernanceMembership.id.desc())
    )
    seen = set()
    result = []
    for membership in db.session.execute(stmt).scalars():
        if membership.user_oid in seen:
            continue
        seen.add(membership.user_oid)
        if membership.is_current(at):
            result.append(membership)
    return result


def _eligible_membership(board_id: int, user_oid: str | None, at=None) -> GovernanceMembership | None:
    if not user_oid:
        return None
    membership = _latest_membership(board_id, user_oid)
    if membership is None or not membership.is_current(at):
        return None
    return membership


def is_eligible_voter(board_id: int, user_oid: str | None, at: datetime | None = None) -> bool:
    return _eligible_membership(board_id, user_oid, at) is not None


def is_eligible_chair(board_id: int, user_oid: str | None, at: datetime | None = None) -> bool:
    membership = _eligible_membership(board_id, user_oid, at)
    return membership is not None and membership.role == "chair"
