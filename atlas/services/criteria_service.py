"""
Criteria Version Store — versioned weighted criteria per governance board.

Lifecycle:
    draft ──publish──▶ published ──(next publish)──▶ retired

Business rules:
    - ``version_no`` is ``max(version_no) + 1`` per board at creation.
    - Only drafts are editable.
    - Publishing requires the enabled weights to total 100 (±0.001) and, in a
      single transaction, retires every other published version of the board.
    - Publishing the already-published version is a no-op.

Usage:
    from atlas.services import criteria_service

    version = criteria_service.create_draft(board_id, [
        {"name": "Strategic alignment", "weight": 60},
        {"name": "Feasibility", "weight": 40},
    ], actor_oid="u-1")
    criteria_service.publish(board_id, version.id, actor_oid="u-1")
"""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from atlas.core.exceptions import ConflictError, NotFoundError, ValidationError
from atlas.models import db
from atlas.models.governance import (
    VERSION_DRAFT,
    VERSION_PUBLISHED,
    VERSION_RETIRED,
    GovernanceBoard,
    GovernanceCriteriaVersion,
)
from atlas.services.audit_service import emit_audit_event
from atlas.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 0.001

_SLUG_RE = re.compile(r"[^a-z0-9]+")


# ── Normalisation ────────────────────────────────────────────────────────────


def _slugify(name: str) -> str:
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")
    return slug or "criterion"


def _coerce_weight(value, idx: int) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"criteria[{idx}].weight must be a number")
    try:
        weight = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"criteria[{idx}].weight must be a number") from None
    if not math.isfinite(weight) or weight < 0 or weight > 100:
        raise ValidationError(f"criteria[{idx}].weight must be between 0 and 100")
    return weight


def normalize_criteria(raw) -> list[dict]:
    """Validate and normalise a criteria payload.

    Each entry becomes ``{id, name, weight, enabled, sortOrder}``. Ids default
    to a slug of the name and are de-duplicated with ``-2``, ``-3`` suffixes;
    duplicate explicit ids are rejected.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("criteria must be a non-empty array")

    explicit_ids = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"criteria[{idx}] must be an object")
        cid = item.get("id")
        if isinstance(cid, str) and cid.strip():
            cid = cid.strip()
            if cid in explicit_ids:
                raise ValidationError(f"Duplicate criterion id: {cid}")
            explicit_ids.add(cid)

    used_ids = set(explicit_ids)
    result = []
    for idx, item in enumerate(raw):
        name = item.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError(f"criteria[{idx}].name is required")

        weight = _coerce_weight(item.get("weight"), idx)

        cid = item.get("id")
        if isinstance(cid, str) and cid.strip():
            cid = cid.strip()
        else:
            base = _slugify(name)
            cid, n = base, 2
            while cid in used_ids:
                cid = f"{base}-{n}"
                n += 1
            used_ids.add(cid)

        enabled = parse_bool(item.get("enabled"))
        if enabled is None:
            if item.get("enabled") not in (None, ""):
                raise ValidationError(f"criteria[{idx}].enabled must be a boolean")
            enabled = True

        sort_order = item.get("sortOrder")
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            sort_order = idx + 1

        result.append({
            "id": cid,
            "name": name,
            "weight": weight,
            "enabled": enabled,
            "sortOrder": sort_order,
        })
    return result


def enabled_weight_total(criteria: list[dict]) -> float:
    return sum(float(c.get("weight") or 0) for c in criteria if c.get("enabled", True))


# ── Lookups ──────────────────────────────────────────────────────────────────


def _get_board(board_id: int) -> GovernanceBoard:
    board = db.session.get(GovernanceBoard, board_id)
    if not board:
        raise NotFoundError(resource="GovernanceBoard", resource_id=board_id)
    return board


def _get_version(board_id: int, version_id: int) -> GovernanceCriteriaVersion:
    version = db.session.get(GovernanceCriteriaVersion, version_id)
    if not version or version.board_id != board_id:
        raise NotFoundError(resource="CriteriaVersion", resource_id=version_id)
    return version


def list_versions(board_id: int) -> list[GovernanceCriteriaVersion]:
    """All versions of a board, newest ``version_no`` first."""
    _get_board(board_id)
    stmt = (
        select(GovernanceCriteriaVersion)
        .where(GovernanceCriteriaVersion.board_id == board_id)
        .order_by(GovernanceCriteriaVersion.version_no.desc())
    )
    return list(db.session.execute(stmt).scalars().all())


def get_published_version(board_id: int) -> GovernanceCriteriaVersion | None:
    stmt = (
        select(GovernanceCriteriaVersion)
        .where(
            GovernanceCriteriaVersion.board_id == board_id,
            GovernanceCriteriaVersion.status == VERSION_PUBLISHED,
        )
        .order_by(GovernanceCriteriaVersion.version_no.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalars().first()


# ── Mutations ────────────────────────────────────────────────────────────────


def create_draft(board_id: int, criteria, actor_oid: str | None) -> GovernanceCriteriaVersion:
    """Create the next draft version for a board."""
    _get_board(board_id)
    normalized = normalize_criteria(criteria)

    max_no = db.session.execute(
        select(func.max(GovernanceCriteriaVersion.version_no))
        .where(GovernanceCriteriaVersion.board_id == board_id)
    ).scalar()

    version = GovernanceCriteriaVersion(
        board_id=board_id,
        version_no=(max_no or 0) + 1,
        status=VERSION_DRAFT,
        criteria=normalized,
        created_by_oid=actor_oid,
    )
    db.session.add(version)
    db.session.commit()

    logger.info(
        "Criteria draft created board=%s v%s",
        board_id, version.version_no,
        extra={"board_id": board_id, "version_id": version.id, "actor_oid": actor_oid},
    )
    emit_audit_event(
        "governance.criteria.create", "governance_criteria_version", version.id, actor_oid,
        after=version.to_dict(),
    )
    return version


def update_draft(
    board_id: int, version_id: int, criteria, actor_oid: str | None = None,
) -> GovernanceCriteriaVersion:
    """Replace the criteria of a draft version."""
    version = _get_version(board_id, version_id)
    if version.status != VERSION_DRAFT:
        raise ConflictError(
            "Only draft versions can be edited",
            details={"status": version.status},
        )
    normalized = normalize_criteria(criteria)
    before = version.to_dict()
    version.criteria = normalized
    db.session.commit()

    logger.info(
        "Criteria draft updated board=%s v%s", board_id, version.version_no,
        extra={"board_id": board_id, "version_id": version.id, "actor_oid": actor_oid},
    )
    emit_audit_event(
        "governance.criteria.update", "governance_criteria_version", version.id, actor_oid,
        before=before, after=version.to_dict(),
    )
    return version


def _retire_published(board_id: int, keep_id: int) -> None:
    db.session.execute(
        update(GovernanceCriteriaVersion)
        .where(
            GovernanceCriteriaVersion.board_id == board_id,
            GovernanceCriteriaVersion.status == VERSION_PUBLISHED,
            GovernanceCriteriaVersion.id != keep_id,
        )
        .values(status=VERSION_RETIRED)
        .execution_options(synchronize_session="fetch")
    )


def publish(board_id: int, version_id: int, actor_oid: str | None) -> GovernanceCriteriaVersion:
    """Publish a version, retiring the board's current published version."""
    version = _get_version(board_id, version_id)
    if version.status == VERSION_PUBLISHED:
        return version
    if version.status == VERSION_RETIRED:
        raise ConflictError(
            "Retired versions cannot be published",
            details={"status": version.status},
        )

    total = enabled_weight_total(version.criteria or [])
    if abs(total - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        raise ValidationError(
            "Active criteria weight must total 100",
            details={"weightTotal": round(total, 3)},
        )

    try:
        _retire_published(board_id, version.id)
        version.status = VERSION_PUBLISHED
        version.published_at = datetime.now(UTC)
        version.published_by_oid = actor_oid
        db.session.commit()
    except IntegrityError:
        # uq_gov_criteria_one_published: a rival publish committed first
        db.session.rollback()
        logger.warning(
            "Concurrent criteria publish on board %s (version %s)", board_id, version_id,
            extra={"board_id": board_id, "version_id": version_id, "actor_oid": actor_oid},
        )
        raise ConflictError("Another version was published concurrently; reload and retry") from None
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Criteria version published board=%s v%s", board_id, version.version_no,
        extra={
            "board_id": board_id, "version_id": version.id, "actor_oid": actor_oid,
            "to_status": VERSION_PUBLISHED,
        },
    )
    emit_audit_event(
        "governance.criteria.publish", "governance_criteria_version", version.id, actor_oid,
        after=version.to_dict(),
    )
    return version
