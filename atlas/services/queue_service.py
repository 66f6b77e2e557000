"""
Queue Projection — governed submissions ordered for triage.

Ordering: priority score descending with unscored items last, then oldest
submission first.
"""

from __future__ import annotations

import math

from sqlalchemy import case, func, select
from sqlalchemy.orm import undefer_group

from atlas.core.exceptions import ValidationError
from atlas.models import db
from atlas.models.governance import GovernanceBoard
from atlas.models.intake import (
    GOVERNANCE_DECISIONS,
    GOVERNANCE_GROUP,
    GOVERNANCE_STATUSES,
    IntakeForm,
    IntakeSubmission,
)
from atlas.utils.helpers import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT


def list_governance_queue(
    board_id: int | None = None,
    governance_status: str | None = None,
    decision: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
) -> dict:
    """Page of ``governance_required`` submissions with form and board names."""
    if governance_status and governance_status not in GOVERNANCE_STATUSES:
        raise ValidationError(
            f"governance_status must be one of: {', '.join(GOVERNANCE_STATUSES)}",
        )
    if decision and decision not in GOVERNANCE_DECISIONS:
        raise ValidationError(f"decision must be one of: {', '.join(GOVERNANCE_DECISIONS)}")

    page = max(int(page if page is not None else 1), 1)
    limit = min(max(int(limit if limit is not None else DEFAULT_PAGE_LIMIT), 1), MAX_PAGE_LIMIT)

    filters = [IntakeSubmission.governance_required.is_(True)]
    if board_id is not None:
        filters.append(IntakeForm.governance_board_id == board_id)
    if governance_status:
        filters.append(IntakeSubmission.governance_status == governance_status)
    if decision:
        filters.append(IntakeSubmission.governance_decision == decision)

    total = db.session.execute(
        select(func.count(IntakeSubmission.id))
        .join(IntakeForm, IntakeForm.id == IntakeSubmission.form_id)
        .where(*filters)
    ).scalar() or 0

    stmt = (
        select(IntakeSubmission, IntakeForm.name, IntakeForm.governance_board_id, GovernanceBoard.name)
        .options(undefer_group(GOVERNANCE_GROUP))
        .join(IntakeForm, IntakeForm.id == IntakeSubmission.form_id)
        .outerjoin(GovernanceBoard, GovernanceBoard.id == IntakeForm.governance_board_id)
        .where(*filters)
        .order_by(
            case((IntakeSubmission.priority_score.is_(None), 1), else_=0),
            IntakeSubmission.priority_score.desc(),
            IntakeSubmission.submitted_at.asc(),
            IntakeSubmission.id.asc(),
        )
        .offset((page - 1) * limit)
        .limit(limit)
    )

    items = []
    for submission, form_name, board_id, board_name in db.session.execute(stmt).all():
        items.append({
            "id": submission.id,
            "form_id": submission.form_id,
            "form_name": form_name,
            "governance_board_id": board_id,
            "governance_board_name": board_name,
            "submitter_oid": submission.submitter_oid,
            "submitter_name": submission.submitter_name,
            "status": submission.status,
            "submitted_at": submission.submitted_at.isoformat() if submission.submitted_at else None,
            **submission.governance_dict(),
        })

    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }
