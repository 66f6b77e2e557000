"""
Decision & Conversion Gate — sole authority for submission → project conversion.

A governed submission converts only after the board decided ``approved-now``;
ungoverned submissions convert freely. The gate is re-evaluated against a
freshly locked row (``SELECT … FOR UPDATE`` where the dialect supports it) and
the final UPDATE carries the observed governance columns as preconditions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import undefer_group

from atlas.core.exceptions import ConflictError, NotFoundError, ValidationError
from atlas.models import db
from atlas.models.intake import GOVERNANCE_GROUP, IntakeSubmission
from atlas.services import project_gateway
from atlas.services.audit_service import emit_audit_event
from atlas.services.schema_probe import governance_available

logger = logging.getLogger(__name__)

GATE_MESSAGE = "Conversion requires governance decision: Approved Now"


def can_convert_to_project(submission: IntakeSubmission) -> bool:
    """True iff governance is not required, or it was decided ``approved-now``."""
    if not submission.governance_required:
        return True
    return (
        submission.governance_status == "decided"
        and submission.governance_decision == "approved-now"
    )


def _governance_preconditions(submission: IntakeSubmission) -> list:
    """WHERE clauses pinning the governance columns to their observed values."""
    decision = submission.governance_decision
    return [
        IntakeSubmission.governance_required == submission.governance_required,
        IntakeSubmission.governance_status == submission.governance_status,
        IntakeSubmission.governance_decision.is_(None) if decision is None
        else IntakeSubmission.governance_decision == decision,
    ]


def convert(
    submission_id: int,
    project_data: dict,
    actor_oid: str | None,
    project_creator: Callable[[dict, str | None], int] | None = None,
) -> dict:
    """Create a project from an approved submission and link it back."""
    creator = project_creator or project_gateway.create_project
    if not isinstance(project_data, dict):
        raise ValidationError("project must be an object")

    governed = governance_available()
    stmt = select(IntakeSubmission).where(IntakeSubmission.id == submission_id)
    if governed:
        stmt = stmt.options(undefer_group(GOVERNANCE_GROUP))
    submission = db.session.execute(
        stmt
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().first()
    if submission is None:
        raise NotFoundError(resource="Submission", resource_id=submission_id)

    if governed and not can_convert_to_project(submission):
        logger.warning(
            "Conversion blocked for submission %s (status=%s decision=%s)",
            submission.id, submission.governance_status, submission.governance_decision,
            extra={"submission_id": submission.id, "actor_oid": actor_oid},
        )
        raise ConflictError(
            GATE_MESSAGE,
            details={
                "governanceRequired": bool(submission.governance_required),
                "governanceStatus": submission.governance_status,
                "governanceDecision": submission.governance_decision,
            },
        )
    if submission.converted_project_id is not None:
        raise ConflictError(
            "Submission already converted to a project",
            details={"convertedProjectId": submission.converted_project_id},
        )

    observed = _governance_preconditions(submission) if governed else []
    before = submission.to_dict(governance=governed)

    payload = dict(project_data)
    payload.setdefault("source_submission_id", submission.id)
    try:
        project_id = creator(payload, actor_oid)

        conditions = [
            IntakeSubmission.id == submission.id,
            IntakeSubmission.converted_project_id.is_(None),
            *observed,
        ]

        result = db.session.execute(
            update(IntakeSubmission)
            .where(*conditions)
            .values(status="approved", converted_project_id=project_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Submission governance state changed during conversion; reload and retry")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    db.session.refresh(submission)
    after = submission.to_dict(governance=governed)
    logger.info(
        "Submission %s converted to project %s", submission.id, project_id,
        extra={"submission_id": submission.id, "actor_oid": actor_oid},
    )
    emit_audit_event("intake.submission.convert", "intake_submission", submission.id, actor_oid,
                     before=before, after=after)
    return {"project_id": project_id, "submission": after}
