"""
Intake submission service.

Creating a submission resolves its governance defaults from the global
settings and the form policy. When the governance schema is missing the
submission is created on the legacy (skipped) path instead of failing:
only the base intake columns are written and read.
"""

import logging
from datetime import UTC, datetime

import sqlalchemy as sa

from atlas.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from atlas.models import db
from atlas.models.intake import IntakeForm, IntakeSubmission
from atlas.services.audit_service import emit_audit_event
from atlas.services.permission_service import Principal, has_any_permission, is_admin
from atlas.services.schema_probe import governance_available
from atlas.services.settings_service import resolve_submission_defaults

logger = logging.getLogger(__name__)

SUBMISSION_VIEW_PERMISSIONS = (
    "can_manage_intake",
    "can_view_governance_queue",
    "can_manage_governance",
)

# Lightweight table clause: carries no column defaults, so the INSERT names
# exactly the columns created by the base intake migration.
_base_submissions = sa.table(
    "intake_submissions",
    sa.column("id"),
    sa.column("form_id"),
    sa.column("submitter_oid"),
    sa.column("submitter_name"),
    sa.column("form_data", sa.JSON),
    sa.column("status"),
    sa.column("submitted_at", sa.DateTime(timezone=True)),
)


def _insert_base_submission(form_id: int, form_data: dict, principal: Principal | None) -> int:
    result = db.session.execute(
        sa.insert(_base_submissions)
        .values(
            form_id=form_id,
            submitter_oid=principal.oid if principal else None,
            submitter_name=principal.name if principal else None,
            form_data=form_data,
            status="pending",
            submitted_at=datetime.now(UTC),
        )
        .returning(_base_submissions.c.id)
    )
    return result.scalar_one()


def create_submission(form_id: int, form_data, principal: Principal | None) -> dict:
    """Create a submission on *form_id* and return its serialised form."""
    form = db.session.get(IntakeForm, form_id)
    if not form:
        raise NotFoundError(resource="IntakeForm", resource_id=form_id)
    if not form.is_active:
        raise ConflictError("Intake form is not accepting submissions")
    if form_data is not None and not isinstance(form_data, dict):
        raise ValidationError("form_data must be an object")

    defaults = resolve_submission_defaults(form.id)
    governed = governance_available()

    if governed:
        submission = IntakeSubmission(
            form_id=form.id,
            submitter_oid=principal.oid if principal else None,
            submitter_name=principal.name if principal else None,
            form_data=form_data or {},
            status="pending",
            **defaults,
        )
        db.session.add(submission)
        db.session.commit()
        data = submission.to_dict()
    else:
        try:
            submission_id = _insert_base_submission(form.id, form_data or {}, principal)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        submission = db.session.get(IntakeSubmission, submission_id)
        data = submission.to_dict(governance=False)
        data.update(defaults)

    logger.info(
        "Submission %s created on form %s (governance=%s)",
        data["id"], form.id, data["governance_status"],
        extra={"submission_id": data["id"],
               "actor_oid": principal.oid if principal else None},
    )
    emit_audit_event("intake.submission.create", "intake_submission", data["id"],
                     principal.oid if principal else None, after=data)
    return data


def get_submission(submission_id: int, principal: Principal | None) -> dict:
    """Fetch a submission visible to *principal* (intake staff or its submitter)."""
    submission = db.session.get(IntakeSubmission, submission_id)
    if not submission:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    if principal is None:
        raise ForbiddenError("Not allowed to view this submission.")
    if not (
        is_admin(principal)
        or has_any_permission(principal, SUBMISSION_VIEW_PERMISSIONS)
        or (submission.submitter_oid and submission.submitter_oid == principal.oid)
    ):
        raise ForbiddenError("Not allowed to view this submission.")
    return submission.to_dict(governance=governance_available())
