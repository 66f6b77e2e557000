"""
Governance Settings Resolver.

Single-row ``GovernanceSettings`` aggregate (global on/off switch plus the
quorum and vote-window policy) and the per-form default resolution applied
when an intake submission is created.

``resolve_submission_defaults`` is read-only and never raises for a missing
governance schema: intake must keep working on the legacy flow.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from atlas.core.exceptions import ValidationError
from atlas.models import db
from atlas.models.governance import (
    DEFAULT_QUORUM_MIN_COUNT,
    DEFAULT_QUORUM_PERCENT,
    GovernanceSettings,
)
from atlas.models.intake import IntakeForm
from atlas.services.audit_service import emit_audit_event
from atlas.services.schema_probe import governance_available

logger = logging.getLogger(__name__)

REASON_REQUIRED = "Governance required by intake form policy."
REASON_OPTIONAL = "Governance optional for this form; apply manually if needed."
REASON_NOT_REQUIRED = "Governance not required for this submission."
REASON_UNAVAILABLE = "Governance schema not installed. Using legacy intake flow."

VOTE_WINDOW_MAX_DAYS = 90


def _first_settings() -> GovernanceSettings | None:
    return db.session.execute(
        select(GovernanceSettings).order_by(GovernanceSettings.id.asc()).limit(1)
    ).scalars().first()


def get_or_create_settings() -> GovernanceSettings:
    """Return the settings row, creating it (governance disabled) when absent."""
    settings = _first_settings()
    if settings is None:
        settings = GovernanceSettings(
            governance_enabled=False,
            quorum_percent=DEFAULT_QUORUM_PERCENT,
            quorum_min_count=DEFAULT_QUORUM_MIN_COUNT,
            decision_requires_quorum=True,
            vote_window_days=None,
        )
        db.session.add(settings)
        db.session.commit()
        logger.info("Governance settings initialised (disabled)")
    return settings


def _int_in_range(value, field: str, low: int, high: int | None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be an integer")
    if number < low or (high is not None and number > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValidationError(f"{field} must be {bound}")
    return number


_UNSET = object()


def update_settings(
    governance_enabled=None,
    actor_oid: str | None = None,
    quorum_percent=None,
    quorum_min_count=None,
    decision_requires_quorum=None,
    vote_window_days=_UNSET,
) -> GovernanceSettings:
    """Update the global switch and/or the quorum / window policy.

    Arguments left as ``None`` keep the stored value. ``vote_window_days=None``
    clears the window; leaving it unset keeps it.
    """
    changes = {}
    if governance_enabled is not None:
        if not isinstance(governance_enabled, bool):
            raise ValidationError("governance_enabled must be a boolean")
        changes["governance_enabled"] = governance_enabled
    if quorum_percent is not None:
        changes["quorum_percent"] = _int_in_range(quorum_percent, "quorum_percent", 1, 100)
    if quorum_min_count is not None:
        changes["quorum_min_count"] = _int_in_range(quorum_min_count, "quorum_min_count", 1, None)
    if decision_requires_quorum is not None:
        if not isinstance(decision_requires_quorum, bool):
            raise ValidationError("decision_requires_quorum must be a boolean")
        changes["decision_requires_quorum"] = decision_requires_quorum
    if vote_window_days is not _UNSET:
        changes["vote_window_days"] = (
            None if vote_window_days is None
            else _int_in_range(vote_window_days, "vote_window_days", 1, VOTE_WINDOW_MAX_DAYS)
        )
    if not changes:
        raise ValidationError("No settings provided")

    settings = get_or_create_settings()
    before = settings.to_dict()
    for attr, value in changes.items():
        setattr(settings, attr, value)
    settings.updated_by_oid = actor_oid
    db.session.commit()

    logger.info(
        "Governance settings updated enabled=%s", settings.governance_enabled,
        extra={"actor_oid": actor_oid},
    )
    emit_audit_event("governance.settings.update", "governance_settings", settings.id, actor_oid,
                     before=before, after=settings.to_dict())
    return settings


def quorum_policy() -> dict:
    """Current quorum / window policy; defaults when settings are absent."""
    settings = _first_settings()
    if settings is None:
        return {
            "quorum_percent": DEFAULT_QUORUM_PERCENT,
            "quorum_min_count": DEFAULT_QUORUM_MIN_COUNT,
            "decision_requires_quorum": True,
            "vote_window_days": None,
        }
    return settings.policy_dict()


def resolve_submission_defaults(form_id: int) -> dict:
    """Governance defaults for a new submission on *form_id*.

    Required only when the global switch is on and the form policy is
    ``required``. Missing settings count as disabled.
    """
    if not governance_available():
        return {
            "governance_required": False,
            "governance_status": "skipped",
            "governance_reason": REASON_UNAVAILABLE,
        }

    settings = _first_settings()
    enabled = bool(settings and settings.governance_enabled)
    form = db.session.get(IntakeForm, form_id)
    mode = ((form.governance_mode if form else None) or "off").lower()

    if enabled and mode == "required":
        return {
            "governance_required": True,
            "governance_status": "not-started",
            "governance_reason": REASON_REQUIRED,
        }
    reason = REASON_OPTIONAL if enabled and mode == "optional" else REASON_NOT_REQUIRED
    return {
        "governance_required": False,
        "governance_status": "skipped",
        "governance_reason": reason,
    }
