"""
Governance feature probe.

Governance ships as additive migrations. A deployment that has not run them
must keep the legacy intake flow working, so callers check
``governance_available()`` before touching governance tables and the
governance API answers 503 with migration guidance instead of a 500.

The probe result is memoised per request on ``flask.g``.
"""

import logging

import sqlalchemy as sa
from flask import g, has_request_context

from atlas.core.exceptions import UnavailableError
from atlas.models import db

logger = logging.getLogger(__name__)

GOVERNANCE_TABLES = (
    "governance_settings",
    "governance_boards",
    "governance_memberships",
    "governance_criteria_versions",
    "governance_reviews",
    "governance_votes",
)

REQUIRED_COLUMNS = {
    "intake_forms": {"governance_mode", "governance_board_id"},
    "intake_submissions": {
        "governance_required",
        "governance_status",
        "governance_decision",
        "governance_reason",
        "priority_score",
    },
    "governance_settings": {
        "quorum_percent",
        "quorum_min_count",
        "decision_requires_quorum",
        "vote_window_days",
    },
}


def _probe() -> tuple[bool, list[str]]:
    insp = sa.inspect(db.engine)
    tables = set(insp.get_table_names())
    missing = [t for t in GOVERNANCE_TABLES if t not in tables]
    for table, columns in REQUIRED_COLUMNS.items():
        if table not in tables:
            if table not in missing:
                missing.append(table)
            continue
        present = {c["name"] for c in insp.get_columns(table)}
        missing.extend(f"{table}.{col}" for col in sorted(columns - present))
    return not missing, missing


def governance_available() -> bool:
    """True when every governance table and intake governance column exists."""
    if has_request_context() and hasattr(g, "_governance_available"):
        return g._governance_available
    try:
        available, missing = _probe()
    except sa.exc.SQLAlchemyError:
        logger.warning("Governance schema probe failed", exc_info=True)
        available, missing = False, ["<probe failed>"]
    if not available:
        logger.warning("Governance schema not installed; missing: %s", ", ".join(missing))
    if has_request_context():
        g._governance_available = available
    return available


def ensure_governance_available() -> None:
    """Raise UnavailableError when the governance schema is not provisioned."""
    if not governance_available():
        raise UnavailableError()


def init_schema_probe(app):
    """Clear the memoised probe result at the start of every request."""

    @app.before_request
    def _reset_governance_probe():
        g.pop("_governance_available", None)
