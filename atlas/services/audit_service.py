"""
Audit Service — fire-and-forget audit sink for governance events.

Called after the business transaction has committed. The audit row is
written in its own commit; any failure is rolled back and logged, never
raised, so auditing cannot change the outcome of a governance action.
"""

import logging

from atlas.models import db
from atlas.models.audit import write_audit

logger = logging.getLogger(__name__)


def emit_audit_event(
    action: str,
    entity_type: str,
    entity_id,
    actor_oid: str | None,
    before: dict | None = None,
    after: dict | None = None,
) -> None:
    """Persist one audit entry; swallow and log any failure."""
    diff = {}
    if before is not None:
        diff["before"] = before
    if after is not None:
        diff["after"] = after
    try:
        write_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_oid=actor_oid,
            diff=diff,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning(
            "Audit write failed action=%s entity=%s/%s",
            action, entity_type, entity_id,
            exc_info=True,
        )
