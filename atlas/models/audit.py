"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for governance events.
"""

import json
from datetime import UTC, datetime

from atlas.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "governance_settings",
    "governance_board",
    "governance_membership",
    "governance_criteria_version",
    "intake_submission",
}

AUDIT_ACTIONS = {
    "governance.settings.update",
    "governance.board.create",
    "governance.board.update",
    "governance.membership.upsert",
    "governance.criteria.create",
    "governance.criteria.update",
    "governance.criteria.publish",
    "governance.review.apply",
    "governance.review.skip",
    "governance.review.start",
    "governance.review.vote",
    "governance.review.decide",
    "intake.submission.create",
    "intake.submission.convert",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every governance event.

    One row per action.  ``diff_json`` carries a ``{"before": ..., "after": ...}``
    snapshot of the mutated entity.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_oid"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(40), nullable=False,
        comment="governance_board | intake_submission | …",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )
    action = db.Column(
        db.String(60), nullable=False,
        comment="governance.review.decide | intake.submission.convert | …",
    )
    actor_oid = db.Column(
        db.String(100), nullable=False, default="system",
        comment="Directory object id of the acting user or 'system'",
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_oid": self.actor_oid,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_oid: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_oid=actor_oid or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
