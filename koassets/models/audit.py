"""
KO Assets Rights Review Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of rights request transitions.
"""

import json
from datetime import datetime, timezone

from flask import g, has_request_context

from koassets.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "rights_request.create",
    "rights_request.self_assign",
    "rights_request.assign",
    "rights_request.status_change",
    "rights_request.user_cancel",
    "rights_request.reviewer_cancel",
    "user.permissions_update",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action.  ``diff_json`` carries an old→new snapshot of the
    fields the action touched.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False, comment="rights_request | user")
    entity_id = db.Column(db.String(254), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(254), nullable=False, default="system")
    impersonated_by = db.Column(db.String(254), nullable=True,
                                comment="Real identity when the actor was acting via sudo")
    request_id = db.Column(db.String(64), nullable=True, comment="X-Request-ID of the originating call")
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

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
            "actor": self.actor,
            "impersonated_by": self.impersonated_by,
            "request_id": self.request_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Inside a request the row also records the request id and, for sudo
    sessions, the real user behind ``actor``.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    request_id = impersonated_by = None
    if has_request_context():
        request_id = g.get("request_id")
        su = (g.get("current_user") or {}).get("su")
        if su:
            impersonated_by = su.get("email")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        diff_json=json.dumps(diff or {}, default=str),
        impersonated_by=impersonated_by,
        request_id=request_id,
    )
    db.session.add(log)
    db.session.flush()
    return log
