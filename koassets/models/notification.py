"""
KO Assets Rights Review Service
Messages inbox model.

Models:
    - Message: one inbox entry per owner, addressed by (owner, id)
"""

from datetime import datetime, timezone

from koassets.models import db


# ── Constants ────────────────────────────────────────────────────────────────

MESSAGE_TYPES = {"Notification", "Announcement", "Alert"}
MESSAGE_PRIORITIES = {"normal", "important"}
MESSAGE_STATUSES = {"unread", "read"}

# Fields a client may change through an update; the rest are fixed at creation.
IMMUTABLE_FIELDS = {"id", "owner", "date"}


class Message(db.Model):
    """
    Inbox message.

    Ids are unique per owner only; the same id may exist in two inboxes.
    """

    __tablename__ = "messages"

    owner = db.Column(db.String(254), primary_key=True, comment="Lower-case recipient email")
    id = db.Column(db.String(100), primary_key=True)
    date = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    subject = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(30), default="Notification")
    from_ = db.Column("sender", db.String(254), default="System")
    priority = db.Column(db.String(20), default="normal")
    expires_in_days = db.Column(db.Integer, default=30)
    status = db.Column(db.String(20), default="unread")

    # Link back to the rights request that triggered the message, if any
    request_id = db.Column(db.String(32), nullable=True)
    event_type = db.Column(db.String(40), default="")

    def apply_updates(self, updates: dict) -> None:
        """Merge client supplied fields, ignoring the immutable ones."""
        for field, value in updates.items():
            if field in IMMUTABLE_FIELDS:
                continue
            if field == "from":
                self.from_ = value
            elif field == "expiresInXDays":
                self.expires_in_days = value
            elif field in ("subject", "message", "type", "priority", "status"):
                setattr(self, field, value)

    def to_dict(self):
        return {
            "id": self.id,
            "owner": self.owner,
            "date": self.date.isoformat() if self.date else None,
            "subject": self.subject,
            "message": self.message,
            "type": self.type,
            "from": self.from_,
            "priority": self.priority,
            "expiresInXDays": self.expires_in_days,
            "status": self.status,
            "requestId": self.request_id,
            "eventType": self.event_type,
        }

    def __repr__(self):
        return f"<Message {self.owner}:{self.id}: {(self.subject or '')[:40]}>"
