"""
KO Assets Rights Review Service
Notification Service: messages inbox and rights request event dispatch.

Inbox operations (list/get/create/update/delete) back the /api/messages
endpoints. Dispatch helpers are fire-and-forget: a failed delivery is logged
and reported as ``False`` but never raised to the workflow that triggered it.
"""

import logging
import random
import time
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from koassets.core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from koassets.models import db
from koassets.models.notification import MESSAGE_PRIORITIES, MESSAGE_STATUSES, MESSAGE_TYPES, Message

logger = logging.getLogger(__name__)

EVENT_SUBMITTED = "rights_request.submitted"
EVENT_ASSIGNED = "rights_request.assigned"
EVENT_STATUS_CHANGED = "rights_request.status_changed"
EVENT_CANCELED = "rights_request.canceled"

DEFAULT_INBOX_SENDER = "system@coca-cola.com"
DEFAULT_INBOX_EXPIRY_DAYS = 30
DISPATCH_SENDER = "System"
DISPATCH_EXPIRY_DAYS = 7


def generate_message_id() -> str:
    return f"msg-{int(time.time() * 1000)}-{random.randint(0, 999999)}"


def _expiry_days(value) -> int:
    """Whole, non-negative day count from a client payload."""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        days = None
    else:
        try:
            days = int(value)
        except (TypeError, ValueError):
            days = None
    if days is None or days < 0:
        raise ValidationError("Invalid expiresInXDays", details={"expiresInXDays": "must be a non-negative integer"})
    return days


def _commit(action: str, owner: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Inbox %s failed for %s", action, owner)
        raise StoreUnavailableError("Message store unavailable") from exc


class NotificationService:
    """Stateless service class for inbox operations."""

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_owner(owner, limit=1000):
        """Messages of ``owner``, newest first."""
        return (
            Message.query.filter_by(owner=owner.lower())
            .order_by(Message.date.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get(owner, message_id):
        msg = db.session.get(Message, (owner.lower(), message_id))
        if msg is None:
            raise NotFoundError("Notification", resource_id=message_id)
        return msg

    @staticmethod
    def unread_count(owner):
        return Message.query.filter_by(owner=owner.lower(), status="unread").count()

    # ── Mutations ─────────────────────────────────────────────────────────

    @staticmethod
    def create(owner, data):
        """Create (or overwrite) a message in the owner's inbox from a client payload."""
        missing = [f for f in ("id", "subject", "message") if not data.get(f)]
        if missing:
            raise ValidationError(
                "Missing required fields: id, subject, message",
                details={f: "required" for f in missing},
            )
        for field, allowed in (("type", MESSAGE_TYPES), ("priority", MESSAGE_PRIORITIES), ("status", MESSAGE_STATUSES)):
            if data.get(field) and data[field] not in allowed:
                raise ValidationError(f"Invalid {field}", details={field: f"must be one of {sorted(allowed)}"})

        expires = data.get("expiresInXDays")
        expires = _expiry_days(expires) if expires is not None else DEFAULT_INBOX_EXPIRY_DAYS

        owner = owner.lower()
        msg = db.session.get(Message, (owner, str(data["id"])))
        if msg is None:
            msg = Message(owner=owner, id=str(data["id"]))
            db.session.add(msg)
        msg.date = datetime.now(timezone.utc)
        msg.subject = data["subject"]
        msg.message = data["message"]
        msg.type = data.get("type") or "Notification"
        msg.from_ = data.get("from") or DEFAULT_INBOX_SENDER
        msg.priority = data.get("priority") or "normal"
        msg.expires_in_days = expires
        msg.status = data.get("status") or "unread"
        _commit("create", owner)
        return msg

    @staticmethod
    def update(owner, message_id, updates):
        updates = dict(updates or {})
        if updates.get("expiresInXDays") is not None:
            updates["expiresInXDays"] = _expiry_days(updates["expiresInXDays"])
        msg = NotificationService.get(owner, message_id)
        msg.apply_updates(updates)
        _commit("update", owner)
        return msg

    @staticmethod
    def delete(owner, message_id):
        msg = NotificationService.get(owner, message_id)
        db.session.delete(msg)
        _commit("delete", owner)


# ── Dispatch ─────────────────────────────────────────────────────────────────

def send_message(recipient, *, subject, message, type="Notification", sender=DISPATCH_SENDER,
                 priority="normal", expires_in_days=DISPATCH_EXPIRY_DAYS,
                 request_id=None, event_type=""):
    """
    Deliver one message to ``recipient``'s inbox.

    Returns:
        True when stored, False when the store rejected it.
    """
    recipient = (recipient or "").strip().lower()
    if not recipient:
        return False
    try:
        msg = Message(
            owner=recipient,
            id=generate_message_id(),
            subject=subject,
            message=message,
            type=type,
            from_=sender,
            priority=priority,
            expires_in_days=expires_in_days,
            status="unread",
            request_id=request_id,
            event_type=event_type,
        )
        db.session.add(msg)
        db.session.commit()
    except SQLAlchemyError:
        logger.exception("Failed to send message to %s: %s", recipient, subject)
        db.session.rollback()
        return False
    logger.info("Message sent to %s: %s", recipient, subject,
                extra={"event_type": event_type, "rights_request_id": request_id})
    return True


def send_message_to_multiple(recipients, **message_data):
    """Send the same message to several recipients; returns ``{total, success, failed}``."""
    results = [send_message(r, **message_data) for r in recipients]
    success = sum(1 for ok in results if ok)
    summary = {"total": len(results), "success": success, "failed": len(results) - success}
    logger.info("Bulk message sent: %d success, %d failed", summary["success"], summary["failed"])
    return summary


# ── Rights request events ────────────────────────────────────────────────────

def notify_request_submitted(rights_request, reviewers):
    """Tell every reviewer a new request is waiting in the unassigned queue."""
    return send_message_to_multiple(
        reviewers,
        subject=f"New rights request {rights_request.id}",
        message=(
            f"{rights_request.submitter_email} submitted rights request "
            f"{rights_request.id} ({rights_request.name or 'unnamed'}). "
            "It is waiting for a reviewer."
        ),
        request_id=rights_request.id,
        event_type=EVENT_SUBMITTED,
    )


def notify_assigned(rights_request, assigned_by):
    """Tell the new assignee; when a reviewer picked it up themselves, tell the submitter."""
    if assigned_by != rights_request.reviewer_email:
        return send_message(
            rights_request.reviewer_email,
            subject=f"Rights request {rights_request.id} assigned to you",
            message=f"{assigned_by} assigned rights request {rights_request.id} to you for review.",
            priority="important",
            request_id=rights_request.id,
            event_type=EVENT_ASSIGNED,
        )
    return send_message(
        rights_request.submitter_email,
        subject=f"Rights request {rights_request.id} is in review",
        message=f"Your rights request {rights_request.id} is now being reviewed by {rights_request.reviewer_email}.",
        request_id=rights_request.id,
        event_type=EVENT_ASSIGNED,
    )


def notify_status_changed(rights_request, previous_status):
    return send_message(
        rights_request.submitter_email,
        subject=f"Rights request {rights_request.id}: {rights_request.status}",
        message=(
            f"The status of your rights request {rights_request.id} changed "
            f"from {previous_status} to {rights_request.status}."
        ),
        request_id=rights_request.id,
        event_type=EVENT_STATUS_CHANGED,
    )


def notify_canceled(rights_request, canceled_by):
    """The party who did not cancel hears about it (assignee, or the submitter)."""
    if canceled_by == rights_request.submitter_email:
        recipient = rights_request.reviewer_email
    else:
        recipient = rights_request.submitter_email
    if not recipient:
        return False
    return send_message(
        recipient,
        subject=f"Rights request {rights_request.id} canceled",
        message=f"Rights request {rights_request.id} was canceled by {canceled_by} ({rights_request.status}).",
        priority="important",
        request_id=rights_request.id,
        event_type=EVENT_CANCELED,
    )
