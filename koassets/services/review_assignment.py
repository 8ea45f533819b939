"""
Review Assignment Engine: guarded lifecycle transitions of a rights request.

States (derived from the record, see ``RightsRequest.review_state``):
    unassigned → assigned → resolved

Transitions:
    self_assign         can_self_assign            unassigned → assigned
    assign_to_reviewer  can_assign_to_others       unassigned → assigned (target must review)
    change_status       assignee or senior         assigned, forward-only status
    cancel              submitter / reviewer       any non-terminal → User/RM Canceled

Every check runs before any write. Writes are conditional UPDATEs keyed on
the version that was read (and, for assignments, on ``reviewer_email IS
NULL``); when no row matches another writer got there first and the caller
gets the same not-found style error as for a missing request.

Usage:
    from koassets.services.review_assignment import assign_review

    rr = assign_review("17123456789012", actor="a@coca-cola.com",
                       assignee_email="c@coca-cola.com")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from koassets.core.exceptions import (
    InvalidAssigneeError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
    ValidationError,
)
from koassets.models import db
from koassets.models.audit import write_audit
from koassets.models.rights_request import (
    REVIEW_ASSIGNED,
    REVIEW_UNASSIGNED,
    REVIEWER_CHANGEABLE_STATUSES,
    RightsRequest,
    STATUS_IN_PROGRESS,
    STATUS_RANK,
    STATUS_RM_CANCELED,
    STATUS_USER_CANCELED,
    TERMINAL_STATUSES,
)
from koassets.models.user import User
from koassets.services import notification
from koassets.services.permission_service import get_user_capabilities
from koassets.services.reviewer_directory import SENIOR_REQUIRED_MESSAGE

logger = logging.getLogger(__name__)

NOT_AMONG_UNASSIGNED = "Rights request not found among unassigned reviews"
NOT_ASSIGNED_TO_YOU = "Review not found or not assigned to you"
NOT_OWNED = "Request not found or not owned by you"
ALREADY_RESOLVED = "Rights request not found or already resolved"

REVIEWER_REQUIRED_MESSAGE = "Rights reviewer permission required."


# ── Private helpers ──────────────────────────────────────────────────────────


def _load_request(request_id: str):
    return db.session.get(RightsRequest, str(request_id))


def _invalid_state(request_id: str, message: str, reason: str, actor: str) -> InvalidStateError:
    logger.info("Rights request %s transition rejected for %s: %s", request_id, actor, reason)
    return InvalidStateError(request_id, message, reason=reason)


def _conditional_update(rights_request, actor: str, values: dict, *, require_unassigned=False) -> bool:
    """UPDATE the row only if nobody wrote it since it was read.

    Returns True when exactly one row changed.
    """
    now = datetime.now(timezone.utc)
    q = RightsRequest.query.filter(
        RightsRequest.id == rights_request.id,
        RightsRequest.version == rights_request.version,
        RightsRequest.status.notin_(TERMINAL_STATUSES),
    )
    if require_unassigned:
        q = q.filter(RightsRequest.reviewer_email.is_(None))

    payload = dict(values)
    payload["version"] = rights_request.version + 1
    payload["last_modified"] = now
    payload["last_modified_by"] = actor
    try:
        updated = q.update(payload, synchronize_session=False)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Conditional write failed for rights request %s", rights_request.id)
        raise StoreUnavailableError("Rights request store unavailable") from exc
    return updated == 1


def _commit(request_id: str, *, entity_id: str, action: str, actor: str, diff: dict):
    """Append the audit row and commit the transition; returns the fresh record."""
    try:
        write_audit(entity_type="rights_request", entity_id=entity_id, action=action,
                    actor=actor, diff=diff)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Commit failed for rights request %s (%s)", request_id, action)
        raise StoreUnavailableError("Rights request store unavailable") from exc
    rights_request = db.session.get(RightsRequest, request_id)
    db.session.refresh(rights_request)
    return rights_request


# ── Public API ───────────────────────────────────────────────────────────────


def self_assign(request_id: str, actor: str) -> RightsRequest:
    """Assign an unassigned request to the calling reviewer."""
    actor = User.normalize_email(actor)
    caps = get_user_capabilities(actor)
    if not caps.can_self_assign:
        raise PermissionDeniedError(REVIEWER_REQUIRED_MESSAGE, required="rights-reviewer")

    rr = _load_request(request_id)
    if rr is None:
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, "does not exist", actor)
    if rr.review_state != REVIEW_UNASSIGNED:
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, f"state is {rr.review_state}", actor)

    previous_status = rr.status
    rid = rr.id
    won = _conditional_update(
        rr, actor,
        {"reviewer_email": actor, "assigned_at": datetime.now(timezone.utc), "status": STATUS_IN_PROGRESS},
        require_unassigned=True,
    )
    if not won:
        db.session.rollback()
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, "lost assignment race", actor)

    rr = _commit(rid, entity_id=rid, action="rights_request.self_assign", actor=actor, diff={
        "rightsReviewer": {"old": None, "new": actor},
        "status": {"old": previous_status, "new": STATUS_IN_PROGRESS},
    })
    logger.info("Rights request %s self-assigned by %s", rid, actor)
    notification.notify_assigned(rr, assigned_by=actor)
    return rr


def assign_to_reviewer(request_id: str, assignee_email: str, actor: str) -> RightsRequest:
    """Senior reviewer assigns an unassigned request to another reviewer."""
    actor = User.normalize_email(actor)
    assignee = User.normalize_email(assignee_email)
    caps = get_user_capabilities(actor)
    if not caps.can_assign_to_others:
        raise PermissionDeniedError(SENIOR_REQUIRED_MESSAGE, required="senior-rights-reviewer")

    if not assignee or not get_user_capabilities(assignee).can_review:
        logger.info("Rights request %s: %s tried to assign to non-reviewer %s", request_id, actor, assignee)
        raise InvalidAssigneeError(assignee)

    rr = _load_request(request_id)
    if rr is None:
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, "does not exist", actor)
    if rr.review_state != REVIEW_UNASSIGNED:
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, f"state is {rr.review_state}", actor)

    previous_status = rr.status
    rid = rr.id
    won = _conditional_update(
        rr, actor,
        {"reviewer_email": assignee, "assigned_at": datetime.now(timezone.utc), "status": STATUS_IN_PROGRESS},
        require_unassigned=True,
    )
    if not won:
        db.session.rollback()
        raise _invalid_state(request_id, NOT_AMONG_UNASSIGNED, "lost assignment race", actor)

    rr = _commit(rid, entity_id=rid, action="rights_request.assign", actor=actor, diff={
        "rightsReviewer": {"old": None, "new": assignee},
        "status": {"old": previous_status, "new": STATUS_IN_PROGRESS},
    })
    logger.info("Rights request %s assigned to %s by %s", rid, assignee, actor)
    notification.notify_assigned(rr, assigned_by=actor)
    return rr


def assign_review(request_id: str, actor: str, assignee_email: str | None = None) -> RightsRequest:
    """Single entry point behind the assign endpoint.

    No assignee, or the caller's own address, means self-assignment.
    """
    assignee = User.normalize_email(assignee_email)
    if not assignee or assignee == User.normalize_email(actor):
        return self_assign(request_id, actor)
    return assign_to_reviewer(request_id, assignee, actor)


def change_status(request_id: str, status: str, actor: str) -> RightsRequest:
    """Move an assigned request forward; ``RM Canceled`` is routed to ``cancel``."""
    if status not in REVIEWER_CHANGEABLE_STATUSES:
        raise ValidationError("Invalid status", details={"status": f"must be one of {list(REVIEWER_CHANGEABLE_STATUSES)}"})
    if status == STATUS_RM_CANCELED:
        return cancel(request_id, actor, as_reviewer=True)

    actor = User.normalize_email(actor)
    caps = get_user_capabilities(actor)
    if not (caps.can_review or caps.can_assign_to_others):
        raise PermissionDeniedError(REVIEWER_REQUIRED_MESSAGE, required="rights-reviewer")

    rr = _load_request(request_id)
    if rr is None:
        raise _invalid_state(request_id, NOT_ASSIGNED_TO_YOU, "does not exist", actor)

    is_assignee = caps.can_review and rr.reviewer_email == actor
    if not (is_assignee or caps.can_assign_to_others):
        logger.warning("Rights request %s: %s is not the assignee (%s)", request_id, actor, rr.reviewer_email)
        raise PermissionDeniedError(REVIEWER_REQUIRED_MESSAGE, required="rights-reviewer")

    if rr.review_state != REVIEW_ASSIGNED:
        raise _invalid_state(request_id, NOT_ASSIGNED_TO_YOU, f"state is {rr.review_state}", actor)

    previous_status = rr.status
    if STATUS_RANK.get(status, 0) <= STATUS_RANK.get(previous_status, 0):
        raise ValidationError(
            "Invalid status transition",
            details={"status": f"cannot move from '{previous_status}' to '{status}'"},
        )

    rid = rr.id
    if not _conditional_update(rr, actor, {"status": status}):
        db.session.rollback()
        raise _invalid_state(request_id, NOT_ASSIGNED_TO_YOU, "concurrent update", actor)

    rr = _commit(rid, entity_id=rid, action="rights_request.status_change", actor=actor, diff={
        "status": {"old": previous_status, "new": status},
    })
    logger.info("Rights request %s status %s → %s by %s", rid, previous_status, status, actor)
    notification.notify_status_changed(rr, previous_status)
    return rr


def cancel(request_id: str, actor: str, *, as_reviewer: bool = False) -> RightsRequest:
    """Cancel a non-terminal request as its submitter or as a reviewer."""
    actor = User.normalize_email(actor)

    if as_reviewer:
        caps = get_user_capabilities(actor)
        if not (caps.can_review or caps.can_assign_to_others):
            raise PermissionDeniedError(REVIEWER_REQUIRED_MESSAGE, required="rights-reviewer")
        rr = _load_request(request_id)
        if rr is None:
            raise _invalid_state(request_id, NOT_ASSIGNED_TO_YOU, "does not exist", actor)
        new_status, action = STATUS_RM_CANCELED, "rights_request.reviewer_cancel"
    else:
        rr = _load_request(request_id)
        if rr is None or rr.submitter_email != actor:
            raise NotFoundError("Rights request", resource_id=request_id, message=NOT_OWNED)
        new_status, action = STATUS_USER_CANCELED, "rights_request.user_cancel"

    if rr.is_terminal:
        raise _invalid_state(request_id, ALREADY_RESOLVED, f"status is {rr.status}", actor)

    previous_status = rr.status
    rid = rr.id
    if not _conditional_update(rr, actor, {"status": new_status}):
        db.session.rollback()
        raise _invalid_state(request_id, ALREADY_RESOLVED, "concurrent update", actor)

    rr = _commit(rid, entity_id=rid, action=action, actor=actor, diff={
        "status": {"old": previous_status, "new": new_status},
    })
    logger.info("Rights request %s canceled (%s) by %s", rid, new_status, actor)
    notification.notify_canceled(rr, canceled_by=actor)
    return rr


def submitter_change_status(request_id: str, status: str, actor: str) -> RightsRequest:
    """Submitters may only cancel their own request."""
    if status != STATUS_USER_CANCELED:
        raise ValidationError("Invalid status for submitter", details={"status": "must be 'User Canceled'"})
    return cancel(request_id, actor, as_reviewer=False)
