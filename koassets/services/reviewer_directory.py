"""
Reviewer Directory: who currently holds rights reviewer capability.

Used by senior reviewers to populate the "assign to" choice list and,
unguarded, by the notification fan-out for new requests. Both read the same
capability-filtered roster, so "who is a reviewer" and "who gets notified"
cannot drift apart.
"""

import logging

from koassets.core.exceptions import PermissionDeniedError
from koassets.models.user import User
from koassets.services.permission_service import Capabilities, resolve_capabilities

logger = logging.getLogger(__name__)

SENIOR_REQUIRED_MESSAGE = "Senior rights reviewer permission required."


def _reviewer_users() -> list[User]:
    users = User.query.order_by(User.email).all()
    return [u for u in users if resolve_capabilities(u.permissions).can_review]


def list_reviewers(caller: Capabilities) -> list[dict]:
    """Return ``[{email, permissions}]`` for every configured reviewer.

    Raises:
        PermissionDeniedError: caller lacks ``can_assign_to_others``.
    """
    if not caller.can_assign_to_others:
        raise PermissionDeniedError(SENIOR_REQUIRED_MESSAGE, required="senior-rights-reviewer")
    return [
        {"email": u.email, "permissions": list(u.permissions or [])}
        for u in _reviewer_users()
    ]


def reviewer_emails() -> list[str]:
    """Reviewer addresses for notification fan-out (no caller guard)."""
    return [u.email for u in _reviewer_users()]
