"""
Permission Service: token normalisation, capability resolution and cache.

Permission tokens are plain strings in the configuration store. They are
mapped once onto the closed ``Permission`` vocabulary and folded into a
``Capabilities`` value:

    can_review / can_self_assign   rights-reviewer OR rights-manager (legacy)
    can_assign_to_others           senior-rights-reviewer (independent of the above)
    can_view_reports               reports-admin

``rights-manager`` is never distinguished from ``rights-reviewer``: both land
on the same capability flags and no check looks at the raw token.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from flask import current_app

from koassets.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 300  # 5 minutes


class Permission(str, Enum):
    RIGHTS_REVIEWER = "rights-reviewer"
    SENIOR_RIGHTS_REVIEWER = "senior-rights-reviewer"
    RIGHTS_MANAGER = "rights-manager"
    REPORTS_ADMIN = "reports-admin"


PERMISSION_ALIASES = {
    "rr": Permission.RIGHTS_REVIEWER,
    "rm": Permission.RIGHTS_MANAGER,
}

_TOKEN_LOOKUP = {p.value: p for p in Permission}
_TOKEN_LOOKUP.update(PERMISSION_ALIASES)

REVIEWER_PERMISSIONS = frozenset({Permission.RIGHTS_REVIEWER, Permission.RIGHTS_MANAGER})


@dataclass(frozen=True)
class Capabilities:
    """Capability set derived from a user's permissions. Never persisted."""

    can_review: bool = False
    can_self_assign: bool = False
    can_assign_to_others: bool = False
    can_view_reports: bool = False

    def to_dict(self) -> dict:
        return {
            "canReview": self.can_review,
            "canSelfAssign": self.can_self_assign,
            "canAssignToOthers": self.can_assign_to_others,
            "canViewReports": self.can_view_reports,
        }


NO_CAPABILITIES = Capabilities()


def normalize_permissions(tokens: Optional[Iterable[str]]) -> frozenset[Permission]:
    """Map raw tokens (full names or aliases) onto ``Permission`` members.

    Unknown tokens are dropped silently; ``None`` or an empty list yields an
    empty set. Matching is exact and case-sensitive after trimming whitespace.
    """
    if not tokens:
        return frozenset()
    resolved = set()
    for token in tokens:
        if not isinstance(token, str):
            continue
        permission = _TOKEN_LOOKUP.get(token.strip())
        if permission is not None:
            resolved.add(permission)
    return frozenset(resolved)


def parse_permission_list(raw) -> list[str]:
    """Split a sheet cell (``"senior-rights-reviewer, rr"``) or pass a list through."""
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw)
    seen = []
    for item in items:
        item = str(item).strip()
        if item and item not in seen:
            seen.append(item)
    return seen


def resolve_capabilities(tokens: Optional[Iterable[str]]) -> Capabilities:
    """Pure function: permission tokens → ``Capabilities``."""
    permissions = normalize_permissions(tokens)
    reviewer = bool(permissions & REVIEWER_PERMISSIONS)
    return Capabilities(
        can_review=reviewer,
        can_self_assign=reviewer,
        can_assign_to_others=Permission.SENIOR_RIGHTS_REVIEWER in permissions,
        can_view_reports=Permission.REPORTS_ADMIN in permissions,
    )


# ── Per-user cache ───────────────────────────────────────────────────────────

_capability_cache: dict[str, tuple[float, Capabilities]] = {}
_cache_lock = threading.Lock()


def _cache_ttl() -> int:
    try:
        return int(current_app.config.get("PERMISSION_CACHE_TTL", DEFAULT_CACHE_TTL))
    except RuntimeError:
        return DEFAULT_CACHE_TTL


def _get_cached(email: str) -> Optional[Capabilities]:
    with _cache_lock:
        entry = _capability_cache.get(email)
        if entry is None:
            return None
        cached_at, caps = entry
        if time.time() - cached_at > _cache_ttl():
            del _capability_cache[email]
            return None
        return caps


def _set_cached(email: str, caps: Capabilities) -> None:
    with _cache_lock:
        _capability_cache[email] = (time.time(), caps)


def invalidate_cache(email: str) -> None:
    with _cache_lock:
        _capability_cache.pop(User.normalize_email(email), None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _capability_cache.clear()


def get_user_permissions(email: str) -> list[str]:
    """Raw configured tokens for ``email`` (empty when the user is not configured)."""
    user = User.get_by_email(email)
    if user is None:
        return []
    return list(user.permissions or [])


def get_user_capabilities(email: str) -> Capabilities:
    """Resolve and cache the capability set of ``email``."""
    email = User.normalize_email(email)
    if not email:
        return NO_CAPABILITIES

    cached = _get_cached(email)
    if cached is not None:
        return cached

    caps = resolve_capabilities(get_user_permissions(email))
    _set_cached(email, caps)
    logger.debug("Resolved capabilities for %s: %s", email, caps)
    return caps
