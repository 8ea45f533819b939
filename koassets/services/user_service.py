"""
User Service: maintenance of configured users and their permission tokens.

Permissions normally come from the portal's permission spreadsheet (see
``koassets.integrations.helix_gateway``); ``sync_user_permissions`` applies a
fetched sheet, ``set_user_permissions`` edits a single user.
"""

from __future__ import annotations

import logging

from email_validator import EmailNotValidError, validate_email

from koassets.core.exceptions import ValidationError
from koassets.models import db
from koassets.models.audit import write_audit
from koassets.models.user import User
from koassets.services.permission_service import invalidate_cache, parse_permission_list

logger = logging.getLogger(__name__)


def set_user_permissions(email: str, permissions, *, name: str | None = None,
                         actor: str = "system") -> User:
    """Create or update one user's permission tokens (flushes, caller commits)."""
    email = User.normalize_email(email)
    try:
        email = User.normalize_email(validate_email(email, check_deliverability=False).normalized)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": email})

    tokens = parse_permission_list(permissions)
    user = db.session.get(User, email)
    old = list(user.permissions or []) if user else []
    if user is None:
        user = User(email=email, name=name or "", permissions=tokens)
        db.session.add(user)
    else:
        user.permissions = tokens
        if name is not None:
            user.name = name

    if old != tokens:
        write_audit(
            entity_type="user",
            entity_id=email,
            action="user.permissions_update",
            actor=actor,
            diff={"permissions": {"old": old, "new": tokens}},
        )
    db.session.flush()
    invalidate_cache(email)
    return user


def sync_user_permissions(rows: dict[str, dict], *, remove_missing: bool = False) -> dict:
    """
    Apply a permission sheet keyed by email.

    Each row carries ``permissions`` (list or comma-separated string) and an
    optional ``name``. With ``remove_missing`` users absent from the sheet
    keep their row but lose every permission; rows are never deleted.

    Returns:
        {"created": n, "updated": n, "cleared": n, "unchanged": n, "skipped": n}
    """
    counts = {"created": 0, "updated": 0, "cleared": 0, "unchanged": 0, "skipped": 0}
    seen = set()

    for key, row in rows.items():
        email = User.normalize_email(row.get("email") or key)
        if not email:
            continue
        seen.add(email)
        existing = db.session.get(User, email)
        tokens = parse_permission_list(row.get("permissions"))
        if existing is not None and list(existing.permissions or []) == tokens:
            counts["unchanged"] += 1
            continue
        try:
            set_user_permissions(email, tokens, name=row.get("name"), actor="permission-sync")
        except ValidationError as e:
            logger.warning("Skipping permission sheet row %r: %s", key, e)
            counts["skipped"] += 1
            continue
        counts["created" if existing is None else "updated"] += 1

    if remove_missing:
        for user in User.query.all():
            if user.email not in seen and user.permissions:
                set_user_permissions(user.email, [], actor="permission-sync")
                counts["cleared"] += 1

    db.session.commit()
    logger.info("Permission sync applied: %s", counts)
    return counts
