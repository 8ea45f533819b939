"""
JWT Service: session token generation and verification.

Session token: 12 hours (configurable via SESSION_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": <oid in the identity provider>,
    "name": "...",
    "email": "<lower-case email>",
    "country": "...",
    "usertype": "...",
    "company": "...",
    "type": "session",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_SESSION_EXPIRES = 43200    # 12 hours
ALGORITHM = "HS256"
TOKEN_TYPE = "session"


def _get_secret():
    return current_app.config.get("SESSION_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_session_expires():
    return int(current_app.config.get("SESSION_EXPIRES", DEFAULT_SESSION_EXPIRES))


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_session_token(session: dict) -> str:
    """Sign a session payload produced by ``koassets.auth.create_session``."""
    now = datetime.now(timezone.utc)
    payload = dict(session)
    payload.update({
        "type": TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(seconds=_get_session_expires()),
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_session_token(token: str) -> dict:
    """
    Decode and verify a session token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected {TOKEN_TYPE} token, got {payload.get('type')}")
    return payload
