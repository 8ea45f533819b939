"""
KO Assets Rights Review Service
Authentication Middleware.

Provides:
    - Session creation from identity-provider (OIDC) id token claims
    - Session validation via the ``session`` cookie or ``Authorization: Bearer``
    - Email domain allow-list, checked at login and on every request
    - Sudo (impersonation) for allowed domains via SUDO_* cookies
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/* endpoints require a valid session (except /api/health)
    - The authenticated user is available as ``g.current_user`` (dict) and
      ``g.current_user_email``
    - Capability checks are done by the services, not here

Configuration (app config / env vars):
    ALLOWED_EMAIL_DOMAINS : comma-separated, default "coca-cola.com,adobe.com"
    ALLOWED_SUDO_DOMAINS  : comma-separated, default "coca-cola.com,adobe.com"
    SESSION_COOKIE_NAME   : default "session"
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from koassets.services.jwt_service import decode_session_token
from koassets.services.permission_service import get_user_capabilities
from koassets.utils.errors import E, api_error

logger = logging.getLogger(__name__)

SUDO_COOKIES = {
    "name": "SUDO_NAME",
    "email": "SUDO_EMAIL",
    "country": "SUDO_COUNTRY",
    "usertype": "SUDO_USERTYPE",
}

PUBLIC_PATHS = ("/api/health",)


# ── Domain checks ────────────────────────────────────────────────────────────

def _email_domain(email: str) -> str:
    return (email or "").rsplit("@", 1)[-1].lower()


def _allowed_domains(key: str) -> list[str]:
    return [d.lower() for d in current_app.config.get(key, [])]


def validate_user(session: dict) -> bool:
    """True when the session carries an email of an allowed domain."""
    email = (session or {}).get("email")
    if not email:
        return False
    if _email_domain(email) not in _allowed_domains("ALLOWED_EMAIL_DOMAINS"):
        logger.warning("User denied access because email domain is not allowed: %s", email)
        return False
    return True


def can_sudo(user: dict) -> bool:
    return _email_domain(user.get("email")) in _allowed_domains("ALLOWED_SUDO_DOMAINS")


# ── Session lifecycle ────────────────────────────────────────────────────────

def create_session(id_token_claims: dict | None) -> dict | None:
    """
    Build the session payload from OIDC id token claims.

    Returns None when there is no token or the user is not allowed to
    access the application.
    """
    if not id_token_claims:
        return None

    session = {
        "sub": id_token_claims.get("oid"),
        "name": id_token_claims.get("name"),
        "email": (id_token_claims.get("email") or "").lower() or None,
        "country": id_token_claims.get("ctry"),
        "usertype": id_token_claims.get("EmployeeType"),
        "company": id_token_claims.get("Company"),
    }
    if not validate_user(session):
        return None
    return session


def handle_sudo(user: dict, cookies) -> dict:
    """Apply SUDO_* cookies when the user may impersonate; keep the original under ``su``."""
    user["canSudo"] = can_sudo(user)

    if not any(cookies.get(c) for c in SUDO_COOKIES.values()):
        return user

    if not user["canSudo"]:
        logger.warning("Sudo denied for user: %s", user.get("email"))
        return user

    user["su"] = {field: user.get(field) for field in SUDO_COOKIES}
    for field, cookie in SUDO_COOKIES.items():
        user[field] = cookies.get(cookie) or user.get(field)
    user["email"] = (user.get("email") or "").lower()
    logger.info("User %s acting as %s", user["su"]["email"], user["email"])
    return user


def get_user(session: dict, cookies) -> dict | None:
    """User object for a validated session, or None if no longer allowed."""
    if not validate_user(session):
        return None
    return handle_sudo(dict(session), cookies)


def _get_token_from_request() -> str | None:
    """Extract the session token from the Bearer header or the session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    cookie_name = current_app.config.get("SESSION_COOKIE_NAME", "session")
    return request.cookies.get(cookie_name) or None


def current_capabilities():
    """Capabilities of the authenticated (possibly impersonated) user."""
    return get_user_capabilities(getattr(g, "current_user_email", None))


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json when a body is present.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.UNSUPPORTED_MEDIA_TYPE,
                "Content-Type must be application/json for state-changing requests",
            )
    return None


def _unauthenticated(message="User not authenticated"):
    return api_error(E.UNAUTHENTICATED, message)


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips the health check and CORS pre-flight requests
    """
    @app.before_request
    def _before_request_auth():
        g.current_user = None
        g.current_user_email = None

        if not request.path.startswith("/api/"):
            return None
        if request.method == "OPTIONS":
            return None
        if any(request.path == p or request.path.startswith(p + "/") for p in PUBLIC_PATHS):
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        token = _get_token_from_request()
        if not token:
            return _unauthenticated()

        try:
            session = decode_session_token(token)
        except pyjwt.ExpiredSignatureError:
            return _unauthenticated("Session expired")
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid session token on %s", request.path)
            return _unauthenticated()

        user = get_user(session, request.cookies)
        if user is None:
            return api_error(E.FORBIDDEN, "Access denied")

        g.current_user = user
        g.current_user_email = user["email"]
        return None

    logger.info("Auth middleware installed")
