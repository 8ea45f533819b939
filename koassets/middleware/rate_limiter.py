"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in koassets/__init__.py with no default
limits; this module applies granular limits per route category, keyed by
the authenticated user's email (falling back to the remote IP).

Usage:
    from koassets.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Limiter key: user email if authenticated, else remote IP."""
    email = getattr(g, "current_user_email", None)
    if email:
        return f"user:{email}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user):
        - Rights requests / reviews:  60/minute (assignment and status writes)
        - Messages / user:            200/minute (polled by the portal header)
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("rights_requests")
    if bp:
        limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in ("messages", "user"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: rights requests: %s, messages/user: %s",
                    WRITE_LIMIT, READ_LIMIT)
