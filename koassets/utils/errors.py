"""JSON error envelope shared by blueprints and the auth middleware.

Every error the portal sees has the same body::

    {"success": false, "error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is only present for field-level validation failures.

Usage
-----
    from koassets.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "Request ID is required")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes; the HTTP status of each is fixed in ``STATUS_BY_CODE``."""

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"
    STORE_UNAVAILABLE = "ERR_STORE_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE: dict[str, int] = {
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.STORE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for ``code``; unknown codes default to 400."""
    body: dict = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)
