"""
Current user blueprint.

Endpoints:
    GET /api/user: identity of the session user plus resolved capabilities
"""

import logging
import time

from flask import Blueprint, g, jsonify

from koassets.auth import current_capabilities
from koassets.blueprints import register_error_handlers
from koassets.services.permission_service import get_user_permissions

logger = logging.getLogger(__name__)

user_bp = register_error_handlers(Blueprint("user", __name__, url_prefix="/api"))


@user_bp.route("/user", methods=["GET"])
def get_current_user():
    user = g.current_user
    exp = user.get("exp")
    return jsonify({
        "name": user.get("name"),
        "email": user.get("email"),
        "country": user.get("country"),
        "usertype": user.get("usertype"),
        "company": user.get("company"),
        "canSudo": user.get("canSudo", False),
        "su": user.get("su"),
        "permissions": get_user_permissions(user.get("email")),
        "capabilities": current_capabilities().to_dict(),
        "sessionExpiresInSec": int(exp - time.time()) if exp else None,
    }), 200
