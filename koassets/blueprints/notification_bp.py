"""
KO Assets Rights Review Service
Messages Blueprint: the per-user inbox shown in the portal header.

Provides:
    - GET    /api/messages         list the caller's messages (newest first)
    - POST   /api/messages         create a message in the caller's inbox
    - GET    /api/messages/<id>    read one message
    - POST   /api/messages/<id>    merge updates (e.g. mark as read)
    - DELETE /api/messages/<id>    remove a message

Messages are always scoped to ``g.current_user_email``; another user's
message id resolves to 404.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from koassets.blueprints import register_error_handlers
from koassets.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = register_error_handlers(
    Blueprint("messages", __name__, url_prefix="/api/messages")
)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@notification_bp.route("", methods=["GET"])
def list_messages():
    owner = g.current_user_email
    messages = NotificationService.list_for_owner(owner)
    return jsonify({
        "success": True,
        "messages": [m.to_dict() for m in messages],
        "count": len(messages),
        "unreadCount": NotificationService.unread_count(owner),
    }), 200


@notification_bp.route("", methods=["POST"])
def create_message():
    msg = NotificationService.create(g.current_user_email, _body())
    return jsonify({"success": True, "message": msg.to_dict()}), 200


@notification_bp.route("/<message_id>", methods=["GET"])
def get_message(message_id):
    msg = NotificationService.get(g.current_user_email, message_id)
    return jsonify({"success": True, "message": msg.to_dict()}), 200


@notification_bp.route("/<message_id>", methods=["POST"])
def update_message(message_id):
    msg = NotificationService.update(g.current_user_email, message_id, _body())
    return jsonify({"success": True, "message": msg.to_dict()}), 200


@notification_bp.route("/<message_id>", methods=["DELETE"])
def delete_message(message_id):
    NotificationService.delete(g.current_user_email, message_id)
    return jsonify({"success": True, "message": "Notification deleted successfully"}), 200
