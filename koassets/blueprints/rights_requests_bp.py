"""
Rights Requests Blueprint.

Endpoint groups:
  Submitter        GET  /api/rightsrequests
                   POST /api/rightsrequests
                   POST /api/rightsrequests/status           { requestId, status: "User Canceled" }
  Reviewer         GET  /api/rightsrequests/reviews
                   POST /api/rightsrequests/reviews/assign   { requestId, assigneeEmail? }
                   POST /api/rightsrequests/reviews/status   { requestId, status }
                   GET  /api/rightsrequests/reviews/reviewers
  Reporting        GET  /api/rightsrequests/reports?status=&reviewer=&year=

Identity comes from ``g.current_user_email`` (set by the auth middleware).
Service layer owns all business logic and commits; domain exceptions are
mapped to HTTP by the shared blueprint error handlers.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from koassets.auth import current_capabilities
from koassets.blueprints import register_error_handlers
from koassets.core.exceptions import PermissionDeniedError
from koassets.services import review_assignment
from koassets.services import rights_request_service as rrs
from koassets.services.review_assignment import REVIEWER_REQUIRED_MESSAGE
from koassets.services.reviewer_directory import list_reviewers
from koassets.utils.errors import E, api_error

logger = logging.getLogger(__name__)

rights_requests_bp = register_error_handlers(
    Blueprint("rights_requests", __name__, url_prefix="/api/rightsrequests")
)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _ok(rights_request, message):
    return jsonify({
        "success": True,
        "data": rights_request.to_dict(include_review_info=True),
        "message": message,
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Submitter  (/api/rightsrequests)
# ═════════════════════════════════════════════════════════════════════════


@rights_requests_bp.route("", methods=["GET"])
def list_rights_requests():
    """The caller's own requests keyed ``rights-request-<id>``."""
    result = rrs.list_for_submitter(g.current_user_email)
    return jsonify({"success": True, **result}), 200


@rights_requests_bp.route("", methods=["POST"])
def create_rights_request():
    rr = rrs.create_rights_request(_body(), g.current_user_email)
    return jsonify({
        "success": True,
        "data": rr.to_dict(),
        "message": "Rights request created successfully",
    }), 200


@rights_requests_bp.route("/status", methods=["POST"])
def update_submitter_status():
    """Submitters can only cancel (``User Canceled``) their own request."""
    data = _body()
    request_id, status = data.get("requestId"), data.get("status")
    if not request_id or not status:
        return api_error(E.VALIDATION_REQUIRED, "Request ID and status are required")
    rr = review_assignment.submitter_change_status(str(request_id), status, g.current_user_email)
    return _ok(rr, "Request cancelled successfully")


# ═════════════════════════════════════════════════════════════════════════
# Reviewer  (/api/rightsrequests/reviews)
# ═════════════════════════════════════════════════════════════════════════


@rights_requests_bp.route("/reviews", methods=["GET"])
def list_reviews():
    """Unassigned queue plus the caller's open assignments."""
    caps = current_capabilities()
    if not (caps.can_review or caps.can_assign_to_others):
        raise PermissionDeniedError(REVIEWER_REQUIRED_MESSAGE, required="rights-reviewer")
    result = rrs.list_reviews_for_reviewer(g.current_user_email)
    return jsonify({"success": True, **result}), 200


@rights_requests_bp.route("/reviews/assign", methods=["POST"])
def assign_review():
    """Self-assign (no ``assigneeEmail``) or assign to another reviewer."""
    data = _body()
    request_id = data.get("requestId")
    if not request_id:
        return api_error(E.VALIDATION_REQUIRED, "Request ID is required")
    rr = review_assignment.assign_review(
        str(request_id), g.current_user_email, assignee_email=data.get("assigneeEmail"),
    )
    return _ok(rr, "Review assigned successfully")


@rights_requests_bp.route("/reviews/status", methods=["POST"])
def update_review_status():
    data = _body()
    request_id, status = data.get("requestId"), data.get("status")
    if not request_id or not status:
        return api_error(E.VALIDATION_REQUIRED, "Request ID and status are required")
    rr = review_assignment.change_status(str(request_id), status, g.current_user_email)
    return _ok(rr, "Status updated successfully")


@rights_requests_bp.route("/reviews/reviewers", methods=["GET"])
def get_reviewers():
    """Reviewer roster for the senior "assign to" picker."""
    reviewers = list_reviewers(current_capabilities())
    return jsonify({"success": True, "data": reviewers, "count": len(reviewers)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Reporting  (/api/rightsrequests/reports)
# ═════════════════════════════════════════════════════════════════════════


@rights_requests_bp.route("/reports", methods=["GET"])
def get_report():
    result = rrs.report(
        current_capabilities(),
        status=request.args.get("status"),
        reviewer=request.args.get("reviewer"),
        year=request.args.get("year"),
    )
    return jsonify({"success": True, **result}), 200
