"""
Rights Request Service: submission, listings and reporting.

Transitions of an existing request (assignment, status, cancellation) live
in ``koassets.services.review_assignment``; this module only creates
requests and reads them back in the shapes the portal expects.
"""

from __future__ import annotations

import logging
import random
import time
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from koassets.core.exceptions import PermissionDeniedError, StoreUnavailableError, ValidationError
from koassets.models import db
from koassets.models.audit import write_audit
from koassets.models.rights_request import (
    REQUEST_STATUSES,
    RightsRequest,
    STATUS_NOT_STARTED,
    TERMINAL_STATUSES,
)
from koassets.models.user import User
from koassets.services import notification
from koassets.services.permission_service import Capabilities
from koassets.services.reviewer_directory import reviewer_emails
from koassets.utils.dates import format_date_to_gmt

logger = logging.getLogger(__name__)

USAGE_RIGHTS_LABELS = {
    "music": "Music",
    "talent": "Talent",
    "photographer": "Photographer",
    "voiceover": "Voiceover",
    "stockFootage": "Stock Footage",
}

REPORTS_REQUIRED_MESSAGE = "Reports admin permission required."


def generate_request_id() -> str:
    return f"{int(time.time() * 1000)}{random.randint(0, 999999)}"


def _named_refs(items) -> list[dict]:
    if not isinstance(items, list):
        return []
    return [{"name": i.get("name", ""), "id": str(i.get("id", ""))} for i in items if isinstance(i, dict)]


def _usage_rights(flags) -> list[str]:
    if not isinstance(flags, dict):
        return []
    return [USAGE_RIGHTS_LABELS[k] for k, v in flags.items() if v and k in USAGE_RIGHTS_LABELS]


def build_request_details(payload: dict, submitter_email: str) -> dict:
    """Map the portal's request form onto the stored detail sections."""
    return {
        "intendedUsage": {
            "rightsStartDate": format_date_to_gmt(payload.get("airDate")),
            "rightsEndDate": format_date_to_gmt(payload.get("pullDate")),
            "marketsCovered": _named_refs(payload.get("selectedMarkets")),
            "mediaRights": _named_refs(payload.get("selectedMediaChannels")),
        },
        "associateAgency": {
            "agencyOrTcccAssociate": payload.get("agencyType") or "Associate",
            "name": payload.get("agencyName") or "",
            "contactName": payload.get("contactName") or "",
            "emailAddress": payload.get("contactEmail") or submitter_email,
            "phoneNumber": payload.get("contactPhone") or "",
        },
        "materialsNeeded": {
            "dateRequiredBy": format_date_to_gmt(payload.get("materialsRequiredDate")),
            "formatsRequiredBy": payload.get("formatsRequired") or "",
            "usageRightsRequired": _usage_rights(payload.get("usageRightsRequired")),
            "associateOrAgencyUsers": [],
            "plannedAdaptations": payload.get("adaptationIntention") or "",
        },
        "budgetForUsage": {
            "budgetForMarket": payload.get("budgetForMarket") or "",
            "exceptionsOrNotes": payload.get("exceptionOrNotes") or "",
        },
    }


def create_rights_request(payload: dict, submitter_email: str) -> RightsRequest:
    """Store a new, unassigned request and tell every reviewer about it."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    submitter = User.normalize_email(submitter_email)

    assets = [
        {"name": a.get("name") or "", "assetId": a.get("assetId") or ""}
        for a in (payload.get("restrictedAssets") or [])
        if isinstance(a, dict)
    ]
    rr = RightsRequest(
        id=generate_request_id(),
        submitter_email=submitter,
        status=STATUS_NOT_STARTED,
        name=payload.get("agencyName") or "",
        assets=assets,
        details=build_request_details(payload, submitter),
        rights_check_results={},
        error_message="",
        version=1,
        last_modified_by=submitter,
    )
    try:
        db.session.add(rr)
        db.session.flush()
        write_audit(
            entity_type="rights_request",
            entity_id=rr.id,
            action="rights_request.create",
            actor=submitter,
            diff={"status": {"old": None, "new": STATUS_NOT_STARTED}},
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to store rights request for %s", submitter)
        raise StoreUnavailableError("Rights request store unavailable") from exc

    logger.info("Rights request %s created by %s (%d assets)", rr.id, submitter, len(assets))
    notification.notify_request_submitted(rr, reviewer_emails())
    return rr


def keyed(requests, include_review_info=False) -> dict:
    return {rr.key: rr.to_dict(include_review_info=include_review_info) for rr in requests}


def list_for_submitter(submitter_email: str) -> dict:
    rows = (
        RightsRequest.query.filter_by(submitter_email=User.normalize_email(submitter_email))
        .order_by(RightsRequest.created_at.desc())
        .all()
    )
    data = keyed(rows)
    return {"data": data, "count": len(data)}


def list_reviews_for_reviewer(email: str) -> dict:
    """Unassigned queue plus the open requests assigned to ``email``."""
    email = User.normalize_email(email)
    open_rows = (
        RightsRequest.query.filter(
            RightsRequest.status.notin_(TERMINAL_STATUSES),
            or_(RightsRequest.reviewer_email.is_(None), RightsRequest.reviewer_email == email),
        )
        .order_by(RightsRequest.created_at.asc())
        .all()
    )
    unassigned = [rr for rr in open_rows if rr.reviewer_email is None]
    assigned = [rr for rr in open_rows if rr.reviewer_email is not None]
    data = keyed(unassigned + assigned, include_review_info=True)
    return {
        "data": data,
        "count": len(data),
        "unassignedCount": len(unassigned),
        "assignedCount": len(assigned),
    }


def report(caller: Capabilities, *, status=None, reviewer=None, year=None) -> dict:
    """All requests for the reporting dashboard, with aggregations.

    Filters use ``"all"`` (or empty) for no filtering, as the dashboard sends.
    """
    if not caller.can_view_reports:
        raise PermissionDeniedError(REPORTS_REQUIRED_MESSAGE, required="reports-admin")

    q = RightsRequest.query
    if status and status != "all":
        if status not in REQUEST_STATUSES:
            raise ValidationError("Invalid status", details={"status": status})
        q = q.filter(RightsRequest.status == status)
    if reviewer and reviewer != "all":
        q = q.filter(RightsRequest.reviewer_email == User.normalize_email(reviewer))
    if year and year != "all":
        try:
            year = int(year)
        except (TypeError, ValueError):
            raise ValidationError("Invalid year", details={"year": year})
        if not 1 <= year <= 9998:
            raise ValidationError("Invalid year", details={"year": year})
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        q = q.filter(RightsRequest.created_at >= start, RightsRequest.created_at < end)

    rows = q.order_by(RightsRequest.created_at.desc()).all()
    status_counts = Counter(rr.status for rr in rows)
    reviewer_counts = Counter(rr.reviewer_email for rr in rows if rr.reviewer_email)
    year_counts = Counter(str(rr.created_at.year) for rr in rows if rr.created_at)

    data = keyed(rows, include_review_info=True)
    return {
        "data": data,
        "count": len(data),
        "statusCounts": [{"status": s, "count": c} for s, c in status_counts.most_common()],
        "reviewerCounts": [{"reviewer": r, "count": c} for r, c in reviewer_counts.most_common()],
        "yearCounts": dict(year_counts),
    }
