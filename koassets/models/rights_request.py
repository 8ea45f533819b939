"""
KO Assets Rights Review Service
Rights request domain model.

Models:
    - RightsRequest: a request to clear usage rights for one or more assets,
      together with its review assignment.

The review lifecycle is derived, not stored:
    unassigned  no reviewer and status not terminal
    assigned    reviewer set and status not terminal
    resolved    status is terminal (Done, Completed, User Canceled, RM Canceled)
"""

from datetime import datetime, timezone

from koassets.models import db
from koassets.utils.dates import http_date, iso

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_NOT_STARTED = "Not Started"
STATUS_IN_PROGRESS = "In Progress"
STATUS_QUOTE_PENDING = "Quote Pending"
STATUS_RELEASE_PENDING = "Release Pending"
STATUS_DONE = "Done"
STATUS_COMPLETED = "Completed"
STATUS_USER_CANCELED = "User Canceled"
STATUS_RM_CANCELED = "RM Canceled"

REQUEST_STATUSES = (
    STATUS_NOT_STARTED,
    STATUS_IN_PROGRESS,
    STATUS_QUOTE_PENDING,
    STATUS_RELEASE_PENDING,
    STATUS_DONE,
    STATUS_COMPLETED,
    STATUS_USER_CANCELED,
    STATUS_RM_CANCELED,
)

TERMINAL_STATUSES = frozenset({
    STATUS_DONE, STATUS_COMPLETED, STATUS_USER_CANCELED, STATUS_RM_CANCELED,
})

# Forward-only progression; cancellations are outside the ranking.
STATUS_RANK = {
    STATUS_NOT_STARTED: 0,
    STATUS_IN_PROGRESS: 1,
    STATUS_QUOTE_PENDING: 2,
    STATUS_RELEASE_PENDING: 3,
    STATUS_DONE: 4,
    STATUS_COMPLETED: 4,
}

REVIEWER_CHANGEABLE_STATUSES = (
    STATUS_IN_PROGRESS,
    STATUS_RM_CANCELED,
    STATUS_QUOTE_PENDING,
    STATUS_RELEASE_PENDING,
    STATUS_DONE,
)

SUBMITTER_CHANGEABLE_STATUSES = (STATUS_USER_CANCELED,)

REVIEW_UNASSIGNED = "unassigned"
REVIEW_ASSIGNED = "assigned"
REVIEW_RESOLVED = "resolved"

REQUEST_ID_PREFIX = "rights-request-"
CREATED_BY_SERVICE = "tccc-dam-user-service"


class RightsRequest(db.Model):
    """
    Rights clearance request.

    ``version`` is bumped on every write. Transitions update with
    ``WHERE id = :id AND version = :seen`` so that only one of two racing
    writers can succeed.
    """

    __tablename__ = "rights_requests"
    __table_args__ = (
        db.Index("idx_rr_reviewer_status", "reviewer_email", "status"),
    )

    id = db.Column(db.String(32), primary_key=True)
    submitter_email = db.Column(db.String(254), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=STATUS_NOT_STARTED, index=True)
    reviewer_email = db.Column(db.String(254), nullable=True, index=True,
                               comment="NULL while the request is unassigned")
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    name = db.Column(db.String(300), default="")
    assets = db.Column(db.JSON, nullable=False, default=list, comment="[{name, assetId}]")
    details = db.Column(db.JSON, nullable=False, default=dict,
                        comment="intendedUsage / associateAgency / materialsNeeded / budgetForUsage")
    rights_check_results = db.Column(db.JSON, nullable=False, default=dict)
    error_message = db.Column(db.String(500), default="")

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_by = db.Column(db.String(100), default=CREATED_BY_SERVICE)
    last_modified = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_modified_by = db.Column(db.String(254), default="")

    # ── Derived state ────────────────────────────────────────────────────

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def review_state(self):
        if self.is_terminal:
            return REVIEW_RESOLVED
        if self.reviewer_email:
            return REVIEW_ASSIGNED
        return REVIEW_UNASSIGNED

    @property
    def key(self):
        return f"{REQUEST_ID_PREFIX}{self.id}"

    # ── Serialisation ────────────────────────────────────────────────────

    def review_info(self):
        return {
            "requestId": self.id,
            "rightsReviewer": self.reviewer_email or "",
            "assignedDate": iso(self.assigned_at),
            "submittedBy": self.submitter_email,
        }

    def to_dict(self, include_review_info=False):
        details = self.details or {}
        data = {
            "rightsRequestID": self.id,
            "rightsRequestSubmittedUserID": self.submitter_email,
            "created": http_date(self.created_at) if self.created_at else "",
            "createdBy": self.created_by,
            "lastModified": http_date(self.last_modified) if self.last_modified else "",
            "lastModifiedBy": self.last_modified_by,
            "rightsRequestDetails": {
                "name": self.name,
                "general": {"assets": list(self.assets or [])},
                "intendedUsage": details.get("intendedUsage", {}),
                "associateAgency": details.get("associateAgency", {}),
                "materialsNeeded": details.get("materialsNeeded", {}),
                "budgetForUsage": details.get("budgetForUsage", {}),
            },
            "rightsRequestReviewDetails": {
                "rightsRequestStatus": self.status,
                "rightsReviewer": self.reviewer_email or "",
                "errorMessage": self.error_message or "",
            },
            "rightsCheckResults": self.rights_check_results or {},
        }
        if include_review_info:
            data["reviewInfo"] = self.review_info()
        return data

    def __repr__(self):
        return f"<RightsRequest {self.id}: {self.status} reviewer={self.reviewer_email}>"
