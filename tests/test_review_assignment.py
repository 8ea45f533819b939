"""
Review assignment engine tests.

Covers:
    1. Self-assignment (happy path, permission, state)
    2. Assignment to another reviewer (senior guard, target check, state)
    3. Compare-and-set: a stale read loses against a committed writer
    4. Status changes (assignee, senior, outsider, forward-only)
    5. Cancellation by submitter and by reviewer
    6. Audit rows and notifications written on success only
    7. Store failure surfaces as StoreUnavailableError
"""

from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from koassets.core.exceptions import (
    InvalidAssigneeError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
    ValidationError,
)
from koassets.models import db
from koassets.models.audit import AuditLog
from koassets.models.notification import Message
from koassets.models.rights_request import (
    REVIEW_ASSIGNED,
    REVIEW_RESOLVED,
    REVIEW_UNASSIGNED,
    RightsRequest,
)
from koassets.services import review_assignment
from koassets.services.review_assignment import (
    NOT_AMONG_UNASSIGNED,
    NOT_ASSIGNED_TO_YOU,
    assign_review,
    assign_to_reviewer,
    cancel,
    change_status,
    self_assign,
    submitter_change_status,
)

A = "a@coca-cola.com"
B = "b@coca-cola.com"
C = "c@coca-cola.com"
D = "d@coca-cola.com"
SUBMITTER = "submitter@coca-cola.com"


@pytest.fixture()
def reviewers(seed_user):
    seed_user(A, "rr")
    seed_user(B, "rr")
    seed_user(C, "rights-manager")
    seed_user(D, "senior-rights-reviewer,rr")
    seed_user("senior-only@coca-cola.com", "senior-rights-reviewer")
    seed_user("reports@coca-cola.com", "reports-admin")


def _reload(request_id):
    db.session.expire_all()
    return db.session.get(RightsRequest, request_id)


def _inbox(owner):
    return Message.query.filter_by(owner=owner).all()


# ═══════════════════════════════════════════════════════════════════════════
#  Self-assignment
# ═══════════════════════════════════════════════════════════════════════════

class TestSelfAssign:
    def test_assigns_caller_and_moves_to_in_progress(self, reviewers, rights_request):
        rr = rights_request()
        result = self_assign(rr.id, A)

        assert result.reviewer_email == A
        assert result.status == "In Progress"
        assert result.review_state == REVIEW_ASSIGNED
        assert result.assigned_at is not None
        assert result.version == 2
        assert result.last_modified_by == A

    def test_caller_email_is_normalised(self, reviewers, rights_request):
        rr = rights_request()
        assert self_assign(rr.id, "  A@Coca-Cola.com ").reviewer_email == A

    def test_legacy_manager_can_self_assign(self, reviewers, rights_request):
        rr = rights_request()
        assert self_assign(rr.id, C).reviewer_email == C

    @pytest.mark.parametrize("caller", ["senior-only@coca-cola.com", "reports@coca-cola.com", "x@coca-cola.com"])
    def test_callers_without_self_assign_are_denied(self, reviewers, rights_request, caller):
        rr = rights_request()
        with pytest.raises(PermissionDeniedError):
            self_assign(rr.id, caller)
        assert _reload(rr.id).review_state == REVIEW_UNASSIGNED

    def test_already_assigned_is_invalid_state(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        with pytest.raises(InvalidStateError) as exc:
            self_assign(rr.id, B)
        assert exc.value.public_message == NOT_AMONG_UNASSIGNED
        assert _reload(rr.id).reviewer_email == A

    def test_missing_request_uses_the_same_message(self, reviewers):
        with pytest.raises(InvalidStateError) as exc:
            self_assign("does-not-exist", A)
        assert exc.value.public_message == NOT_AMONG_UNASSIGNED

    def test_resolved_request_cannot_be_assigned(self, reviewers, rights_request):
        rr = rights_request(status="User Canceled")
        with pytest.raises(InvalidStateError):
            self_assign(rr.id, A)

    def test_audit_and_submitter_notification(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)

        audit = AuditLog.query.filter_by(entity_id=rr.id, action="rights_request.self_assign").one()
        assert audit.actor == A
        assert audit.diff["rightsReviewer"] == {"old": None, "new": A}

        inbox = _inbox(SUBMITTER)
        assert len(inbox) == 1
        assert inbox[0].event_type == "rights_request.assigned"
        assert inbox[0].request_id == rr.id


# ═══════════════════════════════════════════════════════════════════════════
#  Assign to another reviewer
# ═══════════════════════════════════════════════════════════════════════════

class TestAssignToReviewer:
    def test_senior_assigns_to_reviewer(self, reviewers, rights_request):
        rr = rights_request()
        result = assign_to_reviewer(rr.id, C, D)
        assert result.reviewer_email == C
        assert result.status == "In Progress"
        assert result.last_modified_by == D

    def test_senior_only_user_can_assign(self, reviewers, rights_request):
        rr = rights_request()
        assert assign_to_reviewer(rr.id, A, "senior-only@coca-cola.com").reviewer_email == A

    def test_assignee_is_notified(self, reviewers, rights_request):
        rr = rights_request()
        assign_to_reviewer(rr.id, C, D)
        inbox = _inbox(C)
        assert len(inbox) == 1
        assert inbox[0].priority == "important"
        assert _inbox(SUBMITTER) == []

    def test_non_senior_is_denied(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(PermissionDeniedError) as exc:
            assign_to_reviewer(rr.id, C, B)
        assert str(exc.value) == "Senior rights reviewer permission required."
        assert _reload(rr.id).review_state == REVIEW_UNASSIGNED

    @pytest.mark.parametrize("target", ["reports@coca-cola.com", "senior-only@coca-cola.com", "ghost@coca-cola.com", ""])
    def test_target_without_review_capability_is_invalid(self, reviewers, rights_request, target):
        rr = rights_request()
        with pytest.raises(InvalidAssigneeError):
            assign_to_reviewer(rr.id, target, D)
        assert _reload(rr.id).review_state == REVIEW_UNASSIGNED
        assert _reload(rr.id).version == 1

    def test_target_is_checked_before_state(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        with pytest.raises(InvalidAssigneeError):
            assign_to_reviewer(rr.id, "reports@coca-cola.com", D)

    def test_permission_is_checked_before_target(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(PermissionDeniedError):
            assign_to_reviewer(rr.id, "reports@coca-cola.com", B)

    def test_invalid_assignee_is_a_validation_error(self):
        assert issubclass(InvalidAssigneeError, ValidationError)


class TestAssignReviewDispatch:
    def test_without_assignee_self_assigns(self, reviewers, rights_request):
        rr = rights_request()
        assert assign_review(rr.id, A).reviewer_email == A

    def test_assignee_equal_to_caller_self_assigns(self, reviewers, rights_request):
        rr = rights_request()
        # B is not senior; treated as self-assignment, so allowed
        assert assign_review(rr.id, B, assignee_email="B@coca-cola.com").reviewer_email == B

    def test_other_assignee_requires_senior(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(PermissionDeniedError):
            assign_review(rr.id, B, assignee_email=C)


# ═══════════════════════════════════════════════════════════════════════════
#  Scenario and round-trip
# ═══════════════════════════════════════════════════════════════════════════

class TestScenario:
    def test_self_assign_then_others_cannot_reassign(self, reviewers, rights_request):
        rr = rights_request(request_id="R123")

        result = self_assign("R123", A)
        assert result.reviewer_email == A
        assert result.review_state == REVIEW_ASSIGNED

        with pytest.raises(PermissionDeniedError):
            assign_to_reviewer("R123", C, B)

        with pytest.raises(InvalidStateError) as exc:
            assign_to_reviewer("R123", C, D)
        assert exc.value.public_message == NOT_AMONG_UNASSIGNED

        assert _reload(rr.id).reviewer_email == A

    def test_assign_then_status_change_round_trip(self, reviewers, rights_request):
        rr = rights_request()
        assign_to_reviewer(rr.id, C, D)

        assert change_status(rr.id, "Quote Pending", C).status == "Quote Pending"

        with pytest.raises(PermissionDeniedError):
            change_status(rr.id, "Release Pending", B)
        assert _reload(rr.id).status == "Quote Pending"


# ═══════════════════════════════════════════════════════════════════════════
#  Compare-and-set
# ═══════════════════════════════════════════════════════════════════════════

class TestCompareAndSet:
    def _stale_snapshot(self, rr):
        return SimpleNamespace(
            id=rr.id, version=rr.version, status=rr.status, reviewer_email=None,
            review_state=REVIEW_UNASSIGNED, submitter_email=rr.submitter_email,
        )

    def test_second_assignment_from_stale_read_loses(self, reviewers, rights_request, monkeypatch):
        rr = rights_request()
        stale = self._stale_snapshot(rr)

        assign_to_reviewer(rr.id, A, D)

        # The racing writer read the record before the first commit
        monkeypatch.setattr(review_assignment, "_load_request", lambda request_id: stale)
        with pytest.raises(InvalidStateError) as exc:
            assign_to_reviewer(rr.id, C, D)
        assert exc.value.public_message == NOT_AMONG_UNASSIGNED
        assert exc.value.reason == "lost assignment race"

        monkeypatch.undo()
        current = _reload(rr.id)
        assert current.reviewer_email == A
        assert current.version == 2
        assert AuditLog.query.filter_by(entity_id=rr.id, action="rights_request.assign").count() == 1

    def test_self_assign_race_loser_gets_invalid_state(self, reviewers, rights_request, monkeypatch):
        rr = rights_request()
        stale = self._stale_snapshot(rr)
        self_assign(rr.id, A)

        monkeypatch.setattr(review_assignment, "_load_request", lambda request_id: stale)
        with pytest.raises(InvalidStateError):
            self_assign(rr.id, B)
        monkeypatch.undo()
        assert _reload(rr.id).reviewer_email == A

    def test_stale_status_change_is_rejected(self, reviewers, rights_request, monkeypatch):
        rr = rights_request()
        self_assign(rr.id, A)
        fresh = _reload(rr.id)
        stale = SimpleNamespace(
            id=fresh.id, version=fresh.version, status=fresh.status, reviewer_email=A,
            review_state=REVIEW_ASSIGNED, submitter_email=SUBMITTER, is_terminal=False,
        )
        change_status(rr.id, "Quote Pending", A)

        monkeypatch.setattr(review_assignment, "_load_request", lambda request_id: stale)
        with pytest.raises(InvalidStateError) as exc:
            change_status(rr.id, "Release Pending", A)
        assert exc.value.public_message == NOT_ASSIGNED_TO_YOU
        monkeypatch.undo()
        assert _reload(rr.id).status == "Quote Pending"


# ═══════════════════════════════════════════════════════════════════════════
#  Status changes
# ═══════════════════════════════════════════════════════════════════════════

class TestChangeStatus:
    def test_assignee_moves_forward(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        assert change_status(rr.id, "Release Pending", A).status == "Release Pending"
        result = change_status(rr.id, "Done", A)
        assert result.status == "Done"
        assert result.review_state == REVIEW_RESOLVED
        assert result.reviewer_email == A

    def test_submitter_is_notified(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        change_status(rr.id, "Quote Pending", A)
        events = [m.event_type for m in _inbox(SUBMITTER)]
        assert "rights_request.status_changed" in events

    def test_senior_may_change_someone_elses_review(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        result = change_status(rr.id, "Quote Pending", "senior-only@coca-cola.com")
        assert result.status == "Quote Pending"
        assert result.reviewer_email == A

    def test_backwards_transition_is_rejected(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        change_status(rr.id, "Release Pending", A)
        with pytest.raises(ValidationError):
            change_status(rr.id, "Quote Pending", A)
        with pytest.raises(ValidationError):
            change_status(rr.id, "Release Pending", A)

    def test_unknown_status_is_rejected(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        with pytest.raises(ValidationError):
            change_status(rr.id, "Completed", A)
        with pytest.raises(ValidationError):
            change_status(rr.id, "User Canceled", A)

    def test_unassigned_request_is_invalid_state(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(InvalidStateError) as exc:
            change_status(rr.id, "Quote Pending", D)
        assert exc.value.public_message == NOT_ASSIGNED_TO_YOU

    def test_resolved_request_is_invalid_state(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        change_status(rr.id, "Done", A)
        with pytest.raises(InvalidStateError):
            change_status(rr.id, "Done", A)

    def test_non_reviewer_is_denied_before_lookup(self, reviewers):
        with pytest.raises(PermissionDeniedError):
            change_status("does-not-exist", "Done", "reports@coca-cola.com")

    def test_rm_canceled_routes_to_reviewer_cancel(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        result = change_status(rr.id, "RM Canceled", A)
        assert result.status == "RM Canceled"
        assert AuditLog.query.filter_by(entity_id=rr.id, action="rights_request.reviewer_cancel").count() == 1


# ═══════════════════════════════════════════════════════════════════════════
#  Cancellation
# ═══════════════════════════════════════════════════════════════════════════

class TestCancel:
    def test_submitter_cancels_unassigned_request(self, reviewers, rights_request):
        rr = rights_request()
        result = submitter_change_status(rr.id, "User Canceled", SUBMITTER)
        assert result.status == "User Canceled"
        assert result.review_state == REVIEW_RESOLVED

    def test_submitter_cancel_notifies_assignee(self, reviewers, rights_request):
        rr = rights_request()
        self_assign(rr.id, A)
        cancel(rr.id, SUBMITTER)
        assert [m.event_type for m in _inbox(A)] == ["rights_request.canceled"]

    def test_other_users_cannot_cancel_as_submitter(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(NotFoundError) as exc:
            cancel(rr.id, A)
        assert exc.value.public_message == "Request not found or not owned by you"
        assert _reload(rr.id).status == "Not Started"

    def test_submitter_may_only_use_user_canceled(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(ValidationError):
            submitter_change_status(rr.id, "Done", SUBMITTER)

    def test_cancel_of_resolved_request_is_invalid_state(self, reviewers, rights_request):
        rr = rights_request(status="Done")
        with pytest.raises(InvalidStateError):
            cancel(rr.id, SUBMITTER)

    def test_reviewer_cancel_requires_reviewer_capability(self, reviewers, rights_request):
        rr = rights_request()
        with pytest.raises(PermissionDeniedError):
            cancel(rr.id, "reports@coca-cola.com", as_reviewer=True)

    def test_reviewer_cancel_notifies_submitter(self, reviewers, rights_request):
        rr = rights_request()
        result = cancel(rr.id, B, as_reviewer=True)
        assert result.status == "RM Canceled"
        assert [m.event_type for m in _inbox(SUBMITTER)] == ["rights_request.canceled"]


# ═══════════════════════════════════════════════════════════════════════════
#  Store failures
# ═══════════════════════════════════════════════════════════════════════════

class TestStoreFailure:
    def test_failed_conditional_write_is_retry_safe(self, reviewers, rights_request, monkeypatch):
        rr = rights_request()

        def _boom(*args, **kwargs):
            raise OperationalError("UPDATE rights_requests", {}, Exception("database is locked"))

        monkeypatch.setattr("sqlalchemy.orm.Query.update", _boom)
        with pytest.raises(StoreUnavailableError):
            self_assign(rr.id, A)
        monkeypatch.undo()

        assert _reload(rr.id).review_state == REVIEW_UNASSIGNED
        assert self_assign(rr.id, A).reviewer_email == A
