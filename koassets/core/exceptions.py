"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map each kind to a fixed HTTP status and error code.

Usage:
    from koassets.core.exceptions import NotFoundError, PermissionDeniedError

    raise NotFoundError(resource="Rights request", resource_id="1712345")
    raise PermissionDeniedError("Senior rights reviewer permission required.")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's scope.

    Used for BOTH genuinely missing records AND records the caller may not
    see (another user's request or message). A 403 would confirm the record
    exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Rights request", "Notification").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
        message: Optional public message overriding the generated one.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.public_message = message or f"{resource} not found"
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidStateError(NotFoundError):
    """Raised when a rights request is not in the state a transition requires.

    Deliberately surfaced exactly like a missing record: callers cannot tell
    "already assigned" from "does not exist". ``reason`` keeps the real cause
    for logs only.

    Args:
        request_id: The rights request that was targeted.
        message: Public not-found style message.
        reason: Internal explanation (never serialised).
    """

    def __init__(self, request_id: str, message: str, reason: str = "") -> None:
        super().__init__("Rights request", resource_id=request_id, message=message)
        self.reason = reason


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidAssigneeError(ValidationError):
    """Raised when an assignment target does not hold reviewer capability."""

    def __init__(self, assignee_email: str) -> None:
        self.assignee_email = assignee_email
        super().__init__("Invalid assignee", details={"assigneeEmail": "not a rights reviewer"})


class PermissionDeniedError(Exception):
    """Raised when the caller's capability set lacks the required flag.

    The message is fixed per operation and never explains more than which
    permission is required.
    """

    def __init__(self, message: str = "Permission denied", required: str | None = None) -> None:
        self.required = required
        super().__init__(message)


class StoreUnavailableError(Exception):
    """Raised when the record store fails for reasons other than a state conflict.

    Nothing was committed; the operation is safe to retry.
    """
