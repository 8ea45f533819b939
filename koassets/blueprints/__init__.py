"""
Blueprint package.

``register_error_handlers`` maps the service exception hierarchy onto the
standard error envelope once per blueprint, so route functions only deal
with the success path.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from koassets.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StoreUnavailableError,
    ValidationError,
)
from koassets.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Attach the shared exception → HTTP mapping to ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, error.public_message)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        logger.info("Permission denied on %s: %s", request.path, error)
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(StoreUnavailableError)
    def _handle_store_unavailable(error: StoreUnavailableError):
        return api_error(E.STORE_UNAVAILABLE, "Service temporarily unavailable, please retry")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
