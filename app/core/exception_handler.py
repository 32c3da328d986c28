"""
DRF exception handler for application errors.

Service-layer errors from core.exceptions are converted to JSON responses
using their to_dict() payload and an HTTP status chosen by class. Anything
else falls through to DRF's default handler.

Configured in settings:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.application_exception_handler",
    }
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order, so subclasses must precede their bases
STATUS_BY_ERROR: list[tuple[type[BaseApplicationError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(exc: BaseApplicationError) -> int:
    """Return the HTTP status code for an application error."""
    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def application_exception_handler(exc, context):
    """Convert BaseApplicationError to a Response, else defer to DRF."""
    if isinstance(exc, BaseApplicationError):
        status_code = status_for_error(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            f"Request failed: {exc.error_code}",
            extra={"error_code": exc.error_code, "status_code": status_code},
        )
        return Response(exc.to_dict(), status=status_code)

    return exception_handler(exc, context)
