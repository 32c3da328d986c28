"""
Tests for the DRF exception handler.
"""

import pytest
from rest_framework.exceptions import NotAuthenticated

from core.exception_handler import application_exception_handler, status_for_error
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StaleRecordError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error,expected",
    [
        (ValidationError("bad"), 400),
        (PermissionDeniedError("no"), 403),
        (NotFoundError("gone"), 404),
        (ConflictError("busy"), 409),
        (StaleRecordError("stale"), 409),
        (InvalidStateTransitionError("nope"), 409),
        (ExternalServiceError("down"), 502),
        (BaseApplicationError("boom"), 500),
    ],
)
def test_status_for_error(error, expected):
    assert status_for_error(error) == expected


def test_application_error_rendered_from_to_dict():
    error = ConflictError(
        "Payout already scheduled",
        error_code="PAYOUT_ALREADY_SCHEDULED",
        details={"escrow_id": "e-1"},
    )

    response = application_exception_handler(error, {})

    assert response.status_code == 409
    assert response.data == {
        "error": "Payout already scheduled",
        "error_code": "PAYOUT_ALREADY_SCHEDULED",
        "details": {"escrow_id": "e-1"},
    }


def test_other_errors_fall_through_to_drf():
    response = application_exception_handler(NotAuthenticated(), {})

    assert response.status_code == 401
