"""
Application error hierarchy.

Services raise these; core.exception_handler renders them as
{"error", "error_code", "details"} with a status chosen by class.

    BaseApplicationError
    ├── ValidationError (400)
    ├── NotFoundError (404)
    ├── PermissionDeniedError (403)
    ├── ConflictError (409)
    │   ├── StaleRecordError - version check lost
    │   ├── LockAcquisitionError - distributed lock busy
    │   └── InvalidStateTransitionError - FSM refused the transition
    └── ExternalServiceError (502)

Apps subclass these with their own default_error_code rather than
passing error_code at every raise site:

    class EscrowNotReleasedError(ConflictError):
        default_error_code = "ESCROW_NOT_RELEASED"

    raise EscrowNotReleasedError(
        "Escrow is not released",
        details={"escrow_id": str(escrow.pk), "status": escrow.status},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base for all application errors.

    Attributes:
        message: Human-readable description
        error_code: Machine-readable code (class default unless overridden)
        details: Extra context for clients and logs
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """API body; details is omitted when empty."""
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Service-layer input or business rule violation.

    Request shape problems are caught earlier by DRF serializers.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Authenticated actor isn't allowed to do this (not a member, not the
    owner). Missing credentials are DRF's NotAuthenticated.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """Operation conflicts with the current state of a record."""

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    A call to the payment provider or another upstream failed.

    Provider details belong in the logs, not in the client message.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


# =============================================================================
# Concurrency Control
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Another writer changed the row since the caller read it.

    details carries pk, expected_version and current_version. Callers
    either re-read and retry or give up.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    django-fsm refused a transition.

    Raised by BaseService.apply_transition with current_state and
    transition in details.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
