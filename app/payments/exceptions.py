"""
Payment-specific exceptions for settlement operations.

This module provides the exception hierarchy for the split calculator,
escrow ledger, payout scheduling, webhook reconciliation and the payment
gateways. Every class derives from a core.exceptions category so the DRF
exception handler can pick an HTTP status without knowing payment details.

Exception Hierarchy:
    PaymentError (base for payment domain, 500)
    └── SplitConservationError - Calculator lost or created a unit (fatal)

    PaymentValidationError (ValidationError, 400)
    ├── AmountInvalidError - Non-positive or non-integer amount
    ├── PercentageModelRequiredError - No split carries a percentage
    ├── SplitSumInvalidError - Percentages don't sum to 100
    ├── NoRecipientsError - Only placeholders left after filtering
    ├── EscrowAmountInvalidError - Release/refund amount out of range
    ├── CorrelationMissingError - Webhook lacks metadata.transaction_id
    ├── ProviderReferenceMismatchError - Webhook object id doesn't match
    ├── WebhookSignatureError - Signature verification failed
    └── UnknownProviderError - No gateway registered for the provider

    PaymentNotFoundError (NotFoundError, 404)
    ├── TransactionNotFoundError
    ├── EscrowNotFoundError
    └── PayoutBatchNotFoundError

    ConflictError (409)
    ├── EscrowAlreadyActiveError - Milestone already has a locked/held escrow
    ├── EscrowNotReleasedError - Payout attempted on an unreleased escrow
    └── PayoutAlreadyScheduledError - Escrow already has a payout batch

    PaymentProcessingError (ExternalServiceError, 502)
    └── StripeError - Base for all Stripe errors
        ├── StripeCardDeclinedError - Card declined (permanent)
        ├── StripeInsufficientFundsError - Insufficient funds (permanent)
        ├── StripeInvalidAccountError - Invalid Stripe account (permanent)
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        ├── StripeAPIUnavailableError - API unavailable (transient, retry)
        └── StripeTimeoutError - Request timeout (transient, retry)

Usage:
    from payments.exceptions import PayoutAlreadyScheduledError

    if PayoutBatch.objects.filter(escrow_id=escrow_id).exists():
        raise PayoutAlreadyScheduledError(
            f"Payouts already scheduled for escrow {escrow_id}",
            details={"escrow_id": str(escrow_id)},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for payment failures that are neither input errors
    nor state conflicts.
    """

    default_error_code: str = "PAYMENT_ERROR"


class SplitConservationError(PaymentError):
    """
    Raised when a split breakdown does not sum to the net pool.

    This is a programming defect, never a user error. It is logged at
    CRITICAL by the calculator and must abort the surrounding operation;
    services never catch it.
    """

    default_error_code: str = "SPLIT_CONSERVATION_VIOLATED"


class PaymentValidationError(ValidationError):
    """Raised when payment input fails validation."""

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class AmountInvalidError(PaymentValidationError):
    default_error_code: str = "AMOUNT_INVALID"


class PercentageModelRequiredError(PaymentValidationError):
    """
    Raised when no split entry carries a percentage.

    Fixed-amount splits exist in the data model but the calculator only
    apportions percentages.
    """

    default_error_code: str = "PERCENTAGE_MODEL_REQUIRED"


class SplitSumInvalidError(PaymentValidationError):
    """
    Raised when split percentages are out of range or don't sum to 100.

    Example:
        raise SplitSumInvalidError(
            "Split percentages sum to 99.5, expected 100",
            details={"total_percentage": "99.5"},
        )
    """

    default_error_code: str = "SPLIT_SUM_INVALID"


class NoRecipientsError(PaymentValidationError):
    """Raised when every active split is a placeholder."""

    default_error_code: str = "NO_RECIPIENTS_FOR_PAYOUT"


class EscrowAmountInvalidError(PaymentValidationError):
    default_error_code: str = "ESCROW_AMOUNT_INVALID"


class CorrelationMissingError(PaymentValidationError):
    """
    Raised when a provider event carries no internal transaction id.

    The webhook view checks this synchronously and answers 400 so the
    provider surfaces the problem instead of retrying forever.
    """

    default_error_code: str = "CORRELATION_MISSING"


class ProviderReferenceMismatchError(PaymentValidationError):
    """Raised when the event's object id differs from the stored intent id."""

    default_error_code: str = "PROVIDER_REFERENCE_MISMATCH"


class WebhookSignatureError(PaymentValidationError):
    default_error_code: str = "WEBHOOK_SIGNATURE_INVALID"


class UnknownProviderError(PaymentValidationError):
    default_error_code: str = "UNKNOWN_PAYMENT_PROVIDER"


# -----------------------------------------------------------------------------
# Not Found
# -----------------------------------------------------------------------------


class PaymentNotFoundError(NotFoundError):
    """
    Raised when a payment entity cannot be found.

    Example:
        escrow = Escrow.objects.filter(id=escrow_id).first()
        if not escrow:
            raise EscrowNotFoundError(
                f"Escrow {escrow_id} not found",
                details={"escrow_id": str(escrow_id)},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class TransactionNotFoundError(PaymentNotFoundError):
    default_error_code: str = "TRANSACTION_NOT_FOUND"


class EscrowNotFoundError(PaymentNotFoundError):
    default_error_code: str = "ESCROW_NOT_FOUND"


class PayoutBatchNotFoundError(PaymentNotFoundError):
    default_error_code: str = "PAYOUT_BATCH_NOT_FOUND"


# -----------------------------------------------------------------------------
# Conflicts
# -----------------------------------------------------------------------------


class EscrowAlreadyActiveError(ConflictError):
    """
    Raised when a milestone already has an escrow in locked or held state.

    Backed by a conditional unique constraint, so two concurrent lock
    attempts cannot both succeed.
    """

    default_error_code: str = "ESCROW_ALREADY_ACTIVE"


class EscrowNotReleasedError(ConflictError):
    default_error_code: str = "ESCROW_NOT_RELEASED"


class PayoutAlreadyScheduledError(ConflictError):
    """
    Raised when a payout batch already exists for an escrow.

    The escrow id is the idempotency key for scheduling; the one-to-one
    column on PayoutBatch enforces it at the database level.
    """

    default_error_code: str = "PAYOUT_ALREADY_SCHEDULED"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class PaymentProcessingError(ExternalServiceError):
    """
    Raised when a payment provider call fails.

    Example:
        try:
            gateway.capture_and_transfer(...)
        except PaymentProcessingError as e:
            item.mark_failed(e.message)
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    is_retryable: bool = False


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    Permanent for this card. The decline_code attribute contains the
    specific reason (generic_decline, lost_card, expired_card, ...).
    """

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInsufficientFundsError(StripeError):
    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeError):
    """
    Invalid Stripe Connect account.

    Raised when the destination account for a transfer is missing,
    restricted or not onboarded. Needs manual intervention.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Usually a bug in our code (bad intent id, refund above captured
    amount), so these are logged for developer investigation.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable (network, 5xx, DNS, TLS).

    The job runner retries these with exponential backoff.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side.
    Retries reuse the same idempotency key so Stripe returns the original
    response instead of moving money twice.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "SplitConservationError",
    "PaymentValidationError",
    "AmountInvalidError",
    "PercentageModelRequiredError",
    "SplitSumInvalidError",
    "NoRecipientsError",
    "EscrowAmountInvalidError",
    "CorrelationMissingError",
    "ProviderReferenceMismatchError",
    "WebhookSignatureError",
    "UnknownProviderError",
    # Not found
    "PaymentNotFoundError",
    "TransactionNotFoundError",
    "EscrowNotFoundError",
    "PayoutBatchNotFoundError",
    # Conflicts
    "EscrowAlreadyActiveError",
    "EscrowNotReleasedError",
    "PayoutAlreadyScheduledError",
    # Gateways
    "PaymentProcessingError",
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
]
