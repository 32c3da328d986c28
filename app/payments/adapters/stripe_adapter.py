"""
Stripe implementation of the PaymentGateway port.

All Stripe API interactions go through StripeGateway to ensure consistent
error handling, timeouts, idempotency and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency support for safe retries

Money flow:
    create_intent: PaymentIntent with capture_method=manual, so funds are
        authorized but stay with the payer until the escrow is released.
    capture_and_transfer: Captures the intent once (shared idempotency
        key per intent), then creates a Transfer to the recipient's
        connected account funded by that charge.
    refund: Refund against the original PaymentIntent. An uncaptured
        intent is cancelled instead, which releases the authorization.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Usage:
    from payments.adapters.stripe_adapter import StripeGateway
    from payments.idempotency import IdempotencyKeyGenerator
    from payments.ports import IntentRequest

    gateway = StripeGateway()
    result = gateway.create_intent(
        IntentRequest(
            transaction_id=str(txn.id),
            amount_cents=5000,
            currency="usd",
            idempotency_key=IdempotencyKeyGenerator.generate("create_intent", txn.id),
        )
    )
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from core.exceptions import BaseApplicationError
from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookSignatureError,
)
from payments.idempotency import IdempotencyKeyGenerator
from payments.ports import IntentResult, RefundResult, TransferResult

if TYPE_CHECKING:
    from collections.abc import Mapping

    from payments.ports import IntentRequest, RefundRequest, TransferRequest


# =============================================================================
# Stripe Gateway
# =============================================================================


class StripeGateway:
    """
    PaymentGateway backed by Stripe PaymentIntents and Connect Transfers.

    Instances hold no per-request state and are safe to share between
    threads in a Celery worker.
    """

    provider_name = "stripe"

    # Intent statuses that still hold an uncaptured authorization
    UNCAPTURED_STATUSES = ("requires_capture",)

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    # =========================================================================
    # Configuration
    # =========================================================================

    def _configure_stripe(self) -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = self.api_key
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # PaymentGateway
    # =========================================================================

    def create_intent(self, request: IntentRequest) -> IntentResult:
        """
        Create a PaymentIntent correlated to an internal transaction.

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        self._configure_stripe()
        logger = self.get_logger()

        log_context = {
            "operation": "create_intent",
            "transaction_id": request.transaction_id,
            "amount_cents": request.amount_cents,
            "currency": request.currency,
            "idempotency_key": request.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=request.amount_cents,
                currency=request.currency,
                description=request.description or None,
                metadata={**request.metadata, "transaction_id": request.transaction_id},
                capture_method=request.capture_method,
                idempotency_key=request.idempotency_key,
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return IntentResult(
            provider=self.provider_name,
            provider_reference=intent.id,
            status=intent.status,
            client_secret=intent.client_secret,
            raw_response=intent.to_dict(),
        )

    def capture_and_transfer(self, request: TransferRequest) -> TransferResult:
        """
        Capture the funding intent if needed, then transfer one share.

        Every item of a batch calls this with the same source_reference.
        The capture uses a key derived only from the intent id, so Stripe
        performs it once no matter how many items or retries race.

        Raises:
            StripeInvalidAccountError: Recipient has no usable connected account
            StripeAPIUnavailableError / StripeTimeoutError: Retryable
        """
        self._configure_stripe()
        logger = self.get_logger()

        log_context = {
            "operation": "capture_and_transfer",
            "payout_item_id": request.item_id,
            "payout_batch_id": request.batch_id,
            "amount_cents": request.amount_cents,
            "destination_account": request.destination_account,
            "idempotency_key": request.idempotency_key,
        }

        if not request.destination_account:
            logger.warning("Recipient has no connected account", extra=log_context)
            raise StripeInvalidAccountError(
                f"Recipient {request.recipient_id} has no connected account",
                stripe_code="missing_destination",
                details={"recipient_id": request.recipient_id},
            )

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            source_charge = None
            if request.source_reference:
                source_charge = self._ensure_captured(request.source_reference)

            transfer_params: dict[str, Any] = {
                "amount": request.amount_cents,
                "currency": request.currency,
                "destination": request.destination_account,
                "metadata": {
                    **request.metadata,
                    "payout_item_id": request.item_id,
                    "payout_batch_id": request.batch_id,
                },
            }
            if source_charge:
                transfer_params["source_transaction"] = source_charge

            transfer = stripe.Transfer.create(
                idempotency_key=request.idempotency_key,
                **transfer_params,
            )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "transfer_id": transfer.id,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        # Connect transfers settle into the connected balance synchronously
        return TransferResult(
            transfer_id=transfer.id,
            status="succeeded",
            raw_response=transfer.to_dict(),
        )

    def _ensure_captured(self, payment_intent_id: str) -> str | None:
        """Capture the intent once and return its charge id."""
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        if intent.status in self.UNCAPTURED_STATUSES:
            intent = stripe.PaymentIntent.capture(
                payment_intent_id,
                idempotency_key=IdempotencyKeyGenerator.generate("capture", payment_intent_id),
            )
        charge = intent.latest_charge
        if isinstance(charge, str) or charge is None:
            return charge
        return charge.id

    def refund(self, request: RefundRequest) -> RefundResult:
        """
        Return escrowed funds to the payer.

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        self._configure_stripe()
        logger = self.get_logger()

        log_context = {
            "operation": "refund",
            "payment_intent_id": request.provider_reference,
            "amount_cents": request.amount_cents,
            "idempotency_key": request.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(request.provider_reference)
            if intent.status in self.UNCAPTURED_STATUSES:
                cancelled = stripe.PaymentIntent.cancel(
                    request.provider_reference,
                    idempotency_key=request.idempotency_key,
                )
                result = RefundResult(
                    refund_id=cancelled.id,
                    status="succeeded",
                    raw_response=cancelled.to_dict(),
                )
            else:
                refund = stripe.Refund.create(
                    payment_intent=request.provider_reference,
                    amount=request.amount_cents,
                    metadata=request.metadata,
                    idempotency_key=request.idempotency_key,
                )
                result = RefundResult(
                    refund_id=refund.id,
                    status=refund.status,
                    raw_response=refund.to_dict(),
                )
        except Exception as e:
            self._handle_stripe_error(e, log_context, (time.time() - start_time) * 1000)
            raise

        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": result.refund_id,
                "status": result.status,
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )
        return result

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """
        Verify the Stripe-Signature header and return the parsed event.

        Raises:
            WebhookSignatureError: Missing or invalid signature
        """
        signature = headers.get("Stripe-Signature")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(
                "Invalid webhook signature",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise WebhookSignatureError(
                "Invalid webhook payload",
                details={"error": str(e)},
            ) from e

        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Maps Stripe SDK errors to domain exceptions with proper error
        categorization for retry decisions. Domain exceptions raised
        inside the try block pass through unchanged.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: API unavailable
            StripeTimeoutError: Request timed out
        """
        logger = self.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                ) from error
            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if "account" in str(error).lower():
                raise StripeInvalidAccountError(str(error), stripe_code=error.code) from error
            if "insufficient" in str(error).lower():
                raise StripeInsufficientFundsError(str(error), stripe_code=error.code) from error
            raise StripeInvalidRequestError(str(error), stripe_code=error.code) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timed out" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.StripeError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        # Domain errors propagate unchanged via the caller's bare raise
        if isinstance(error, BaseApplicationError):
            return

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise StripeAPIUnavailableError(
            f"Unexpected Stripe error: {error}",
            stripe_code="unknown_error",
        ) from error


__all__ = [
    "StripeGateway",
]
