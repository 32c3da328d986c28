"""
Ports the settlement engine depends on.

The engine never imports a payment provider, a queue, or a notification
channel directly. It receives implementations of these protocols when it
is constructed (see payments.engine.build_engine), which keeps services
free of process-wide singletons and lets tests pass recording fakes.

Available Protocols:
    PaymentGateway: Intents, capture + transfer, refunds, webhook verification
    JobQueuePort: Enqueue background jobs (payout.execute)
    EventPublisherPort: Publish domain events (escrow.released, ...)
    NotificationPort: Tell users something happened

Usage:
    from payments.ports import IntentRequest, PaymentGateway

    def start_payment(gateway: PaymentGateway, txn):
        return gateway.create_intent(
            IntentRequest(
                transaction_id=str(txn.id),
                amount_cents=txn.amount_cents,
                currency=txn.currency,
                idempotency_key=f"intent:{txn.id}",
            )
        )

Note:
    Protocols are structural. Adapters don't inherit from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from payments.exceptions import UnknownProviderError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any


# =============================================================================
# Gateway Data Types
# =============================================================================


@dataclass
class IntentRequest:
    """
    Parameters for starting a payment with a provider.

    Attributes:
        transaction_id: Internal PaymentTransaction id, echoed back by the
            provider as metadata.transaction_id
        amount_cents: Amount in smallest currency unit
        currency: ISO 4217 code
        idempotency_key: Key for idempotent creation
        description: Human readable description
        metadata: Extra key-value pairs for the provider
        capture_method: 'manual' keeps funds authorized until release
        return_url: Redirect target for hosted checkouts
    """

    transaction_id: str
    amount_cents: int
    currency: str
    idempotency_key: str
    description: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    capture_method: str = "manual"
    return_url: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class IntentResult:
    provider: str
    provider_reference: str
    status: str
    client_secret: str | None = None
    checkout_url: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferRequest:
    """
    Parameters for moving one payout item's funds to its recipient.

    Attributes:
        item_id: PayoutItem id (metadata for reconciliation)
        batch_id: PayoutBatch id
        recipient_id: Recipient user id
        destination_account: Provider account receiving the funds
        source_reference: Provider payment id the escrow was funded with
        amount_cents: Net amount to transfer
        currency: ISO 4217 code
        idempotency_key: Derived from item id + attempt
    """

    item_id: str
    batch_id: str
    recipient_id: str
    destination_account: str
    source_reference: str | None
    amount_cents: int
    currency: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TransferResult:
    """status is one of 'succeeded', 'pending' or 'failed'."""

    transfer_id: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundRequest:
    provider_reference: str
    amount_cents: int
    currency: str
    idempotency_key: str
    reason: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_id: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Lookup
# =============================================================================


def get_gateway(gateways: Mapping[str, PaymentGateway], provider: str) -> PaymentGateway:
    """
    Return the gateway registered for ``provider``.

    Raises:
        UnknownProviderError: No gateway is configured under that name
    """
    gateway = gateways.get(provider)
    if gateway is None:
        raise UnknownProviderError(
            f"No payment gateway configured for provider '{provider}'",
            details={"provider": provider, "configured": sorted(gateways)},
        )
    return gateway


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Protocol for payment service providers.

    Implementations translate provider SDK errors into
    payments.exceptions.PaymentProcessingError subclasses.
    """

    provider_name: str

    def create_intent(self, request: IntentRequest) -> IntentResult:
        """Start a payment. Funds stay authorized until release."""
        ...

    def capture_and_transfer(self, request: TransferRequest) -> TransferResult:
        """
        Capture escrowed funds (if not yet captured) and transfer a share.

        Must be idempotent on request.idempotency_key.
        """
        ...

    def refund(self, request: RefundRequest) -> RefundResult:
        ...

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """
        Verify a webhook delivery and return the parsed event.

        Raises:
            WebhookSignatureError: Signature check failed
        """
        ...


@runtime_checkable
class JobQueuePort(Protocol):
    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        priority: int = 50,
        created_by: Any = None,
    ) -> str:
        """Queue a job and return its id."""
        ...


@runtime_checkable
class EventPublisherPort(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class NotificationPort(Protocol):
    def notify(
        self,
        user_ids: list[str],
        template: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        ...


__all__ = [
    "EventPublisherPort",
    "IntentRequest",
    "IntentResult",
    "JobQueuePort",
    "NotificationPort",
    "PaymentGateway",
    "RefundRequest",
    "RefundResult",
    "TransferRequest",
    "TransferResult",
    "get_gateway",
]
