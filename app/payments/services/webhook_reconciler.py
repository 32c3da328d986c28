"""
Webhook reconciliation: apply provider events to our records.

Payment events are correlated through metadata.transaction_id, which
PaymentService sent to the provider when it created the intent. Transfer
events are correlated through the provider transfer id stored on the
PayoutItem.

Payment event handling:
    1. Find the PaymentTransaction by correlation id
    2. Terminal transaction -> duplicate, nothing changes (see below)
    3. Mark SUCCEEDED/FAILED and commit
    4. On success, fund the milestone (locks the escrow)

Step 4 runs after step 3 has committed. If funding is refused (the
milestone is already funded, say) the error propagates but the
transaction keeps its SUCCEEDED status, because the provider really did
take the money and an operator has to refund it.

A redelivered success event for a SUCCEEDED transaction that funded
nothing, while its milestone is still PENDING, retries step 4. That
covers a funding attempt that failed for a transient reason (lock
timeout, database error) after step 3 had committed.

Usage:
    reconciler = build_engine().webhook_reconciler
    result = reconciler.reconcile(event)
    if result.duplicate:
        ...
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from core.services import BaseService
from payments.exceptions import (
    CorrelationMissingError,
    PaymentNotFoundError,
    ProviderReferenceMismatchError,
    TransactionNotFoundError,
)
from payments.models import PaymentTransaction, PayoutBatch, PayoutItem
from payments.state_machines import PayoutStatus, TransactionStatus
from projects.models import MilestoneStatus

if TYPE_CHECKING:
    from payments.ports import EventPublisherPort
    from projects.services import MilestoneService


SUCCEEDED_EVENT_TYPES = frozenset({"payment_intent.succeeded", "order.paid"})
TRANSFER_PAID_EVENT_TYPES = frozenset({"transfer.paid"})
TRANSFER_FAILED_EVENT_TYPES = frozenset({"transfer.failed", "transfer.reversed"})


@dataclass
class ReconciliationResult:
    """
    Outcome of one reconciled event.

    Attributes:
        event_type: Provider event type
        status: Resulting status of the transaction or payout item
        transaction_id: PaymentTransaction touched (payment events)
        payout_item_id: PayoutItem touched (transfer events)
        escrow_id: Escrow locked as a result of the event
        duplicate: True if the event changed nothing because it was already applied
        ignored: True if the event type isn't one we act on
    """

    event_type: str
    status: str | None = None
    transaction_id: str | None = None
    payout_item_id: str | None = None
    escrow_id: str | None = None
    duplicate: bool = False
    ignored: bool = False


def _is_uuid(value) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def get_event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    return data.get("object") or {}


def classify_payment_event(event_type: str) -> str | None:
    """Map a provider event type to a transaction status, or None if irrelevant."""
    if event_type in SUCCEEDED_EVENT_TYPES:
        return TransactionStatus.SUCCEEDED
    if "failed" in event_type and not event_type.startswith("transfer."):
        return TransactionStatus.FAILED
    return None


def is_transfer_event(event_type: str) -> bool:
    return event_type in TRANSFER_PAID_EVENT_TYPES or event_type in TRANSFER_FAILED_EVENT_TYPES


def extract_correlation_id(event: dict[str, Any]) -> str:
    """
    Return metadata.transaction_id from a payment event.

    The webhook view calls this before queuing so a malformed event is
    rejected with 400 instead of failing in the background.

    Raises:
        CorrelationMissingError: No transaction_id in the event metadata
    """
    metadata = get_event_object(event).get("metadata") or {}
    correlation_id = metadata.get("transaction_id")
    if not correlation_id:
        raise CorrelationMissingError(
            "Webhook event has no metadata.transaction_id",
            details={"event_id": event.get("id"), "event_type": event.get("type")},
        )
    return str(correlation_id)


class WebhookReconciler(BaseService):
    """
    Service applying verified provider events.

    Args:
        events: Publisher for payment.updated / payout.item.* events
        milestone_service: Funds the milestone after a successful payment
    """

    def __init__(self, events: EventPublisherPort, milestone_service: MilestoneService) -> None:
        self.events = events
        self.milestone_service = milestone_service

    # =========================================================================
    # Entry Point
    # =========================================================================

    def reconcile(self, event: dict[str, Any]) -> ReconciliationResult:
        """
        Apply one verified provider event.

        Raises:
            CorrelationMissingError: Payment event without metadata.transaction_id
            TransactionNotFoundError: No transaction with that id
            ProviderReferenceMismatchError: Event object id differs from the
                transaction's provider reference
            PaymentNotFoundError: Transfer event for an unknown payout item
            ConflictError: Funding the milestone was refused (transaction
                status is kept)
        """
        event_type = event.get("type", "")

        if is_transfer_event(event_type):
            return self.settle_transfer(event)

        target_status = classify_payment_event(event_type)
        if target_status is None:
            self.get_logger().info(
                f"Ignoring webhook event type {event_type}",
                extra={"event_id": event.get("id"), "event_type": event_type},
            )
            return ReconciliationResult(event_type=event_type, ignored=True)

        return self.settle_payment(event, target_status)

    # =========================================================================
    # Payment Events
    # =========================================================================

    def settle_payment(self, event: dict[str, Any], target_status: str) -> ReconciliationResult:
        logger = self.get_logger()
        event_type = event.get("type", "")
        obj = get_event_object(event)
        correlation_id = extract_correlation_id(event)
        provider_object_id = obj.get("id")

        with self.atomic():
            txn = self._get_transaction_for_update(correlation_id)

            if (
                provider_object_id
                and txn.provider_payment_intent_id
                and provider_object_id != txn.provider_payment_intent_id
            ):
                raise ProviderReferenceMismatchError(
                    "Event object does not match the transaction's provider reference",
                    details={
                        "transaction_id": str(txn.pk),
                        "expected": txn.provider_payment_intent_id,
                        "received": provider_object_id,
                    },
                )

            if txn.is_terminal:
                if target_status != TransactionStatus.SUCCEEDED or not self._awaits_funding(txn):
                    logger.info(
                        f"Transaction {txn.pk} already {txn.status}, ignoring duplicate event",
                        extra={"transaction_id": str(txn.pk), "event_type": event_type},
                    )
                    return ReconciliationResult(
                        event_type=event_type,
                        status=txn.status,
                        transaction_id=str(txn.pk),
                        duplicate=True,
                    )
                updated = False
            else:
                if not txn.provider_payment_intent_id and provider_object_id:
                    txn.provider_payment_intent_id = provider_object_id

                if target_status == TransactionStatus.SUCCEEDED:
                    self.apply_transition(txn, "succeed")
                else:
                    error = obj.get("last_payment_error") or {}
                    self.apply_transition(
                        txn, "fail", error.get("message") or f"Provider reported {event_type}"
                    )
                txn.save()
                updated = True

        if updated:
            logger.info(
                f"Transaction {txn.pk} marked {txn.status}",
                extra={
                    "transaction_id": str(txn.pk),
                    "event_type": event_type,
                    "provider_reference": txn.provider_payment_intent_id,
                },
            )
            self.events.publish(
                "payment.updated",
                {
                    "transaction_id": str(txn.pk),
                    "project_id": str(txn.project_id),
                    "milestone_id": str(txn.milestone_id),
                    "status": txn.status,
                    "amount_cents": txn.amount_cents,
                    "currency": txn.currency,
                },
            )
        else:
            # An earlier delivery committed SUCCEEDED, then funding failed
            logger.warning(
                f"Transaction {txn.pk} succeeded without funding its milestone, retrying",
                extra={"transaction_id": str(txn.pk), "milestone_id": str(txn.milestone_id)},
            )

        result = ReconciliationResult(
            event_type=event_type,
            status=txn.status,
            transaction_id=str(txn.pk),
        )
        if txn.status == TransactionStatus.SUCCEEDED:
            escrow = self.milestone_service.fund(txn.milestone_id, txn)
            result.escrow_id = str(escrow.pk)
        return result

    @staticmethod
    def _awaits_funding(txn: PaymentTransaction) -> bool:
        """Succeeded, funded nothing, and its milestone is still waiting for money."""
        return (
            txn.status == TransactionStatus.SUCCEEDED
            and not txn.escrows.exists()
            and txn.milestone.status == MilestoneStatus.PENDING
        )

    def _get_transaction_for_update(self, correlation_id: str) -> PaymentTransaction:
        txn = None
        if _is_uuid(correlation_id):
            txn = (
                PaymentTransaction.objects.select_for_update()
                .filter(pk=correlation_id)
                .first()
            )
        if txn is None:
            raise TransactionNotFoundError(
                f"No transaction for correlation id {correlation_id}",
                details={"transaction_id": correlation_id},
            )
        return txn

    # =========================================================================
    # Transfer Events
    # =========================================================================

    def settle_transfer(self, event: dict[str, Any]) -> ReconciliationResult:
        """
        Confirm or fail a payout item from a transfer.paid / transfer.failed event.

        The batch status follows its items (see PayoutBatch.settle_from_items).
        """
        logger = self.get_logger()
        event_type = event.get("type", "")
        obj = get_event_object(event)
        transfer_id = obj.get("id")
        item_id = (obj.get("metadata") or {}).get("payout_item_id")
        paid = event_type in TRANSFER_PAID_EVENT_TYPES

        with self.atomic():
            item = None
            if transfer_id:
                item = PayoutItem.objects.select_for_update().filter(
                    provider_transfer_id=transfer_id
                ).first()
            if item is None and item_id and _is_uuid(item_id):
                item = PayoutItem.objects.select_for_update().filter(pk=item_id).first()
            if item is None:
                raise PaymentNotFoundError(
                    f"No payout item for transfer {transfer_id}",
                    error_code="PAYOUT_ITEM_NOT_FOUND",
                    details={"transfer_id": transfer_id, "payout_item_id": item_id},
                )

            target = PayoutStatus.PAID if paid else PayoutStatus.FAILED
            if item.status == target:
                return ReconciliationResult(
                    event_type=event_type,
                    status=item.status,
                    payout_item_id=str(item.pk),
                    duplicate=True,
                )
            if item.status != PayoutStatus.PROCESSING:
                logger.warning(
                    f"Unexpected payout item state {item.status} for {event_type}",
                    extra={"payout_item_id": str(item.pk), "transfer_id": transfer_id},
                )
                return ReconciliationResult(
                    event_type=event_type,
                    status=item.status,
                    payout_item_id=str(item.pk),
                    duplicate=True,
                )

            if paid:
                item.mark_paid(transfer_id=transfer_id)
            else:
                item.mark_failed(obj.get("failure_message") or f"Provider reported {event_type}")
            item.save()

            batch = PayoutBatch.objects.select_for_update().get(pk=item.batch_id)
            if batch.settle_from_items():
                batch.save()

        logger.info(
            f"Payout item {item.pk} marked {item.status} by {event_type}",
            extra={
                "payout_item_id": str(item.pk),
                "batch_id": str(item.batch_id),
                "transfer_id": transfer_id,
            },
        )
        self.events.publish(
            f"payout.item.{item.status}",
            {
                "payout_item_id": str(item.pk),
                "batch_id": str(item.batch_id),
                "recipient_id": str(item.recipient_id),
                "net_cents": item.net_cents,
                "currency": item.currency,
            },
        )
        return ReconciliationResult(
            event_type=event_type,
            status=item.status,
            payout_item_id=str(item.pk),
        )


__all__ = [
    "ReconciliationResult",
    "WebhookReconciler",
    "classify_payment_event",
    "extract_correlation_id",
    "get_event_object",
    "is_transfer_event",
]
