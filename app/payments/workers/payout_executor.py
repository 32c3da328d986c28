"""
Payout executor: the payout.execute job handler.

Moves each item of a payout batch through the payment gateway using the
two-phase commit pattern:

    Phase 1: item -> PROCESSING, attempts += 1 (committed)
    Phase 2: gateway.capture_and_transfer (outside any transaction)
    Phase 3: item -> PAID with the transfer id, or FAILED (committed)

A retryable provider error (timeout, rate limit) leaves the item
PROCESSING without a transfer id, so the next attempt reuses its
idempotency key. Only a definitive failure moves the item to FAILED, and
the attempt after that is sent under a new key.

The batch is held under a distributed lock for the whole run, so two
workers never execute the same batch at once. Items already PAID, or
PROCESSING with a transfer id (awaiting the transfer.paid webhook), are
skipped, which makes re-running the job safe.

Before any money moves the escrow is re-checked: a batch whose escrow is
no longer RELEASED is failed without calling the gateway.

Usage:
    # Enqueued by PayoutScheduler; executed by the JobRunner
    from payments.engine import build_engine

    result = build_engine().payout_executor.execute(batch_id, escrow_id)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.db import transaction

from core.locks import DistributedLock
from core.services import BaseService
from jobs.exceptions import JobExecutionError
from jobs.handlers import register_handler
from jobs.registry import PAYOUT_EXECUTE
from payments.exceptions import PaymentProcessingError, PayoutBatchNotFoundError
from payments.idempotency import IdempotencyKeyGenerator
from payments.models import Escrow, PayoutBatch, PayoutItem
from payments.ports import TransferRequest, get_gateway
from payments.state_machines import EscrowStatus, PayoutStatus

if TYPE_CHECKING:
    from payments.ports import EventPublisherPort, PaymentGateway


# Lock TTL covers a batch of slow provider calls; the job timeout is 60s
BATCH_LOCK_TTL_SECONDS = 120


@dataclass
class PayoutExecutionResult:
    """
    Summary of one executor run, stored as the job result.

    Attributes:
        batch_id: Batch executed
        status: Batch status after the run
        paid: Item ids confirmed paid in this run
        pending: Item ids with a transfer awaiting confirmation
        failed: Item ids whose transfer failed in this run
        skipped: Item ids that needed no work
        aborted: True if the escrow was no longer releasable
    """

    batch_id: str
    status: str
    paid: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "paid": self.paid,
            "pending": self.pending,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }


class PayoutExecutor(BaseService):
    """
    Executes payout batches.

    Args:
        gateways: provider name -> PaymentGateway
        events: Publisher for payout.item.* and payout.batch.* events
    """

    def __init__(
        self,
        gateways: Mapping[str, PaymentGateway],
        events: EventPublisherPort,
    ) -> None:
        self.gateways = gateways
        self.events = events

    def execute(self, batch_id, escrow_id=None) -> PayoutExecutionResult:
        """
        Transfer every outstanding item of a batch.

        Raises:
            PayoutBatchNotFoundError: Unknown batch
            LockAcquisitionError: Another worker is executing the batch
            JobExecutionError: One or more transfers failed (retryable if any
                failure was transient)
        """
        with DistributedLock(f"payout:batch:{batch_id}", ttl=BATCH_LOCK_TTL_SECONDS):
            return self._execute_locked(batch_id, escrow_id)

    def _execute_locked(self, batch_id, escrow_id) -> PayoutExecutionResult:
        logger = self.get_logger()

        batch = PayoutBatch.objects.select_related("escrow").filter(pk=batch_id).first()
        if batch is None:
            raise PayoutBatchNotFoundError(
                f"Payout batch {batch_id} not found",
                details={"batch_id": str(batch_id)},
            )
        if escrow_id is not None and str(batch.escrow_id) != str(escrow_id):
            logger.warning(
                f"Job escrow {escrow_id} does not match batch escrow {batch.escrow_id}",
                extra={"batch_id": str(batch.pk), "escrow_id": str(escrow_id)},
            )

        result = PayoutExecutionResult(batch_id=str(batch.pk), status=batch.status)
        if batch.status == PayoutStatus.PAID:
            result.skipped = [str(pk) for pk in batch.items.values_list("pk", flat=True)]
            return result

        escrow = batch.escrow
        if escrow.status != EscrowStatus.RELEASED:
            return self._abort(batch, escrow, result)

        with transaction.atomic():
            batch = PayoutBatch.objects.select_for_update().get(pk=batch.pk)
            if batch.status != PayoutStatus.PROCESSING:
                self.apply_transition(batch, "start_processing")
                batch.save()

        gateway = get_gateway(self.gateways, escrow.provider)
        retryable_failure = False

        for item in batch.items.order_by("position"):
            if not item.needs_transfer:
                result.skipped.append(str(item.pk))
                continue

            outcome, retryable = self._transfer_item(gateway, batch, escrow, item)
            getattr(result, outcome).append(str(item.pk))
            retryable_failure = retryable_failure or retryable

        with transaction.atomic():
            batch = PayoutBatch.objects.select_for_update().get(pk=batch.pk)
            if batch.settle_from_items():
                batch.save()
        result.status = batch.status

        logger.info(
            f"Payout batch {batch.pk} executed",
            extra={
                "batch_id": str(batch.pk),
                "status": batch.status,
                "paid_count": len(result.paid),
                "pending_count": len(result.pending),
                "failed_count": len(result.failed),
            },
        )
        if batch.status in (PayoutStatus.PAID, PayoutStatus.FAILED):
            self.events.publish(
                f"payout.batch.{batch.status}",
                {
                    "batch_id": str(batch.pk),
                    "escrow_id": str(batch.escrow_id),
                    "project_id": str(batch.project_id),
                    "total_net_cents": batch.total_net_cents,
                    "currency": batch.currency,
                },
            )

        if result.failed:
            error = JobExecutionError(
                f"{len(result.failed)} transfer(s) failed for batch {batch.pk}",
                error_code="PAYOUT_TRANSFERS_FAILED",
                details=result.to_dict(),
            )
            error.is_retryable = retryable_failure
            raise error
        return result

    def _transfer_item(
        self,
        gateway: PaymentGateway,
        batch: PayoutBatch,
        escrow: Escrow,
        item: PayoutItem,
    ) -> tuple[str, bool]:
        """
        Run the three phases for one item.

        Returns:
            (outcome, retryable) where outcome is 'paid', 'pending' or 'failed'
        """
        logger = self.get_logger()

        # Phase 1: claim the item. A PROCESSING item without a transfer id
        # crashed mid-call; keeping its attempt number reuses the same
        # idempotency key, so the provider returns the original transfer.
        with transaction.atomic():
            item = PayoutItem.objects.select_for_update().get(pk=item.pk)
            if item.status != PayoutStatus.PROCESSING:
                self.apply_transition(item, "start_processing")
                item.save()

        request = TransferRequest(
            item_id=str(item.pk),
            batch_id=str(batch.pk),
            recipient_id=str(item.recipient_id),
            destination_account=item.destination_account,
            source_reference=escrow.provider_reference,
            amount_cents=item.net_cents,
            currency=item.currency,
            idempotency_key=IdempotencyKeyGenerator.generate("transfer", item.pk, item.attempts),
            metadata={"payout_item_id": str(item.pk), "batch_id": str(batch.pk)},
        )

        # Phase 2: provider call, outside any transaction
        try:
            transfer = gateway.capture_and_transfer(request)
        except PaymentProcessingError as exc:
            logger.error(
                f"Transfer failed for payout item {item.pk}: {exc.message}",
                extra={
                    "payout_item_id": str(item.pk),
                    "batch_id": str(batch.pk),
                    "attempt": item.attempts,
                    "error_code": exc.error_code,
                    "is_retryable": exc.is_retryable,
                },
            )
            if exc.is_retryable:
                # The provider may have made the transfer before the error.
                # Staying PROCESSING without a transfer id makes the next
                # attempt resend under the same idempotency key.
                self._note_transient_failure(item.pk, exc.message)
            else:
                self._finish_item(item.pk, failure=exc.message)
            return "failed", exc.is_retryable

        # Phase 3: record the outcome
        if transfer.status == "failed":
            self._finish_item(item.pk, failure="Provider rejected the transfer")
            return "failed", False

        item = self._finish_item(
            item.pk,
            transfer_id=transfer.transfer_id,
            paid=transfer.status == "succeeded",
        )
        return ("paid" if item.status == PayoutStatus.PAID else "pending"), False

    def _finish_item(
        self,
        item_id,
        transfer_id: str | None = None,
        paid: bool = False,
        failure: str | None = None,
    ) -> PayoutItem:
        with transaction.atomic():
            item = PayoutItem.objects.select_for_update().get(pk=item_id)
            # transfer.paid may have arrived first
            if item.status != PayoutStatus.PROCESSING:
                return item

            if failure:
                item.mark_failed(failure)
            elif paid:
                item.failure_reason = None
                item.mark_paid(transfer_id=transfer_id)
            else:
                item.failure_reason = None
                item.provider_transfer_id = transfer_id
            item.save()

        self.events.publish(
            f"payout.item.{item.status}",
            {
                "payout_item_id": str(item.pk),
                "batch_id": str(item.batch_id),
                "recipient_id": str(item.recipient_id),
                "net_cents": item.net_cents,
                "transfer_id": item.provider_transfer_id,
            },
        )
        return item

    def _note_transient_failure(self, item_id, reason: str) -> None:
        """Record why the attempt stopped while keeping the item in flight."""
        with transaction.atomic():
            item = PayoutItem.objects.select_for_update().get(pk=item_id)
            if item.status != PayoutStatus.PROCESSING or item.provider_transfer_id:
                return
            item.failure_reason = reason
            item.save()

    def _abort(
        self,
        batch: PayoutBatch,
        escrow: Escrow,
        result: PayoutExecutionResult,
    ) -> PayoutExecutionResult:
        """Escrow is no longer releasable: fail outstanding items, move nothing."""
        reason = f"Escrow is {escrow.status}, payout aborted"
        self.get_logger().warning(
            f"Aborting payout batch {batch.pk}: escrow {escrow.pk} is {escrow.status}",
            extra={"batch_id": str(batch.pk), "escrow_id": str(escrow.pk)},
        )

        with transaction.atomic():
            batch = PayoutBatch.objects.select_for_update().get(pk=batch.pk)
            for item in batch.items.select_for_update().exclude(status=PayoutStatus.PAID):
                if item.status != PayoutStatus.FAILED:
                    item.mark_failed(reason)
                    item.save()
                result.failed.append(str(item.pk))
            if batch.status != PayoutStatus.FAILED:
                self.apply_transition(batch, "mark_failed", reason)
                batch.save()

        result.status = batch.status
        result.aborted = True
        self.events.publish(
            "payout.batch.failed",
            {
                "batch_id": str(batch.pk),
                "escrow_id": str(escrow.pk),
                "project_id": str(batch.project_id),
                "reason": reason,
            },
        )
        return result


# =============================================================================
# Job Handler
# =============================================================================


@register_handler(PAYOUT_EXECUTE)
def execute_payout(payload: dict, job) -> dict:
    """payout.execute: run the executor for payload['batch_id']."""
    from payments.engine import build_engine

    executor = build_engine().payout_executor
    return executor.execute(payload["batch_id"], payload.get("escrow_id")).to_dict()


__all__ = [
    "PayoutExecutionResult",
    "PayoutExecutor",
    "execute_payout",
]
