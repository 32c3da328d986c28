"""
Payout scheduling: turn a released escrow into per-recipient payout items.

One PayoutBatch exists per escrow. The escrow row lock serializes
concurrent schedulers and the one-to-one constraint on PayoutBatch.escrow
catches anything that slips past it, so a second call always ends in
PayoutAlreadyScheduledError and never in a second set of transfers.

Flow:
    1. Lock the escrow, check it is RELEASED and has no batch yet
    2. Load the active split agreement
    3. Resolve payable shares under the placeholder policy
    4. Persist the batch and one SCHEDULED item per resolved recipient
    5. After commit: enqueue payout.execute, publish, notify recipients

Usage:
    from payments.engine import build_engine

    batch = build_engine().payout_scheduler.schedule_payouts(
        escrow_id=escrow.id,
        project_id=escrow.project_id,
        milestone_id=escrow.milestone_id,
        amount_cents=escrow.released_amount_cents,
        currency=escrow.currency,
    )
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction

from core.services import BaseService
from jobs.registry import PAYOUT_EXECUTE
from payments.exceptions import (
    AmountInvalidError,
    EscrowNotFoundError,
    EscrowNotReleasedError,
    PaymentValidationError,
    PayoutAlreadyScheduledError,
    PayoutBatchNotFoundError,
    SplitConservationError,
)
from payments.models import Escrow, PayoutBatch, PayoutItem
from payments.splits import PlaceholderPolicy, resolve_payable_shares
from payments.state_machines import EscrowStatus
from projects.models import ProjectMember, RevenueSplit

if TYPE_CHECKING:
    from payments.ports import EventPublisherPort, JobQueuePort, NotificationPort


# Payouts run ahead of housekeeping jobs
PAYOUT_JOB_PRIORITY = 80


class PayoutScheduler(BaseService):
    """
    Service creating payout batches.

    Args:
        job_queue: Where payout.execute jobs go
        events: Publisher for payout.* events
        notifier: Tells recipients a payout is on its way
    """

    def __init__(
        self,
        job_queue: JobQueuePort,
        events: EventPublisherPort,
        notifier: NotificationPort,
    ) -> None:
        self.job_queue = job_queue
        self.events = events
        self.notifier = notifier

    def schedule_payouts(
        self,
        escrow_id,
        project_id,
        milestone_id,
        amount_cents: int,
        currency: str,
        scheduled_by=None,
        placeholder_policy: str | None = None,
    ) -> PayoutBatch:
        """
        Create the payout batch for a released escrow.

        Args:
            escrow_id: Released escrow to distribute
            project_id: Must match the escrow
            milestone_id: Must match the escrow; None skips the check
            amount_cents: Amount to distribute (at most the released amount)
            currency: ISO 4217 code, must match the escrow
            scheduled_by: User triggering the payout (None when automatic)
            placeholder_policy: 'withhold' or 'renormalize', defaults to
                PAYOUT_PLACEHOLDER_POLICY

        Raises:
            EscrowNotFoundError: Unknown escrow
            EscrowNotReleasedError: Escrow isn't RELEASED
            PayoutAlreadyScheduledError: Batch already exists for the escrow
            PaymentValidationError: Ids or currency don't match the escrow
            AmountInvalidError: Amount not in 1..released amount
            NoRecipientsError: No split entry resolves to a recipient
            SplitSumInvalidError / PercentageModelRequiredError: Bad agreement
            SplitConservationError: Calculator invariant broken (fatal)
        """
        logger = self.get_logger()
        policy = placeholder_policy or getattr(
            settings, "PAYOUT_PLACEHOLDER_POLICY", PlaceholderPolicy.WITHHOLD
        )
        fee_percent = Decimal(str(getattr(settings, "PLATFORM_FEE_PERCENT", "5")))

        with self.atomic():
            escrow = Escrow.objects.select_for_update().filter(pk=escrow_id).first()
            if escrow is None:
                raise EscrowNotFoundError(
                    f"Escrow {escrow_id} not found",
                    details={"escrow_id": str(escrow_id)},
                )
            self._check_escrow(escrow, project_id, milestone_id, amount_cents, currency)

            if PayoutBatch.objects.filter(escrow=escrow).exists():
                raise PayoutAlreadyScheduledError(
                    f"Payouts already scheduled for escrow {escrow.pk}",
                    details={"escrow_id": str(escrow.pk)},
                )

            splits = [
                split.to_split_spec()
                for split in RevenueSplit.objects.filter(
                    project_id=escrow.project_id, is_active=True
                ).order_by("position", "created_at")
            ]
            payable = resolve_payable_shares(
                amount_cents,
                escrow.currency,
                splits,
                policy=policy,
                fee_percent=fee_percent,
            )

            try:
                with transaction.atomic():
                    batch = PayoutBatch.objects.create(
                        escrow=escrow,
                        project_id=escrow.project_id,
                        milestone_id=escrow.milestone_id,
                        scheduled_by=scheduled_by,
                        currency=escrow.currency,
                        gross_cents=amount_cents,
                        platform_fee_cents=payable.breakdown.platform_fee_cents,
                        total_net_cents=payable.total_net_cents,
                        withheld_cents=payable.withheld_cents,
                        placeholder_policy=payable.policy,
                    )
            except IntegrityError as exc:
                raise PayoutAlreadyScheduledError(
                    f"Payouts already scheduled for escrow {escrow.pk}",
                    details={"escrow_id": str(escrow.pk)},
                ) from exc

            accounts = dict(
                ProjectMember.objects.filter(project_id=escrow.project_id).values_list(
                    "user_id", "payout_account_id"
                )
            )
            accounts = {str(user_id): account for user_id, account in accounts.items()}

            items = PayoutItem.objects.bulk_create(
                [
                    PayoutItem(
                        batch=batch,
                        recipient_id=share.recipient_id,
                        position=position,
                        destination_account=accounts.get(share.recipient_id, ""),
                        percentage=share.percentage,
                        currency=batch.currency,
                        gross_cents=share.gross_share_cents,
                        fee_cents=share.fee_share_cents,
                        tax_withheld_cents=share.tax_withheld_cents,
                        net_cents=share.net_cents,
                    )
                    for position, share in enumerate(payable.shares)
                ]
            )

            if sum(item.net_cents for item in items) != batch.total_net_cents:
                logger.critical(
                    f"Payout items don't add up to batch total for escrow {escrow.pk}",
                    extra={"escrow_id": str(escrow.pk), "batch_id": str(batch.pk)},
                )
                raise SplitConservationError(
                    "Payout items don't add up to the batch total",
                    details={"batch_id": str(batch.pk)},
                )

            transaction.on_commit(lambda: self.enqueue_execution(batch.pk, created_by=scheduled_by))

        logger.info(
            f"Scheduled payout batch {batch.pk} for escrow {escrow.pk}",
            extra={
                "batch_id": str(batch.pk),
                "escrow_id": str(escrow.pk),
                "items": len(items),
                "total_net_cents": batch.total_net_cents,
                "withheld_cents": batch.withheld_cents,
                "placeholder_policy": batch.placeholder_policy,
            },
        )

        self.events.publish(
            "payout.batch.scheduled",
            {
                "batch_id": str(batch.pk),
                "escrow_id": str(escrow.pk),
                "project_id": str(batch.project_id),
                "milestone_id": str(batch.milestone_id),
                "total_net_cents": batch.total_net_cents,
                "withheld_cents": batch.withheld_cents,
                "currency": batch.currency,
                "item_count": len(items),
            },
        )
        self.notifier.notify(
            sorted({str(item.recipient_id) for item in items}),
            "payout.scheduled",
            {
                "batch_id": str(batch.pk),
                "milestone_id": str(batch.milestone_id),
                "currency": batch.currency,
            },
        )
        return batch

    def enqueue_execution(self, batch_id, created_by=None) -> str:
        """
        Queue the payout.execute job for a batch and remember its id.

        Safe to call again for a batch whose job was lost; the handler only
        moves items that haven't been paid.
        """
        batch = PayoutBatch.objects.filter(pk=batch_id).first()
        if batch is None:
            raise PayoutBatchNotFoundError(
                f"Payout batch {batch_id} not found",
                details={"batch_id": str(batch_id)},
            )

        job_id = self.job_queue.enqueue(
            PAYOUT_EXECUTE,
            {"batch_id": str(batch.pk), "escrow_id": str(batch.escrow_id)},
            priority=PAYOUT_JOB_PRIORITY,
            created_by=created_by,
        )
        PayoutBatch.objects.filter(pk=batch.pk).update(job_id=job_id)

        self.get_logger().info(
            f"Enqueued payout job {job_id} for batch {batch.pk}",
            extra={"batch_id": str(batch.pk), "job_id": str(job_id)},
        )
        return job_id

    @staticmethod
    def _check_escrow(escrow: Escrow, project_id, milestone_id, amount_cents, currency) -> None:
        if escrow.status != EscrowStatus.RELEASED:
            raise EscrowNotReleasedError(
                f"Escrow {escrow.pk} is {escrow.status}, not released",
                details={"escrow_id": str(escrow.pk), "status": escrow.status},
            )
        milestone_mismatch = milestone_id is not None and str(escrow.milestone_id) != str(
            milestone_id
        )
        if str(escrow.project_id) != str(project_id) or milestone_mismatch:
            raise PaymentValidationError(
                "Escrow does not belong to the given project and milestone",
                details={"escrow_id": str(escrow.pk)},
            )
        if currency.lower() != escrow.currency.lower():
            raise PaymentValidationError(
                f"Currency {currency} does not match escrow currency {escrow.currency}",
                details={"escrow_id": str(escrow.pk)},
            )
        released = escrow.released_amount_cents or escrow.amount_cents
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or not (
            0 < amount_cents <= released
        ):
            raise AmountInvalidError(
                f"Payout amount must be between 1 and {released}",
                details={"escrow_id": str(escrow.pk), "amount_cents": amount_cents},
            )


__all__ = ["PAYOUT_JOB_PRIORITY", "PayoutScheduler"]
