"""
Escrow ledger: the only code that moves an Escrow between states.

Each operation locks the escrow row, checks the transition and writes it
inside one database transaction, then publishes an event after commit.
Refunds create a REFUND PaymentTransaction in the same transaction and
call the gateway only once that transaction has committed, so a provider
call is never rolled back underneath us.

Events:
    escrow.locked, escrow.held, escrow.unheld, escrow.released, escrow.refunded

Usage:
    from payments.engine import build_engine

    ledger = build_engine().escrow_ledger
    with transaction.atomic():
        escrow = ledger.lock(milestone, funding_transaction)

    ledger.release(escrow.id)          # full amount
    ledger.refund(escrow.id, reason="Milestone rejected")
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.services import BaseService
from payments.exceptions import (
    EscrowAlreadyActiveError,
    EscrowAmountInvalidError,
    EscrowNotFoundError,
    PaymentProcessingError,
)
from payments.idempotency import IdempotencyKeyGenerator
from payments.models import Escrow, PaymentTransaction
from payments.ports import RefundRequest, get_gateway
from payments.state_machines import EscrowStatus, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.ports import EventPublisherPort, PaymentGateway
    from projects.models import Milestone


class EscrowLedger(BaseService):
    """
    Service for escrow state changes.

    Args:
        gateways: provider name -> PaymentGateway (used for refunds)
        events: Publisher for escrow.* events
    """

    def __init__(
        self,
        gateways: Mapping[str, PaymentGateway],
        events: EventPublisherPort,
    ) -> None:
        self.gateways = gateways
        self.events = events

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active(self, milestone_id, for_update: bool = False) -> Escrow | None:
        """Return the LOCKED or HELD escrow for a milestone, if any."""
        queryset = Escrow.objects.filter(
            milestone_id=milestone_id,
            status__in=EscrowStatus.active(),
        )
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    def _get_for_update(self, escrow_id) -> Escrow:
        escrow = Escrow.objects.select_for_update().filter(pk=escrow_id).first()
        if escrow is None:
            raise EscrowNotFoundError(
                f"Escrow {escrow_id} not found",
                details={"escrow_id": str(escrow_id)},
            )
        return escrow

    # =========================================================================
    # Lock
    # =========================================================================

    def lock(self, milestone: Milestone, funding_transaction: PaymentTransaction) -> Escrow:
        """
        Lock funds for a milestone.

        Runs inside the caller's transaction (MilestoneService.fund holds
        the milestone row lock). The partial unique constraint is the last
        line against a concurrent second lock.

        Raises:
            EscrowAlreadyActiveError: Milestone already has a LOCKED/HELD escrow
        """
        logger = self.get_logger()

        if self.get_active(milestone.pk) is not None:
            raise EscrowAlreadyActiveError(
                f"Milestone {milestone.pk} already has an active escrow",
                details={"milestone_id": str(milestone.pk)},
            )

        try:
            with transaction.atomic():
                escrow = Escrow.objects.create(
                    milestone=milestone,
                    project_id=milestone.project_id,
                    payer_id=funding_transaction.payer_id,
                    funding_transaction=funding_transaction,
                    amount_cents=funding_transaction.amount_cents,
                    currency=funding_transaction.currency,
                    provider=funding_transaction.provider,
                    provider_reference=funding_transaction.provider_payment_intent_id,
                )
        except IntegrityError as exc:
            raise EscrowAlreadyActiveError(
                f"Milestone {milestone.pk} already has an active escrow",
                details={"milestone_id": str(milestone.pk)},
            ) from exc

        logger.info(
            f"Escrow {escrow.id} locked for milestone {milestone.pk}",
            extra={
                "escrow_id": str(escrow.id),
                "milestone_id": str(milestone.pk),
                "amount_cents": escrow.amount_cents,
            },
        )
        self.events.publish("escrow.locked", self._event_payload(escrow))
        return escrow

    # =========================================================================
    # Hold / Unhold
    # =========================================================================

    def hold(self, escrow_id) -> Escrow:
        """Freeze an escrow while its milestone is disputed (LOCKED -> HELD)."""
        with self.atomic():
            escrow = self._get_for_update(escrow_id)
            self.apply_transition(escrow, "hold")
            escrow.save()

        self.events.publish("escrow.held", self._event_payload(escrow))
        return escrow

    def unhold(self, escrow_id) -> Escrow:
        """Unfreeze after a dispute resolved for release (HELD -> LOCKED)."""
        with self.atomic():
            escrow = self._get_for_update(escrow_id)
            self.apply_transition(escrow, "unhold")
            escrow.save()

        self.events.publish("escrow.unheld", self._event_payload(escrow))
        return escrow

    # =========================================================================
    # Release / Refund
    # =========================================================================

    def release(self, escrow_id, amount_cents: int | None = None) -> Escrow:
        """
        Release locked funds to the payout pool (LOCKED -> RELEASED).

        Args:
            escrow_id: Escrow to release
            amount_cents: Amount to release, defaults to the full escrow

        Raises:
            EscrowAmountInvalidError: Amount not in 1..escrow amount
            InvalidStateTransitionError: Escrow isn't LOCKED
        """
        with self.atomic():
            escrow = self._get_for_update(escrow_id)
            amount = self._checked_amount(escrow, amount_cents)
            self.apply_transition(escrow, "release", amount)
            escrow.save()

        self.get_logger().info(
            f"Escrow {escrow.id} released",
            extra={"escrow_id": str(escrow.id), "amount_cents": amount},
        )
        self.events.publish("escrow.released", self._event_payload(escrow))
        return escrow

    def refund(self, escrow_id, amount_cents: int | None = None, reason: str = "") -> Escrow:
        """
        Return funds to the payer (LOCKED/HELD -> REFUNDED).

        The escrow transition and the REFUND transaction are written
        together; the provider refund runs after commit.

        Raises:
            EscrowAmountInvalidError: Amount not in 1..escrow amount
            InvalidStateTransitionError: Escrow is already released or refunded
        """
        with self.atomic():
            escrow = self._get_for_update(escrow_id)
            amount = self._checked_amount(escrow, amount_cents)
            self.apply_transition(escrow, "refund", amount)
            escrow.save()

            refund_txn = PaymentTransaction.objects.create(
                project_id=escrow.project_id,
                milestone_id=escrow.milestone_id,
                payer_id=escrow.payer_id,
                provider=escrow.provider,
                transaction_type=TransactionType.REFUND,
                amount_cents=amount,
                currency=escrow.currency,
                metadata={"escrow_id": str(escrow.id), "reason": reason},
            )

            transaction.on_commit(lambda: self.execute_refund(refund_txn.id))

        self.get_logger().info(
            f"Escrow {escrow.id} refunded",
            extra={
                "escrow_id": str(escrow.id),
                "amount_cents": amount,
                "refund_transaction_id": str(refund_txn.id),
            },
        )
        self.events.publish(
            "escrow.refunded",
            {**self._event_payload(escrow), "refund_transaction_id": str(refund_txn.id)},
        )
        return escrow

    def execute_refund(self, refund_transaction_id) -> PaymentTransaction:
        """
        Ask the provider to return a refunded escrow's funds.

        Called after the refund commit. Provider failures are recorded on
        the REFUND transaction (FAILED with the provider's reason) so an
        operator can retry; nothing is rolled back.
        """
        logger = self.get_logger()
        refund_txn = PaymentTransaction.objects.get(pk=refund_transaction_id)
        if refund_txn.is_terminal:
            return refund_txn

        escrow_id = refund_txn.metadata.get("escrow_id")
        escrow = Escrow.objects.get(pk=escrow_id)

        if not escrow.provider_reference:
            logger.error(
                f"Escrow {escrow.id} has no provider reference to refund against",
                extra={"escrow_id": str(escrow.id)},
            )
            return self._finish_refund(refund_txn, failure="No provider reference on escrow")

        try:
            gateway = get_gateway(self.gateways, escrow.provider)
            result = gateway.refund(
                RefundRequest(
                    provider_reference=escrow.provider_reference,
                    amount_cents=refund_txn.amount_cents,
                    currency=refund_txn.currency,
                    idempotency_key=IdempotencyKeyGenerator.generate("refund", refund_txn.id),
                    reason=refund_txn.metadata.get("reason", ""),
                    metadata={
                        "transaction_id": str(refund_txn.id),
                        "escrow_id": str(escrow.id),
                    },
                )
            )
        except PaymentProcessingError as exc:
            logger.error(
                f"Provider refund failed for escrow {escrow.id}: {exc.message}",
                extra={
                    "escrow_id": str(escrow.id),
                    "refund_transaction_id": str(refund_txn.id),
                    "error_code": exc.error_code,
                },
                exc_info=True,
            )
            return self._finish_refund(refund_txn, failure=exc.message)

        with self.atomic():
            Escrow.objects.filter(pk=escrow.pk).update(refund_provider_id=result.refund_id)
        return self._finish_refund(refund_txn, refund_id=result.refund_id)

    def _finish_refund(
        self,
        refund_txn: PaymentTransaction,
        refund_id: str | None = None,
        failure: str | None = None,
    ) -> PaymentTransaction:
        with self.atomic():
            refund_txn = PaymentTransaction.objects.select_for_update().get(pk=refund_txn.pk)
            if refund_txn.status != TransactionStatus.CREATED:
                return refund_txn
            if failure:
                refund_txn.fail(failure)
            else:
                refund_txn.provider_refund_id = refund_id
                refund_txn.succeed()
            refund_txn.save()
        return refund_txn

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _checked_amount(escrow: Escrow, amount_cents: int | None) -> int:
        amount = escrow.amount_cents if amount_cents is None else amount_cents
        if (
            isinstance(amount, bool)
            or not isinstance(amount, int)
            or not 0 < amount <= escrow.amount_cents
        ):
            raise EscrowAmountInvalidError(
                f"Amount must be between 1 and {escrow.amount_cents}",
                details={"escrow_id": str(escrow.id), "amount_cents": amount},
            )
        return amount

    @staticmethod
    def _event_payload(escrow: Escrow) -> dict:
        return {
            "escrow_id": str(escrow.id),
            "milestone_id": str(escrow.milestone_id),
            "project_id": str(escrow.project_id),
            "amount_cents": escrow.amount_cents,
            "currency": escrow.currency,
            "status": escrow.status,
        }


__all__ = ["EscrowLedger"]
