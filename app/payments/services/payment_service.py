"""
Payment intent creation for milestone funding.

The payer (project owner) asks for an intent; the gateway authorizes the
milestone amount with manual capture, and the PaymentTransaction id travels
to the provider as metadata.transaction_id. When the provider's webhook
comes back, WebhookReconciler finds the transaction by that id.

Usage:
    from payments.engine import build_engine

    intent = build_engine().payment_service.create_payment_intent(
        milestone_id=milestone.id,
        payer=request.user,
    )
    intent.client_secret  # hand to the frontend
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService
from payments.exceptions import AmountInvalidError, EscrowAlreadyActiveError
from payments.idempotency import IdempotencyKeyGenerator
from payments.models import Escrow, PaymentTransaction
from payments.ports import IntentRequest, get_gateway
from payments.state_machines import EscrowStatus, TransactionType
from projects.exceptions import (
    MilestoneAlreadyProcessedError,
    MilestoneNotFoundError,
    NotProjectOwnerError,
)
from projects.models import Milestone, MilestoneStatus

if TYPE_CHECKING:
    from payments.ports import EventPublisherPort, PaymentGateway


# Providers reject smaller card payments
MIN_PAYMENT_CENTS = 100

# Intent statuses that mean the payer still has to act
AWAITING_PAYER_STATUSES = frozenset(
    {"created", "requires_action", "requires_payment_method", "requires_confirmation"}
)


@dataclass
class PaymentIntentResult:
    transaction: PaymentTransaction
    provider: str
    provider_reference: str
    status: str
    client_secret: str | None = None
    checkout_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "transaction_id": str(self.transaction.id),
            "provider": self.provider,
            "provider_payment_intent_id": self.provider_reference,
            "client_secret": self.client_secret,
            "checkout_url": self.checkout_url,
            "status": self.status,
        }


class PaymentService(BaseService):
    """
    Service for starting milestone payments.

    Args:
        gateways: provider name -> PaymentGateway
        events: Publisher for payment.* events
    """

    def __init__(
        self,
        gateways: Mapping[str, PaymentGateway],
        events: EventPublisherPort,
    ) -> None:
        self.gateways = gateways
        self.events = events

    def create_payment_intent(
        self,
        milestone_id,
        payer,
        provider: str | None = None,
        return_url: str | None = None,
    ) -> PaymentIntentResult:
        """
        Create a PaymentTransaction and the matching provider intent.

        The transaction row is written before the provider call so its id
        can be used as the correlation id. If the provider call fails the
        transaction is marked FAILED and the error propagates.

        Raises:
            MilestoneNotFoundError: Unknown milestone
            NotProjectOwnerError: payer doesn't own the project
            MilestoneAlreadyProcessedError: Milestone isn't PENDING
            EscrowAlreadyActiveError: Milestone already funded
            AmountInvalidError: Milestone amount below the provider minimum
            UnknownProviderError: provider has no configured gateway
            PaymentProcessingError: Provider rejected the intent
        """
        logger = self.get_logger()
        provider = provider or getattr(settings, "DEFAULT_PAYMENT_PROVIDER", "stripe")
        gateway = get_gateway(self.gateways, provider)

        milestone = (
            Milestone.objects.select_related("project").filter(pk=milestone_id).first()
        )
        if milestone is None:
            raise MilestoneNotFoundError(
                f"Milestone {milestone_id} not found",
                details={"milestone_id": str(milestone_id)},
            )
        if not milestone.project.is_owner(payer):
            raise NotProjectOwnerError(
                "Only the project owner can fund milestones",
                details={"project_id": str(milestone.project_id)},
            )
        if milestone.status != MilestoneStatus.PENDING:
            raise MilestoneAlreadyProcessedError(
                f"Milestone is {milestone.status} and can't be funded",
                details={"milestone_id": str(milestone.pk), "status": milestone.status},
            )
        if Escrow.objects.filter(
            milestone=milestone, status__in=EscrowStatus.active()
        ).exists():
            raise EscrowAlreadyActiveError(
                f"Milestone {milestone.pk} already has an active escrow",
                details={"milestone_id": str(milestone.pk)},
            )
        if milestone.amount_cents < MIN_PAYMENT_CENTS:
            raise AmountInvalidError(
                f"Minimum payment amount is {MIN_PAYMENT_CENTS} minor units",
                details={"amount_cents": milestone.amount_cents},
            )

        txn = PaymentTransaction.objects.create(
            project_id=milestone.project_id,
            milestone=milestone,
            payer=payer,
            provider=provider,
            transaction_type=TransactionType.ESCROW_LOCK,
            amount_cents=milestone.amount_cents,
            currency=milestone.currency,
            metadata={
                "project_id": str(milestone.project_id),
                "milestone_id": str(milestone.pk),
                "payer_id": str(payer.pk),
            },
        )

        try:
            result = gateway.create_intent(
                IntentRequest(
                    transaction_id=str(txn.id),
                    amount_cents=txn.amount_cents,
                    currency=txn.currency,
                    idempotency_key=IdempotencyKeyGenerator.generate("create_intent", txn.id),
                    description=f"Escrow for milestone {milestone.title}",
                    metadata=dict(txn.metadata),
                    return_url=return_url,
                )
            )
        except Exception as exc:
            txn.fail(getattr(exc, "message", None) or str(exc))
            txn.save()
            logger.error(
                f"Intent creation failed for transaction {txn.id}",
                extra={"transaction_id": str(txn.id), "provider": provider},
                exc_info=True,
            )
            raise

        txn.provider_payment_intent_id = result.provider_reference
        if result.status not in AWAITING_PAYER_STATUSES:
            txn.mark_pending()
        txn.save()

        logger.info(
            f"Payment intent created for milestone {milestone.pk}",
            extra={
                "transaction_id": str(txn.id),
                "milestone_id": str(milestone.pk),
                "provider": provider,
                "provider_reference": result.provider_reference,
            },
        )
        self.events.publish(
            "payment.intent.created",
            {
                "transaction_id": str(txn.id),
                "project_id": str(milestone.project_id),
                "milestone_id": str(milestone.pk),
                "amount_cents": txn.amount_cents,
                "currency": txn.currency,
                "provider": provider,
            },
        )

        return PaymentIntentResult(
            transaction=txn,
            provider=provider,
            provider_reference=result.provider_reference,
            status=txn.status,
            client_secret=result.client_secret,
            checkout_url=result.checkout_url,
        )


__all__ = ["MIN_PAYMENT_CENTS", "PaymentIntentResult", "PaymentService"]
