"""
PaymentTransaction model for money moving in or out of escrow.

A PaymentTransaction is created when a payer requests a payment intent. Its
UUID is sent to the provider as ``metadata.transaction_id`` so that the
provider's webhook can be correlated back to it. Refunds of an escrow are
recorded as a second transaction with type REFUND.

Usage:
    from payments.models import PaymentTransaction
    from payments.state_machines import TransactionStatus

    txn = PaymentTransaction.objects.create(
        project=project,
        milestone=milestone,
        payer=user,
        provider="stripe",
        amount_cents=10000,
        currency="usd",
    )

    # After the provider confirms payment (webhook)
    txn.succeed()
    txn.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import TransactionStatus, TransactionType


class PaymentTransaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A single payment (or refund) attempt against a milestone.

    State Flow:
        CREATED -> PENDING -> SUCCEEDED
        CREATED/PENDING -> FAILED

    Fields:
        project: Project the money belongs to
        milestone: Milestone the money funds
        payer: User who paid (null for system-initiated refunds)
        provider: Gateway name (key of PAYMENT_GATEWAYS)
        transaction_type: ESCROW_LOCK or REFUND
        amount_cents: Amount in smallest currency unit
        currency: ISO 4217 currency code
        status: Current FSM state
        provider_payment_intent_id: Provider's payment intent/order id
        provider_refund_id: Provider's refund id for REFUND transactions
        metadata: Flexible JSON storage
        version: Optimistic locking version

    Note:
        SUCCEEDED and FAILED are terminal. Provider events arriving for a
        terminal transaction are duplicates and change nothing.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Project this payment belongs to",
    )

    milestone = models.ForeignKey(
        "projects.Milestone",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Milestone this payment funds",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
        null=True,
        blank=True,
        help_text="User who made the payment",
    )

    # ==========================================================================
    # Amount & Classification
    # ==========================================================================

    provider = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Payment provider name (e.g., 'stripe')",
    )

    transaction_type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        default=TransactionType.ESCROW_LOCK,
        help_text="Whether this transaction funds or refunds an escrow",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.CREATED,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the transaction (managed by FSM)",
    )

    # ==========================================================================
    # Provider Integration
    # ==========================================================================

    provider_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Provider payment intent/order ID (e.g., pi_xxx)",
    )

    provider_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider refund ID (re_xxx) for refund transactions",
    )

    # ==========================================================================
    # Timestamps & Metadata
    # ==========================================================================

    succeeded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Provider failure reason if the payment failed",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(fields=["milestone", "status"], name="payments_txn_milestone_idx"),
            models.Index(
                fields=["provider", "provider_payment_intent_id"],
                name="payments_txn_provider_ref_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_transaction_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"PaymentTransaction({self.id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.CREATED,
        target=TransactionStatus.PENDING,
    )
    def mark_pending(self):
        """
        Provider accepted the intent and is waiting on the payer.

        Transition: CREATED -> PENDING
        """
        pass

    @transition(
        field=status,
        source=[TransactionStatus.CREATED, TransactionStatus.PENDING],
        target=TransactionStatus.SUCCEEDED,
    )
    def succeed(self):
        """
        Provider confirmed the payment.

        Transition: CREATED/PENDING -> SUCCEEDED
        """
        self.succeeded_at = timezone.now()

    @transition(
        field=status,
        source=[TransactionStatus.CREATED, TransactionStatus.PENDING],
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Provider reported the payment failed.

        Transition: CREATED/PENDING -> FAILED
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TransactionStatus.terminal()
