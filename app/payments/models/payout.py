"""
Payout models for distributing released escrow funds.

A PayoutBatch is created once per released escrow and holds one PayoutItem
per resolved split recipient. Items move money individually through the
payment gateway; the batch status is derived from its items.

Usage:
    from payments.models import PayoutBatch, PayoutItem

    batch = PayoutBatch.objects.create(
        escrow=escrow,
        project=escrow.project,
        milestone=escrow.milestone,
        currency="usd",
        gross_cents=10000,
        platform_fee_cents=500,
        total_net_cents=9500,
    )

    item.start_processing()  # scheduled -> processing
    item.save()

    # After the provider confirms the transfer
    item.mark_paid(transfer_id="tr_123")
    item.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import PayoutStatus


class PayoutBatch(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    All payout instructions generated from one released escrow.

    State Flow:
        SCHEDULED -> PROCESSING -> PAID
        SCHEDULED/PROCESSING -> FAILED
        FAILED -> PROCESSING (job retry)

    Fields:
        escrow: Source escrow (one-to-one; the scheduling idempotency key)
        project / milestone: Denormalized owners for queries
        scheduled_by: User who triggered scheduling (null for automatic)
        gross_cents: Released escrow amount the split was computed from
        platform_fee_cents: Fee retained by the platform
        total_net_cents: Sum of item net amounts
        withheld_cents: Placeholder shares kept back (withhold policy)
        placeholder_policy: Policy used when the batch was computed
        status: Current FSM state
        job_id: payout.execute job enqueued for this batch
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    escrow = models.OneToOneField(
        "payments.Escrow",
        on_delete=models.PROTECT,
        related_name="payout_batch",
        help_text="Escrow whose released funds this batch distributes",
    )

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        related_name="payout_batches",
    )

    milestone = models.ForeignKey(
        "projects.Milestone",
        on_delete=models.PROTECT,
        related_name="payout_batches",
    )

    scheduled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="scheduled_payout_batches",
        null=True,
        blank=True,
        help_text="User who scheduled the payouts (null when automatic)",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    gross_cents = models.PositiveBigIntegerField(
        help_text="Released amount the split was calculated from",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform fee retained from the gross amount",
    )

    total_net_cents = models.PositiveBigIntegerField(
        help_text="Sum of item net amounts",
    )

    withheld_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Placeholder shares withheld from payout",
    )

    placeholder_policy = models.CharField(
        max_length=20,
        default="withhold",
        help_text="Placeholder policy applied when scheduling",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutStatus.SCHEDULED,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the batch (managed by FSM)",
    )

    job_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="payout.execute job enqueued for this batch",
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(null=True, blank=True)

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Batch"
        verbose_name_plural = "Payout Batches"
        indexes = [
            models.Index(fields=["project", "status"], name="payments_batch_project_idx"),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.total_net_cents / 100:.2f} {self.currency.upper()}"
        return f"PayoutBatch({self.id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.FAILED, PayoutStatus.PROCESSING],
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Payout job picked up the batch.

        Transition: SCHEDULED/FAILED/PROCESSING -> PROCESSING
        """
        self.failure_reason = None

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING],
        target=PayoutStatus.PAID,
    )
    def mark_paid(self):
        """
        Every item has been paid.

        Transition: SCHEDULED/PROCESSING -> PAID
        """
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING, PayoutStatus.FAILED],
        target=PayoutStatus.FAILED,
    )
    def mark_failed(self, reason: str | None = None):
        """
        At least one item failed and nothing is in flight.

        Transition: SCHEDULED/PROCESSING/FAILED -> FAILED
        """
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_paid(self) -> bool:
        return self.status == PayoutStatus.PAID

    def settle_from_items(self) -> bool:
        """
        Move the batch to match its items. Caller saves.

        All items PAID -> PAID. Any item FAILED with none SCHEDULED or
        PROCESSING -> FAILED. Otherwise unchanged.

        Returns:
            True if the status changed
        """
        statuses = set(self.items.values_list("status", flat=True))
        if not statuses:
            return False

        if statuses == {PayoutStatus.PAID}:
            if self.status == PayoutStatus.PAID:
                return False
            if self.status == PayoutStatus.FAILED:
                self.start_processing()
            self.mark_paid()
            return True

        in_flight = statuses & {PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING}
        if PayoutStatus.FAILED in statuses and not in_flight and self.status != PayoutStatus.FAILED:
            self.mark_failed("One or more transfers failed")
            return True
        return False


class PayoutItem(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    One recipient's share of a payout batch.

    State Flow:
        SCHEDULED -> PROCESSING -> PAID
        SCHEDULED/PROCESSING -> FAILED -> PROCESSING (retry)

    Fields:
        batch: Owning batch
        recipient: User receiving the funds
        position: Order of the split entry the item came from
        percentage: Percentage used for the calculation
        gross_cents: Gross share (equals net_cents; the fee is pooled)
        fee_cents: Informational share of the platform fee
        tax_withheld_cents: Always 0 (tax withholding is not modelled)
        net_cents: Amount to transfer
        status: Current FSM state
        attempts: Number of transfer attempts (feeds the idempotency key)
        provider_transfer_id: Provider transfer ID (tr_xxx)
        failure_reason: Last failure message
        processed_at: When the transfer was confirmed
    """

    batch = models.ForeignKey(
        PayoutBatch,
        on_delete=models.CASCADE,
        related_name="items",
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_items",
        help_text="User receiving this share",
    )

    position = models.PositiveIntegerField(default=0)

    destination_account = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Provider account captured from the recipient's membership",
    )

    percentage = models.DecimalField(
        max_digits=9,
        decimal_places=4,
        default=Decimal("0"),
        help_text="Percentage applied for this recipient",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    currency = models.CharField(max_length=3, default="usd")
    gross_cents = models.PositiveBigIntegerField()
    fee_cents = models.PositiveBigIntegerField(default=0)
    tax_withheld_cents = models.PositiveBigIntegerField(default=0)
    net_cents = models.PositiveBigIntegerField()

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutStatus.SCHEDULED,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the item (managed by FSM)",
    )

    attempts = models.PositiveIntegerField(
        default=0,
        help_text="Number of transfer attempts",
    )

    provider_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Provider Transfer ID (tr_xxx)",
    )

    failure_reason = models.TextField(null=True, blank=True)

    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["batch", "position"]
        verbose_name = "Payout Item"
        verbose_name_plural = "Payout Items"
        indexes = [
            models.Index(fields=["batch", "status"], name="payments_item_batch_idx"),
            models.Index(fields=["recipient", "status"], name="payments_item_recipient_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["batch", "position"],
                name="payout_item_unique_position",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.net_cents / 100:.2f} {self.currency.upper()}"
        return f"PayoutItem({self.id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.FAILED, PayoutStatus.PROCESSING],
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Begin a transfer attempt.

        Transition: SCHEDULED/FAILED/PROCESSING -> PROCESSING

        PROCESSING is a valid source for items whose previous attempt
        crashed before a transfer id was recorded.
        """
        self.attempts += 1
        self.failure_reason = None

    @transition(field=status, source=PayoutStatus.PROCESSING, target=PayoutStatus.PAID)
    def mark_paid(self, transfer_id: str | None = None):
        """
        Provider confirmed the transfer.

        Transition: PROCESSING -> PAID
        """
        if transfer_id:
            self.provider_transfer_id = transfer_id
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=[PayoutStatus.SCHEDULED, PayoutStatus.PROCESSING],
        target=PayoutStatus.FAILED,
    )
    def mark_failed(self, reason: str | None = None):
        """
        Transfer failed or was aborted.

        Transition: SCHEDULED/PROCESSING -> FAILED
        """
        if reason:
            self.failure_reason = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def needs_transfer(self) -> bool:
        """True if the executor should (re)attempt this item."""
        if self.status in (PayoutStatus.SCHEDULED, PayoutStatus.FAILED):
            return True
        return self.status == PayoutStatus.PROCESSING and not self.provider_transfer_id
