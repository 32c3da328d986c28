"""
Escrow model for funds held against a milestone.

An Escrow is created when a milestone's funding transaction succeeds. Funds
stay locked until the project owner approves the milestone (release) or a
dispute is resolved against the contributors (refund).

Usage:
    from payments.models import Escrow

    escrow = Escrow.objects.create(
        milestone=milestone,
        project=milestone.project,
        funding_transaction=txn,
        amount_cents=txn.amount_cents,
        currency=txn.currency,
        provider=txn.provider,
    )

    escrow.hold()     # locked -> held (dispute opened)
    escrow.unhold()   # held -> locked
    escrow.release()  # locked -> released
    escrow.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import EscrowStatus


class Escrow(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Funds locked for a milestone until approval or refund.

    State Flow:
        LOCKED -> RELEASED
        LOCKED -> HELD -> LOCKED
        LOCKED/HELD -> REFUNDED

    Fields:
        milestone: Milestone the funds are held for
        project: Owning project (denormalized for queries)
        payer: User whose payment funded the escrow
        funding_transaction: Succeeded PaymentTransaction that funded it
        amount_cents: Locked amount in smallest currency unit
        currency: ISO 4217 currency code
        provider: Gateway holding the funds
        provider_reference: Provider payment intent id used for capture/refund
        status: Current FSM state
        released_amount_cents / refunded_amount_cents: Settled amounts
        refund_provider_id: Provider refund id after a refund
        version: Optimistic locking version

    Note:
        The partial unique constraint allows at most one LOCKED or HELD
        escrow per milestone, so two concurrent funding webhooks cannot
        both lock funds.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    milestone = models.ForeignKey(
        "projects.Milestone",
        on_delete=models.PROTECT,
        related_name="escrows",
        help_text="Milestone these funds are held for",
    )

    project = models.ForeignKey(
        "projects.Project",
        on_delete=models.PROTECT,
        related_name="escrows",
        help_text="Project the milestone belongs to",
    )

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrows",
        null=True,
        blank=True,
        help_text="User whose payment funded this escrow",
    )

    funding_transaction = models.ForeignKey(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="escrows",
        null=True,
        blank=True,
        help_text="Transaction whose success locked these funds",
    )

    # ==========================================================================
    # Amount & Provider
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Locked amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    provider = models.CharField(
        max_length=50,
        help_text="Payment provider holding the funds",
    )

    provider_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider payment intent ID used to capture or refund",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=EscrowStatus.LOCKED,
        choices=EscrowStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the escrow (managed by FSM)",
    )

    locked_at = models.DateTimeField(default=timezone.now)
    held_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    released_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount released to the payout pool",
    )

    refunded_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount returned to the payer",
    )

    refund_provider_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider refund ID (re_xxx)",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Escrow"
        verbose_name_plural = "Escrows"
        indexes = [
            models.Index(fields=["milestone", "status"], name="payments_escrow_milestone_idx"),
            models.Index(fields=["project", "status"], name="payments_escrow_project_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="escrow_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["milestone"],
                condition=models.Q(status__in=["locked", "held"]),
                name="escrow_one_active_per_milestone",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Escrow({self.id}, {self.status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=EscrowStatus.LOCKED, target=EscrowStatus.HELD)
    def hold(self):
        """
        Freeze funds while a dispute is open.

        Transition: LOCKED -> HELD
        """
        self.held_at = timezone.now()

    @transition(field=status, source=EscrowStatus.HELD, target=EscrowStatus.LOCKED)
    def unhold(self):
        """
        Dispute resolved in favour of release.

        Transition: HELD -> LOCKED
        """
        self.held_at = None

    @transition(field=status, source=EscrowStatus.LOCKED, target=EscrowStatus.RELEASED)
    def release(self, amount_cents: int):
        """
        Release funds to the payout pool.

        Transition: LOCKED -> RELEASED

        Args:
            amount_cents: Amount released (validated by EscrowLedger)
        """
        self.released_amount_cents = amount_cents
        self.released_at = timezone.now()

    @transition(
        field=status,
        source=[EscrowStatus.LOCKED, EscrowStatus.HELD],
        target=EscrowStatus.REFUNDED,
    )
    def refund(self, amount_cents: int):
        """
        Return funds to the payer.

        Transition: LOCKED/HELD -> REFUNDED

        Args:
            amount_cents: Amount refunded (validated by EscrowLedger)
        """
        self.refunded_amount_cents = amount_cents
        self.refunded_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        """Check if funds are still locked or held."""
        return self.status in EscrowStatus.active()

    @property
    def is_released(self) -> bool:
        return self.status == EscrowStatus.RELEASED
