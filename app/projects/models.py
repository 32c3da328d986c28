"""
Project domain models.

A Project is owned by one user, has members who contribute work, a revenue
split agreement describing how released funds are shared, and milestones
that gate when money may move.

Models:
    Project: Owner, title and settlement currency
    ProjectMember: Membership record used for authorization checks
    RevenueSplit: One entry of the split agreement
    Milestone: Unit of work funded through escrow (django-fsm)

Usage:
    from projects.models import Milestone, MilestoneStatus

    milestone = Milestone.objects.create(
        project=project,
        title="Mixdown",
        amount_cents=10000,
    )
    milestone.complete(actor=user)  # pending -> completed
    milestone.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


# =============================================================================
# Choices
# =============================================================================


class MemberRole(models.TextChoices):
    OWNER = "owner", "Owner"
    MEMBER = "member", "Member"


class MilestoneStatus(models.TextChoices):
    """
    States for the Milestone model lifecycle.

    Terminal states: APPROVED, REJECTED

    State Flow:
        PENDING -> FUNDED -> COMPLETED -> APPROVED
        PENDING/FUNDED -> COMPLETED
        PENDING/FUNDED/COMPLETED -> DISPUTED
        DISPUTED -> APPROVED (resolved for release)
        DISPUTED -> REJECTED (resolved for refund)
    """

    PENDING = "pending", "Pending"
    FUNDED = "funded", "Funded"
    COMPLETED = "completed", "Completed"
    APPROVED = "approved", "Approved"
    DISPUTED = "disputed", "Disputed"
    REJECTED = "rejected", "Rejected"


# =============================================================================
# Project & Membership
# =============================================================================


class Project(UUIDPrimaryKeyMixin, BaseModel):
    """
    A collaborative project whose revenue is shared between contributors.

    Fields:
        owner: User who funds milestones and approves work
        title: Display title
        currency: ISO 4217 currency code used for milestones
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="owned_projects",
        help_text="User who owns the project and approves milestones",
    )

    title = models.CharField(max_length=255)

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Project"
        verbose_name_plural = "Projects"

    def __str__(self) -> str:
        return f"Project({self.id}, {self.title})"

    def is_member(self, user) -> bool:
        """Owner counts as a member."""
        if user is None or not getattr(user, "pk", None):
            return False
        if user.pk == self.owner_id:
            return True
        return self.members.filter(user_id=user.pk).exists()

    def is_owner(self, user) -> bool:
        return user is not None and getattr(user, "pk", None) == self.owner_id


class ProjectMember(UUIDPrimaryKeyMixin, BaseModel):
    """Membership of a user in a project."""

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="members",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="project_memberships",
    )

    role = models.CharField(
        max_length=20,
        choices=MemberRole.choices,
        default=MemberRole.MEMBER,
    )

    payout_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Provider account receiving this member's payouts (acct_xxx)",
    )

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["project", "user"],
                name="project_member_unique_user",
            ),
        ]

    def __str__(self) -> str:
        return f"ProjectMember({self.project_id}, {self.user_id}, {self.role})"


# =============================================================================
# Revenue Split
# =============================================================================


class RevenueSplit(UUIDPrimaryKeyMixin, BaseModel):
    """
    One entry of a project's revenue split agreement.

    Entries either name a recipient or reserve a share for an unfilled role
    (placeholder_label with no recipient). Percentage-bearing entries of
    the active set sum to 100.

    Fields:
        project: Owning project
        recipient: User paid for this share (null for placeholders)
        placeholder_label: Name of an unfilled role
        percentage: Share in percent with two decimals (null for fixed)
        fixed_amount_cents: Fixed-amount variant, not used by payouts
        position: Order within the agreement (ties in apportionment keep it)
        is_active: False once superseded by a newer agreement
    """

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="splits",
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="revenue_splits",
        null=True,
        blank=True,
        help_text="User receiving this share (null for placeholders)",
    )

    placeholder_label = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Role name for a share without a recipient yet",
    )

    percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))],
        help_text="Share of the net pool in percent",
    )

    fixed_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Fixed amount variant (not apportioned by the calculator)",
    )

    position = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["position", "created_at"]
        verbose_name = "Revenue Split"
        verbose_name_plural = "Revenue Splits"
        indexes = [
            models.Index(fields=["project", "is_active"], name="projects_split_active_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(percentage__isnull=True)
                    | (models.Q(percentage__gte=0) & models.Q(percentage__lte=100))
                ),
                name="revenue_split_percentage_range",
            ),
        ]

    def __str__(self) -> str:
        who = self.recipient_id or self.placeholder_label or "placeholder"
        return f"RevenueSplit({self.project_id}, {who}, {self.percentage}%)"

    @property
    def is_placeholder(self) -> bool:
        return self.recipient_id is None

    def to_split_spec(self):
        """Return the calculator input for this entry."""
        from payments.splits import SplitSpec

        return SplitSpec(
            recipient_id=str(self.recipient_id) if self.recipient_id else None,
            percentage=self.percentage,
            placeholder_label=self.placeholder_label or None,
            fixed_amount_cents=self.fixed_amount_cents,
        )


# =============================================================================
# Milestone
# =============================================================================


class Milestone(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A unit of project work paid through escrow.

    State Flow:
        PENDING -> FUNDED (escrow locked)
        PENDING/FUNDED -> COMPLETED (member delivers)
        COMPLETED -> APPROVED (owner accepts; escrow released)
        PENDING/FUNDED/COMPLETED -> DISPUTED (escrow held)
        DISPUTED -> APPROVED | REJECTED (escrow released | refunded)

    Note:
        status is protected; transitions go through MilestoneService,
        which locks the row and keeps the escrow in step.
    """

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="milestones",
    )

    title = models.CharField(max_length=255)

    description = models.TextField(blank=True, default="")

    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount to be escrowed in smallest currency unit",
    )

    currency = models.CharField(max_length=3, default="usd")

    status = FSMField(
        default=MilestoneStatus.PENDING,
        choices=MilestoneStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the milestone (managed by FSM)",
    )

    # ==========================================================================
    # Audit
    # ==========================================================================

    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="completed_milestones",
        null=True,
        blank=True,
    )

    funded_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    dispute_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Milestone"
        verbose_name_plural = "Milestones"
        indexes = [
            models.Index(fields=["project", "status"], name="projects_milestone_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="milestone_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Milestone({self.id}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=MilestoneStatus.PENDING, target=MilestoneStatus.FUNDED)
    def fund(self):
        """
        Escrow locked for this milestone.

        Transition: PENDING -> FUNDED
        """
        self.funded_at = timezone.now()

    @transition(
        field=status,
        source=[MilestoneStatus.PENDING, MilestoneStatus.FUNDED],
        target=MilestoneStatus.COMPLETED,
    )
    def complete(self, actor=None):
        """
        Member marked the work as delivered.

        Transition: PENDING/FUNDED -> COMPLETED
        """
        self.completed_by = actor
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[MilestoneStatus.COMPLETED, MilestoneStatus.DISPUTED],
        target=MilestoneStatus.APPROVED,
    )
    def approve(self):
        """
        Owner accepted the work (or a dispute resolved for release).

        Transition: COMPLETED/DISPUTED -> APPROVED
        """
        self.approved_at = timezone.now()

    @transition(
        field=status,
        source=[MilestoneStatus.PENDING, MilestoneStatus.FUNDED, MilestoneStatus.COMPLETED],
        target=MilestoneStatus.DISPUTED,
    )
    def dispute(self, reason: str = ""):
        """
        Transition: PENDING/FUNDED/COMPLETED -> DISPUTED
        """
        self.dispute_reason = reason
        self.disputed_at = timezone.now()

    @transition(field=status, source=MilestoneStatus.DISPUTED, target=MilestoneStatus.REJECTED)
    def reject(self, reason: str = ""):
        """
        Dispute resolved against the contributors; escrow is refunded.

        Transition: DISPUTED -> REJECTED
        """
        if reason:
            self.dispute_reason = reason
        self.rejected_at = timezone.now()
