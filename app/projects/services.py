"""
Project and milestone services.

MilestoneService is the only code that moves a Milestone between states.
Every mutation locks the milestone row (optionally comparing the version
the client last saw), checks the actor, and keeps the milestone's escrow
in step through the injected EscrowLedger.

Milestone/escrow coupling:
    fund      PENDING -> FUNDED        escrow created LOCKED
    complete  PENDING/FUNDED -> COMPLETED
    approve   COMPLETED/DISPUTED -> APPROVED   escrow (unheld and) RELEASED,
                                              payouts scheduled after commit
    dispute   PENDING/FUNDED/COMPLETED -> DISPUTED   LOCKED escrow HELD
    reject    DISPUTED -> REJECTED     active escrow REFUNDED

ProjectService manages the revenue split agreement.

Usage:
    from payments.engine import build_engine

    milestones = build_engine().milestone_service
    milestones.complete(milestone.id, actor=member)
    milestones.approve(milestone.id, actor=owner)
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction

from core.exceptions import BaseApplicationError
from core.locks import check_version
from core.services import BaseService
from payments.exceptions import (
    EscrowAlreadyActiveError,
    PaymentValidationError,
    PayoutAlreadyScheduledError,
    SplitConservationError,
)
from payments.splits import PlaceholderPolicy, SplitSpec, resolve_payable_shares
from payments.splits.calculator import validate_percentages
from payments.state_machines import EscrowStatus, TransactionStatus
from projects.exceptions import (
    MilestoneAlreadyProcessedError,
    MilestoneNotFoundError,
    MilestoneNotFundedError,
    NotProjectMemberError,
    NotProjectOwnerError,
    ProjectNotFoundError,
)
from projects.models import Milestone, MilestoneStatus, Project, RevenueSplit

if TYPE_CHECKING:
    from payments.models import Escrow, PaymentTransaction
    from payments.ports import EventPublisherPort, NotificationPort
    from payments.services import EscrowLedger, PayoutScheduler
    from payments.splits import PayableShares


class MilestoneService(BaseService):
    """
    Service for milestone transitions.

    Args:
        escrow_ledger: Moves the milestone's escrow
        payout_scheduler: Creates the payout batch after approval
        events: Publisher for milestone.* events
        notifier: Tells project members about approvals and disputes
    """

    def __init__(
        self,
        escrow_ledger: EscrowLedger,
        payout_scheduler: PayoutScheduler,
        events: EventPublisherPort,
        notifier: NotificationPort,
    ) -> None:
        self.escrow_ledger = escrow_ledger
        self.payout_scheduler = payout_scheduler
        self.events = events
        self.notifier = notifier

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock(self, milestone_id, expected_version: int | None = None) -> Milestone:
        """Lock the milestone row. Must be called inside a transaction."""
        if expected_version is not None:
            if not Milestone.objects.filter(pk=milestone_id).exists():
                raise MilestoneNotFoundError(
                    f"Milestone {milestone_id} not found",
                    details={"milestone_id": str(milestone_id)},
                )
            return check_version(Milestone, milestone_id, expected_version)

        milestone = (
            Milestone.objects.select_for_update()
            .select_related("project")
            .filter(pk=milestone_id)
            .first()
        )
        if milestone is None:
            raise MilestoneNotFoundError(
                f"Milestone {milestone_id} not found",
                details={"milestone_id": str(milestone_id)},
            )
        return milestone

    @staticmethod
    def _require_member(milestone: Milestone, actor) -> None:
        if not milestone.project.is_member(actor):
            raise NotProjectMemberError(
                "Only project members can perform this action",
                details={
                    "project_id": str(milestone.project_id),
                    "user_id": str(getattr(actor, "pk", None)),
                },
            )

    @staticmethod
    def _require_owner(milestone: Milestone, actor) -> None:
        if not milestone.project.is_owner(actor):
            raise NotProjectOwnerError(
                "Only the project owner can perform this action",
                details={
                    "project_id": str(milestone.project_id),
                    "user_id": str(getattr(actor, "pk", None)),
                },
            )

    @staticmethod
    def _reject_if_processed(milestone: Milestone, statuses: tuple[str, ...], action: str) -> None:
        if milestone.status in statuses:
            raise MilestoneAlreadyProcessedError(
                f"Cannot {action} milestone in '{milestone.status}' status",
                details={
                    "milestone_id": str(milestone.pk),
                    "current_state": milestone.status,
                },
            )

    @staticmethod
    def _member_ids(project: Project) -> list[str]:
        ids = {str(project.owner_id)}
        ids.update(str(pk) for pk in project.members.values_list("user_id", flat=True))
        return sorted(ids)

    @staticmethod
    def _event_payload(milestone: Milestone, **extra: Any) -> dict:
        return {
            "milestone_id": str(milestone.pk),
            "project_id": str(milestone.project_id),
            "status": milestone.status,
            "amount_cents": milestone.amount_cents,
            "currency": milestone.currency,
            **extra,
        }

    # =========================================================================
    # Fund
    # =========================================================================

    def fund(
        self,
        milestone_id,
        funding_transaction: PaymentTransaction,
        expected_version: int | None = None,
    ) -> Escrow:
        """
        Lock the payer's funds in escrow and mark the milestone FUNDED.

        Called by the webhook reconciler once the provider confirms the
        payment.

        Raises:
            MilestoneNotFoundError: Unknown milestone
            EscrowAlreadyActiveError: Milestone already has a LOCKED/HELD escrow
            InvalidStateTransitionError: Milestone isn't PENDING
            PaymentValidationError: Transaction belongs to another milestone
                or hasn't succeeded
        """
        with self.atomic():
            milestone = self._lock(milestone_id, expected_version)

            if self.escrow_ledger.get_active(milestone.pk) is not None:
                raise EscrowAlreadyActiveError(
                    f"Milestone {milestone.pk} already has an active escrow",
                    details={
                        "milestone_id": str(milestone.pk),
                        "transaction_id": str(funding_transaction.pk),
                    },
                )

            if (
                funding_transaction.milestone_id != milestone.pk
                or funding_transaction.status != TransactionStatus.SUCCEEDED
            ):
                raise PaymentValidationError(
                    "Transaction cannot fund this milestone",
                    details={
                        "milestone_id": str(milestone.pk),
                        "transaction_id": str(funding_transaction.pk),
                        "transaction_status": funding_transaction.status,
                    },
                )

            self.apply_transition(milestone, "fund")
            escrow = self.escrow_ledger.lock(milestone, funding_transaction)
            milestone.save()

        self.get_logger().info(
            f"Milestone {milestone.pk} funded",
            extra={
                "milestone_id": str(milestone.pk),
                "escrow_id": str(escrow.pk),
                "transaction_id": str(funding_transaction.pk),
            },
        )
        self.events.publish(
            "milestone.funded",
            self._event_payload(milestone, escrow_id=str(escrow.pk)),
        )
        return escrow

    # =========================================================================
    # Complete
    # =========================================================================

    def complete(self, milestone_id, actor, expected_version: int | None = None) -> Milestone:
        """
        Member marks the work delivered.

        Raises:
            NotProjectMemberError: Actor isn't a member
            MilestoneAlreadyProcessedError: Already completed or approved
            InvalidStateTransitionError: Milestone is disputed or rejected
        """
        with self.atomic():
            milestone = self._lock(milestone_id, expected_version)
            self._require_member(milestone, actor)
            self._reject_if_processed(
                milestone,
                (MilestoneStatus.COMPLETED, MilestoneStatus.APPROVED),
                "complete",
            )
            self.apply_transition(milestone, "complete", actor=actor)
            milestone.save()

        self.events.publish(
            "milestone.completed",
            self._event_payload(milestone, completed_by=str(actor.pk)),
        )
        return milestone

    # =========================================================================
    # Approve
    # =========================================================================

    def approve(self, milestone_id, actor, expected_version: int | None = None) -> Milestone:
        """
        Owner accepts the work: release the escrow and schedule payouts.

        Payout scheduling runs after the approval commits. A conflict there
        (payouts already scheduled) is logged, not raised; a conservation
        failure is always raised.

        Raises:
            NotProjectOwnerError: Actor isn't the owner
            MilestoneAlreadyProcessedError: Already approved
            InvalidStateTransitionError: Milestone isn't COMPLETED or DISPUTED
            MilestoneNotFundedError: No active escrow to release
        """
        logger = self.get_logger()

        with self.atomic():
            milestone = self._lock(milestone_id, expected_version)
            self._require_owner(milestone, actor)
            self._reject_if_processed(milestone, (MilestoneStatus.APPROVED,), "approve")
            self.apply_transition(milestone, "approve")

            escrow = self.escrow_ledger.get_active(milestone.pk, for_update=True)
            if escrow is None:
                raise MilestoneNotFundedError(
                    f"Milestone {milestone.pk} has no active escrow to release",
                    details={"milestone_id": str(milestone.pk)},
                )
            if escrow.status == EscrowStatus.HELD:
                self.escrow_ledger.unhold(escrow.pk)
            escrow = self.escrow_ledger.release(escrow.pk)
            milestone.save()

            transaction.on_commit(lambda: self._schedule_payouts(escrow, actor))

        logger.info(
            f"Milestone {milestone.pk} approved",
            extra={
                "milestone_id": str(milestone.pk),
                "escrow_id": str(escrow.pk),
                "approved_by": str(actor.pk),
            },
        )
        self.notifier.notify(
            self._member_ids(milestone.project),
            "milestone.approved",
            {"milestone_id": str(milestone.pk), "title": milestone.title},
        )
        self.events.publish(
            "milestone.approved",
            self._event_payload(milestone, escrow_id=str(escrow.pk)),
        )
        return milestone

    def _schedule_payouts(self, escrow: Escrow, actor) -> None:
        logger = self.get_logger()
        try:
            self.payout_scheduler.schedule_payouts(
                escrow.pk,
                escrow.project_id,
                escrow.milestone_id,
                escrow.released_amount_cents or escrow.amount_cents,
                escrow.currency,
                scheduled_by=actor,
            )
        except PayoutAlreadyScheduledError:
            logger.info(
                f"Payouts already scheduled for escrow {escrow.pk}",
                extra={"escrow_id": str(escrow.pk)},
            )
        except SplitConservationError:
            raise
        except BaseApplicationError as exc:
            logger.error(
                f"Could not schedule payouts for escrow {escrow.pk}: {exc.message}",
                extra={"escrow_id": str(escrow.pk), "error_code": exc.error_code},
                exc_info=True,
            )

    # =========================================================================
    # Dispute / Reject
    # =========================================================================

    def dispute(
        self,
        milestone_id,
        actor,
        reason: str = "",
        expected_version: int | None = None,
    ) -> Milestone:
        """
        Member disputes the milestone; a LOCKED escrow is put on hold.

        Raises:
            NotProjectMemberError: Actor isn't a member
            MilestoneAlreadyProcessedError: Approved, disputed or rejected
        """
        with self.atomic():
            milestone = self._lock(milestone_id, expected_version)
            self._require_member(milestone, actor)
            self._reject_if_processed(
                milestone,
                (MilestoneStatus.APPROVED, MilestoneStatus.DISPUTED, MilestoneStatus.REJECTED),
                "dispute",
            )
            self.apply_transition(milestone, "dispute", reason)

            escrow = self.escrow_ledger.get_active(milestone.pk, for_update=True)
            if escrow is not None and escrow.status == EscrowStatus.LOCKED:
                self.escrow_ledger.hold(escrow.pk)
            milestone.save()

        self.get_logger().info(
            f"Milestone {milestone.pk} disputed",
            extra={"milestone_id": str(milestone.pk), "disputed_by": str(actor.pk)},
        )
        self.notifier.notify(
            self._member_ids(milestone.project),
            "milestone.disputed",
            {"milestone_id": str(milestone.pk), "title": milestone.title, "reason": reason},
        )
        self.events.publish(
            "milestone.disputed",
            self._event_payload(milestone, reason=reason),
        )
        return milestone

    def reject(
        self,
        milestone_id,
        actor,
        reason: str = "",
        expected_version: int | None = None,
    ) -> Milestone:
        """
        Owner resolves a dispute against release; the escrow is refunded.

        Raises:
            NotProjectOwnerError: Actor isn't the owner
            MilestoneAlreadyProcessedError: Already rejected
            InvalidStateTransitionError: Milestone isn't DISPUTED
        """
        with self.atomic():
            milestone = self._lock(milestone_id, expected_version)
            self._require_owner(milestone, actor)
            self._reject_if_processed(milestone, (MilestoneStatus.REJECTED,), "reject")
            self.apply_transition(milestone, "reject", reason)

            escrow = self.escrow_ledger.get_active(milestone.pk, for_update=True)
            if escrow is not None:
                self.escrow_ledger.refund(escrow.pk, reason=reason or "Milestone rejected")
            milestone.save()

        self.events.publish(
            "milestone.rejected",
            self._event_payload(
                milestone,
                reason=reason,
                escrow_id=str(escrow.pk) if escrow is not None else None,
            ),
        )
        return milestone


class ProjectService(BaseService):
    """Revenue split agreement management."""

    @classmethod
    def replace_splits(cls, project_id, actor, splits: list[dict]) -> list[RevenueSplit]:
        """
        Replace a project's active split set.

        Args:
            project_id: Project to update
            actor: Must be the project owner
            splits: Dicts with recipient_id, placeholder_label, percentage,
                fixed_amount_cents (positions follow list order)

        Raises:
            ProjectNotFoundError: Unknown project
            NotProjectOwnerError: Actor isn't the owner
            PercentageModelRequiredError / SplitSumInvalidError: Bad percentages
            PaymentValidationError: A recipient isn't part of the project
        """
        logger = cls.get_logger()

        with cls.atomic():
            project = Project.objects.select_for_update().filter(pk=project_id).first()
            if project is None:
                raise ProjectNotFoundError(
                    f"Project {project_id} not found",
                    details={"project_id": str(project_id)},
                )
            if not project.is_owner(actor):
                raise NotProjectOwnerError(
                    "Only the project owner can change revenue splits",
                    details={"project_id": str(project.pk)},
                )

            specs = [
                SplitSpec(
                    recipient_id=str(entry["recipient_id"]) if entry.get("recipient_id") else None,
                    percentage=(
                        Decimal(str(entry["percentage"]))
                        if entry.get("percentage") is not None
                        else None
                    ),
                    placeholder_label=entry.get("placeholder_label") or None,
                    fixed_amount_cents=entry.get("fixed_amount_cents"),
                )
                for entry in splits
            ]
            validate_percentages(specs)

            allowed = set(cls._participant_ids(project))
            outsiders = sorted(
                {s.recipient_id for s in specs if s.recipient_id and s.recipient_id not in allowed}
            )
            if outsiders:
                raise PaymentValidationError(
                    "Split recipients must be project members",
                    error_code="RECIPIENT_NOT_MEMBER",
                    details={"recipient_ids": outsiders},
                )

            RevenueSplit.objects.filter(project=project, is_active=True).update(is_active=False)
            created = [
                RevenueSplit.objects.create(
                    project=project,
                    recipient_id=spec.recipient_id,
                    placeholder_label=spec.placeholder_label or "",
                    percentage=spec.percentage,
                    fixed_amount_cents=spec.fixed_amount_cents,
                    position=position,
                )
                for position, spec in enumerate(specs)
            ]

        logger.info(
            f"Replaced revenue splits for project {project.pk}",
            extra={"project_id": str(project.pk), "split_count": len(created)},
        )
        return created

    @classmethod
    def preview_split(
        cls,
        project_id,
        gross_cents: int,
        placeholder_policy: str | None = None,
    ) -> PayableShares:
        """
        Compute what a payout of ``gross_cents`` would look like today.

        Raises:
            ProjectNotFoundError: Unknown project
            AmountInvalidError / SplitSumInvalidError / NoRecipientsError: as
                for scheduling
        """
        project = Project.objects.filter(pk=project_id).first()
        if project is None:
            raise ProjectNotFoundError(
                f"Project {project_id} not found",
                details={"project_id": str(project_id)},
            )
        policy = placeholder_policy or getattr(
            settings, "PAYOUT_PLACEHOLDER_POLICY", PlaceholderPolicy.WITHHOLD
        )
        specs = [
            split.to_split_spec()
            for split in RevenueSplit.objects.filter(project=project, is_active=True).order_by(
                "position", "created_at"
            )
        ]
        return resolve_payable_shares(
            gross_cents,
            project.currency,
            specs,
            policy=policy,
            fee_percent=Decimal(str(getattr(settings, "PLATFORM_FEE_PERCENT", "5"))),
        )

    @staticmethod
    def _participant_ids(project: Project) -> list[str]:
        ids = [str(project.owner_id)]
        ids.extend(str(pk) for pk in project.members.values_list("user_id", flat=True))
        return ids


__all__ = [
    "MilestoneService",
    "ProjectService",
]
