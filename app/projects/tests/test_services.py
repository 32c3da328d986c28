"""
Tests for MilestoneService and ProjectService.

The engine fixture wires MilestoneService to the real EscrowLedger and
PayoutScheduler with in-memory ports, so escrow and payout effects are
asserted on the database.
"""

import uuid
from decimal import Decimal

import pytest

from core.exceptions import InvalidStateTransitionError, StaleRecordError
from payments.exceptions import (
    EscrowAlreadyActiveError,
    PaymentValidationError,
    PayoutAlreadyScheduledError,
    PercentageModelRequiredError,
    SplitConservationError,
    SplitSumInvalidError,
)
from payments.models import Escrow, PaymentTransaction, PayoutBatch
from payments.state_machines import EscrowStatus, TransactionStatus, TransactionType
from payments.tests.factories import PaymentTransactionFactory
from projects.exceptions import (
    MilestoneAlreadyProcessedError,
    MilestoneNotFoundError,
    MilestoneNotFundedError,
    NotProjectMemberError,
    NotProjectOwnerError,
    ProjectNotFoundError,
)
from projects.models import Milestone, MilestoneStatus, RevenueSplit
from projects.services import ProjectService
from projects.tests.factories import MilestoneFactory, UserFactory


@pytest.fixture
def milestones(engine):
    return engine.milestone_service


def reload(milestone):
    return Milestone.objects.get(pk=milestone.pk)


def active_escrow(milestone):
    return Escrow.objects.get(milestone_id=milestone.pk, status__in=EscrowStatus.active())


# =============================================================================
# Fund
# =============================================================================


@pytest.mark.django_db
class TestFund:
    def test_locks_escrow_and_funds_milestone(
        self, milestones, milestone, succeeded_transaction, events
    ):
        escrow = milestones.fund(milestone.pk, succeeded_transaction)

        assert escrow.status == EscrowStatus.LOCKED
        assert escrow.amount_cents == 10000
        assert escrow.funding_transaction_id == succeeded_transaction.pk
        milestone = reload(milestone)
        assert milestone.status == MilestoneStatus.FUNDED
        assert milestone.version == 2
        assert events.types == ["escrow.locked", "milestone.funded"]

    def test_second_funding_conflicts_and_keeps_transaction(
        self, milestones, funded_milestone
    ):
        late = PaymentTransactionFactory(
            milestone=funded_milestone,
            status=TransactionStatus.SUCCEEDED,
        )

        with pytest.raises(EscrowAlreadyActiveError):
            milestones.fund(funded_milestone.pk, late)

        assert PaymentTransaction.objects.get(pk=late.pk).status == TransactionStatus.SUCCEEDED
        assert Escrow.objects.filter(milestone=funded_milestone).count() == 1
        assert reload(funded_milestone).status == MilestoneStatus.FUNDED

    def test_transaction_for_another_milestone(self, milestones, milestone, project):
        other = MilestoneFactory(project=project)
        txn = PaymentTransactionFactory(milestone=other, status=TransactionStatus.SUCCEEDED)

        with pytest.raises(PaymentValidationError):
            milestones.fund(milestone.pk, txn)

        assert reload(milestone).status == MilestoneStatus.PENDING

    def test_transaction_must_have_succeeded(self, milestones, milestone):
        txn = PaymentTransactionFactory(milestone=milestone, status=TransactionStatus.PENDING)

        with pytest.raises(PaymentValidationError):
            milestones.fund(milestone.pk, txn)

        assert not Escrow.objects.exists()

    def test_completed_milestone_cannot_be_funded(self, milestones, project):
        milestone = MilestoneFactory(project=project, status=MilestoneStatus.COMPLETED)
        txn = PaymentTransactionFactory(milestone=milestone, status=TransactionStatus.SUCCEEDED)

        with pytest.raises(InvalidStateTransitionError):
            milestones.fund(milestone.pk, txn)

        assert not Escrow.objects.exists()

    def test_unknown_milestone(self, milestones, succeeded_transaction):
        with pytest.raises(MilestoneNotFoundError):
            milestones.fund(uuid.uuid4(), succeeded_transaction)

    def test_stale_version(self, milestones, milestone, succeeded_transaction):
        with pytest.raises(StaleRecordError):
            milestones.fund(milestone.pk, succeeded_transaction, expected_version=7)

        assert reload(milestone).status == MilestoneStatus.PENDING


# =============================================================================
# Complete
# =============================================================================


@pytest.mark.django_db
class TestComplete:
    def test_member_completes(self, milestones, funded_milestone, alice, events):
        result = milestones.complete(funded_milestone.pk, actor=alice)

        assert result.status == MilestoneStatus.COMPLETED
        milestone = reload(funded_milestone)
        assert milestone.completed_by == alice
        assert events.of_type("milestone.completed")[0]["completed_by"] == str(alice.pk)

    def test_owner_counts_as_member(self, milestones, milestone, owner):
        milestones.complete(milestone.pk, actor=owner)

        assert reload(milestone).status == MilestoneStatus.COMPLETED

    def test_completing_twice_fails_without_changing_state(
        self, milestones, funded_milestone, alice, bob
    ):
        milestones.complete(funded_milestone.pk, actor=alice)
        before = reload(funded_milestone)

        with pytest.raises(MilestoneAlreadyProcessedError) as exc_info:
            milestones.complete(funded_milestone.pk, actor=bob)

        assert exc_info.value.details["current_state"] == MilestoneStatus.COMPLETED
        after = reload(funded_milestone)
        assert after.status == MilestoneStatus.COMPLETED
        assert after.completed_by == alice
        assert after.version == before.version

    def test_outsider_cannot_complete(self, milestones, milestone):
        with pytest.raises(NotProjectMemberError):
            milestones.complete(milestone.pk, actor=UserFactory())

        assert reload(milestone).status == MilestoneStatus.PENDING

    def test_disputed_milestone_cannot_be_completed(self, milestones, project, alice):
        milestone = MilestoneFactory(project=project, status=MilestoneStatus.DISPUTED)

        with pytest.raises(InvalidStateTransitionError):
            milestones.complete(milestone.pk, actor=alice)

    def test_expected_version_matches(self, milestones, milestone, alice):
        milestones.complete(milestone.pk, actor=alice, expected_version=milestone.version)

        assert reload(milestone).status == MilestoneStatus.COMPLETED

    def test_stale_version_is_rejected(self, milestones, funded_milestone, alice):
        with pytest.raises(StaleRecordError):
            milestones.complete(funded_milestone.pk, actor=alice, expected_version=1)

        assert reload(funded_milestone).status == MilestoneStatus.FUNDED


# =============================================================================
# Approve
# =============================================================================


@pytest.mark.django_db
class TestApprove:
    def test_releases_escrow_and_schedules_payouts(
        self,
        milestones,
        completed_milestone,
        owner,
        job_queue,
        notifier,
        events,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = milestones.approve(completed_milestone.pk, actor=owner)

        assert result.status == MilestoneStatus.APPROVED
        escrow = Escrow.objects.get(milestone=completed_milestone)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.released_amount_cents == 10000

        batch = PayoutBatch.objects.get(escrow=escrow)
        assert batch.scheduled_by == owner
        assert sorted(batch.items.values_list("net_cents", flat=True)) == [3800, 5700]
        assert len(job_queue.enqueued) == 1
        assert "milestone.approved" in notifier.templates
        assert "escrow.released" in events.types

    def test_nothing_scheduled_before_commit(self, milestones, completed_milestone, owner):
        milestones.approve(completed_milestone.pk, actor=owner)

        assert not PayoutBatch.objects.exists()

    def test_member_cannot_approve(self, milestones, completed_milestone, alice):
        with pytest.raises(NotProjectOwnerError):
            milestones.approve(completed_milestone.pk, actor=alice)

        assert active_escrow(completed_milestone).status == EscrowStatus.LOCKED

    def test_approving_twice(self, milestones, completed_milestone, owner):
        milestones.approve(completed_milestone.pk, actor=owner)

        with pytest.raises(MilestoneAlreadyProcessedError):
            milestones.approve(completed_milestone.pk, actor=owner)

    def test_unfunded_milestone_rolls_back(self, milestones, milestone, owner, alice):
        milestones.complete(milestone.pk, actor=alice)

        with pytest.raises(MilestoneNotFundedError):
            milestones.approve(milestone.pk, actor=owner)

        assert reload(milestone).status == MilestoneStatus.COMPLETED

    def test_pending_milestone_cannot_be_approved(self, milestones, milestone, owner):
        with pytest.raises(InvalidStateTransitionError):
            milestones.approve(milestone.pk, actor=owner)

    def test_dispute_resolved_for_release(
        self, milestones, completed_milestone, owner, alice, events
    ):
        milestones.dispute(completed_milestone.pk, actor=alice, reason="Mix is clipping")

        milestones.approve(completed_milestone.pk, actor=owner)

        escrow = Escrow.objects.get(milestone=completed_milestone)
        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.held_at is None
        assert events.types.index("escrow.unheld") < events.types.index("escrow.released")

    def test_already_scheduled_payouts_are_tolerated(
        self, milestones, completed_milestone, owner, mocker, django_capture_on_commit_callbacks
    ):
        mocker.patch.object(
            milestones.payout_scheduler,
            "schedule_payouts",
            side_effect=PayoutAlreadyScheduledError("Already scheduled"),
        )

        with django_capture_on_commit_callbacks(execute=True):
            milestones.approve(completed_milestone.pk, actor=owner)

        assert reload(completed_milestone).status == MilestoneStatus.APPROVED

    def test_conservation_failure_is_raised(
        self, milestones, completed_milestone, owner, mocker, django_capture_on_commit_callbacks
    ):
        mocker.patch.object(
            milestones.payout_scheduler,
            "schedule_payouts",
            side_effect=SplitConservationError("Shares don't add up"),
        )

        with pytest.raises(SplitConservationError):
            with django_capture_on_commit_callbacks(execute=True):
                milestones.approve(completed_milestone.pk, actor=owner)


# =============================================================================
# Dispute / Reject
# =============================================================================


@pytest.mark.django_db
class TestDispute:
    def test_dispute_holds_escrow(self, milestones, funded_milestone, bob, notifier):
        result = milestones.dispute(funded_milestone.pk, actor=bob, reason="Wrong key")

        assert result.status == MilestoneStatus.DISPUTED
        assert reload(funded_milestone).dispute_reason == "Wrong key"
        assert active_escrow(funded_milestone).status == EscrowStatus.HELD
        user_ids, template, context = notifier.sent[0]
        assert template == "milestone.disputed"
        assert context["reason"] == "Wrong key"

    def test_unfunded_milestone_can_be_disputed(self, milestones, milestone, bob):
        milestones.dispute(milestone.pk, actor=bob)

        assert reload(milestone).status == MilestoneStatus.DISPUTED
        assert not Escrow.objects.exists()

    def test_disputing_twice(self, milestones, funded_milestone, bob):
        milestones.dispute(funded_milestone.pk, actor=bob)

        with pytest.raises(MilestoneAlreadyProcessedError):
            milestones.dispute(funded_milestone.pk, actor=bob)

    def test_outsider_cannot_dispute(self, milestones, funded_milestone):
        with pytest.raises(NotProjectMemberError):
            milestones.dispute(funded_milestone.pk, actor=UserFactory())

        assert active_escrow(funded_milestone).status == EscrowStatus.LOCKED


@pytest.mark.django_db
class TestReject:
    @pytest.fixture
    def disputed_milestone(self, milestones, funded_milestone, bob):
        milestones.dispute(funded_milestone.pk, actor=bob, reason="Never delivered")
        return reload(funded_milestone)

    def test_reject_refunds_escrow(
        self, milestones, disputed_milestone, owner, gateway, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = milestones.reject(disputed_milestone.pk, actor=owner)

        assert result.status == MilestoneStatus.REJECTED
        escrow = Escrow.objects.get(milestone=disputed_milestone)
        assert escrow.status == EscrowStatus.REFUNDED

        refund = PaymentTransaction.objects.get(transaction_type=TransactionType.REFUND)
        assert refund.metadata["reason"] == "Milestone rejected"
        assert refund.status == TransactionStatus.SUCCEEDED
        assert len(gateway.refunds) == 1

    def test_reason_is_passed_to_refund(self, milestones, disputed_milestone, owner):
        milestones.reject(disputed_milestone.pk, actor=owner, reason="Client walked away")

        refund = PaymentTransaction.objects.get(transaction_type=TransactionType.REFUND)
        assert refund.metadata["reason"] == "Client walked away"
        assert reload(disputed_milestone).dispute_reason == "Client walked away"

    def test_only_disputed_milestones(self, milestones, completed_milestone, owner):
        with pytest.raises(InvalidStateTransitionError):
            milestones.reject(completed_milestone.pk, actor=owner)

    def test_member_cannot_reject(self, milestones, disputed_milestone, alice):
        with pytest.raises(NotProjectOwnerError):
            milestones.reject(disputed_milestone.pk, actor=alice)

    def test_rejecting_twice(self, milestones, disputed_milestone, owner):
        milestones.reject(disputed_milestone.pk, actor=owner)

        with pytest.raises(MilestoneAlreadyProcessedError):
            milestones.reject(disputed_milestone.pk, actor=owner)


# =============================================================================
# ProjectService
# =============================================================================


@pytest.mark.django_db
class TestReplaceSplits:
    def test_replaces_active_set(self, project, owner, alice, bob):
        created = ProjectService.replace_splits(
            project.pk,
            owner,
            [
                {"recipient_id": bob.pk, "percentage": "70"},
                {"recipient_id": alice.pk, "percentage": "20"},
                {"placeholder_label": "Mastering", "percentage": "10"},
            ],
        )

        assert [split.position for split in created] == [0, 1, 2]
        active = RevenueSplit.objects.filter(project=project, is_active=True)
        assert active.count() == 3
        assert RevenueSplit.objects.filter(project=project, is_active=False).count() == 2
        assert created[2].is_placeholder

    def test_owner_may_be_a_recipient(self, project, owner):
        ProjectService.replace_splits(
            project.pk, owner, [{"recipient_id": owner.pk, "percentage": 100}]
        )

        assert RevenueSplit.objects.get(project=project, is_active=True).recipient == owner

    def test_only_owner(self, project, alice):
        with pytest.raises(NotProjectOwnerError):
            ProjectService.replace_splits(
                project.pk, alice, [{"recipient_id": alice.pk, "percentage": 100}]
            )

    def test_sum_must_be_100(self, project, owner, alice, bob):
        with pytest.raises(SplitSumInvalidError):
            ProjectService.replace_splits(
                project.pk,
                owner,
                [
                    {"recipient_id": alice.pk, "percentage": "60"},
                    {"recipient_id": bob.pk, "percentage": "30"},
                ],
            )

        assert RevenueSplit.objects.filter(project=project, is_active=True).count() == 2

    def test_percentage_required(self, project, owner, alice):
        with pytest.raises(PercentageModelRequiredError):
            ProjectService.replace_splits(
                project.pk,
                owner,
                [{"recipient_id": alice.pk, "fixed_amount_cents": 500}],
            )

    def test_recipients_must_be_members(self, project, owner):
        outsider = UserFactory()

        with pytest.raises(PaymentValidationError) as exc_info:
            ProjectService.replace_splits(
                project.pk,
                owner,
                [{"recipient_id": outsider.pk, "percentage": 100}],
            )

        assert exc_info.value.error_code == "RECIPIENT_NOT_MEMBER"
        assert exc_info.value.details["recipient_ids"] == [str(outsider.pk)]

    def test_unknown_project(self, owner):
        with pytest.raises(ProjectNotFoundError):
            ProjectService.replace_splits(uuid.uuid4(), owner, [])


@pytest.mark.django_db
class TestPreviewSplit:
    def test_preview_matches_scheduling(self, project):
        payable = ProjectService.preview_split(project.pk, 10000)

        assert payable.breakdown.platform_fee_cents == 500
        assert payable.breakdown.net_pool_cents == 9500
        assert [share.net_cents for share in payable.shares] == [5700, 3800]
        assert payable.policy == "withhold"

    def test_preview_with_placeholder(self, project, owner, alice, bob):
        ProjectService.replace_splits(
            project.pk,
            owner,
            [
                {"recipient_id": alice.pk, "percentage": Decimal("50")},
                {"recipient_id": bob.pk, "percentage": Decimal("25")},
                {"placeholder_label": "Mixing engineer", "percentage": Decimal("25")},
            ],
        )

        withheld = ProjectService.preview_split(project.pk, 10000)
        renormalized = ProjectService.preview_split(project.pk, 10000, "renormalize")

        assert withheld.withheld_cents == 2375
        assert withheld.total_net_cents == 7125
        assert [share.net_cents for share in renormalized.shares] == [6333, 3167]

    def test_unknown_project(self):
        with pytest.raises(ProjectNotFoundError):
            ProjectService.preview_split(uuid.uuid4(), 10000)
