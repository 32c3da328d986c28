"""
Tests for PayoutScheduler.

The project fixture splits 60/40 between alice and bob, so a released
10000 escrow yields a 500 fee and items of 5700 and 3800.
"""

import uuid
from decimal import Decimal

import pytest
from django.db import IntegrityError
from django.test import override_settings

from jobs.registry import PAYOUT_EXECUTE
from payments.exceptions import (
    AmountInvalidError,
    EscrowNotFoundError,
    EscrowNotReleasedError,
    NoRecipientsError,
    PaymentValidationError,
    PayoutAlreadyScheduledError,
)
from payments.models import PayoutBatch, PayoutItem
from payments.services.payout_scheduler import PAYOUT_JOB_PRIORITY
from payments.state_machines import EscrowStatus, PayoutStatus
from payments.tests.factories import EscrowFactory, PayoutBatchFactory
from projects.models import RevenueSplit
from projects.tests.factories import RevenueSplitFactory


@pytest.fixture
def scheduler(engine):
    return engine.payout_scheduler


@pytest.fixture
def released_escrow(db, milestone):
    return EscrowFactory(
        milestone=milestone,
        status=EscrowStatus.RELEASED,
        released_amount_cents=milestone.amount_cents,
    )


def schedule(scheduler, escrow, **overrides):
    kwargs = {
        "escrow_id": escrow.id,
        "project_id": escrow.project_id,
        "milestone_id": escrow.milestone_id,
        "amount_cents": escrow.released_amount_cents,
        "currency": escrow.currency,
    }
    kwargs.update(overrides)
    return scheduler.schedule_payouts(**kwargs)


# =============================================================================
# Scheduling
# =============================================================================


@pytest.mark.django_db
class TestSchedulePayouts:
    def test_creates_batch_and_items(self, scheduler, released_escrow, alice, bob):
        batch = schedule(scheduler, released_escrow)

        assert batch.status == PayoutStatus.SCHEDULED
        assert batch.gross_cents == 10000
        assert batch.platform_fee_cents == 500
        assert batch.total_net_cents == 9500
        assert batch.withheld_cents == 0

        items = list(batch.items.order_by("position"))
        assert [item.recipient_id for item in items] == [alice.pk, bob.pk]
        assert [item.net_cents for item in items] == [5700, 3800]
        assert [item.fee_cents for item in items] == [300, 200]
        assert [item.destination_account for item in items] == ["acct_alice", "acct_bob"]
        assert all(item.gross_cents == item.net_cents for item in items)
        assert all(item.status == PayoutStatus.SCHEDULED for item in items)

    def test_enqueues_execution_after_commit(
        self, scheduler, released_escrow, job_queue, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            batch = schedule(scheduler, released_escrow)

        assert len(job_queue.enqueued) == 1
        job = job_queue.enqueued[0]
        assert job["job_type"] == PAYOUT_EXECUTE
        assert job["priority"] == PAYOUT_JOB_PRIORITY
        assert job["payload"] == {"batch_id": str(batch.pk), "escrow_id": str(released_escrow.pk)}
        assert str(PayoutBatch.objects.get(pk=batch.pk).job_id) == job["id"]

    def test_nothing_enqueued_without_commit(self, scheduler, released_escrow, job_queue):
        schedule(scheduler, released_escrow)

        assert job_queue.enqueued == []

    def test_publishes_and_notifies_recipients(
        self, scheduler, released_escrow, events, notifier, alice, bob
    ):
        batch = schedule(scheduler, released_escrow)

        payload = events.of_type("payout.batch.scheduled")[0]
        assert payload["batch_id"] == str(batch.pk)
        assert payload["item_count"] == 2

        user_ids, template, context = notifier.sent[0]
        assert template == "payout.scheduled"
        assert sorted(user_ids) == sorted([str(alice.pk), str(bob.pk)])
        assert context["batch_id"] == str(batch.pk)

    def test_partial_amount(self, scheduler, released_escrow):
        batch = schedule(scheduler, released_escrow, amount_cents=100)

        assert batch.platform_fee_cents == 5
        assert sum(batch.items.values_list("net_cents", flat=True)) == 95

    def test_inactive_splits_are_ignored(self, scheduler, released_escrow, project, alice):
        RevenueSplit.objects.filter(project=project).update(is_active=False)
        RevenueSplitFactory(project=project, recipient=alice, percentage=Decimal("100"))

        batch = schedule(scheduler, released_escrow)

        assert list(batch.items.values_list("net_cents", flat=True)) == [9500]


# =============================================================================
# Idempotency
# =============================================================================


@pytest.mark.django_db
class TestScheduleIdempotency:
    def test_second_call_is_rejected(self, scheduler, released_escrow, events):
        schedule(scheduler, released_escrow)

        with pytest.raises(PayoutAlreadyScheduledError):
            schedule(scheduler, released_escrow)

        assert PayoutBatch.objects.count() == 1
        assert PayoutItem.objects.count() == 2
        assert events.types.count("payout.batch.scheduled") == 1

    def test_concurrent_insert_is_rejected_by_the_unique_escrow(
        self, scheduler, released_escrow, job_queue, events, mocker
    ):
        # Another worker committed its batch after this call's existence check
        winner = PayoutBatchFactory(escrow=released_escrow)
        mocker.patch("django.db.models.query.QuerySet.exists", return_value=False)

        with pytest.raises(PayoutAlreadyScheduledError) as exc_info:
            schedule(scheduler, released_escrow)

        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert list(PayoutBatch.objects.values_list("pk", flat=True)) == [winner.pk]
        assert PayoutItem.objects.count() == 0
        assert job_queue.enqueued == []
        assert "payout.batch.scheduled" not in events.types

    def test_enqueue_execution_can_be_repeated(self, scheduler, released_escrow, job_queue):
        batch = schedule(scheduler, released_escrow)

        first = scheduler.enqueue_execution(batch.pk)
        second = scheduler.enqueue_execution(batch.pk)

        assert first != second
        assert str(PayoutBatch.objects.get(pk=batch.pk).job_id) == second
        assert PayoutItem.objects.filter(batch=batch).count() == 2


# =============================================================================
# Guards
# =============================================================================


@pytest.mark.django_db
class TestScheduleGuards:
    def test_unknown_escrow(self, scheduler, milestone):
        with pytest.raises(EscrowNotFoundError):
            scheduler.schedule_payouts(
                escrow_id=uuid.uuid4(),
                project_id=milestone.project_id,
                milestone_id=milestone.pk,
                amount_cents=100,
                currency="usd",
            )

    @pytest.mark.parametrize(
        "status", [EscrowStatus.LOCKED, EscrowStatus.HELD, EscrowStatus.REFUNDED]
    )
    def test_escrow_must_be_released(self, scheduler, milestone, status):
        escrow = EscrowFactory(milestone=milestone, status=status)

        with pytest.raises(EscrowNotReleasedError):
            schedule(scheduler, escrow, amount_cents=escrow.amount_cents)

    def test_project_mismatch(self, scheduler, released_escrow):
        with pytest.raises(PaymentValidationError):
            schedule(scheduler, released_escrow, project_id=uuid.uuid4())

    def test_milestone_mismatch(self, scheduler, released_escrow):
        with pytest.raises(PaymentValidationError):
            schedule(scheduler, released_escrow, milestone_id=uuid.uuid4())

    def test_milestone_is_optional(self, scheduler, released_escrow):
        batch = schedule(scheduler, released_escrow, milestone_id=None)

        assert batch.milestone_id == released_escrow.milestone_id
        assert batch.items.count() == 2

    def test_project_still_checked_without_milestone(self, scheduler, released_escrow):
        with pytest.raises(PaymentValidationError):
            schedule(scheduler, released_escrow, project_id=uuid.uuid4(), milestone_id=None)

    def test_currency_mismatch(self, scheduler, released_escrow):
        with pytest.raises(PaymentValidationError):
            schedule(scheduler, released_escrow, currency="eur")

    def test_currency_comparison_ignores_case(self, scheduler, released_escrow):
        batch = schedule(scheduler, released_escrow, currency="USD")

        assert batch.currency == "usd"

    @pytest.mark.parametrize("amount", [0, -1, 10001])
    def test_amount_out_of_range(self, scheduler, released_escrow, amount):
        with pytest.raises(AmountInvalidError):
            schedule(scheduler, released_escrow, amount_cents=amount)

        assert not PayoutBatch.objects.exists()


# =============================================================================
# Placeholder Policy
# =============================================================================


@pytest.mark.django_db
class TestPlaceholderPolicy:
    @pytest.fixture
    def placeholder_project(self, project, alice, bob):
        RevenueSplit.objects.filter(project=project).update(is_active=False)
        RevenueSplitFactory(project=project, recipient=alice, percentage=Decimal("50"), position=0)
        RevenueSplitFactory(project=project, recipient=bob, percentage=Decimal("25"), position=1)
        RevenueSplitFactory(
            project=project,
            recipient=None,
            placeholder_label="Mixing engineer",
            percentage=Decimal("25"),
            position=2,
        )
        return project

    def test_withhold_is_the_default(self, scheduler, placeholder_project, released_escrow):
        batch = schedule(scheduler, released_escrow)

        assert batch.placeholder_policy == "withhold"
        assert list(batch.items.values_list("net_cents", flat=True)) == [4750, 2375]
        assert batch.withheld_cents == 2375
        assert batch.total_net_cents == 7125

    def test_renormalize(self, scheduler, placeholder_project, released_escrow):
        batch = schedule(scheduler, released_escrow, placeholder_policy="renormalize")

        assert batch.placeholder_policy == "renormalize"
        assert list(batch.items.values_list("net_cents", flat=True)) == [6333, 3167]
        assert batch.withheld_cents == 0
        assert batch.total_net_cents == 9500

    @override_settings(PAYOUT_PLACEHOLDER_POLICY="renormalize")
    def test_default_comes_from_settings(self, scheduler, placeholder_project, released_escrow):
        batch = schedule(scheduler, released_escrow)

        assert batch.placeholder_policy == "renormalize"

    def test_all_placeholder_agreement_schedules_nothing(
        self, scheduler, project, released_escrow
    ):
        RevenueSplit.objects.filter(project=project).update(recipient=None, placeholder_label="TBD")

        with pytest.raises(NoRecipientsError):
            schedule(scheduler, released_escrow)

        assert not PayoutBatch.objects.exists()
