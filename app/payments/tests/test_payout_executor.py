"""
Tests for PayoutExecutor and the payout.execute handler.

Batches are created through the scheduler from a released 10000 escrow
split 60/40, giving two items of 5700 and 3800.
"""

import uuid

import pytest

from core.exceptions import LockAcquisitionError
from jobs.exceptions import JobExecutionError
from payments.exceptions import (
    PayoutBatchNotFoundError,
    StripeInvalidAccountError,
    StripeTimeoutError,
)
from payments.models import Escrow, PayoutBatch, PayoutItem
from payments.state_machines import EscrowStatus, PayoutStatus
from payments.tests.factories import EscrowFactory
from payments.workers.payout_executor import execute_payout


@pytest.fixture
def executor(engine):
    return engine.payout_executor


@pytest.fixture
def batch(db, engine, milestone):
    escrow = EscrowFactory(
        milestone=milestone,
        status=EscrowStatus.RELEASED,
        released_amount_cents=milestone.amount_cents,
    )
    return engine.payout_scheduler.schedule_payouts(
        escrow_id=escrow.id,
        project_id=escrow.project_id,
        milestone_id=escrow.milestone_id,
        amount_cents=escrow.amount_cents,
        currency=escrow.currency,
    )


def items_of(batch):
    return list(PayoutItem.objects.filter(batch=batch).order_by("position"))


# =============================================================================
# Successful Runs
# =============================================================================


@pytest.mark.django_db
class TestExecuteSuccess:
    def test_pays_every_item(self, executor, batch, gateway, events):
        result = executor.execute(batch.pk, batch.escrow_id)

        assert result.status == PayoutStatus.PAID
        assert len(result.paid) == 2
        assert result.failed == []
        assert PayoutBatch.objects.get(pk=batch.pk).status == PayoutStatus.PAID

        items = items_of(batch)
        assert all(item.status == PayoutStatus.PAID for item in items)
        assert all(item.attempts == 1 for item in items)
        assert all(item.provider_transfer_id.startswith("tr_") for item in items)
        assert [t.amount_cents for t in gateway.transfers] == [5700, 3800]
        assert [t.destination_account for t in gateway.transfers] == ["acct_alice", "acct_bob"]
        assert events.types.count("payout.item.paid") == 2
        assert "payout.batch.paid" in events.types

    def test_transfer_carries_correlation_metadata(self, executor, batch, gateway):
        executor.execute(batch.pk)

        request = gateway.transfers[0]
        item = items_of(batch)[0]
        assert request.metadata == {"payout_item_id": str(item.pk), "batch_id": str(batch.pk)}
        assert request.source_reference == batch.escrow.provider_reference

    def test_rerun_of_paid_batch_moves_nothing(self, executor, batch, gateway):
        executor.execute(batch.pk)

        result = executor.execute(batch.pk)

        assert len(gateway.transfers) == 2
        assert len(result.skipped) == 2
        assert result.paid == []

    def test_pending_transfer_waits_for_webhook(self, executor, batch, gateway):
        gateway.transfer_outcomes = ["pending", "succeeded"]

        result = executor.execute(batch.pk)

        assert len(result.pending) == 1
        assert len(result.paid) == 1
        assert result.status == PayoutStatus.PROCESSING

        pending_item = items_of(batch)[0]
        assert pending_item.status == PayoutStatus.PROCESSING
        assert pending_item.provider_transfer_id is not None

    def test_item_awaiting_confirmation_is_not_resent(self, executor, batch, gateway):
        gateway.transfer_outcomes = ["pending", "succeeded"]
        executor.execute(batch.pk)

        result = executor.execute(batch.pk)

        assert len(gateway.transfers) == 2
        assert len(result.skipped) == 2

    def test_result_dict_shape(self, executor, batch):
        data = executor.execute(batch.pk).to_dict()

        assert set(data) == {
            "batch_id",
            "status",
            "paid",
            "pending",
            "failed",
            "skipped",
            "aborted",
        }
        assert data["aborted"] is False


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.django_db
class TestExecuteFailures:
    def test_transient_failure_is_retryable(self, executor, batch, gateway, events):
        gateway.transfer_outcomes = [StripeTimeoutError("Request timed out"), "succeeded"]

        with pytest.raises(JobExecutionError) as exc_info:
            executor.execute(batch.pk)

        error = exc_info.value
        assert error.error_code == "PAYOUT_TRANSFERS_FAILED"
        assert error.is_retryable is True
        assert len(error.details["failed"]) == 1
        assert len(error.details["paid"]) == 1

        timed_out_item, paid_item = items_of(batch)
        # Outcome unknown: the item stays in flight without a transfer id
        assert timed_out_item.status == PayoutStatus.PROCESSING
        assert timed_out_item.provider_transfer_id is None
        assert timed_out_item.failure_reason == "Request timed out"
        assert paid_item.status == PayoutStatus.PAID
        assert PayoutBatch.objects.get(pk=batch.pk).status == PayoutStatus.PROCESSING
        assert "payout.batch.failed" not in events.types

    def test_retry_after_timeout_reuses_the_idempotency_key(self, executor, batch, gateway):
        gateway.transfer_outcomes = [StripeTimeoutError("Request timed out")]
        with pytest.raises(JobExecutionError):
            executor.execute(batch.pk)
        first = gateway.transfers[0]

        result = executor.execute(batch.pk)

        assert result.status == PayoutStatus.PAID
        assert len(result.paid) == 1
        assert len(result.skipped) == 1
        retry = gateway.transfers[-1]
        assert retry.item_id == first.item_id
        assert retry.idempotency_key == first.idempotency_key
        item = items_of(batch)[0]
        assert item.attempts == 1
        assert item.failure_reason is None

    def test_repeated_timeouts_never_change_the_key(self, executor, batch, gateway):
        gateway.transfer_outcomes = [
            StripeTimeoutError("Request timed out"),
            "succeeded",
            StripeTimeoutError("Request timed out"),
        ]
        for _ in range(2):
            with pytest.raises(JobExecutionError):
                executor.execute(batch.pk)

        executor.execute(batch.pk)

        first_item = items_of(batch)[0]
        keys = {t.idempotency_key for t in gateway.transfers if t.item_id == str(first_item.pk)}
        assert len(keys) == 1
        assert first_item.status == PayoutStatus.PAID

    def test_retry_after_definitive_failure_uses_a_new_key(self, executor, batch, gateway):
        gateway.transfer_outcomes = [StripeInvalidAccountError("Account restricted")]
        with pytest.raises(JobExecutionError):
            executor.execute(batch.pk)
        first = gateway.transfers[0]
        assert items_of(batch)[0].status == PayoutStatus.FAILED

        executor.execute(batch.pk)

        retry = gateway.transfers[-1]
        assert retry.item_id == first.item_id
        assert retry.idempotency_key != first.idempotency_key
        assert items_of(batch)[0].attempts == 2

    def test_permanent_failure_is_not_retryable(self, executor, batch, gateway):
        gateway.transfer_outcomes = [StripeInvalidAccountError("Account restricted")]

        with pytest.raises(JobExecutionError) as exc_info:
            executor.execute(batch.pk)

        assert exc_info.value.is_retryable is False

    def test_provider_reported_failure_is_not_retryable(self, executor, batch, gateway):
        gateway.transfer_outcomes = ["failed", "failed"]

        with pytest.raises(JobExecutionError) as exc_info:
            executor.execute(batch.pk)

        assert exc_info.value.is_retryable is False
        assert all(item.status == PayoutStatus.FAILED for item in items_of(batch))

    def test_crashed_attempt_reuses_idempotency_key(self, executor, batch, gateway):
        # Simulates a worker that died after phase 1 of the first item
        item = items_of(batch)[0]
        item.start_processing()
        item.save()
        crashed_key_attempt = item.attempts

        executor.execute(batch.pk)

        item = PayoutItem.objects.get(pk=item.pk)
        assert item.attempts == crashed_key_attempt
        assert item.status == PayoutStatus.PAID
        assert gateway.transfers[0].idempotency_key.split(":")[2] == str(crashed_key_attempt)

    def test_unknown_batch(self, executor):
        with pytest.raises(PayoutBatchNotFoundError):
            executor.execute(uuid.uuid4())

    def test_batch_lock_held_elsewhere(self, executor, batch, mock_redis, gateway, mocker):
        mock_redis.set.return_value = False
        clock = mocker.patch("core.locks.time")
        clock.time.side_effect = [0.0, 0.0, 60.0]

        with pytest.raises(LockAcquisitionError):
            executor.execute(batch.pk)

        assert gateway.transfers == []


# =============================================================================
# Abort
# =============================================================================


@pytest.mark.django_db
class TestExecuteAbort:
    def test_escrow_no_longer_released_aborts_without_transfers(
        self, executor, batch, gateway, events
    ):
        # Escrow status is protected; rewrite it at the row level
        Escrow.objects.filter(pk=batch.escrow_id).update(status=EscrowStatus.REFUNDED)

        result = executor.execute(batch.pk)

        assert result.aborted is True
        assert result.status == PayoutStatus.FAILED
        assert len(result.failed) == 2
        assert gateway.transfers == []
        assert all(item.status == PayoutStatus.FAILED for item in items_of(batch))
        assert events.of_type("payout.batch.failed")[0]["reason"].startswith("Escrow is refunded")


# =============================================================================
# Job Handler
# =============================================================================


@pytest.mark.django_db
class TestExecutePayoutHandler:
    def test_handler_runs_executor_from_settings(self, batch, gateway, mocker):
        mocker.patch("payments.engine.build_gateways", return_value={"fake": gateway})

        payload = {"batch_id": str(batch.pk), "escrow_id": str(batch.escrow_id)}

        result = execute_payout(payload, None)

        assert result["status"] == PayoutStatus.PAID
        assert len(result["paid"]) == 2
