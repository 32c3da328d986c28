"""
End-to-end settlement flow.

Drives a milestone from payment intent to paid-out contributors through
the public API, the webhook task and the job runner, with FakeGateway
standing in for the payment provider.

    intent -> payment_intent.succeeded -> funded -> completed -> approved
        -> payout batch -> payout.execute job -> transfers
"""

import json

import pytest
from django.urls import reverse
from django.utils import timezone

from jobs.models import Job, JobStatus
from jobs.registry import PAYOUT_EXECUTE
from jobs.runner import JobRunner
from payments.exceptions import StripeTimeoutError
from payments.models import Escrow, PaymentTransaction, PayoutBatch, WebhookEvent
from payments.state_machines import (
    EscrowStatus,
    PayoutStatus,
    TransactionStatus,
    WebhookEventStatus,
)
from payments.tasks import process_webhook_event
from projects.models import Milestone, MilestoneStatus


@pytest.fixture(autouse=True)
def fake_gateways(gateway, mocker):
    mocker.patch("payments.engine.build_gateways", return_value={"fake": gateway})
    mocker.patch("payments.webhooks.views.build_gateways", return_value={"fake": gateway})
    mocker.patch("payments.tasks.process_webhook_event.delay")
    return gateway


def deliver_webhook(client, gateway, event, capture):
    """POST an event to the webhook endpoint and process it like the worker would."""
    gateway.webhook_event = event
    url = reverse("payments:provider_webhook", kwargs={"provider": "fake"})
    with capture(execute=True):
        response = client.post(url, data=json.dumps(event), content_type="application/json")
    assert response.status_code == 200

    stored = WebhookEvent.objects.get(provider="fake", provider_event_id=event["id"])
    with capture(execute=True):
        return process_webhook_event(str(stored.id))


def fund_milestone(api_client, client, owner, milestone, gateway, capture):
    api_client.force_authenticate(owner)
    response = api_client.post(
        "/api/v1/payments/intents/",
        {"milestone_id": str(milestone.pk), "provider": "fake"},
        format="json",
    )
    assert response.status_code == 201

    event = {
        "id": "evt_paid",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": response.data["provider_payment_intent_id"],
                "metadata": {"transaction_id": response.data["transaction_id"]},
            }
        },
    }
    result = deliver_webhook(client, gateway, event, capture)
    assert result["status"] == "processed"
    return PaymentTransaction.objects.get(pk=response.data["transaction_id"])


def approve_milestone(api_client, owner, alice, milestone, capture):
    api_client.force_authenticate(alice)
    response = api_client.post(f"/api/v1/milestones/{milestone.pk}/complete/", {}, format="json")
    assert response.status_code == 200

    api_client.force_authenticate(owner)
    with capture(execute=True):
        response = api_client.post(
            f"/api/v1/milestones/{milestone.pk}/approve/", {}, format="json"
        )
    assert response.status_code == 200


@pytest.mark.django_db
class TestSettlementFlow:
    def test_milestone_paid_out_to_contributors(
        self,
        api_client,
        client,
        owner,
        alice,
        milestone,
        fake_gateways,
        django_capture_on_commit_callbacks,
    ):
        capture = django_capture_on_commit_callbacks

        txn = fund_milestone(api_client, client, owner, milestone, fake_gateways, capture)

        assert txn.status == TransactionStatus.SUCCEEDED
        assert Milestone.objects.get(pk=milestone.pk).status == MilestoneStatus.FUNDED
        escrow = Escrow.objects.get(milestone=milestone)
        assert escrow.status == EscrowStatus.LOCKED
        assert escrow.amount_cents == 10000

        approve_milestone(api_client, owner, alice, milestone, capture)

        escrow.refresh_from_db()
        assert escrow.status == EscrowStatus.RELEASED
        batch = PayoutBatch.objects.get(escrow=escrow)
        assert batch.platform_fee_cents == 500
        job = Job.objects.get(job_type=PAYOUT_EXECUTE)
        assert job.payload == {"batch_id": str(batch.pk), "escrow_id": str(escrow.pk)}

        with capture(execute=True):
            [done] = JobRunner().run_once("worker-1")

        assert done.status == JobStatus.SUCCEEDED
        batch.refresh_from_db()
        assert batch.status == PayoutStatus.PAID
        transfers = sorted(
            (t.destination_account, t.amount_cents) for t in fake_gateways.transfers
        )
        assert transfers == [("acct_alice", 5700), ("acct_bob", 3800)]
        assert sum(item.net_cents for item in batch.items.all()) + batch.platform_fee_cents == (
            10000
        )

    def test_redelivered_payment_event_does_not_fund_twice(
        self,
        api_client,
        client,
        owner,
        milestone,
        fake_gateways,
        django_capture_on_commit_callbacks,
    ):
        capture = django_capture_on_commit_callbacks
        fund_milestone(api_client, client, owner, milestone, fake_gateways, capture)
        url = reverse("payments:provider_webhook", kwargs={"provider": "fake"})

        response = client.post(url, data="{}", content_type="application/json")

        assert response.content == b"Already processed"
        assert Escrow.objects.filter(milestone=milestone).count() == 1
        assert WebhookEvent.objects.get(provider_event_id="evt_paid").status == (
            WebhookEventStatus.PROCESSED
        )

    def test_pending_transfers_settle_from_transfer_webhooks(
        self,
        api_client,
        client,
        owner,
        alice,
        milestone,
        fake_gateways,
        django_capture_on_commit_callbacks,
    ):
        capture = django_capture_on_commit_callbacks
        fund_milestone(api_client, client, owner, milestone, fake_gateways, capture)
        approve_milestone(api_client, owner, alice, milestone, capture)
        fake_gateways.transfer_outcomes = ["pending", "pending"]

        with capture(execute=True):
            JobRunner().run_once("worker-1")

        batch = PayoutBatch.objects.get()
        assert batch.status == PayoutStatus.PROCESSING

        for position, item in enumerate(batch.items.order_by("position")):
            event = {
                "id": f"evt_transfer_{position}",
                "type": "transfer.paid",
                "data": {
                    "object": {
                        "id": item.provider_transfer_id,
                        "metadata": {"payout_item_id": str(item.pk)},
                    }
                },
            }
            assert deliver_webhook(client, fake_gateways, event, capture)["status"] == (
                "processed"
            )

        batch.refresh_from_db()
        assert batch.status == PayoutStatus.PAID
        assert set(batch.items.values_list("status", flat=True)) == {PayoutStatus.PAID}

    def test_transient_transfer_failure_is_retried_by_the_runner(
        self,
        api_client,
        client,
        owner,
        alice,
        milestone,
        fake_gateways,
        django_capture_on_commit_callbacks,
    ):
        capture = django_capture_on_commit_callbacks
        fund_milestone(api_client, client, owner, milestone, fake_gateways, capture)
        approve_milestone(api_client, owner, alice, milestone, capture)
        fake_gateways.transfer_outcomes = [StripeTimeoutError("Request timed out"), "succeeded"]
        runner = JobRunner()

        with capture(execute=True):
            [first] = runner.run_once("worker-1")

        assert first.status == JobStatus.QUEUED
        assert first.attempt == 1
        assert first.last_error["code"] == "PAYOUT_TRANSFERS_FAILED"
        assert first.next_run_at > timezone.now()

        # Backoff elapsed
        Job.objects.filter(pk=first.pk).update(next_run_at=timezone.now())
        with capture(execute=True):
            [second] = runner.run_once("worker-1")

        assert second.status == JobStatus.SUCCEEDED
        assert PayoutBatch.objects.get().status == PayoutStatus.PAID
        paid_amounts = sorted(
            t.amount_cents for t in fake_gateways.transfers[1:]
        )
        assert paid_amounts == [3800, 5700]
