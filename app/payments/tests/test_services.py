"""
Tests for PaymentService.create_payment_intent.
"""

import uuid

import pytest

from payments.exceptions import (
    AmountInvalidError,
    EscrowAlreadyActiveError,
    PaymentProcessingError,
    UnknownProviderError,
)
from payments.models import PaymentTransaction
from payments.state_machines import EscrowStatus, TransactionStatus, TransactionType
from payments.tests.factories import EscrowFactory
from projects.exceptions import (
    MilestoneAlreadyProcessedError,
    MilestoneNotFoundError,
    NotProjectOwnerError,
)
from projects.models import MilestoneStatus
from projects.tests.factories import MilestoneFactory


@pytest.fixture
def service(engine):
    return engine.payment_service


@pytest.mark.django_db
class TestCreatePaymentIntent:
    def test_creates_transaction_and_intent(self, service, milestone, owner, gateway, events):
        result = service.create_payment_intent(milestone.id, owner, provider="fake")

        txn = PaymentTransaction.objects.get(pk=result.transaction.pk)
        assert txn.transaction_type == TransactionType.ESCROW_LOCK
        assert txn.amount_cents == milestone.amount_cents
        assert txn.payer == owner
        assert txn.provider_payment_intent_id == result.provider_reference
        assert txn.status == TransactionStatus.CREATED

        request = gateway.intents[0]
        assert request.transaction_id == str(txn.id)
        assert request.metadata["milestone_id"] == str(milestone.id)
        assert request.idempotency_key.startswith("create_intent:")

        assert events.of_type("payment.intent.created")[0]["transaction_id"] == str(txn.id)

    def test_to_dict_exposes_client_details(self, service, milestone, owner):
        data = service.create_payment_intent(milestone.id, owner, provider="fake").to_dict()

        assert data["client_secret"] == "secret_test"
        assert data["provider"] == "fake"
        assert data["status"] == TransactionStatus.CREATED

    def test_processing_intent_marks_transaction_pending(self, service, milestone, owner, gateway):
        gateway.intent_status = "processing"

        result = service.create_payment_intent(milestone.id, owner, provider="fake")

        assert result.status == TransactionStatus.PENDING

    def test_provider_error_marks_transaction_failed(self, service, milestone, owner, gateway):
        gateway.intent_error = PaymentProcessingError("Card network unavailable")

        with pytest.raises(PaymentProcessingError):
            service.create_payment_intent(milestone.id, owner, provider="fake")

        txn = PaymentTransaction.objects.get(milestone=milestone)
        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "Card network unavailable"


@pytest.mark.django_db
class TestCreatePaymentIntentGuards:
    def test_unknown_milestone(self, service, owner):
        with pytest.raises(MilestoneNotFoundError):
            service.create_payment_intent(uuid.uuid4(), owner, provider="fake")

    def test_only_owner_may_pay(self, service, milestone, alice):
        with pytest.raises(NotProjectOwnerError):
            service.create_payment_intent(milestone.id, alice, provider="fake")

    def test_milestone_must_be_pending(self, service, project, owner):
        milestone = MilestoneFactory(project=project, status=MilestoneStatus.COMPLETED)

        with pytest.raises(MilestoneAlreadyProcessedError):
            service.create_payment_intent(milestone.id, owner, provider="fake")

    def test_active_escrow_blocks_second_payment(self, service, milestone, owner):
        EscrowFactory(milestone=milestone, status=EscrowStatus.HELD)

        with pytest.raises(EscrowAlreadyActiveError):
            service.create_payment_intent(milestone.id, owner, provider="fake")

    def test_amount_below_minimum(self, service, project, owner):
        milestone = MilestoneFactory(project=project, amount_cents=99)

        with pytest.raises(AmountInvalidError):
            service.create_payment_intent(milestone.id, owner, provider="fake")

        assert not PaymentTransaction.objects.filter(milestone=milestone).exists()

    def test_unknown_provider(self, service, milestone, owner):
        with pytest.raises(UnknownProviderError):
            service.create_payment_intent(milestone.id, owner, provider="paypal")
