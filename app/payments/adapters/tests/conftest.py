"""
Pytest fixtures for StripeGateway tests.

Sections:
    - Port Request Fixtures
    - Mock Stripe Response Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

import uuid
from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from payments.adapters.stripe_adapter import StripeGateway
from payments.ports import IntentRequest, RefundRequest, TransferRequest


# =============================================================================
# Port Request Fixtures
# =============================================================================


@pytest.fixture
def stripe_gateway():
    return StripeGateway(api_key="sk_test_gateway", webhook_secret="whsec_test")


@pytest.fixture
def intent_request():
    return IntentRequest(
        transaction_id=str(uuid.uuid4()),
        amount_cents=5000,
        currency="usd",
        idempotency_key="create_intent:abc:1:deadbeef",
        description="Milestone: Mixdown",
        metadata={"milestone_id": "m-1"},
    )


@pytest.fixture
def transfer_request():
    def _create(**overrides) -> TransferRequest:
        values = {
            "item_id": str(uuid.uuid4()),
            "batch_id": str(uuid.uuid4()),
            "recipient_id": "7",
            "destination_account": "acct_dest123",
            "source_reference": "pi_test123456",
            "amount_cents": 4500,
            "currency": "usd",
            "idempotency_key": "transfer:item:1:cafebabe",
        }
        values.update(overrides)
        return TransferRequest(**values)

    return _create


@pytest.fixture
def refund_request():
    return RefundRequest(
        provider_reference="pi_test123456",
        amount_cents=5000,
        currency="usd",
        idempotency_key="refund:escrow:1:feedface",
        reason="Milestone rejected",
        metadata={"escrow_id": "e-1"},
    )


# =============================================================================
# Mock Stripe Response Fixtures
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 5000,
        client_secret: str = "pi_test123456_secret_abc123",
        latest_charge: str | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": "usd",
                "client_secret": client_secret,
                "latest_charge": latest_charge,
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_transfer():
    def _create(id: str = "tr_test123456") -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer",
                "amount": 4500,
                "currency": "usd",
                "destination": "acct_dest123",
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    def _create(id: str = "re_test123456", status: str = "succeeded") -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": 5000,
                "currency": "usd",
                "status": status,
                "payment_intent": "pi_test123456",
                "metadata": {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    def _create(
        message: str = "Invalid payment intent ID",
        param: str | None = "payment_intent",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    def _create(message: str = "Could not connect to Stripe.") -> stripe.APIConnectionError:
        return stripe.APIConnectionError(message=message)

    return _create


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


@pytest.fixture
def signature_verification_error():
    return stripe.SignatureVerificationError(
        message="Unable to verify webhook signature.",
        sig_header="bad_signature",
    )


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent(
            status="succeeded", latest_charge="ch_test123"
        )
        mock.capture.return_value = mock_payment_intent(
            status="succeeded", latest_charge="ch_test123"
        )
        mock.cancel.return_value = mock_payment_intent(status="canceled")
        yield mock


@pytest.fixture
def mock_stripe_transfer(mock_transfer):
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = mock_transfer()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    """Mock stripe.Webhook API; construct_event only verifies."""
    with patch("stripe.Webhook") as mock:
        yield mock


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """No test opens a real HTTP client."""
    with patch("stripe.RequestsClient") as mock:
        yield mock
