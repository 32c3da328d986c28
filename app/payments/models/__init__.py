"""
Payment domain models.

This module contains all payment-related models:
- PaymentTransaction: A payment or refund attempt against a milestone
- Escrow: Funds locked for a milestone until approval or refund
- PayoutBatch: Payout instructions generated from one released escrow
- PayoutItem: One recipient's share of a payout batch
- WebhookEvent: Provider webhook event tracking for idempotent processing
"""

from payments.models.escrow import Escrow
from payments.models.payout import PayoutBatch, PayoutItem
from payments.models.transaction import PaymentTransaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "Escrow",
    "PaymentTransaction",
    "PayoutBatch",
    "PayoutItem",
    "WebhookEvent",
]
