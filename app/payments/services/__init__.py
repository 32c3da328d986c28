"""
Payment services for coordinating settlement operations.

This module provides:
- EscrowLedger: Lock, hold, release and refund escrowed funds
- PaymentService: Start payments that fund milestones
- PayoutScheduler: Turn a released escrow into a payout batch
- WebhookReconciler: Apply verified provider events

Services take their collaborators (gateways, job queue, event publisher,
notifier) as constructor arguments. Use payments.engine.build_engine()
to get instances wired from settings.

Usage:
    from payments.engine import build_engine

    engine = build_engine()
    result = engine.payment_service.create_payment_intent(milestone.id, payer=user)
    engine.webhook_reconciler.reconcile(event)
"""

from payments.services.escrow_ledger import EscrowLedger
from payments.services.payment_service import PaymentIntentResult, PaymentService
from payments.services.payout_scheduler import PayoutScheduler
from payments.services.webhook_reconciler import ReconciliationResult, WebhookReconciler

__all__ = [
    "EscrowLedger",
    "PaymentIntentResult",
    "PaymentService",
    "PayoutScheduler",
    "ReconciliationResult",
    "WebhookReconciler",
]
