"""
Payments app: escrow, payouts and provider integration.

This app handles:
- Revenue split calculation (payments.splits)
- Payment intents that fund milestones
- Escrow locking, holding, release and refund
- Payout batch scheduling and execution
- Provider webhook verification and reconciliation

Related apps:
    - projects: Milestones, members and revenue split agreements
    - jobs: Durable queue that runs payout.execute

Usage:
    from payments.engine import build_engine

    engine = build_engine()
    intent = engine.payment_service.create_payment_intent(milestone.id, payer=user)
    engine.webhook_reconciler.reconcile(event)
"""
