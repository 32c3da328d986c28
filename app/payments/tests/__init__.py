"""
Tests for payments app.

This package contains test modules for:
- test_calculator.py / test_policies.py: Split calculation and placeholder policies
- test_escrow_ledger.py / test_services.py: EscrowLedger and PaymentService
- test_payout_scheduler.py / test_payout_executor.py: Payout scheduling and execution
- test_reconciler.py / test_handlers.py / test_tasks.py: Webhook processing
- test_views.py: API and webhook endpoints
- test_scenarios.py / test_integration.py: End-to-end settlement flows

Usage:
    pytest payments/tests/
    pytest payments/tests/test_calculator.py
"""
