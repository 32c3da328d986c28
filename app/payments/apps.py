"""
Payments app configuration.

This app provides the settlement engine:
- Revenue split calculation and payout scheduling
- Escrow ledger and payment intents
- Provider webhooks and reconciliation
- The payout.execute job handler
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self):
        # Register webhook handlers and the payout.execute job handler
        import payments.webhooks.handlers  # noqa: F401
        import payments.workers.payout_executor  # noqa: F401
