"""
Adapters implementing the settlement ports.

All external payment API calls go through a PaymentGateway adapter to
ensure consistent error handling, timeouts, idempotency and observability.

    StripeGateway: PaymentGateway for Stripe (payments.adapters.stripe_adapter)
    SignalEventPublisher, LoggingNotifier, EmailNotifier: in-process ports
        (payments.adapters.local)

Adapters are looked up by dotted path from settings (PAYMENT_GATEWAYS,
SETTLEMENT_EVENT_PUBLISHER, SETTLEMENT_NOTIFIER), so nothing is imported
here.
"""
