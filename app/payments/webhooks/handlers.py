"""
Webhook event handlers for payment provider events.

This module provides a handler registry that routes stored WebhookEvents
to the WebhookReconciler.

Routing:
    payment_intent.succeeded, order.paid     -> transaction succeeded, milestone funded
    any other type containing "failed"       -> transaction failed
    transfer.paid, transfer.failed,
    transfer.reversed                        -> payout item settled
    anything else                            -> acknowledged, no effect

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("charge.dispute.created")
    def handle_dispute(webhook_event: WebhookEvent, engine) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.exceptions import BaseApplicationError
from core.services import ServiceResult
from payments.exceptions import SplitConservationError
from payments.services.webhook_reconciler import classify_payment_event

if TYPE_CHECKING:
    from payments.engine import SettlementEngine
    from payments.models import WebhookEvent
    from payments.services import ReconciliationResult


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


WebhookHandler = Callable[["WebhookEvent", "SettlementEngine"], ServiceResult]

# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, WebhookHandler] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: Provider event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: WebhookHandler) -> WebhookHandler:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def get_webhook_handler(event_type: str) -> WebhookHandler | None:
    """Exact registration first; failure types fall back to the payment handler."""
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None and classify_payment_event(event_type) is not None:
        handler = handle_payment_event
    return handler


def dispatch_webhook(
    webhook_event: WebhookEvent,
    engine: SettlementEngine | None = None,
) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged with success so the provider
    stops redelivering them.

    Args:
        webhook_event: The stored WebhookEvent to process
        engine: Settlement engine to use (built from settings if omitted)

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = get_webhook_handler(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"provider_event_id": webhook_event.provider_event_id},
        )
        return ServiceResult.success(None)

    if engine is None:
        from payments.engine import build_engine

        engine = build_engine()

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"provider_event_id": webhook_event.provider_event_id},
    )
    return handler(webhook_event, engine)


def _reconcile(webhook_event: WebhookEvent, engine: SettlementEngine) -> ServiceResult:
    try:
        result: ReconciliationResult = engine.webhook_reconciler.reconcile(webhook_event.payload)
    except SplitConservationError:
        raise
    except BaseApplicationError as e:
        logger.error(
            f"{webhook_event.event_type}: reconciliation failed: {e.message}",
            extra={
                "provider_event_id": webhook_event.provider_event_id,
                "error_code": e.error_code,
                "error_details": e.details,
            },
        )
        return ServiceResult.from_exception(e)
    return ServiceResult.success(result)


# =============================================================================
# Payment Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
@register_handler("order.paid")
@register_handler("payment_intent.payment_failed")
def handle_payment_event(webhook_event: WebhookEvent, engine: SettlementEngine) -> ServiceResult:
    """
    Mark the correlated PaymentTransaction and fund the milestone on success.

    If funding is refused the transaction keeps its SUCCEEDED status and the
    failure is returned for the event record.
    """
    return _reconcile(webhook_event, engine)


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("transfer.paid")
@register_handler("transfer.failed")
@register_handler("transfer.reversed")
def handle_transfer_event(webhook_event: WebhookEvent, engine: SettlementEngine) -> ServiceResult:
    """Confirm or fail the PayoutItem that owns the transfer."""
    return _reconcile(webhook_event, engine)


__all__ = [
    "WEBHOOK_HANDLERS",
    "dispatch_webhook",
    "get_webhook_handler",
    "handle_payment_event",
    "handle_transfer_event",
    "register_handler",
]
