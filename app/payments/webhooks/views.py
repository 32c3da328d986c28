"""
Webhook endpoint view for payment providers.

POST /api/v1/payments/webhooks/<provider>/

The view:
1. Verifies the delivery with the provider's gateway
2. Rejects payment events without a correlation id (400)
3. Creates/retrieves the WebhookEvent record (idempotent per provider)
4. Queues the event for async processing after commit
5. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.engine import build_gateways
from payments.exceptions import (
    CorrelationMissingError,
    UnknownProviderError,
    WebhookSignatureError,
)
from payments.models import WebhookEvent
from payments.ports import get_gateway
from payments.services.webhook_reconciler import (
    classify_payment_event,
    extract_correlation_id,
)
from payments.state_machines import WebhookEventStatus


logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def provider_webhook(request: HttpRequest, provider: str) -> HttpResponse:
    """
    Receive and queue a provider webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Invalid signature, payload or missing correlation id
        - 404: No gateway configured for the provider
    """
    try:
        gateway = get_gateway(build_gateways(), provider)
    except UnknownProviderError:
        logger.warning(
            f"Webhook received for unknown provider {provider}",
            extra={"provider": provider},
        )
        return HttpResponse("Unknown provider", status=404)

    # Step 1: Verify signature
    try:
        event_data = gateway.verify_webhook(request.body, request.headers)
    except WebhookSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"provider": provider, "error": e.message},
        )
        return HttpResponse("Invalid signature", status=400)

    provider_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not provider_event_id or not event_type:
        logger.warning("Webhook missing required fields", extra={"provider": provider})
        return HttpResponse("Invalid event", status=400)

    # Step 2: Payment events must carry our transaction id
    if classify_payment_event(event_type) is not None:
        try:
            extract_correlation_id(event_data)
        except CorrelationMissingError:
            logger.warning(
                f"Webhook {event_type} has no correlation id",
                extra={"provider": provider, "provider_event_id": provider_event_id},
            )
            return HttpResponse("Missing correlation id", status=400)

    logger.info(
        f"Received {provider} webhook: {event_type}",
        extra={
            "provider": provider,
            "provider_event_id": provider_event_id,
            "event_type": event_type,
        },
    )

    # Step 3: Create/get WebhookEvent (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        provider=provider,
        provider_event_id=provider_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created and webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "Webhook already processed, returning success",
            extra={"provider_event_id": provider_event_id},
        )
        return HttpResponse("Already processed", status=200)

    # Step 4: Queue for async processing
    def _queue() -> None:
        from payments.tasks import process_webhook_event

        try:
            process_webhook_event.delay(str(webhook_event.id))
        except Exception:
            # The provider redelivers and retry_failed_webhooks picks it up
            logger.error(
                "Failed to queue webhook",
                extra={"provider_event_id": provider_event_id},
                exc_info=True,
            )

    transaction.on_commit(_queue)
    return HttpResponse("Accepted", status=200)


__all__ = ["provider_webhook"]
