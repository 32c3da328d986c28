"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing provider webhook events
- Retrying failed (or never queued) webhook events
- Resetting webhook events stuck in processing

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_WEBHOOK_RETRIES = 5
STUCK_PROCESSING_THRESHOLD_MINUTES = 30
UNQUEUED_PENDING_THRESHOLD_MINUTES = 5
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored webhook event.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler
    5. Marks as processed or failed

    The dispatch is not wrapped in a transaction: the reconciler commits
    the transaction status on its own before funding the milestone, and
    that commit must survive a funding conflict.

    Raises:
        Exception: Unexpected errors are re-raised to trigger Celery retry
    """
    from payments.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.status == WebhookEventStatus.PROCESSED:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        raise

    if result.success:
        webhook_event.mark_processed()
        webhook_event.save()
        return {
            "status": "processed",
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
        }

    error_msg = f"[{result.error_code}] {result.error or 'Handler returned failure'}"
    webhook_event.mark_failed(error_msg)
    webhook_event.save()
    logger.warning(
        f"Webhook handler failed: {error_msg}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "handler_failed",
        "webhook_event_id": str(webhook_event_id),
        "error": error_msg,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to re-queue webhook events.

    Picks up FAILED events below the retry cap and PENDING events that
    were never queued (older than a few minutes).

    Returns:
        Dict with count of webhooks queued
    """
    max_retries = getattr(settings, "WEBHOOK_MAX_RETRIES", MAX_WEBHOOK_RETRIES)
    pending_cutoff = timezone.now() - timedelta(minutes=UNQUEUED_PENDING_THRESHOLD_MINUTES)
    candidates = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, retry_count__lt=max_retries)
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=pending_cutoff)
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in candidates:
        try:
            process_webhook_event.delay(str(webhook.id))
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )
            continue
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    if queued_count:
        logger.info(
            f"Queued {queued_count} webhooks for retry",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING to FAILED so they are retried.

    Handles workers that crashed mid-processing.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
            },
        )

    return {"reset_count": reset_count}


__all__ = [
    "cleanup_stuck_webhooks",
    "process_webhook_event",
    "retry_failed_webhooks",
]
