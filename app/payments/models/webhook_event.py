"""
WebhookEvent: one provider delivery, stored before it is processed.

(provider, provider_event_id) is unique, so a redelivered event finds the
row written for the first delivery instead of creating a second one. The
row is the unit of retry: payments.tasks re-queues FAILED and stale
PENDING events until WEBHOOK_MAX_RETRIES is reached.

Usage:
    event, created = WebhookEvent.objects.get_or_create(
        provider="stripe",
        provider_event_id=verified["id"],
        defaults={"event_type": verified["type"], "payload": verified},
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified provider event and its processing state.

    PENDING -> PROCESSING -> PROCESSED
                          -> FAILED -> PROCESSING (retry task)

    retry_count counts processing attempts, not failures. Handlers are
    idempotent on the correlation id, so reprocessing an event that
    half-succeeded is safe.
    """

    provider = models.CharField(max_length=50, default="stripe")

    provider_event_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Provider's event id (evt_xxx for Stripe)",
    )

    event_type = models.CharField(max_length=100, db_index=True)

    payload = models.JSONField(help_text="Verified event body")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    # "[ERROR_CODE] message" from the last failed attempt
    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="payments_webhook_status_idx"),
            models.Index(fields=["status", "retry_count"], name="payments_webhook_retry_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "provider_event_id"],
                name="webhook_event_unique_per_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider}:{self.provider_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        max_retries = getattr(settings, "WEBHOOK_MAX_RETRIES", 5)
        return self.status == WebhookEventStatus.FAILED and self.retry_count < max_retries

    # Callers save after each of these

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message
