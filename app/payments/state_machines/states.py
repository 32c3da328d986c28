"""
State enums for payment models.

This module defines all state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

PaymentTransaction States:
    created → pending → succeeded
    created/pending → failed

Escrow States:
    locked → released
    locked → held → locked (dispute resolved in favour of release)
    locked/held → refunded

PayoutBatch / PayoutItem States:
    scheduled → processing → paid
    scheduled/processing → failed → processing (retry)
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the PaymentTransaction model lifecycle.

    Terminal states: SUCCEEDED, FAILED. A provider event for a transaction
    already in a terminal state is a duplicate and changes nothing.
    """

    CREATED = "created", "Created"
    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"

    @classmethod
    def terminal(cls) -> set[str]:
        return {cls.SUCCEEDED, cls.FAILED}


class TransactionType(models.TextChoices):
    ESCROW_LOCK = "escrow_lock", "Escrow Lock"
    REFUND = "refund", "Refund"


class EscrowStatus(models.TextChoices):
    """
    States for the Escrow model lifecycle.

    Active states: LOCKED, HELD (at most one active escrow per milestone)
    Terminal states: RELEASED, REFUNDED

    State Flow:
        LOCKED → RELEASED (milestone approved)
        LOCKED → HELD (milestone disputed)
        HELD → LOCKED (dispute resolved for release)
        LOCKED/HELD → REFUNDED (milestone rejected)
    """

    LOCKED = "locked", "Locked"
    HELD = "held", "Held"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"

    @classmethod
    def active(cls) -> list[str]:
        return [cls.LOCKED, cls.HELD]


class PayoutStatus(models.TextChoices):
    """
    States shared by PayoutBatch and PayoutItem.

    State Flow:
        SCHEDULED → PROCESSING → PAID
        SCHEDULED/PROCESSING → FAILED
        FAILED → PROCESSING (job retry)
    """

    SCHEDULED = "scheduled", "Scheduled"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    Tracks the lifecycle of webhook event processing for idempotency.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "EscrowStatus",
    "PayoutStatus",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
]
