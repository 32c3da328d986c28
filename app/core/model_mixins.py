"""
Model mixins providing reusable functionality for Django models.

This module contains abstract mixin classes that can be combined with
BaseModel to add specific functionality. These are generic infrastructure
classes with no domain-specific logic.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking version counter

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class Escrow(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        amount_cents = models.PositiveBigIntegerField()

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid

from django.db import models
from django.db.models import F


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Benefits:
        - Non-guessable IDs
        - Safe for distributed systems (no ID collisions)
        - Can be generated before database insert, so they can be sent
          to payment providers as correlation ids

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Version counter for optimistic locking.

    Every save of an existing row increments ``version`` with an F()
    expression, so two writers that read the same version cannot both
    pass a compare-and-swap on it (see core.locks.check_version and
    core.locks.compare_and_swap).

    Fields:
        version: Incremented on each save

    Note:
        Models with protected FSM fields cannot be fully refreshed, so only
        the version column is reloaded after save.
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = (
            not self._state.adding
            and self.pk
            and not kwargs.get("force_insert", False)
        )
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])
