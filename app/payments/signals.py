"""
Django signals for settlement events.

settlement_event is sent by SignalEventPublisher for every domain event the
engine publishes (escrow.locked, escrow.released, payout.batch.scheduled,
payment.updated, ...). Receivers run in the publishing thread after the
database transaction that produced the event has committed.

Usage:
    from django.dispatch import receiver
    from payments.signals import settlement_event

    @receiver(settlement_event)
    def on_settlement_event(sender, event_type, payload, **kwargs):
        if event_type == "escrow.released":
            ...
"""

from __future__ import annotations

from django.dispatch import Signal

# Sent with event_type (str) and payload (dict)
settlement_event = Signal()

__all__ = ["settlement_event"]
