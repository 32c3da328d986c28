"""
In-process adapters for the event and notification ports.

These are the defaults wired by build_engine() when no external broker or
messaging provider is configured:

    SignalEventPublisher: Logs the event and sends payments.signals.settlement_event
    LoggingNotifier: Logs the notification
    EmailNotifier: Sends a plain-text email to each recipient with an address

Events and notifications are deferred with transaction.on_commit, so a
rolled-back operation never announces anything.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import transaction

from payments.signals import settlement_event

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class SignalEventPublisher:
    """EventPublisherPort backed by a Django signal."""

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        def _send() -> None:
            logger.info(
                f"Settlement event: {event_type}",
                extra={"event_type": event_type, "event_payload": payload},
            )
            settlement_event.send(sender=self.__class__, event_type=event_type, payload=payload)

        transaction.on_commit(_send)


class LoggingNotifier:
    """NotificationPort that only records what would have been sent."""

    def notify(
        self,
        user_ids: list[str],
        template: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        transaction.on_commit(
            lambda: logger.info(
                f"Notification: {template}",
                extra={"template": template, "user_ids": user_ids, "context": context or {}},
            )
        )


class EmailNotifier:
    """NotificationPort sending one email per recipient."""

    SUBJECTS = {
        "milestone.approved": "Milestone approved",
        "milestone.disputed": "Milestone disputed",
        "payout.scheduled": "Your payout has been scheduled",
    }

    def notify(
        self,
        user_ids: list[str],
        template: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        subject = self.SUBJECTS.get(template, template)
        body = "\n".join(f"{key}: {value}" for key, value in sorted(context.items()))

        def _send() -> None:
            User = get_user_model()
            for user in User.objects.filter(pk__in=user_ids).exclude(email=""):
                try:
                    send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [user.email])
                except Exception:
                    logger.exception(
                        "Failed to send notification email",
                        extra={"template": template, "user_id": str(user.pk)},
                    )

        transaction.on_commit(_send)


__all__ = [
    "EmailNotifier",
    "LoggingNotifier",
    "SignalEventPublisher",
]
