"""
Composition root for the settlement engine.

SettlementEngine wires the services together from injected ports. There
are no module-level singletons: build_engine() reads settings and
constructs a fresh engine on every call, so tests can swap adapters with
override_settings or construct SettlementEngine directly with fakes.

Settings:
    PAYMENT_GATEWAYS: provider name -> gateway class path
    SETTLEMENT_EVENT_PUBLISHER: EventPublisherPort class path
    SETTLEMENT_NOTIFIER: NotificationPort class path

Usage:
    from payments.engine import SettlementEngine, build_engine

    engine = build_engine()
    engine.milestone_service.approve(milestone_id, actor=owner)

    # In tests
    engine = SettlementEngine(
        gateways={"fake": FakeGateway()},
        job_queue=RecordingJobQueue(),
        events=RecordingEvents(),
        notifier=RecordingNotifier(),
    )
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.module_loading import import_string

from payments.services import EscrowLedger, PaymentService, PayoutScheduler, WebhookReconciler
from payments.workers.payout_executor import PayoutExecutor
from projects.services import MilestoneService

if TYPE_CHECKING:
    from payments.ports import (
        EventPublisherPort,
        JobQueuePort,
        NotificationPort,
        PaymentGateway,
    )


DEFAULT_PAYMENT_GATEWAYS = {"stripe": "payments.adapters.stripe_adapter.StripeGateway"}
DEFAULT_EVENT_PUBLISHER = "payments.adapters.local.SignalEventPublisher"
DEFAULT_NOTIFIER = "payments.adapters.local.LoggingNotifier"
DEFAULT_JOB_QUEUE = "jobs.queue.DatabaseJobQueue"


class SettlementEngine:
    """
    Settlement services sharing one set of ports.

    Attributes:
        escrow_ledger: EscrowLedger
        payment_service: PaymentService
        payout_scheduler: PayoutScheduler
        milestone_service: MilestoneService
        webhook_reconciler: WebhookReconciler
        payout_executor: PayoutExecutor
    """

    def __init__(
        self,
        gateways: Mapping[str, PaymentGateway],
        job_queue: JobQueuePort,
        events: EventPublisherPort,
        notifier: NotificationPort,
    ) -> None:
        self.gateways = dict(gateways)
        self.job_queue = job_queue
        self.events = events
        self.notifier = notifier

        self.escrow_ledger = EscrowLedger(self.gateways, events)
        self.payment_service = PaymentService(self.gateways, events)
        self.payout_scheduler = PayoutScheduler(job_queue, events, notifier)
        self.milestone_service = MilestoneService(
            self.escrow_ledger,
            self.payout_scheduler,
            events,
            notifier,
        )
        self.webhook_reconciler = WebhookReconciler(events, self.milestone_service)
        self.payout_executor = PayoutExecutor(self.gateways, events)


def build_gateways() -> dict[str, PaymentGateway]:
    paths = getattr(settings, "PAYMENT_GATEWAYS", None) or DEFAULT_PAYMENT_GATEWAYS
    return {provider: import_string(path)() for provider, path in paths.items()}


def build_engine() -> SettlementEngine:
    """Build an engine from the current settings."""
    return SettlementEngine(
        gateways=build_gateways(),
        job_queue=import_string(DEFAULT_JOB_QUEUE)(),
        events=import_string(
            getattr(settings, "SETTLEMENT_EVENT_PUBLISHER", DEFAULT_EVENT_PUBLISHER)
        )(),
        notifier=import_string(getattr(settings, "SETTLEMENT_NOTIFIER", DEFAULT_NOTIFIER))(),
    )


__all__ = [
    "SettlementEngine",
    "build_engine",
    "build_gateways",
]
