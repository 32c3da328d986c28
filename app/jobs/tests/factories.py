"""
Factory Boy factories for job queue tests.
"""

import uuid

import factory
from django.utils import timezone

from jobs.models import Job, JobStatus
from jobs.registry import PAYOUT_EXECUTE


class JobFactory(factory.django.DjangoModelFactory):
    """A due payout.execute job with a valid payload."""

    class Meta:
        model = Job

    job_type = PAYOUT_EXECUTE
    payload = factory.LazyFunction(
        lambda: {"batch_id": str(uuid.uuid4()), "escrow_id": str(uuid.uuid4())}
    )
    priority = 50
    status = JobStatus.QUEUED
    max_attempts = 10
    next_run_at = factory.LazyFunction(timezone.now)


__all__ = ["JobFactory"]
