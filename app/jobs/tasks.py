"""
Celery tasks driving the job runner.

run_due_jobs leases a batch of due jobs and fans each one out to
execute_job with a soft time limit equal to the job type's timeout, so a
handler that runs too long is interrupted with SoftTimeLimitExceeded and
the attempt is recorded as a timeout.

Usage:
    # Scheduled via CELERY_BEAT_SCHEDULE (see config/settings.py)
    from jobs.tasks import run_due_jobs
    run_due_jobs.delay()
"""

from __future__ import annotations

import logging
import socket

from celery import shared_task
from django.conf import settings

from jobs.models import Job, JobStatus
from jobs.registry import LEASE_GRACE_SECONDS, get_policy
from jobs.runner import JobRunner

logger = logging.getLogger(__name__)


def _worker_id(task) -> str:
    hostname = getattr(task.request, "hostname", None) or socket.gethostname()
    return f"celery@{hostname}"


@shared_task(bind=True, ignore_result=True)
def run_due_jobs(self, job_type: str | None = None) -> dict:
    """
    Lease up to JOB_RUNNER_BATCH_SIZE due jobs and dispatch them.

    Returns:
        Dict with the number of dispatched jobs
    """
    worker_id = _worker_id(self)
    limit = getattr(settings, "JOB_RUNNER_BATCH_SIZE", 10)

    jobs = JobRunner().lease(worker_id, job_type=job_type, limit=limit)
    for job in jobs:
        timeout = get_policy(job.job_type).timeout_seconds
        execute_job.apply_async(
            args=[str(job.id), worker_id],
            soft_time_limit=timeout,
            time_limit=timeout + LEASE_GRACE_SECONDS,
        )

    if jobs:
        logger.info(
            f"Dispatched {len(jobs)} job(s)",
            extra={"worker_id": worker_id, "count": len(jobs)},
        )
    return {"dispatched": len(jobs)}


@shared_task(acks_late=True)
def execute_job(job_id: str, worker_id: str) -> dict:
    """
    Execute one leased job.

    The runner owns retries; this task never retries itself.
    """
    job = Job.objects.filter(pk=job_id).first()
    if job is None or job.status != JobStatus.LEASED or job.worker_id != worker_id:
        logger.info(
            "Job no longer leased by this worker, skipping",
            extra={"job_id": job_id, "worker_id": worker_id},
        )
        return {"status": "skipped", "job_id": job_id}

    job = JobRunner().execute(job)
    return {"status": job.status, "job_id": job_id, "attempt": job.attempt}


@shared_task
def reclaim_expired_leases() -> dict:
    """Periodic sweep for leases whose worker died."""
    reclaimed = JobRunner().reclaim_expired_leases()
    return {"reclaimed": reclaimed}


__all__ = ["execute_job", "reclaim_expired_leases", "run_due_jobs"]
