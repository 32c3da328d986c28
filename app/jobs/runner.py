"""
Job runner: enqueue, lease, execute and settle background jobs.

Every status change is a single conditional UPDATE guarded by the job's
version (core.locks.compare_and_swap). Two workers that read the same
queued job race on that UPDATE and exactly one of them gets the lease; the
loser sees StaleRecordError and moves on to the next candidate.

Job Lifecycle:
    enqueue()          -> QUEUED
    lease()            QUEUED -> LEASED (lease_expires_at set)
    report_success()   LEASED -> SUCCEEDED
    report_failure()   LEASED -> QUEUED (backoff) | DLQ (exhausted / permanent)
    reclaim_expired_leases()  LEASED past deadline -> QUEUED | DLQ
    retry_dead_letter()       DLQ -> QUEUED (attempts reset)
    cancel()           QUEUED/DLQ -> FAILED

Usage:
    from jobs.runner import JobRunner

    runner = JobRunner()
    job = runner.enqueue("payout.execute", {"batch_id": "...", "escrow_id": "..."})

    # Worker loop (see jobs.tasks.run_due_jobs)
    for job in runner.lease(worker_id="celery@host", limit=10):
        runner.execute(job)
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings
from django.utils import timezone

from core.exceptions import (
    InvalidStateTransitionError,
    LockAcquisitionError,
    StaleRecordError,
    ValidationError,
)
from core.locks import DistributedLock, compare_and_swap
from core.services import BaseService
from jobs.backoff import compute_backoff_seconds
from jobs.exceptions import (
    JobHandlerNotFoundError,
    JobNotFoundError,
    JobNotInDeadLetterError,
    JobNotLeasedError,
    JobTimeoutError,
    JobTypeNotFoundError,
)
from jobs.handlers import JOB_HANDLERS
from jobs.models import Job, JobStatus
from jobs.registry import JobPolicy, get_policy, validate_payload

if TYPE_CHECKING:
    import random
    from datetime import datetime

    from jobs.handlers import JobHandler


DEFAULT_PRIORITY = 50

# Candidates fetched per requested job, leaving room for lost CAS races
CANDIDATE_MULTIPLIER = 4


class JobRunner(BaseService):
    """
    Service for the job queue lifecycle.

    Args:
        handlers: job_type -> callable mapping (defaults to jobs.handlers.JOB_HANDLERS)
        rng: Random source for backoff jitter (tests pass a seeded one)
    """

    def __init__(
        self,
        handlers: Mapping[str, JobHandler] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.handlers = JOB_HANDLERS if handlers is None else handlers
        self.rng = rng

    # =========================================================================
    # Producer
    # =========================================================================

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
        created_by=None,
        run_at: datetime | None = None,
    ) -> Job:
        """
        Validate and store a new job.

        Raises:
            JobTypeNotFoundError: Unknown job type
            SchemaValidationFailedError: Payload doesn't match the type's schema
            ValidationError: Priority outside 0-100
        """
        logger = self.get_logger()

        validate_payload(job_type, payload)
        if isinstance(priority, bool) or not isinstance(priority, int) or not 0 <= priority <= 100:
            raise ValidationError(
                "Priority must be an integer between 0 and 100",
                details={"priority": priority},
            )

        policy = get_policy(job_type)
        job = Job.objects.create(
            job_type=job_type,
            payload=payload,
            priority=priority,
            max_attempts=policy.max_attempts,
            next_run_at=run_at or timezone.now(),
            created_by=created_by,
        )

        logger.info(
            f"Enqueued job {job.id} ({job_type})",
            extra={"job_id": str(job.id), "job_type": job_type, "priority": priority},
        )
        return job

    # =========================================================================
    # Leasing
    # =========================================================================

    def lease(
        self,
        worker_id: str,
        job_type: str | None = None,
        limit: int = 1,
        lease_seconds: int | None = None,
    ) -> list[Job]:
        """
        Claim up to ``limit`` due jobs for ``worker_id``.

        Expired leases are reclaimed first so their jobs compete with the
        rest of the queue. Candidates are taken by priority (highest first)
        then next_run_at. Types with a concurrency limit are claimed under
        a per-type distributed lock so the count of active leases and the
        claim happen together.

        Returns:
            Leased jobs, already refreshed with their new lease fields
        """
        if not worker_id:
            raise ValidationError("worker_id is required")
        if limit < 1:
            return []

        now = timezone.now()
        self.reclaim_expired_leases(now=now)

        candidates = Job.objects.filter(status=JobStatus.QUEUED, next_run_at__lte=now)
        if job_type:
            candidates = candidates.filter(job_type=job_type)
        candidates = candidates.order_by("-priority", "next_run_at", "created_at")[
            : limit * CANDIDATE_MULTIPLIER
        ]

        leased: list[Job] = []
        saturated: set[str] = set()
        for job in candidates:
            if len(leased) >= limit:
                break
            if job.job_type in saturated:
                continue

            try:
                policy = get_policy(job.job_type)
            except JobTypeNotFoundError:
                # Type unregistered after the job was stored; let execute() dead-letter it
                policy = JobPolicy(max_attempts=job.max_attempts, timeout_seconds=60)

            claimed = self._claim_with_limit(job, policy, worker_id, now, lease_seconds)
            if claimed is None:
                if policy.concurrency_limit:
                    saturated.add(job.job_type)
                continue
            leased.append(claimed)

        return leased

    def _lease_duration(self, policy: JobPolicy, lease_seconds: int | None) -> int:
        if lease_seconds:
            return lease_seconds
        default = getattr(settings, "JOB_DEFAULT_LEASE_SECONDS", 300)
        return max(default, policy.effective_lease_seconds)

    def _claim_with_limit(
        self,
        job: Job,
        policy: JobPolicy,
        worker_id: str,
        now: datetime,
        lease_seconds: int | None,
    ) -> Job | None:
        if not policy.concurrency_limit:
            return self._claim(job, policy, worker_id, now, lease_seconds)

        logger = self.get_logger()
        try:
            with DistributedLock(f"jobs:lease:{job.job_type}", ttl=30, timeout=5.0):
                active = Job.objects.filter(
                    job_type=job.job_type,
                    status=JobStatus.LEASED,
                    lease_expires_at__gt=now,
                ).count()
                if active >= policy.concurrency_limit:
                    logger.debug(
                        f"Concurrency limit reached for {job.job_type}",
                        extra={"job_type": job.job_type, "active": active},
                    )
                    return None
                return self._claim(job, policy, worker_id, now, lease_seconds)
        except LockAcquisitionError:
            logger.warning(
                f"Could not acquire lease lock for {job.job_type}",
                extra={"job_type": job.job_type, "worker_id": worker_id},
            )
            return None

    def _claim(
        self,
        job: Job,
        policy: JobPolicy,
        worker_id: str,
        now: datetime,
        lease_seconds: int | None,
    ) -> Job | None:
        expires_at = now + timedelta(seconds=self._lease_duration(policy, lease_seconds))
        try:
            version = compare_and_swap(
                Job,
                job.pk,
                job.version,
                status=JobStatus.LEASED,
                worker_id=worker_id,
                leased_at=now,
                lease_expires_at=expires_at,
            )
        except StaleRecordError:
            # Another worker won the race for this job
            return None

        job.status = JobStatus.LEASED
        job.worker_id = worker_id
        job.leased_at = now
        job.lease_expires_at = expires_at
        job.version = version

        self.get_logger().info(
            f"Leased job {job.id} ({job.job_type}) to {worker_id}",
            extra={
                "job_id": str(job.id),
                "job_type": job.job_type,
                "worker_id": worker_id,
                "attempt": job.attempt,
            },
        )
        return job

    def reclaim_expired_leases(self, now: datetime | None = None) -> int:
        """
        Treat leases past their deadline as failed attempts.

        The worker holding them is presumed dead. Jobs with attempts left
        go straight back to QUEUED; exhausted ones go to DLQ.

        Returns:
            Number of jobs reclaimed
        """
        now = now or timezone.now()
        expired = Job.objects.filter(status=JobStatus.LEASED, lease_expires_at__lte=now)

        reclaimed = 0
        for job in expired:
            try:
                self._settle_failure(
                    job,
                    error_code="LEASE_EXPIRED",
                    message=f"Lease held by {job.worker_id or 'unknown'} expired",
                    retryable=True,
                    retry_at=now,
                )
            except StaleRecordError:
                continue
            reclaimed += 1

        if reclaimed:
            self.get_logger().warning(
                f"Reclaimed {reclaimed} expired job lease(s)",
                extra={"reclaimed": reclaimed},
            )
        return reclaimed

    # =========================================================================
    # Reporting
    # =========================================================================

    def _get_leased(self, job_id, worker_id: str) -> Job:
        job = Job.objects.filter(pk=job_id).first()
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": str(job_id)})
        if job.status != JobStatus.LEASED or job.worker_id != worker_id:
            raise JobNotLeasedError(
                f"Job {job_id} is not leased by {worker_id}",
                details={
                    "job_id": str(job_id),
                    "status": job.status,
                    "worker_id": worker_id,
                },
            )
        return job

    def report_success(self, job_id, worker_id: str, result: dict | None = None) -> Job:
        """
        Mark a leased job as succeeded.

        Raises:
            JobNotFoundError: Unknown job
            JobNotLeasedError: Job isn't leased by worker_id (e.g. lease expired)
            StaleRecordError: Job changed between the read and the update
        """
        job = self._get_leased(job_id, worker_id)
        compare_and_swap(
            Job,
            job.pk,
            job.version,
            status=JobStatus.SUCCEEDED,
            result=result,
            completed_at=timezone.now(),
            lease_expires_at=None,
        )

        self.get_logger().info(
            f"Job {job.id} ({job.job_type}) succeeded",
            extra={"job_id": str(job.id), "job_type": job.job_type, "worker_id": worker_id},
        )
        return Job.objects.get(pk=job.pk)

    def report_failure(
        self,
        job_id,
        worker_id: str,
        error_code: str,
        message: str,
        retryable: bool = True,
    ) -> Job:
        """
        Record a failed attempt for a leased job.

        attempt is incremented; if attempts remain and the error is
        retryable the job is requeued with exponential backoff, otherwise
        it is moved to the dead letter queue.

        Raises:
            JobNotFoundError: Unknown job
            JobNotLeasedError: Job isn't leased by worker_id
            StaleRecordError: Job changed between the read and the update
        """
        job = self._get_leased(job_id, worker_id)
        self._settle_failure(job, error_code=error_code, message=message, retryable=retryable)
        return Job.objects.get(pk=job.pk)

    def _settle_failure(
        self,
        job: Job,
        error_code: str,
        message: str,
        retryable: bool,
        retry_at: datetime | None = None,
    ) -> str:
        logger = self.get_logger()
        now = timezone.now()
        attempt = job.attempt + 1
        last_error = {"code": error_code, "message": message[:2000]}
        log_extra = {
            "job_id": str(job.id),
            "job_type": job.job_type,
            "attempt": attempt,
            "max_attempts": job.max_attempts,
            "error_code": error_code,
        }

        if retryable and attempt < job.max_attempts:
            if retry_at is None:
                delay = compute_backoff_seconds(attempt, rng=self.rng)
                retry_at = now + timedelta(seconds=delay)
            compare_and_swap(
                Job,
                job.pk,
                job.version,
                status=JobStatus.QUEUED,
                attempt=attempt,
                last_error=last_error,
                next_run_at=retry_at,
                worker_id="",
                leased_at=None,
                lease_expires_at=None,
            )
            logger.warning(
                f"Job {job.id} ({job.job_type}) failed, retry at {retry_at.isoformat()}",
                extra={**log_extra, "next_run_at": retry_at.isoformat()},
            )
            return JobStatus.QUEUED

        compare_and_swap(
            Job,
            job.pk,
            job.version,
            status=JobStatus.DLQ,
            attempt=attempt,
            last_error=last_error,
            worker_id="",
            lease_expires_at=None,
            completed_at=now,
        )
        logger.error(
            f"Job {job.id} ({job.job_type}) moved to dead letter queue: {message}",
            extra=log_extra,
        )
        return JobStatus.DLQ

    # =========================================================================
    # Execution
    # =========================================================================

    def execute(self, job: Job) -> Job:
        """
        Run the handler for a job this runner has leased and report the outcome.

        A handler that raises records a failed attempt; errors with
        ``is_retryable = False`` go straight to the dead letter queue. A run
        that overruns the type's timeout counts as a failure even if the
        handler returned.

        Returns:
            The job after settlement
        """
        logger = self.get_logger()
        worker_id = job.worker_id

        handler = self.handlers.get(job.job_type)
        if handler is None:
            error = JobHandlerNotFoundError(f"No handler registered for {job.job_type}")
            return self._report_or_refresh(
                job, worker_id, error.error_code, error.message, retryable=error.is_retryable
            )

        try:
            timeout_seconds = get_policy(job.job_type).timeout_seconds
        except JobTypeNotFoundError as exc:
            return self._report_or_refresh(
                job, worker_id, exc.error_code, exc.message, retryable=False
            )

        started = time.monotonic()
        try:
            result = handler(job.payload, job)
        except SoftTimeLimitExceeded:
            error = JobTimeoutError(f"Job exceeded {timeout_seconds}s soft time limit")
            logger.warning(
                f"Job {job.id} ({job.job_type}) timed out",
                extra={"job_id": str(job.id), "timeout_seconds": timeout_seconds},
            )
            return self._report_or_refresh(
                job, worker_id, error.error_code, error.message, retryable=error.is_retryable
            )
        except Exception as exc:
            error_code = getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
            retryable = getattr(exc, "is_retryable", True)
            logger.warning(
                f"Job {job.id} ({job.job_type}) handler failed: {exc}",
                extra={"job_id": str(job.id), "job_type": job.job_type, "error_code": error_code},
                exc_info=True,
            )
            return self._report_or_refresh(
                job, worker_id, error_code, getattr(exc, "message", None) or str(exc), retryable
            )

        elapsed = time.monotonic() - started
        if elapsed > timeout_seconds:
            error = JobTimeoutError(
                f"Job ran {elapsed:.1f}s, over its {timeout_seconds}s timeout"
            )
            return self._report_or_refresh(
                job, worker_id, error.error_code, error.message, retryable=error.is_retryable
            )

        if result is not None and not isinstance(result, dict):
            result = {"value": result}
        try:
            return self.report_success(job.pk, worker_id, result)
        except (JobNotLeasedError, StaleRecordError):
            logger.warning(
                f"Lost lease on job {job.id} before reporting success",
                extra={"job_id": str(job.id), "worker_id": worker_id},
            )
            return Job.objects.get(pk=job.pk)

    def _report_or_refresh(
        self,
        job: Job,
        worker_id: str,
        error_code: str,
        message: str,
        retryable: bool,
    ) -> Job:
        try:
            return self.report_failure(job.pk, worker_id, error_code, message, retryable)
        except (JobNotLeasedError, StaleRecordError):
            self.get_logger().warning(
                f"Lost lease on job {job.id} before reporting failure",
                extra={"job_id": str(job.id), "worker_id": worker_id},
            )
            return Job.objects.get(pk=job.pk)

    def run_once(self, worker_id: str, job_type: str | None = None, limit: int = 1) -> list[Job]:
        """Lease up to ``limit`` jobs and execute them in order."""
        return [self.execute(job) for job in self.lease(worker_id, job_type=job_type, limit=limit)]

    # =========================================================================
    # Operator Actions
    # =========================================================================

    def retry_dead_letter(self, job_id) -> Job:
        """
        Requeue a dead-lettered job with a fresh attempt budget.

        last_error is kept for the audit trail.

        Raises:
            JobNotFoundError: Unknown job
            JobNotInDeadLetterError: Job isn't in the DLQ
        """
        job = Job.objects.filter(pk=job_id).first()
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": str(job_id)})
        if job.status != JobStatus.DLQ:
            raise JobNotInDeadLetterError(
                f"Job {job_id} is {job.status}, not in the dead letter queue",
                details={"job_id": str(job_id), "status": job.status},
            )

        compare_and_swap(
            Job,
            job.pk,
            job.version,
            status=JobStatus.QUEUED,
            attempt=0,
            next_run_at=timezone.now(),
            completed_at=None,
        )
        self.get_logger().info(
            f"Requeued dead-lettered job {job.id} ({job.job_type})",
            extra={"job_id": str(job.id), "job_type": job.job_type},
        )
        return Job.objects.get(pk=job.pk)

    def cancel(self, job_id, reason: str = "") -> Job:
        """
        Withdraw a queued or dead-lettered job.

        Leased jobs can't be cancelled; the worker owns them until it
        reports or its lease expires.
        """
        job = Job.objects.filter(pk=job_id).first()
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", details={"job_id": str(job_id)})
        if job.status not in (JobStatus.QUEUED, JobStatus.DLQ):
            raise InvalidStateTransitionError(
                f"Job {job_id} is {job.status} and can't be cancelled",
                details={"job_id": str(job_id), "status": job.status},
            )

        compare_and_swap(
            Job,
            job.pk,
            job.version,
            status=JobStatus.FAILED,
            last_error={"code": "CANCELLED", "message": reason or "Cancelled by operator"},
            completed_at=timezone.now(),
        )
        return Job.objects.get(pk=job.pk)


__all__ = ["DEFAULT_PRIORITY", "JobRunner"]
