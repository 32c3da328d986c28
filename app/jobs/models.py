"""
Job model for the durable background queue.

Status changes go through conditional UPDATEs guarded by ``version``
(core.locks.compare_and_swap), never through plain saves, so two workers
holding the same snapshot can't both lease or settle a job.

Lifecycle:
    QUEUED --lease--> LEASED --success--> SUCCEEDED
    LEASED --failure--> QUEUED (attempts left, next_run_at pushed back)
    LEASED --failure--> DLQ (attempts exhausted, or permanent error)
    DLQ --operator retry--> QUEUED

Usage:
    from jobs.models import Job, JobStatus

    Job.objects.filter(status=JobStatus.DLQ, job_type="payout.execute")
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel


class JobStatus(models.TextChoices):
    """
    Terminal states: SUCCEEDED, DLQ

    FAILED is reserved for jobs cancelled by an operator; the runner
    itself never leaves a job there.
    """

    QUEUED = "queued", "Queued"
    LEASED = "leased", "Leased"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    DLQ = "dlq", "Dead Letter"


class Job(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A unit of asynchronous work.

    Fields:
        job_type: Registered type (see jobs.registry)
        payload: Validated JSON payload
        priority: 0-100, higher runs sooner
        status: Current lifecycle state
        attempt: Failed attempts so far
        max_attempts: Copied from the type's policy at enqueue time
        next_run_at: Earliest time the job may be leased
        lease_expires_at: Deadline for the current worker
        leased_at: When the current lease started
        worker_id: Worker holding the lease
        last_error: {"code": ..., "message": ...} from the last failure
        result: Handler result on success
        created_by: User who enqueued the job (null for system jobs)
        version: Compare-and-swap guard
    """

    job_type = models.CharField(max_length=100, db_index=True)

    payload = models.JSONField(default=dict)

    priority = models.PositiveSmallIntegerField(
        default=50,
        help_text="0-100, higher runs sooner",
    )

    status = models.CharField(
        max_length=20,
        choices=JobStatus.choices,
        default=JobStatus.QUEUED,
        db_index=True,
    )

    # ==========================================================================
    # Retry & Lease
    # ==========================================================================

    attempt = models.PositiveIntegerField(
        default=0,
        help_text="Number of failed attempts",
    )

    max_attempts = models.PositiveIntegerField(default=5)

    next_run_at = models.DateTimeField(default=timezone.now, db_index=True)

    lease_expires_at = models.DateTimeField(null=True, blank=True, db_index=True)

    leased_at = models.DateTimeField(null=True, blank=True)

    worker_id = models.CharField(max_length=255, blank=True, default="")

    # ==========================================================================
    # Outcome
    # ==========================================================================

    last_error = models.JSONField(null=True, blank=True)

    result = models.JSONField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="jobs",
        null=True,
        blank=True,
    )

    class Meta:
        ordering = ["-priority", "next_run_at"]
        verbose_name = "Job"
        verbose_name_plural = "Jobs"
        indexes = [
            models.Index(
                fields=["status", "next_run_at", "priority"],
                name="jobs_job_status_0f6e1d_idx",
            ),
            models.Index(
                fields=["job_type", "status"],
                name="jobs_job_job_typ_5b1c2a_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(priority__lte=100),
                name="job_priority_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Job({self.id}, {self.job_type}, {self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.DLQ, JobStatus.FAILED)

    @property
    def lease_expired(self) -> bool:
        return (
            self.status == JobStatus.LEASED
            and self.lease_expires_at is not None
            and self.lease_expires_at <= timezone.now()
        )
