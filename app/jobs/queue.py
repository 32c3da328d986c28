"""
Database-backed implementation of payments.ports.JobQueuePort.

Usage:
    from jobs.queue import DatabaseJobQueue

    job_id = DatabaseJobQueue().enqueue(
        "payout.execute",
        {"batch_id": str(batch.id), "escrow_id": str(escrow.id)},
        priority=80,
    )
"""

from __future__ import annotations

from typing import Any

from jobs.runner import DEFAULT_PRIORITY, JobRunner


class DatabaseJobQueue:
    """Stores jobs in the jobs_job table for the Celery-driven runner."""

    def __init__(self, runner: JobRunner | None = None) -> None:
        self.runner = runner or JobRunner()

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
        created_by: Any = None,
    ) -> str:
        job = self.runner.enqueue(job_type, payload, priority=priority, created_by=created_by)
        return str(job.id)


__all__ = ["DatabaseJobQueue"]
