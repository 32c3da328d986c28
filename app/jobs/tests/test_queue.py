"""
Tests for the database-backed job queue adapter.
"""

import pytest

from jobs.exceptions import SchemaValidationFailedError
from jobs.models import Job, JobStatus
from jobs.queue import DatabaseJobQueue
from jobs.registry import PAYOUT_EXECUTE


@pytest.mark.django_db
class TestDatabaseJobQueue:
    def test_enqueue_returns_job_id(self, owner):
        job_id = DatabaseJobQueue().enqueue(
            PAYOUT_EXECUTE,
            {"batch_id": "b-1", "escrow_id": "e-1"},
            priority=80,
            created_by=owner,
        )

        job = Job.objects.get(pk=job_id)
        assert isinstance(job_id, str)
        assert job.status == JobStatus.QUEUED
        assert job.priority == 80
        assert job.created_by == owner

    def test_invalid_payload_propagates(self):
        with pytest.raises(SchemaValidationFailedError):
            DatabaseJobQueue().enqueue(PAYOUT_EXECUTE, {"escrow_id": "e-1"})

        assert not Job.objects.exists()
