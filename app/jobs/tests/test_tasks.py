"""
Tests for the Celery tasks driving the job runner.
"""

import pytest

from jobs.models import JobStatus
from jobs.registry import PAYOUT_EXECUTE
from jobs.runner import JobRunner
from jobs.tasks import execute_job, reclaim_expired_leases, run_due_jobs
from jobs.tests.factories import JobFactory


@pytest.fixture
def handled(mocker):
    calls = []

    def handler(payload, job):
        calls.append(str(job.pk))
        return {"ok": True}

    mocker.patch.dict("jobs.handlers.JOB_HANDLERS", {PAYOUT_EXECUTE: handler})
    return calls


@pytest.mark.django_db
class TestRunDueJobs:
    def test_dispatches_leased_jobs_with_time_limits(self, mocker):
        apply_async = mocker.patch("jobs.tasks.execute_job.apply_async")
        mocker.patch("jobs.tasks.socket.gethostname", return_value="worker-a")
        job = JobFactory()

        result = run_due_jobs()

        assert result == {"dispatched": 1}
        apply_async.assert_called_once_with(
            args=[str(job.pk), "celery@worker-a"],
            soft_time_limit=60,
            time_limit=120,
        )
        job.refresh_from_db()
        assert job.status == JobStatus.LEASED
        assert job.worker_id == "celery@worker-a"

    def test_nothing_due(self, mocker):
        apply_async = mocker.patch("jobs.tasks.execute_job.apply_async")

        assert run_due_jobs() == {"dispatched": 0}
        apply_async.assert_not_called()


@pytest.mark.django_db
class TestExecuteJob:
    def test_executes_job_leased_by_worker(self, handled):
        job = JobFactory()
        JobRunner().lease("celery@worker-a")

        result = execute_job(str(job.pk), "celery@worker-a")

        assert result == {"status": JobStatus.SUCCEEDED, "job_id": str(job.pk), "attempt": 0}
        assert handled == [str(job.pk)]

    def test_skips_job_leased_by_another_worker(self, handled):
        job = JobFactory()
        JobRunner().lease("celery@worker-b")

        result = execute_job(str(job.pk), "celery@worker-a")

        assert result == {"status": "skipped", "job_id": str(job.pk)}
        assert handled == []

    def test_skips_unknown_job(self, handled):
        result = execute_job("00000000-0000-0000-0000-000000000000", "celery@worker-a")

        assert result["status"] == "skipped"


@pytest.mark.django_db
class TestReclaimExpiredLeases:
    def test_returns_reclaimed_count(self, mocker):
        mocker.patch("jobs.tasks.JobRunner.reclaim_expired_leases", return_value=3)

        assert reclaim_expired_leases() == {"reclaimed": 3}
