"""
DRF serializers for the job worker API.

Related files:
    - runner.py: JobRunner
    - views.py: Worker endpoints
"""

from __future__ import annotations

from rest_framework import serializers

from jobs.models import Job
from jobs.runner import DEFAULT_PRIORITY


class JobSerializer(serializers.ModelSerializer):
    """Read-only representation of a job."""

    class Meta:
        model = Job
        fields = [
            "id",
            "job_type",
            "payload",
            "priority",
            "status",
            "attempt",
            "max_attempts",
            "next_run_at",
            "lease_expires_at",
            "worker_id",
            "last_error",
            "result",
            "created_at",
            "completed_at",
            "version",
        ]
        read_only_fields = fields


class EnqueueJobSerializer(serializers.Serializer):
    """
    Request body for enqueueing a job.

    Payload shape is checked against the job type's schema by the runner,
    not here.
    """

    job_type = serializers.CharField(max_length=100)
    payload = serializers.JSONField()
    priority = serializers.IntegerField(min_value=0, max_value=100, default=DEFAULT_PRIORITY)
    run_at = serializers.DateTimeField(required=False, allow_null=True)


class LeaseJobsSerializer(serializers.Serializer):
    worker_id = serializers.CharField(max_length=255)
    job_type = serializers.CharField(max_length=100, required=False, allow_blank=True)
    limit = serializers.IntegerField(min_value=1, max_value=100, default=1)
    lease_seconds = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class ReportSuccessSerializer(serializers.Serializer):
    worker_id = serializers.CharField(max_length=255)
    result = serializers.JSONField(required=False, allow_null=True)


class ReportFailureSerializer(serializers.Serializer):
    worker_id = serializers.CharField(max_length=255)
    error_code = serializers.CharField(max_length=100)
    message = serializers.CharField(allow_blank=True, default="")
    retryable = serializers.BooleanField(default=True)


class CancelJobSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True, default="")
