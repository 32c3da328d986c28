"""
Job worker API.

Lets external workers pull jobs from the queue and report outcomes, and
lets operators requeue dead-lettered jobs. Every endpoint is admin-only.

Endpoints:
    GET  /api/v1/jobs/                     - List jobs (?status=&job_type=)
    POST /api/v1/jobs/                     - Enqueue a job
    GET  /api/v1/jobs/{id}/                - Job detail
    POST /api/v1/jobs/lease/               - Lease due jobs
    POST /api/v1/jobs/{id}/success/        - Report success
    POST /api/v1/jobs/{id}/failure/        - Report failure
    POST /api/v1/jobs/{id}/retry/          - Requeue a dead-lettered job
    POST /api/v1/jobs/{id}/cancel/         - Cancel a queued or dead-lettered job

Errors from the runner (unknown type, schema mismatch, lost lease) are
rendered by core.exception_handler.
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response

from jobs.models import Job
from jobs.runner import JobRunner
from jobs.serializers import (
    CancelJobSerializer,
    EnqueueJobSerializer,
    JobSerializer,
    LeaseJobsSerializer,
    ReportFailureSerializer,
    ReportSuccessSerializer,
)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_jobs",
        summary="List jobs",
        tags=["Jobs"],
    ),
    retrieve=extend_schema(
        operation_id="get_job",
        summary="Get job",
        tags=["Jobs"],
    ),
)
class JobViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    """Admin-only access to the job queue."""

    serializer_class = JobSerializer
    permission_classes = [IsAdminUser]

    def get_queryset(self):
        queryset = Job.objects.all()
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        job_type = self.request.query_params.get("job_type")
        if job_type:
            queryset = queryset.filter(job_type=job_type)
        return queryset

    def get_runner(self) -> JobRunner:
        return JobRunner()

    @extend_schema(
        operation_id="enqueue_job",
        summary="Enqueue job",
        request=EnqueueJobSerializer,
        responses={
            201: JobSerializer,
            400: OpenApiResponse(description="Payload does not match the job type's schema"),
            404: OpenApiResponse(description="Unknown job type"),
        },
        tags=["Jobs"],
    )
    def create(self, request):
        """Validate and enqueue a job."""
        serializer = EnqueueJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        job = self.get_runner().enqueue(
            data["job_type"],
            data["payload"],
            priority=data["priority"],
            created_by=request.user,
            run_at=data.get("run_at"),
        )
        return Response(JobSerializer(job).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="lease_jobs",
        summary="Lease due jobs",
        request=LeaseJobsSerializer,
        responses={200: JobSerializer(many=True)},
        tags=["Jobs - Worker"],
    )
    @action(detail=False, methods=["post"])
    def lease(self, request):
        serializer = LeaseJobsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        jobs = self.get_runner().lease(
            data["worker_id"],
            job_type=data.get("job_type") or None,
            limit=data["limit"],
            lease_seconds=data.get("lease_seconds"),
        )
        return Response(JobSerializer(jobs, many=True).data)

    @extend_schema(
        operation_id="report_job_success",
        summary="Report job success",
        request=ReportSuccessSerializer,
        responses={
            200: JobSerializer,
            409: OpenApiResponse(description="Job is not leased by this worker"),
        },
        tags=["Jobs - Worker"],
    )
    @action(detail=True, methods=["post"])
    def success(self, request, pk=None):
        serializer = ReportSuccessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        job = self.get_runner().report_success(
            pk,
            serializer.validated_data["worker_id"],
            serializer.validated_data.get("result"),
        )
        return Response(JobSerializer(job).data)

    @extend_schema(
        operation_id="report_job_failure",
        summary="Report job failure",
        request=ReportFailureSerializer,
        responses={
            200: JobSerializer,
            409: OpenApiResponse(description="Job is not leased by this worker"),
        },
        tags=["Jobs - Worker"],
    )
    @action(detail=True, methods=["post"])
    def failure(self, request, pk=None):
        serializer = ReportFailureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        job = self.get_runner().report_failure(
            pk,
            data["worker_id"],
            error_code=data["error_code"],
            message=data["message"],
            retryable=data["retryable"],
        )
        return Response(JobSerializer(job).data)

    @extend_schema(
        operation_id="retry_dead_letter_job",
        summary="Requeue dead-lettered job",
        request=None,
        responses={
            200: JobSerializer,
            409: OpenApiResponse(description="Job is not in the dead letter queue"),
        },
        tags=["Jobs - Operator"],
    )
    @action(detail=True, methods=["post"])
    def retry(self, request, pk=None):
        job = self.get_runner().retry_dead_letter(pk)
        return Response(JobSerializer(job).data)

    @extend_schema(
        operation_id="cancel_job",
        summary="Cancel job",
        request=CancelJobSerializer,
        responses={200: JobSerializer},
        tags=["Jobs - Operator"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelJobSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        job = self.get_runner().cancel(pk, reason=serializer.validated_data["reason"])
        return Response(JobSerializer(job).data)
