"""
Job admin configuration.

Read-only view of the queue; requeue dead-lettered jobs with the bulk
action instead of editing rows, which would bypass the version guard.
"""

from django.contrib import admin, messages

from core.exceptions import ConflictError
from jobs.models import Job, JobStatus
from jobs.runner import JobRunner


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "job_type",
        "status",
        "priority",
        "attempt",
        "max_attempts",
        "next_run_at",
        "worker_id",
        "created_at",
    ]
    list_filter = ["status", "job_type"]
    search_fields = ["id", "job_type", "worker_id"]
    readonly_fields = [field.name for field in Job._meta.fields]
    ordering = ["-created_at"]
    actions = ["retry_dead_letter"]

    @admin.action(description="Requeue selected dead-lettered jobs")
    def retry_dead_letter(self, request, queryset):
        runner = JobRunner()
        requeued = 0
        for job in queryset.filter(status=JobStatus.DLQ):
            try:
                runner.retry_dead_letter(job.pk)
            except ConflictError:
                continue
            requeued += 1
        self.message_user(request, f"Requeued {requeued} job(s)", messages.SUCCESS)
