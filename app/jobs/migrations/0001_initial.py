"""
Create the Job table for the background job queue.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("job_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField(default=dict)),
                (
                    "priority",
                    models.PositiveSmallIntegerField(
                        default=50,
                        help_text="0-100, higher runs sooner",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("leased", "Leased"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("dlq", "Dead Letter"),
                        ],
                        db_index=True,
                        default="queued",
                        max_length=20,
                    ),
                ),
                (
                    "attempt",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Number of failed attempts",
                    ),
                ),
                ("max_attempts", models.PositiveIntegerField(default=5)),
                (
                    "next_run_at",
                    models.DateTimeField(db_index=True, default=django.utils.timezone.now),
                ),
                (
                    "lease_expires_at",
                    models.DateTimeField(blank=True, db_index=True, null=True),
                ),
                ("leased_at", models.DateTimeField(blank=True, null=True)),
                ("worker_id", models.CharField(blank=True, default="", max_length=255)),
                ("last_error", models.JSONField(blank=True, null=True)),
                ("result", models.JSONField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Job",
                "verbose_name_plural": "Jobs",
                "ordering": ["-priority", "next_run_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "next_run_at", "priority"],
                        name="jobs_job_status_0f6e1d_idx",
                    ),
                    models.Index(
                        fields=["job_type", "status"],
                        name="jobs_job_job_typ_5b1c2a_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("priority__lte", 100)),
                        name="job_priority_range",
                    ),
                ],
            },
        ),
    ]
