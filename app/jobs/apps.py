"""
Jobs app configuration.
"""

from django.apps import AppConfig


class JobsConfig(AppConfig):
    """Durable job queue with leases, retries and a dead-letter state."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "jobs"
    verbose_name = "Jobs"
