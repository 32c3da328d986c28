"""
Celery configuration for the settlement engine.

Celery drives the asynchronous side of settlement:
- Dispatching webhook events to their handlers (payments.tasks)
- Leasing and executing durable jobs such as payout.execute (jobs.tasks)
- Periodic sweeps: expired job leases, failed and stuck webhooks

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps. The beat schedule
lives in CELERY_BEAT_SCHEDULE in config/settings.py.

Usage:
    # Worker
    celery -A config worker -l info

    # Scheduler
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
