"""
Infrastructure endpoints.

Not part of the settlement API; used by Docker, Kubernetes probes and load
balancers.
"""

import logging

from django.db import connection
from django.http import JsonResponse
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Report database, Redis and job queue health.

    The database is required. Redis backs distributed locks, so payouts
    can't execute without it; it is reported as a failure too. The dead
    letter count is informational and never fails the check.

    HTTP Status Codes:
        200: Database and Redis reachable
        503: Either is unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "redis": "connected",
            "dead_letter_jobs": 0
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "dead_letter_jobs": None,
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.error("Health check: database unreachable", exc_info=True)
        health_status["database"] = "disconnected"
        is_healthy = False

    try:
        get_redis_connection("default").ping()
        health_status["redis"] = "connected"
    except Exception:
        logger.error("Health check: redis unreachable", exc_info=True)
        health_status["redis"] = "disconnected"
        is_healthy = False

    if health_status["database"] == "connected":
        from jobs.models import Job, JobStatus

        health_status["dead_letter_jobs"] = Job.objects.filter(status=JobStatus.DLQ).count()

    if not is_healthy:
        health_status["status"] = "unhealthy"
    return JsonResponse(health_status, status=200 if is_healthy else 503)
