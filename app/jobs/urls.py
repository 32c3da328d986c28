"""
URL configuration for the job worker API.

All URLs are prefixed with /api/v1/jobs/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from jobs.views import JobViewSet

router = SimpleRouter()
router.register(r"", JobViewSet, basename="job")

app_name = "jobs"

urlpatterns = [
    path("", include(router.urls)),
]
