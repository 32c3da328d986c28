"""
URL configuration for the settlement engine.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/projects/              - Projects the user belongs to
        {id}/splits/               - Replace revenue splits (PUT, owner)
        {id}/split-preview/        - Preview a payout breakdown
    /api/v1/milestones/{id}/       - Milestone detail
        complete/ approve/ dispute/ reject/
    /api/v1/payments/              - Payment endpoints
        intents/                   - Create a payment intent for a milestone
        payouts/                   - Payout batches (admin)
        payouts/schedule/          - Schedule payouts for a released escrow (admin)
        webhooks/{provider}/       - Provider webhook endpoint (POST)
    /api/v1/jobs/                  - Job queue (admin)
        lease/                     - Lease due jobs
        {id}/success/ {id}/failure/ {id}/retry/ {id}/cancel/

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Projects and milestones (both routers live at the top level)
    path("", include("projects.urls")),
    # Payments
    path("payments/", include("payments.urls")),
    # Jobs
    path("jobs/", include("jobs.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Escrow, payouts and jobs"
