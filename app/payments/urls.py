"""
URL configuration for the payments app.

Routes:
    - POST /intents/ - Create a payment intent for a milestone
    - /payouts/ - Payout batches (admin)
    - POST /webhooks/<provider>/ - Provider webhook endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from payments.views import PaymentIntentView, PayoutBatchViewSet
from payments.webhooks.views import provider_webhook

app_name = "payments"

router = SimpleRouter()
router.register(r"payouts", PayoutBatchViewSet, basename="payout-batch")

urlpatterns = [
    path("intents/", PaymentIntentView.as_view(), name="payment_intent"),
    path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
    path("", include(router.urls)),
]
