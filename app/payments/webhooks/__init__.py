"""
Webhook handling for payment provider events.

Webhooks are verified, stored idempotently, and processed asynchronously
via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler

__all__ = [
    "dispatch_webhook",
    "register_handler",
]
