"""
Payment admin configuration.

Registers payment domain models with the Django admin. Status fields are
FSM-protected and money rows are an audit trail, so the admin is
read-only apart from the webhook retry action.
"""

from django.contrib import admin, messages

from payments.models import Escrow, PaymentTransaction, PayoutBatch, PayoutItem, WebhookEvent
from payments.state_machines import WebhookEventStatus

__all__ = [
    "EscrowAdmin",
    "PaymentTransactionAdmin",
    "PayoutBatchAdmin",
    "WebhookEventAdmin",
]


class ReadOnlyAdminMixin:
    """Disable add, change and delete; rows change only through services."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


def format_cents(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "milestone",
        "transaction_type",
        "amount_display",
        "status",
        "provider",
        "created_at",
    ]
    list_filter = ["status", "transaction_type", "provider"]
    search_fields = ["id", "provider_payment_intent_id", "provider_refund_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: PaymentTransaction) -> str:
        return format_cents(obj.amount_cents, obj.currency)


@admin.register(Escrow)
class EscrowAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["id", "milestone", "amount_display", "status", "locked_at", "released_at"]
    list_filter = ["status", "provider"]
    search_fields = ["id", "provider_reference", "milestone__id"]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: Escrow) -> str:
        return format_cents(obj.amount_cents, obj.currency)


class PayoutItemInline(admin.TabularInline):
    model = PayoutItem
    extra = 0
    can_delete = False
    fields = [
        "position",
        "recipient",
        "percentage",
        "net_cents",
        "status",
        "attempts",
        "provider_transfer_id",
        "failure_reason",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PayoutBatch)
class PayoutBatchAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "id",
        "project",
        "milestone",
        "net_display",
        "withheld_cents",
        "status",
        "created_at",
    ]
    list_filter = ["status", "placeholder_policy"]
    search_fields = ["id", "escrow__id", "project__title"]
    inlines = [PayoutItemInline]
    ordering = ["-created_at"]

    @admin.display(description="Net total")
    def net_display(self, obj: PayoutBatch) -> str:
        return format_cents(obj.total_net_cents, obj.currency)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Webhook events are immutable once received; failed ones can be
    re-queued with the bulk action.
    """

    list_display = [
        "id",
        "provider",
        "provider_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["provider", "status", "event_type"]
    search_fields = ["id", "provider_event_id", "event_type"]
    readonly_fields = [field.name for field in WebhookEvent._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_events"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    @admin.action(description="Re-queue selected failed events")
    def requeue_events(self, request, queryset):
        from payments.tasks import process_webhook_event

        requeued = 0
        for event in queryset.exclude(status=WebhookEventStatus.PROCESSED):
            process_webhook_event.delay(str(event.id))
            requeued += 1
        self.message_user(request, f"Re-queued {requeued} event(s)", messages.SUCCESS)
