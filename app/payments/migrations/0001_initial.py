"""
Create settlement tables: transactions, escrows, payout batches/items and
webhook events.
"""

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models

TIMESTAMPS = [
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
]

VERSION = (
    "version",
    models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    ),
)


def uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


PAYOUT_STATUS_CHOICES = [
    ("scheduled", "Scheduled"),
    ("processing", "Processing"),
    ("paid", "Paid"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("projects", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                *TIMESTAMPS,
                VERSION,
                uuid_pk(),
                (
                    "provider",
                    models.CharField(
                        db_index=True,
                        help_text="Payment provider name (e.g., 'stripe')",
                        max_length=50,
                    ),
                ),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[("escrow_lock", "Escrow Lock"), ("refund", "Refund")],
                        default="escrow_lock",
                        help_text="Whether this transaction funds or refunds an escrow",
                        max_length=20,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Amount in smallest currency unit (e.g., cents)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("created", "Created"),
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="created",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "provider_payment_intent_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider payment intent/order ID (e.g., pi_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "provider_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider refund ID (re_xxx) for refund transactions",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Provider failure reason if the payment failed",
                        null=True,
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata for extensibility",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        help_text="Milestone this payment funds",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="projects.milestone",
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who made the payment",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        help_text="Project this payment belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="projects.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Transaction",
                "verbose_name_plural": "Payment Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["milestone", "status"],
                        name="payments_txn_milestone_idx",
                    ),
                    models.Index(
                        fields=["provider", "provider_payment_intent_id"],
                        name="payments_txn_provider_ref_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="payment_transaction_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Escrow",
            fields=[
                *TIMESTAMPS,
                VERSION,
                uuid_pk(),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Locked amount in smallest currency unit (e.g., cents)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        help_text="Payment provider holding the funds",
                        max_length=50,
                    ),
                ),
                (
                    "provider_reference",
                    models.CharField(
                        blank=True,
                        help_text="Provider payment intent ID used to capture or refund",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("locked", "Locked"),
                            ("held", "Held"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                        ],
                        db_index=True,
                        default="locked",
                        help_text="Current state of the escrow (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("locked_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("held_at", models.DateTimeField(blank=True, null=True)),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "released_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount released to the payout pool",
                        null=True,
                    ),
                ),
                (
                    "refunded_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount returned to the payer",
                        null=True,
                    ),
                ),
                (
                    "refund_provider_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider refund ID (re_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "funding_transaction",
                    models.ForeignKey(
                        blank=True,
                        help_text="Transaction whose success locked these funds",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrows",
                        to="payments.paymenttransaction",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        help_text="Milestone these funds are held for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrows",
                        to="projects.milestone",
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        blank=True,
                        help_text="User whose payment funded this escrow",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrows",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        help_text="Project the milestone belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrows",
                        to="projects.project",
                    ),
                ),
            ],
            options={
                "verbose_name": "Escrow",
                "verbose_name_plural": "Escrows",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["milestone", "status"],
                        name="payments_escrow_milestone_idx",
                    ),
                    models.Index(
                        fields=["project", "status"],
                        name="payments_escrow_project_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount_cents__gt", 0)),
                        name="escrow_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["locked", "held"])),
                        fields=("milestone",),
                        name="escrow_one_active_per_milestone",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutBatch",
            fields=[
                *TIMESTAMPS,
                VERSION,
                uuid_pk(),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "gross_cents",
                    models.PositiveBigIntegerField(
                        help_text="Released amount the split was calculated from",
                    ),
                ),
                (
                    "platform_fee_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Platform fee retained from the gross amount",
                    ),
                ),
                (
                    "total_net_cents",
                    models.PositiveBigIntegerField(help_text="Sum of item net amounts"),
                ),
                (
                    "withheld_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Placeholder shares withheld from payout",
                    ),
                ),
                (
                    "placeholder_policy",
                    models.CharField(
                        default="withhold",
                        help_text="Placeholder policy applied when scheduling",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=PAYOUT_STATUS_CHOICES,
                        db_index=True,
                        default="scheduled",
                        help_text="Current state of the batch (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "job_id",
                    models.UUIDField(
                        blank=True,
                        help_text="payout.execute job enqueued for this batch",
                        null=True,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True, null=True)),
                (
                    "escrow",
                    models.OneToOneField(
                        help_text="Escrow whose released funds this batch distributes",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_batch",
                        to="payments.escrow",
                    ),
                ),
                (
                    "milestone",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_batches",
                        to="projects.milestone",
                    ),
                ),
                (
                    "project",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_batches",
                        to="projects.project",
                    ),
                ),
                (
                    "scheduled_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who scheduled the payouts (null when automatic)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="scheduled_payout_batches",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Batch",
                "verbose_name_plural": "Payout Batches",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["project", "status"],
                        name="payments_batch_project_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PayoutItem",
            fields=[
                *TIMESTAMPS,
                VERSION,
                uuid_pk(),
                ("position", models.PositiveIntegerField(default=0)),
                (
                    "destination_account",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Provider account captured from the recipient's membership",
                        max_length=255,
                    ),
                ),
                (
                    "percentage",
                    models.DecimalField(
                        decimal_places=4,
                        default=Decimal("0"),
                        help_text="Percentage applied for this recipient",
                        max_digits=9,
                    ),
                ),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("gross_cents", models.PositiveBigIntegerField()),
                ("fee_cents", models.PositiveBigIntegerField(default=0)),
                ("tax_withheld_cents", models.PositiveBigIntegerField(default=0)),
                ("net_cents", models.PositiveBigIntegerField()),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=PAYOUT_STATUS_CHOICES,
                        db_index=True,
                        default="scheduled",
                        help_text="Current state of the item (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "attempts",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Number of transfer attempts",
                    ),
                ),
                (
                    "provider_transfer_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider Transfer ID (tr_xxx)",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                ("failure_reason", models.TextField(blank=True, null=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "batch",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="payments.payoutbatch",
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        help_text="User receiving this share",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout_items",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout Item",
                "verbose_name_plural": "Payout Items",
                "ordering": ["batch", "position"],
                "indexes": [
                    models.Index(fields=["batch", "status"], name="payments_item_batch_idx"),
                    models.Index(
                        fields=["recipient", "status"],
                        name="payments_item_recipient_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("batch", "position"),
                        name="payout_item_unique_position",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                *TIMESTAMPS,
                uuid_pk(),
                ("provider", models.CharField(default="stripe", max_length=50)),
                (
                    "provider_event_id",
                    models.CharField(
                        db_index=True,
                        help_text="Provider's event id (evt_xxx for Stripe)",
                        max_length=255,
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                ("payload", models.JSONField(help_text="Verified event body")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="payments_webhook_status_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="payments_webhook_retry_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("provider", "provider_event_id"),
                        name="webhook_event_unique_per_provider",
                    ),
                ],
            },
        ),
    ]
