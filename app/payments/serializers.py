"""
DRF serializers for the payments app.

This module provides serializers for:
- Payment intent requests and responses
- Escrow and transaction display
- Payout batches and items
- Payout scheduling requests (admin)

Related files:
    - models/: PaymentTransaction, Escrow, PayoutBatch, PayoutItem
    - views.py: Payment API views
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Escrow, PaymentTransaction, PayoutBatch, PayoutItem
from payments.splits import PlaceholderPolicy


# =============================================================================
# Payment Intents
# =============================================================================


class CreatePaymentIntentSerializer(serializers.Serializer):
    """
    Request body for funding a milestone.

    Fields:
        milestone_id: Milestone to fund (must be pending)
        provider: Gateway name; DEFAULT_PAYMENT_PROVIDER when omitted
        return_url: Redirect target for hosted checkouts
    """

    milestone_id = serializers.UUIDField()
    provider = serializers.CharField(max_length=50, required=False, allow_blank=True)
    return_url = serializers.URLField(required=False, allow_null=True)


class PaymentIntentSerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()
    provider = serializers.CharField()
    provider_payment_intent_id = serializers.CharField()
    client_secret = serializers.CharField(allow_null=True)
    checkout_url = serializers.CharField(allow_null=True)
    status = serializers.CharField()


class PaymentTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentTransaction
        fields = [
            "id",
            "project",
            "milestone",
            "provider",
            "transaction_type",
            "amount_cents",
            "currency",
            "status",
            "provider_payment_intent_id",
            "failure_reason",
            "created_at",
            "succeeded_at",
            "failed_at",
        ]
        read_only_fields = fields


class EscrowSerializer(serializers.ModelSerializer):
    class Meta:
        model = Escrow
        fields = [
            "id",
            "milestone",
            "project",
            "amount_cents",
            "currency",
            "status",
            "provider",
            "released_amount_cents",
            "refunded_amount_cents",
            "locked_at",
            "held_at",
            "released_at",
            "refunded_at",
            "version",
        ]
        read_only_fields = fields


# =============================================================================
# Payouts
# =============================================================================


class PayoutItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutItem
        fields = [
            "id",
            "recipient",
            "position",
            "percentage",
            "currency",
            "gross_cents",
            "fee_cents",
            "tax_withheld_cents",
            "net_cents",
            "status",
            "attempts",
            "provider_transfer_id",
            "failure_reason",
            "processed_at",
        ]
        read_only_fields = fields


class PayoutBatchSerializer(serializers.ModelSerializer):
    """Payout batch with its items."""

    items = PayoutItemSerializer(many=True, read_only=True)

    class Meta:
        model = PayoutBatch
        fields = [
            "id",
            "escrow",
            "project",
            "milestone",
            "scheduled_by",
            "currency",
            "gross_cents",
            "platform_fee_cents",
            "total_net_cents",
            "withheld_cents",
            "placeholder_policy",
            "status",
            "job_id",
            "failure_reason",
            "processed_at",
            "created_at",
            "version",
            "items",
        ]
        read_only_fields = fields


class SchedulePayoutsSerializer(serializers.Serializer):
    """
    Request body for manual payout scheduling.

    amount_cents defaults to the escrow's released amount.
    """

    escrow_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField(min_value=1, required=False)
    placeholder_policy = serializers.ChoiceField(
        choices=PlaceholderPolicy.choices,
        required=False,
    )


__all__ = [
    "CreatePaymentIntentSerializer",
    "EscrowSerializer",
    "PaymentIntentSerializer",
    "PaymentTransactionSerializer",
    "PayoutBatchSerializer",
    "PayoutItemSerializer",
    "SchedulePayoutsSerializer",
]
