"""
DRF serializers for projects, revenue splits and milestones.

Related files:
    - models.py: Project, RevenueSplit, Milestone
    - services.py: ProjectService, MilestoneService
    - views.py: Project and milestone endpoints
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from payments.splits import PlaceholderPolicy
from projects.models import Milestone, Project, RevenueSplit


class RevenueSplitSerializer(serializers.ModelSerializer):
    class Meta:
        model = RevenueSplit
        fields = [
            "id",
            "recipient",
            "placeholder_label",
            "percentage",
            "fixed_amount_cents",
            "position",
        ]
        read_only_fields = fields


class SplitEntrySerializer(serializers.Serializer):
    """
    One entry of a replacement split set.

    An entry names either a recipient or a placeholder label.
    """

    recipient_id = serializers.IntegerField(required=False, allow_null=True)
    placeholder_label = serializers.CharField(max_length=255, required=False, allow_blank=True)
    percentage = serializers.DecimalField(
        max_digits=5,
        decimal_places=2,
        min_value=Decimal("0"),
        max_value=Decimal("100"),
        required=False,
        allow_null=True,
    )
    fixed_amount_cents = serializers.IntegerField(min_value=0, required=False, allow_null=True)

    def validate(self, attrs):
        if not attrs.get("recipient_id") and not attrs.get("placeholder_label"):
            raise serializers.ValidationError(
                "Each split needs a recipient_id or a placeholder_label."
            )
        return attrs


class ReplaceSplitsSerializer(serializers.Serializer):
    splits = SplitEntrySerializer(many=True, allow_empty=False)


class SplitPreviewRequestSerializer(serializers.Serializer):
    gross_cents = serializers.IntegerField(min_value=1)
    placeholder_policy = serializers.ChoiceField(
        choices=PlaceholderPolicy.choices,
        required=False,
    )


class ProjectSerializer(serializers.ModelSerializer):
    splits = serializers.SerializerMethodField()

    class Meta:
        model = Project
        fields = ["id", "owner", "title", "currency", "created_at", "splits"]
        read_only_fields = fields

    def get_splits(self, obj: Project) -> list[dict]:
        active = obj.splits.filter(is_active=True).order_by("position", "created_at")
        return RevenueSplitSerializer(active, many=True).data


class MilestoneSerializer(serializers.ModelSerializer):
    class Meta:
        model = Milestone
        fields = [
            "id",
            "project",
            "title",
            "description",
            "amount_cents",
            "currency",
            "status",
            "dispute_reason",
            "completed_by",
            "funded_at",
            "completed_at",
            "approved_at",
            "disputed_at",
            "rejected_at",
            "version",
        ]
        read_only_fields = fields


class MilestoneActionSerializer(serializers.Serializer):
    """
    Optional body for milestone actions.

    expected_version makes the action fail with 409 if the milestone
    changed since the client read it.
    """

    expected_version = serializers.IntegerField(min_value=1, required=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="")


__all__ = [
    "MilestoneActionSerializer",
    "MilestoneSerializer",
    "ProjectSerializer",
    "ReplaceSplitsSerializer",
    "RevenueSplitSerializer",
    "SplitEntrySerializer",
    "SplitPreviewRequestSerializer",
]
