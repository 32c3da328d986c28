"""
Project and milestone API.

Endpoints:
    GET  /api/v1/projects/                       - Projects the user belongs to
    GET  /api/v1/projects/{id}/                  - Project with its active splits
    PUT  /api/v1/projects/{id}/splits/           - Replace the split set (owner)
    POST /api/v1/projects/{id}/split-preview/    - Preview a payout breakdown
    GET  /api/v1/milestones/{id}/                - Milestone detail
    POST /api/v1/milestones/{id}/complete/       - Mark delivered (member)
    POST /api/v1/milestones/{id}/approve/        - Approve and release (owner)
    POST /api/v1/milestones/{id}/dispute/        - Dispute (member)
    POST /api/v1/milestones/{id}/reject/         - Reject a dispute (owner)

Authorization beyond authentication (member/owner) is enforced by the
services and rendered by core.exception_handler.
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import OpenApiResponse, extend_schema, extend_schema_view
from rest_framework import mixins, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from payments.engine import build_engine
from projects.models import Milestone, Project
from projects.serializers import (
    MilestoneActionSerializer,
    MilestoneSerializer,
    ProjectSerializer,
    ReplaceSplitsSerializer,
    RevenueSplitSerializer,
    SplitPreviewRequestSerializer,
)
from projects.services import ProjectService


def member_projects(user):
    return Project.objects.filter(Q(owner=user) | Q(members__user=user)).distinct()


@extend_schema_view(
    list=extend_schema(operation_id="list_projects", summary="List projects", tags=["Projects"]),
    retrieve=extend_schema(operation_id="get_project", summary="Get project", tags=["Projects"]),
)
class ProjectViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = ProjectSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return member_projects(self.request.user)

    @extend_schema(
        operation_id="replace_project_splits",
        summary="Replace revenue splits",
        request=ReplaceSplitsSerializer,
        responses={
            200: RevenueSplitSerializer(many=True),
            400: OpenApiResponse(description="Percentages don't sum to 100"),
            403: OpenApiResponse(description="Not the project owner"),
        },
        tags=["Projects"],
    )
    @action(detail=True, methods=["put"])
    def splits(self, request, pk=None):
        project = self.get_object()
        serializer = ReplaceSplitsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        created = ProjectService.replace_splits(
            project.pk,
            request.user,
            serializer.validated_data["splits"],
        )
        return Response(RevenueSplitSerializer(created, many=True).data)

    @extend_schema(
        operation_id="preview_project_split",
        summary="Preview payout breakdown",
        request=SplitPreviewRequestSerializer,
        responses={
            200: OpenApiResponse(description="Fee, net pool and per-recipient breakdown"),
            400: OpenApiResponse(description="Invalid amount or split set"),
        },
        tags=["Projects"],
    )
    @action(detail=True, methods=["post"], url_path="split-preview")
    def split_preview(self, request, pk=None):
        project = self.get_object()
        serializer = SplitPreviewRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payable = ProjectService.preview_split(
            project.pk,
            serializer.validated_data["gross_cents"],
            serializer.validated_data.get("placeholder_policy"),
        )
        return Response(
            {
                **payable.breakdown.to_dict(),
                "placeholder_policy": payable.policy,
                "withheld_cents": payable.withheld_cents,
                "payable_net_cents": payable.total_net_cents,
            }
        )


@extend_schema_view(
    retrieve=extend_schema(
        operation_id="get_milestone",
        summary="Get milestone",
        tags=["Milestones"],
    ),
)
class MilestoneViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = MilestoneSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Milestone.objects.filter(project__in=member_projects(self.request.user))

    def _run(self, request, method_name: str, with_reason: bool = False):
        milestone = self.get_object()
        serializer = MilestoneActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        kwargs = {"expected_version": data.get("expected_version")}
        if with_reason:
            kwargs["reason"] = data.get("reason", "")

        service = build_engine().milestone_service
        getattr(service, method_name)(milestone.pk, request.user, **kwargs)
        return Response(MilestoneSerializer(Milestone.objects.get(pk=milestone.pk)).data)

    @extend_schema(
        operation_id="complete_milestone",
        summary="Mark milestone delivered",
        request=MilestoneActionSerializer,
        responses={200: MilestoneSerializer, 409: OpenApiResponse(description="Already processed")},
        tags=["Milestones"],
    )
    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        return self._run(request, "complete")

    @extend_schema(
        operation_id="approve_milestone",
        summary="Approve milestone and release escrow",
        request=MilestoneActionSerializer,
        responses={200: MilestoneSerializer, 409: OpenApiResponse(description="Not approvable")},
        tags=["Milestones"],
    )
    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        return self._run(request, "approve")

    @extend_schema(
        operation_id="dispute_milestone",
        summary="Dispute milestone",
        request=MilestoneActionSerializer,
        responses={200: MilestoneSerializer, 409: OpenApiResponse(description="Already processed")},
        tags=["Milestones"],
    )
    @action(detail=True, methods=["post"])
    def dispute(self, request, pk=None):
        return self._run(request, "dispute", with_reason=True)

    @extend_schema(
        operation_id="reject_milestone",
        summary="Reject disputed milestone and refund escrow",
        request=MilestoneActionSerializer,
        responses={200: MilestoneSerializer, 409: OpenApiResponse(description="Not disputed")},
        tags=["Milestones"],
    )
    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        return self._run(request, "reject", with_reason=True)
