"""
DRF views for the payments app.

Endpoints:
    POST /api/v1/payments/intents/             - Start funding a milestone (project owner)
    GET  /api/v1/payments/payouts/             - List payout batches (admin)
    GET  /api/v1/payments/payouts/{id}/        - Payout batch with items (admin)
    POST /api/v1/payments/payouts/schedule/    - Schedule payouts for a released escrow (admin)
    POST /api/v1/payments/webhooks/<provider>/ - Provider webhook (payments.webhooks.views)

Security:
    - Intent creation requires authentication; ownership is checked by
      PaymentService
    - Payout endpoints are admin-only
    - Webhook verifies the provider signature

Domain errors are rendered by core.exception_handler.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.engine import SettlementEngine, build_engine
from payments.exceptions import EscrowNotFoundError
from payments.models import Escrow, PayoutBatch
from payments.serializers import (
    CreatePaymentIntentSerializer,
    PaymentIntentSerializer,
    PayoutBatchSerializer,
    SchedulePayoutsSerializer,
)

logger = logging.getLogger(__name__)


class EngineMixin:
    """Builds a settlement engine per request."""

    def get_engine(self) -> SettlementEngine:
        return build_engine()


class PaymentIntentView(EngineMixin, APIView):
    """
    Start funding a milestone.

    POST /api/v1/payments/intents/

    Request body:
        {"milestone_id": "...", "provider": "stripe", "return_url": "https://..."}

    Returns:
        {"transaction_id": "...", "provider_payment_intent_id": "pi_...",
         "client_secret": "...", "checkout_url": null, "status": "..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment_intent",
        summary="Create payment intent",
        request=CreatePaymentIntentSerializer,
        responses={
            201: PaymentIntentSerializer,
            403: OpenApiResponse(description="Not the project owner"),
            409: OpenApiResponse(description="Milestone not pending or already funded"),
            502: OpenApiResponse(description="Payment provider error"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self.get_engine().payment_service.create_payment_intent(
            data["milestone_id"],
            payer=request.user,
            provider=data.get("provider") or None,
            return_url=data.get("return_url"),
        )
        return Response(result.to_dict(), status=status.HTTP_201_CREATED)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_payout_batches",
        summary="List payout batches",
        tags=["Payouts"],
    ),
    retrieve=extend_schema(
        operation_id="get_payout_batch",
        summary="Get payout batch",
        tags=["Payouts"],
    ),
)
class PayoutBatchViewSet(
    EngineMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Admin access to payout batches."""

    serializer_class = PayoutBatchSerializer
    permission_classes = [IsAdminUser]

    def get_queryset(self):
        queryset = PayoutBatch.objects.prefetch_related("items")
        project_id = self.request.query_params.get("project")
        if project_id:
            queryset = queryset.filter(project_id=project_id)
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    @extend_schema(
        operation_id="schedule_payouts",
        summary="Schedule payouts for a released escrow",
        request=SchedulePayoutsSerializer,
        responses={
            201: PayoutBatchSerializer,
            404: OpenApiResponse(description="Escrow not found"),
            409: OpenApiResponse(description="Escrow not released or already scheduled"),
        },
        tags=["Payouts"],
    )
    @action(detail=False, methods=["post"])
    def schedule(self, request):
        serializer = SchedulePayoutsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        escrow = Escrow.objects.filter(pk=data["escrow_id"]).first()
        if escrow is None:
            raise EscrowNotFoundError(
                f"Escrow {data['escrow_id']} not found",
                details={"escrow_id": str(data["escrow_id"])},
            )

        batch = self.get_engine().payout_scheduler.schedule_payouts(
            escrow.pk,
            escrow.project_id,
            escrow.milestone_id,
            data.get("amount_cents") or escrow.released_amount_cents or escrow.amount_cents,
            escrow.currency,
            scheduled_by=request.user,
            placeholder_policy=data.get("placeholder_policy"),
        )
        logger.info(
            f"Payouts scheduled manually for escrow {escrow.pk}",
            extra={"escrow_id": str(escrow.pk), "batch_id": str(batch.pk)},
        )
        batch = PayoutBatch.objects.prefetch_related("items").get(pk=batch.pk)
        return Response(PayoutBatchSerializer(batch).data, status=status.HTTP_201_CREATED)
