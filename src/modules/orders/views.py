"""Order API views.

Exposes the transition engine, the progress controller, the payment
webhook and the sweep trigger over HTTP.  Services return structured
results; the views only translate ``error_code`` into an HTTP status:

=========================  ====
not_found                  404
invalid_transition         409
ineligible_state           409
transient_store_error      503
=========================  ====
"""

from __future__ import annotations

import hmac
from typing import Optional, Union

import structlog
from django.conf import settings
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.core.periodic import periodic_tasks
from modules.orders.constants import OrderStatus
from modules.orders.dtos import (
    ERROR_INELIGIBLE_STATE,
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    ERROR_TRANSIENT,
    ProgressResult,
    TransitionResult,
)
from modules.orders.exceptions import TransientStoreError
from modules.orders.factories import (
    build_pickup_scheduler,
    build_progress_service,
    build_transition_service,
    build_webhook_service,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import (
    CancelOrderSerializer,
    CompletePreparationSerializer,
    DelayOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    PaymentStatusSerializer,
    PickupRemindersSerializer,
    ReadyForPickupSerializer,
    StartPreparationSerializer,
    UpdateOrderSerializer,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ERROR_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ERROR_INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ERROR_INELIGIBLE_STATE: status.HTTP_409_CONFLICT,
    ERROR_TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_response(result: Union[TransitionResult, ProgressResult]) -> Response:
    return Response(
        {"detail": result.error, "code": result.error_code},
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def _actor(request: Request) -> str:
    return str(request.user.pk)


class OrderViewSet(GenericViewSet):
    """Orders for customers (own orders, read-only) and operators (all).

    Does **not** extend ``ModelViewSet``; every write goes through the
    transition engine or the progress controller.
    """

    queryset = Order.objects.none()
    filterset_class = OrderFilter
    search_fields = ["order_number", "user__username", "user__email"]
    ordering_fields = ["created_at", "total_amount", "pickup_date", "order_status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._repo = OrderDjangoRepository()
        self._transitions = build_transition_service()
        self._progress = build_progress_service()

    def get_permissions(self):
        if self.action in {"list", "retrieve"}:
            return [IsAuthenticated()]
        return [IsAdminUser()]

    def get_queryset(self):
        queryset = self._repo.list()
        user = self.request.user
        if not user.is_staff:
            queryset = queryset.filter(user_id=user.pk)
        return queryset

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/"""
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = OrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: Optional[str] = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        order = self._repo.get_by_id(pk) if pk else None
        if order is None or not (
            request.user.is_staff or order.user_id == request.user.pk
        ):
            return Response(
                {"detail": "Order not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(OrderSerializer(order).data)

    # ------------------------------------------------------------------
    # Status / pickup date
    # ------------------------------------------------------------------

    def partial_update(self, request: Request, pk: Optional[str] = None) -> Response:
        """PATCH /api/v1/orders/{pk}/

        Changes the order status and/or the pickup date.  Cancellation
        and completion have their own endpoints.
        """
        serializer = UpdateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        actor = _actor(request)

        if "status" in data:
            result = self._transitions.transition(
                pk,
                actor,
                order_status=data["status"],
                reason=data["reason"],
                notes=data.get("notes"),
            )
            if not result.success:
                return _error_response(result)

        if "pickup_date" in data:
            progress = self._progress.schedule_pickup(pk, actor, data["pickup_date"])
            if not progress.success:
                return _error_response(progress)

        return self._order_response(pk)

    @action(detail=True, methods=["post"], url_path="payment-status")
    def payment_status(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/payment-status/"""
        serializer = PaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._transitions.transition(
            pk,
            _actor(request),
            payment_status=data["status"],
            reason=data["reason"],
            payment_notes=data.get("notes"),
            amount=data.get("amount"),
        )
        if not result.success:
            return _error_response(result)
        return self._order_response(pk, message=result.message)

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels the order and settles its payment (PENDING -> FAILED,
        PAID -> REFUNDED).
        """
        serializer = CancelOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = self._transitions.transition(
            pk,
            _actor(request),
            order_status=OrderStatus.CANCELLED,
            reason=data["reason"] or "Cancelled by operator",
            notes=data.get("notes"),
        )
        if not result.success:
            return _error_response(result)
        return self._order_response(pk, message=result.message)

    # ------------------------------------------------------------------
    # Fulfilment progress
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"], url_path="start-preparation")
    def start_preparation(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/start-preparation/"""
        serializer = StartPreparationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._progress_response(
            self._progress.mark_preparation_started(
                pk,
                _actor(request),
                notes=data.get("notes"),
                estimated_time=data.get("estimated_time"),
            )
        )

    @action(detail=True, methods=["post"], url_path="complete-preparation")
    def complete_preparation(
        self, request: Request, pk: Optional[str] = None
    ) -> Response:
        """POST /api/v1/orders/{pk}/complete-preparation/"""
        serializer = CompletePreparationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._progress_response(
            self._progress.mark_preparation_complete(
                pk, _actor(request), notes=serializer.validated_data.get("notes")
            )
        )

    @action(detail=True, methods=["post"], url_path="ready-for-pickup")
    def ready_for_pickup(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/ready-for-pickup/"""
        serializer = ReadyForPickupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._progress_response(
            self._progress.mark_ready_for_pickup(
                pk,
                _actor(request),
                pickup_location=data.get("pickup_location"),
                pickup_hours=data.get("pickup_hours"),
                notes=data.get("notes"),
            )
        )

    @action(detail=True, methods=["post"])
    def delay(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/delay/"""
        serializer = DelayOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return self._progress_response(
            self._progress.mark_order_delayed(
                pk,
                _actor(request),
                reason=data["reason"],
                new_estimated_time=data.get("new_estimated_time"),
                notes=data.get("notes"),
            )
        )

    @action(detail=True, methods=["post"], url_path="picked-up")
    def picked_up(self, request: Request, pk: Optional[str] = None) -> Response:
        """POST /api/v1/orders/{pk}/picked-up/"""
        return self._progress_response(
            self._progress.mark_picked_up(pk, _actor(request))
        )

    @action(detail=False, methods=["post"], url_path="pickup-reminders")
    def pickup_reminders(self, request: Request) -> Response:
        """POST /api/v1/orders/pickup-reminders/

        Reminds every customer whose pickup falls on ``pickup_date``.
        """
        serializer = PickupRemindersSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        report = build_pickup_scheduler().send_pickup_reminders_for_date(
            serializer.validated_data["pickup_date"]
        )
        return Response(report.as_dict())

    @action(detail=False, methods=["get"], url_path="progress-stats")
    def progress_stats(self, request: Request) -> Response:
        """GET /api/v1/orders/progress-stats/"""
        try:
            stats = self._progress.get_stats()
        except TransientStoreError as exc:
            return Response(
                {"detail": str(exc)}, status=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        return Response({"name": "order_progress", "stats": stats})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _order_response(self, pk: Optional[str], message: Optional[str] = None):
        order = self._repo.get_by_id(pk)
        data = OrderSerializer(order).data
        if message:
            data = {**data, "message": message}
        return Response(data)

    def _progress_response(self, result: ProgressResult) -> Response:
        if not result.success:
            return _error_response(result)
        return Response(
            {"message": result.message, "order": OrderSerializer(result.order).data}
        )


# ---------------------------------------------------------------------------
# Machine-to-machine endpoints
# ---------------------------------------------------------------------------


def _secret_matches(provided: str, expected: str) -> bool:
    # An unset secret disables the endpoint.
    return bool(expected) and hmac.compare_digest(
        provided.encode("utf-8"), expected.encode("utf-8")
    )


class PaymentWebhookView(APIView):
    """POST /api/v1/payments/webhook/

    Authenticated by the ``X-Webhook-Secret`` header.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    throttle_scope = "payment_webhook"

    def post(self, request: Request) -> Response:
        provided = request.headers.get("X-Webhook-Secret", "")
        if not _secret_matches(provided, settings.PAYMENT_WEBHOOK_SECRET):
            logger.warning("payment.webhook_unauthorized")
            return Response(
                {"detail": "Invalid webhook secret."},
                status=status.HTTP_401_UNAUTHORIZED,
            )

        try:
            result = build_webhook_service().handle(request.data)
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        if not result.success:
            return _error_response(result)
        return Response(result.model_dump())


class SweepTriggerView(APIView):
    """External cron trigger for a registered sweep.

    ``POST /api/v1/sweeps/<name>/`` runs it once; ``GET`` returns its
    statistics.  Authenticated by ``Authorization: Bearer <CRON_SECRET>``.
    """

    authentication_classes: list = []
    permission_classes = [AllowAny]
    throttle_scope = "sweep_trigger"

    def initial(self, request: Request, *args, **kwargs) -> None:
        super().initial(request, *args, **kwargs)
        self._authorized = _secret_matches(
            request.headers.get("Authorization", "").removeprefix("Bearer ").strip(),
            settings.CRON_SECRET,
        )

    def post(self, request: Request, name: str) -> Response:
        denied = self._deny(name)
        if denied is not None:
            return denied
        report = periodic_tasks.get(name).run()
        return Response(report.as_dict())

    def get(self, request: Request, name: str) -> Response:
        denied = self._deny(name)
        if denied is not None:
            return denied
        return Response({"name": name, "stats": periodic_tasks.get(name).get_stats()})

    def _deny(self, name: str) -> Optional[Response]:
        if not self._authorized:
            logger.warning("sweep.trigger_unauthorized", sweep=name)
            return Response(
                {"detail": "Invalid cron secret."},
                status=status.HTTP_401_UNAUTHORIZED,
            )
        if name not in periodic_tasks:
            return Response(
                {"detail": f"Unknown sweep '{name}'."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return None
