"""Django ORM implementation of the Order repository.

Concurrency control on status changes uses ``select_for_update()`` on the
order row (and, through ``select_related``, its payment row).  Connection
level failures are surfaced as ``TransientStoreError`` so callers can
skip the unit of work and retry it on the next run.
"""

from __future__ import annotations

import functools
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import structlog
from django.core.exceptions import ValidationError
from django.db import InterfaceError, OperationalError, transaction
from django.db.models import Q, QuerySet

from modules.orders.constants import OrderStatus, PaymentMethod, PickupStatus
from modules.orders.exceptions import TransientStoreError
from modules.orders.models import Order, Payment
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _translate_store_errors(func: F) -> F:
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, InterfaceError) as exc:
            logger.warning(
                "order.store_unavailable", operation=func.__name__, error=str(exc)
            )
            raise TransientStoreError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + payment)
    # ------------------------------------------------------------------

    @_translate_store_errors
    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        order = Order(
            user_id=data["user_id"],
            subtotal_amount=Decimal(str(data["subtotal_amount"])),
            service_fee=Decimal(str(data.get("service_fee", "0.00"))),
            pickup_date=data.get("pickup_date"),
            notes=data.get("notes", ""),
        )
        order.save()
        Payment.objects.create(
            order=order,
            method=data.get("payment_method", PaymentMethod.BANK_TRANSFER),
            amount=order.total_amount,
        )
        logger.info(
            "order.created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
        )
        return self.get_by_id(str(order.id)) or order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @_translate_store_errors
    def get_by_id(self, id: str) -> Optional[Order]:
        """Returns ``None`` for non-existent or invalid IDs."""
        try:
            return (
                Order.objects.select_related("payment", "user").filter(id=id).first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet[Order]:
        queryset = Order.objects.select_related("payment", "user")
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    @_translate_store_errors
    def get_for_update(self, id: str) -> Optional[Order]:
        """Lock the order row for the rest of the current transaction."""
        try:
            return (
                Order.objects.select_for_update()
                .select_related("payment", "user")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    @_translate_store_errors
    def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        try:
            return (
                Order.objects.select_related("payment", "user")
                .filter(payment__id=payment_id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    @_translate_store_errors
    def save(self, entity: Order) -> Order:
        entity.save()
        return entity

    @_translate_store_errors
    def save_payment(self, payment: Payment) -> Payment:
        payment.save()
        return payment

    # ------------------------------------------------------------------
    # Sweep queries
    # ------------------------------------------------------------------

    def _by_age(
        self,
        payment_status: str,
        min_age: Optional[timedelta],
        max_age: Optional[timedelta],
        now: datetime,
    ) -> QuerySet[Order]:
        # Age window is [min_age, max_age): created_at in (now - max, now - min].
        queryset = Order.objects.filter(
            order_status=OrderStatus.PENDING, payment__status=payment_status
        )
        if min_age is not None:
            queryset = queryset.filter(created_at__lte=now - min_age)
        if max_age is not None:
            queryset = queryset.filter(created_at__gt=now - max_age)
        return queryset

    @_translate_store_errors
    def find_orders_by_status_and_age(
        self,
        payment_status: str,
        min_age: timedelta,
        max_age: Optional[timedelta],
        now: datetime,
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, Any]] = None,
    ) -> List[Order]:
        queryset = self._by_age(payment_status, min_age, max_age, now)
        return self._page(queryset, limit, after)

    @_translate_store_errors
    def count_by_status_and_age(
        self,
        payment_status: str,
        min_age: Optional[timedelta],
        max_age: Optional[timedelta],
        now: datetime,
    ) -> int:
        return self._by_age(payment_status, min_age, max_age, now).count()

    def _by_pickup_date(self, day: date, statuses: Sequence[str]) -> QuerySet[Order]:
        return Order.objects.filter(
            pickup_date=day,
            order_status__in=list(statuses),
            pickup_status=PickupStatus.NOT_PICKED_UP,
        )

    @_translate_store_errors
    def find_orders_by_pickup_date(
        self,
        day: date,
        statuses: Sequence[str],
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, Any]] = None,
    ) -> List[Order]:
        return self._page(self._by_pickup_date(day, statuses), limit, after)

    @_translate_store_errors
    def count_by_pickup_date(self, day: date, statuses: Sequence[str]) -> int:
        return self._by_pickup_date(day, statuses).count()

    @staticmethod
    def _page(
        queryset: QuerySet[Order],
        limit: Optional[int],
        after: Optional[Tuple[datetime, Any]],
    ) -> List[Order]:
        # Keyset pagination on (created_at, id), oldest first.
        if after is not None:
            created_at, order_id = after
            queryset = queryset.filter(
                Q(created_at__gt=created_at) | Q(created_at=created_at, id__gt=order_id)
            )
        queryset = queryset.select_related("payment", "user").order_by("created_at", "id")
        if limit is not None:
            queryset = queryset[:limit]
        return list(queryset)

    @_translate_store_errors
    def count_by_order_status(
        self,
        order_status: str,
        updated_since: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
    ) -> int:
        queryset = Order.objects.filter(order_status=order_status)
        if updated_since is not None:
            queryset = queryset.filter(updated_at__gte=updated_since)
        if updated_before is not None:
            queryset = queryset.filter(updated_at__lt=updated_before)
        return queryset.count()
