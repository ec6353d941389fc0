"""Order and Payment models.

Invariants kept here:
- ``total_amount`` is always ``subtotal_amount + service_fee``; it is
  recomputed on every save.
- ``order_number`` is a human-readable identifier generated on first save
  (format ``ORD-YYYYMMDD-XXXXXX``); the UUIDv7 ``id`` is used everywhere
  else.
- Every Order has exactly one Payment (created with it).

Status fields are only written by the services in this module, which
validate each change against ``constants.VALID_TRANSITIONS`` and
``constants.PAYMENT_TRANSITIONS``.
"""

from __future__ import annotations

import secrets
from datetime import date
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    PAYMENT_TERMINAL_STATES,
    PAYMENT_TRANSITIONS,
    PICKUP_ELIGIBLE_STATUSES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PickupStatus,
)
from shared.domain.events import DomainEventMixin


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root (Order + its Payment)."""

    order_number: models.CharField = models.CharField(
        max_length=20, unique=True, editable=False
    )
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    subtotal_amount: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    service_fee: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    total_amount: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        editable=False,
    )
    order_status: models.CharField = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )
    pickup_date: models.DateField = models.DateField(null=True, blank=True)
    pickup_status: models.CharField = models.CharField(
        max_length=20,
        choices=PickupStatus.choices,
        default=PickupStatus.NOT_PICKED_UP,
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order_status", "created_at"], name="orders_status_created_idx"
            ),
            models.Index(fields=["pickup_date"], name="orders_pickup_date_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
        ]
    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.order_status in TERMINAL_STATES

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid."""
        return new_status in VALID_TRANSITIONS.get(self.order_status, set())

    @property
    def awaits_pickup(self) -> bool:
        return (
            self.order_status in PICKUP_ELIGIBLE_STATUSES
            and self.pickup_status == PickupStatus.NOT_PICKED_UP
        )

    def pickup_days_from(self, today: date) -> int | None:
        if self.pickup_date is None:
            return None
        return (self.pickup_date - today).days

    # ------------------------------------------------------------------
    # Order number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_order_number() -> str:
        """Generate a human-readable order number: ``ORD-YYYYMMDD-XXXXXX``."""
        now = timezone.now()
        suffix = secrets.token_hex(3).upper()
        return f"ORD-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.order_number:
            for _ in range(ORDER_NUMBER_MAX_RETRIES):
                candidate = self.generate_order_number()
                if not Order.objects.filter(order_number=candidate).exists():
                    self.order_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique order_number after "
                    f"{ORDER_NUMBER_MAX_RETRIES} attempts"
                )

        self.total_amount = Decimal(self.subtotal_amount) + Decimal(self.service_fee)
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and (
            {"subtotal_amount", "service_fee"} & set(update_fields)
        ):
            kwargs["update_fields"] = list(update_fields) + ["total_amount"]
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.order_number} ({self.order_status})"


class Payment(BaseModel):
    """Settlement record attached 1:1 to an order."""

    order: models.OneToOneField = models.OneToOneField(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="payment",
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    method: models.CharField = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.BANK_TRANSFER,
    )
    proof_url: models.URLField = models.URLField(  # noqa: DJ01
        max_length=500, null=True, blank=True
    )
    amount: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="payments_status_idx"),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in PAYMENT_TERMINAL_STATES

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in PAYMENT_TRANSITIONS.get(self.status, set())

    def __str__(self) -> str:
        return f"Payment {self.order_id} ({self.status})"
