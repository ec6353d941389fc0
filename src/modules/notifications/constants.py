"""Notification types and ledger key helpers."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from django.db import models


class NotificationType(models.TextChoices):
    ORDER_CONFIRMED = "ORDER_CONFIRMED", "Order confirmed"
    ORDER_PREPARATION_STARTED = "ORDER_PREPARATION_STARTED", "Preparation started"
    ORDER_READY = "ORDER_READY", "Order ready for pickup"
    ORDER_DELAYED = "ORDER_DELAYED", "Order delayed"
    ORDER_CANCELLED = "ORDER_CANCELLED", "Order cancelled"
    ORDER_AUTO_CANCELLED = "ORDER_AUTO_CANCELLED", "Order auto-cancelled"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED", "Payment confirmed"
    PAYMENT_REMINDER = "PAYMENT_REMINDER", "Payment reminder"
    PAYMENT_DEADLINE_WARNING = "PAYMENT_DEADLINE_WARNING", "Payment deadline warning"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED", "Payment expired"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED", "Payment refunded"
    PICKUP_REMINDER_H1 = "PICKUP_REMINDER_H1", "Pickup reminder (day before)"
    PICKUP_REMINDER_TODAY = "PICKUP_REMINDER_TODAY", "Pickup reminder (today)"
    PICKUP_COMPLETED = "PICKUP_COMPLETED", "Pickup completed"
    OPERATIONAL_EXCEPTION = "OPERATIONAL_EXCEPTION", "Operational exception"


PICKUP_NOTIFICATION_TYPES = (
    NotificationType.PICKUP_REMINDER_H1,
    NotificationType.PICKUP_REMINDER_TODAY,
    NotificationType.ORDER_READY,
    NotificationType.PICKUP_COMPLETED,
)


def ledger_key(
    notification_type: str, order_id: Any, day_key: Optional[date] = None
) -> str:
    """Deduplication key: one per (type, order) or per (type, order, day)."""
    key = f"{notification_type}:{order_id}"
    if day_key is not None:
        key = f"{key}:{day_key.isoformat()}"
    return key
