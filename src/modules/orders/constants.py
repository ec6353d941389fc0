"""Order domain constants.

Status choices and the legal edges of the order and payment state
machines.  ``modules.orders.services.OrderTransitionService`` is the only
writer of either status and validates every change against these tables.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    PROCESSING = "PROCESSING", "Processing"
    READY = "READY", "Ready for pickup"
    COMPLETED = "COMPLETED", "Completed"
    CANCELLED = "CANCELLED", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentMethod(models.TextChoices):
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"


class PickupStatus(models.TextChoices):
    NOT_PICKED_UP = "NOT_PICKED_UP", "Not picked up"
    PICKED_UP = "PICKED_UP", "Picked up"


class CancellationCause(models.TextChoices):
    OPERATOR = "OPERATOR", "Cancelled by operator"
    PAYMENT_FAILED = "PAYMENT_FAILED", "Payment failed"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED", "Payment window expired"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED", "Payment refunded"


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.COMPLETED, OrderStatus.CANCELLED}

PAYMENT_TRANSITIONS: dict[str, set[str]] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}

PAYMENT_TERMINAL_STATES: set[str] = {PaymentStatus.FAILED, PaymentStatus.REFUNDED}

# Orders that still expect the customer at the venue.
PICKUP_ELIGIBLE_STATUSES: tuple[str, ...] = (
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
)

ORDER_NUMBER_MAX_RETRIES = 5

EXPIRED_PAYMENT_NOTE = "Payment expired - auto-cancelled"
EXPIRED_ORDER_NOTE = "Auto-cancelled due to payment timeout"
