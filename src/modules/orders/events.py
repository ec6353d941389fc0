"""Domain events for the Orders bounded context.

Collected on the ``Order`` aggregate while a transition runs and
published on the in-process bus once its transaction has committed.
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class OrderStatusChanged(DomainEvent):
    """Raised when an order status changes."""

    user_id: str
    order_number: str
    old_status: str
    new_status: str
    actor: str
    reason: str = ""


@dataclass(frozen=True, kw_only=True)
class OrderCancelled(DomainEvent):
    """Raised when an order reaches CANCELLED, alongside ``OrderStatusChanged``."""

    user_id: str
    order_number: str
    previous_status: str
    cause: str
    actor: str


@dataclass(frozen=True, kw_only=True)
class PaymentStatusChanged(DomainEvent):
    """Raised when a payment status changes; ``aggregate_id`` is the order id."""

    user_id: str
    order_number: str
    payment_id: str
    old_status: str
    new_status: str
    actor: str
    amount: str = ""
