"""Event handlers turning order/payment events into notifications.

Subscribed to the in-process bus in ``OrdersConfig.ready``.  Only the
transitions the engine itself causes are handled here; PROCESSING and
READY are announced by the progress controller, which knows the extra
context (pickup location and hours) those messages need, and COMPLETED
is announced as a pickup confirmation by the same controller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from modules.notifications.constants import NotificationType
from modules.notifications.dtos import NotificationPayload
from modules.orders.constants import CancellationCause, OrderStatus, PaymentStatus
from modules.orders.events import OrderCancelled, OrderStatusChanged, PaymentStatusChanged
from modules.orders.formatting import format_amount
from shared.domain.bus import IEventHandler

if TYPE_CHECKING:
    from modules.notifications.services import NotificationDispatcher

logger = structlog.get_logger(__name__)


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    def handle(self, event: OrderStatusChanged) -> None:
        if event.new_status != OrderStatus.CONFIRMED:
            return
        self._dispatcher.send(
            NotificationType.ORDER_CONFIRMED,
            event.user_id,
            NotificationPayload(
                title="Order confirmed",
                message=(
                    f"Your order {event.order_number} has been confirmed. "
                    "We will let you know when preparation starts."
                ),
                order_id=event.aggregate_id,
                data={"order_number": event.order_number},
            ),
            dedup=True,
        )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    """One notification to the customer and one to each admin."""

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    def handle(self, event: OrderCancelled) -> None:
        data = {
            "order_number": event.order_number,
            "cause": event.cause,
            "previous_status": event.previous_status,
        }
        if event.cause == CancellationCause.PAYMENT_EXPIRED:
            customer_type = NotificationType.PAYMENT_EXPIRED
            customer_payload = NotificationPayload(
                title="Payment expired",
                message=(
                    f"The payment window for order {event.order_number} has "
                    "closed and the order was cancelled automatically."
                ),
                order_id=event.aggregate_id,
                data=data,
            )
            admin_type = NotificationType.ORDER_AUTO_CANCELLED
            admin_payload = NotificationPayload(
                title="Order auto-cancelled",
                message=(
                    f"Order {event.order_number} was cancelled automatically "
                    "because it was not paid within the payment window."
                ),
                order_id=event.aggregate_id,
                data={**data, "customer_id": event.user_id},
            )
        else:
            reason = CancellationCause(event.cause).label
            customer_type = admin_type = NotificationType.ORDER_CANCELLED
            customer_payload = NotificationPayload(
                title="Order cancelled",
                message=f"Your order {event.order_number} was cancelled ({reason}).",
                order_id=event.aggregate_id,
                data=data,
            )
            admin_payload = NotificationPayload(
                title="Order cancelled",
                message=f"Order {event.order_number} was cancelled ({reason}).",
                order_id=event.aggregate_id,
                data={**data, "customer_id": event.user_id},
            )

        self._dispatcher.send(customer_type, event.user_id, customer_payload, dedup=True)
        self._dispatcher.send_to_admins(admin_type, admin_payload, dedup=True)
        logger.info(
            "order.cancellation_notified",
            order_id=str(event.aggregate_id),
            cause=event.cause,
        )


class PaymentStatusChangedHandler(IEventHandler[PaymentStatusChanged]):
    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    def handle(self, event: PaymentStatusChanged) -> None:
        data = {"order_number": event.order_number, "payment_id": event.payment_id}
        if event.new_status == PaymentStatus.PAID:
            self._dispatcher.send(
                NotificationType.PAYMENT_CONFIRMED,
                event.user_id,
                NotificationPayload(
                    title="Payment received",
                    message=(
                        f"We received {format_amount(event.amount)} for order "
                        f"{event.order_number}. Thank you!"
                    ),
                    order_id=event.aggregate_id,
                    data=data,
                ),
                dedup=True,
            )
        elif event.new_status == PaymentStatus.REFUNDED:
            self._dispatcher.send(
                NotificationType.PAYMENT_REFUNDED,
                event.user_id,
                NotificationPayload(
                    title="Payment refunded",
                    message=(
                        f"The payment of {format_amount(event.amount)} for order "
                        f"{event.order_number} has been refunded."
                    ),
                    order_id=event.aggregate_id,
                    data=data,
                ),
                dedup=True,
            )
