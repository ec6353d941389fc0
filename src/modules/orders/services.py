"""State Transition Engine.

The single point of truth for "is this status change legal" for both
the order and its payment.  Every change:

1. locks the order row (``SELECT FOR UPDATE``) inside one transaction;
2. is validated against ``VALID_TRANSITIONS`` / ``PAYMENT_TRANSITIONS``;
3. applies the cross-constraints between order and payment in the same
   transaction (PAID confirms a pending order, FAILED cancels it,
   REFUNDED cancels it when still cancellable, and cancelling an order
   settles its payment);
4. writes one audit entry per status that actually changed;
5. publishes domain events on the bus once the transaction is closed,
   where the notification handlers pick them up.

Requesting the status an order or payment already has is a no-op: no
write, no audit entry, no event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Tuple

import structlog
from django.db import transaction

from modules.orders.constants import (
    CancellationCause,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.dtos import (
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    ERROR_TRANSIENT,
    TransitionResult,
)
from modules.orders.events import (
    OrderCancelled,
    OrderStatusChanged,
    PaymentStatusChanged,
)
from modules.orders.exceptions import (
    InvalidTransition,
    OrderNotFound,
    PaymentNotFound,
    TransientStoreError,
)

if TYPE_CHECKING:
    from modules.audit.services import AuditLogger
    from modules.orders.models import Order, Payment
    from modules.orders.repositories.interfaces import IOrderRepository
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


class OrderTransitionService:
    """Application service for order and payment status changes.

    Receives its collaborators via constructor injection.
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        audit_logger: AuditLogger,
        event_bus: IEventBus,
    ) -> None:
        self._order_repo = order_repository
        self._audit = audit_logger
        self._bus = event_bus

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: Any,
        actor: str,
        order_status: Optional[str] = None,
        payment_status: Optional[str] = None,
        reason: str = "",
        notes: Optional[str] = None,
        payment_notes: Optional[str] = None,
        amount: Any = None,
    ) -> TransitionResult:
        """Apply one order *or* payment status change and report the outcome.

        Never raises for domain failures; they come back as
        ``success=False`` with an ``error_code``.
        """
        if (order_status is None) == (payment_status is None):
            raise ValueError("Pass exactly one of order_status or payment_status.")

        try:
            if order_status is not None:
                order, changed = self._change_order_status(
                    order_id, order_status, actor, reason, notes
                )
            else:
                order, changed = self._change_payment_status(
                    order_id,
                    payment_status,
                    actor,
                    reason,
                    payment_notes=payment_notes,
                    amount=amount,
                )
        except (OrderNotFound, PaymentNotFound) as exc:
            return TransitionResult(
                success=False,
                order_id=str(order_id),
                error=str(exc),
                error_code=ERROR_NOT_FOUND,
            )
        except InvalidTransition as exc:
            return TransitionResult(
                success=False,
                order_id=str(order_id),
                error=str(exc),
                error_code=ERROR_INVALID_TRANSITION,
            )
        except TransientStoreError as exc:
            return TransitionResult(
                success=False,
                order_id=str(order_id),
                error=str(exc),
                error_code=ERROR_TRANSIENT,
            )

        target = order_status or payment_status
        return TransitionResult(
            success=True,
            changed=changed,
            order_id=str(order.id),
            order_status=order.order_status,
            payment_status=order.payment.status,
            message=(
                f"Status updated to {target}."
                if changed
                else f"Status already {target}; nothing to do."
            ),
            order=order,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def change_order_status(
        self,
        order_id: Any,
        new_status: str,
        actor: str,
        reason: str = "",
        notes: Optional[str] = None,
    ) -> Order:
        """Move the order to *new_status*.

        Raises:
            OrderNotFound: order does not exist.
            InvalidTransition: the edge is not allowed.
            TransientStoreError: the store is unavailable.
        """
        order, _ = self._change_order_status(order_id, new_status, actor, reason, notes)
        return order

    def change_payment_status(
        self,
        order_id: Any,
        new_status: str,
        actor: str,
        reason: str = "",
        payment_notes: Optional[str] = None,
        order_notes: Optional[str] = None,
        amount: Any = None,
        cancellation_cause: str = CancellationCause.PAYMENT_FAILED,
    ) -> Order:
        """Move the order's payment to *new_status*, cascading to the order.

        Raises:
            OrderNotFound / PaymentNotFound: the order or its payment is missing.
            InvalidTransition: the edge is not allowed.
            TransientStoreError: the store is unavailable.
        """
        order, _ = self._change_payment_status(
            order_id,
            new_status,
            actor,
            reason,
            payment_notes=payment_notes,
            order_notes=order_notes,
            amount=amount,
            cancellation_cause=cancellation_cause,
        )
        return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _change_order_status(
        self,
        order_id: Any,
        new_status: str,
        actor: str,
        reason: str = "",
        notes: Optional[str] = None,
    ) -> Tuple[Order, bool]:
        if new_status not in OrderStatus.values:
            raise InvalidTransition(f"Unknown order status {new_status}.")

        with transaction.atomic():
            order = self._lock(order_id)
            log = logger.bind(
                order_id=str(order.id),
                actor=str(actor),
                current_status=order.order_status,
                new_status=new_status,
            )

            if order.order_status == new_status:
                log.info("order.transition_noop")
                return order, False

            if not order.can_transition_to(new_status):
                log.warning("order.invalid_transition")
                raise InvalidTransition(
                    f"Cannot transition order from {order.order_status} to {new_status}."
                )

            self._apply_order_status(
                order,
                new_status,
                actor,
                reason,
                notes=notes,
                cause=CancellationCause.OPERATOR,
            )
            if new_status == OrderStatus.CANCELLED:
                self._settle_payment(order, actor, reason)

        self._publish(order)
        return order, True

    def _change_payment_status(
        self,
        order_id: Any,
        new_status: str,
        actor: str,
        reason: str = "",
        payment_notes: Optional[str] = None,
        order_notes: Optional[str] = None,
        amount: Any = None,
        cancellation_cause: str = CancellationCause.PAYMENT_FAILED,
    ) -> Tuple[Order, bool]:
        if new_status not in PaymentStatus.values:
            raise InvalidTransition(f"Unknown payment status {new_status}.")

        with transaction.atomic():
            order = self._lock(order_id)
            payment = self._payment_of(order)
            log = logger.bind(
                order_id=str(order.id),
                payment_id=str(payment.id),
                actor=str(actor),
                current_status=payment.status,
                new_status=new_status,
            )

            if payment.status == new_status:
                log.info("payment.transition_noop")
                return order, False

            if not payment.can_transition_to(new_status):
                log.warning("payment.invalid_transition")
                raise InvalidTransition(
                    f"Cannot transition payment from {payment.status} to {new_status}."
                )
            if (
                new_status == PaymentStatus.PAID
                and order.order_status == OrderStatus.CANCELLED
            ):
                log.warning("payment.paid_on_cancelled_order")
                raise InvalidTransition(
                    f"Cannot mark payment PAID: order {order.order_number} is cancelled."
                )

            if amount is not None:
                payment.amount = amount
            self._apply_payment_status(
                order, payment, new_status, actor, reason, notes=payment_notes
            )

            # Cross-constraints between payment and order.
            if (
                new_status == PaymentStatus.PAID
                and order.order_status == OrderStatus.PENDING
            ):
                self._apply_order_status(
                    order, OrderStatus.CONFIRMED, actor, reason or "Payment confirmed"
                )
            elif new_status == PaymentStatus.FAILED and not order.is_terminal:
                self._apply_order_status(
                    order,
                    OrderStatus.CANCELLED,
                    actor,
                    reason or "Payment failed",
                    notes=order_notes,
                    cause=cancellation_cause,
                )
            elif new_status == PaymentStatus.REFUNDED and order.can_transition_to(
                OrderStatus.CANCELLED
            ):
                self._apply_order_status(
                    order,
                    OrderStatus.CANCELLED,
                    actor,
                    reason or "Payment refunded",
                    notes=order_notes,
                    cause=CancellationCause.PAYMENT_REFUNDED,
                )

        self._publish(order)
        return order, True

    def _settle_payment(self, order: Order, actor: str, reason: str) -> None:
        """Keep the payment consistent with a cancelled order."""
        payment = self._payment_of(order)
        if payment.status == PaymentStatus.PENDING:
            self._apply_payment_status(
                order, payment, PaymentStatus.FAILED, actor, reason or "Order cancelled"
            )
        elif payment.status == PaymentStatus.PAID:
            self._apply_payment_status(
                order,
                payment,
                PaymentStatus.REFUNDED,
                actor,
                reason or "Order cancelled",
            )

    def _apply_order_status(
        self,
        order: Order,
        new_status: str,
        actor: str,
        reason: str = "",
        notes: Optional[str] = None,
        cause: str = CancellationCause.OPERATOR,
    ) -> None:
        old_status = order.order_status
        order.order_status = new_status
        if notes:
            order.notes = notes
        self._order_repo.save(order)
        self._audit.order_status_changed(actor, order.id, old_status, new_status, reason)

        order.add_domain_event(
            OrderStatusChanged(
                aggregate_id=order.id,
                user_id=str(order.user_id),
                order_number=order.order_number,
                old_status=old_status,
                new_status=new_status,
                actor=str(actor),
                reason=reason,
            )
        )
        if new_status == OrderStatus.CANCELLED:
            order.add_domain_event(
                OrderCancelled(
                    aggregate_id=order.id,
                    user_id=str(order.user_id),
                    order_number=order.order_number,
                    previous_status=old_status,
                    cause=cause,
                    actor=str(actor),
                )
            )
        logger.info(
            "order.status_changed",
            order_id=str(order.id),
            actor=str(actor),
            old_status=old_status,
            new_status=new_status,
        )

    def _apply_payment_status(
        self,
        order: Order,
        payment: Payment,
        new_status: str,
        actor: str,
        reason: str = "",
        notes: Optional[str] = None,
    ) -> None:
        old_status = payment.status
        payment.status = new_status
        if notes:
            payment.notes = notes
        self._order_repo.save_payment(payment)
        # Keeps the order's updated_at in step with its payment.
        self._order_repo.save(order)
        self._audit.payment_status_changed(
            actor, order.id, payment.id, old_status, new_status, reason
        )

        order.add_domain_event(
            PaymentStatusChanged(
                aggregate_id=order.id,
                user_id=str(order.user_id),
                order_number=order.order_number,
                payment_id=str(payment.id),
                old_status=old_status,
                new_status=new_status,
                actor=str(actor),
                amount=str(payment.amount),
            )
        )
        logger.info(
            "payment.status_changed",
            order_id=str(order.id),
            payment_id=str(payment.id),
            actor=str(actor),
            old_status=old_status,
            new_status=new_status,
        )

    def _lock(self, order_id: Any) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    @staticmethod
    def _payment_of(order: Order) -> Payment:
        payment = getattr(order, "payment", None)
        if payment is None:
            raise PaymentNotFound(f"Order {order.order_number} has no payment.")
        return payment

    def _publish(self, order: Order) -> None:
        events = order.domain_events
        order.clear_domain_events()
        for event in events:
            try:
                self._bus.publish(event)
            except Exception:
                # The transition is committed; a handler bug must not undo it.
                logger.exception(
                    "order.event_handler_failed",
                    order_id=str(order.id),
                    event=event.event_name,
                )
