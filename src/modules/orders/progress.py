"""Order Progress Controller.

Operator-facing steps of fulfilment.  Status changes go through the
transition engine; every method returns a ``ProgressResult`` and never
raises a domain error past this boundary, so admin actions only have to
render ``result.error``.

=========================  ======================  =====================
method                     precondition            effect
=========================  ======================  =====================
mark_preparation_started   CONFIRMED | PROCESSING  -> PROCESSING
mark_preparation_complete  PROCESSING              -> READY (+ notice)
mark_ready_for_pickup      PROCESSING              -> READY (+ notice)
mark_order_delayed         PROCESSING              notes only (+ notice)
mark_picked_up             READY                   -> COMPLETED, PICKED_UP
schedule_pickup            CONFIRMED..READY        pickup_date
=========================  ======================  =====================

``get_stats`` reports the fulfilment backlog: orders in preparation,
orders waiting at the venue, READY orders untouched for
``OVERDUE_PICKUP_AFTER`` and orders completed since local midnight.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import structlog
from django.db import transaction
from django.utils import timezone

from modules.notifications.constants import NotificationType
from modules.notifications.dtos import NotificationPayload
from modules.orders.constants import (
    PICKUP_ELIGIBLE_STATUSES,
    OrderStatus,
    PickupStatus,
)
from modules.orders.dtos import (
    ERROR_INELIGIBLE_STATE,
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    ERROR_TRANSIENT,
    PickupDetails,
    ProgressResult,
)
from modules.orders.exceptions import (
    IneligibleState,
    InvalidTransition,
    OrderNotFound,
    TransientStoreError,
)

if TYPE_CHECKING:
    from modules.audit.services import AuditLogger
    from modules.notifications.services import NotificationDispatcher
    from modules.orders.models import Order
    from modules.orders.pickup import PickupScheduler
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderTransitionService

logger = structlog.get_logger(__name__)

OVERDUE_PICKUP_AFTER = timedelta(hours=24)


class OrderProgressService:
    def __init__(
        self,
        order_repository: IOrderRepository,
        transition_service: OrderTransitionService,
        pickup_scheduler: PickupScheduler,
        dispatcher: NotificationDispatcher,
        audit_logger: AuditLogger,
    ) -> None:
        self._order_repo = order_repository
        self._transitions = transition_service
        self._pickup = pickup_scheduler
        self._dispatcher = dispatcher
        self._audit = audit_logger

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def mark_preparation_started(
        self,
        order_id: Any,
        actor: str,
        notes: Optional[str] = None,
        estimated_time: Optional[str] = None,
    ) -> ProgressResult:
        def start() -> ProgressResult:
            order = self._get(order_id)
            if order.order_status not in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING):
                raise IneligibleState(
                    f"Order status {order.order_status} is not eligible for preparation."
                )
            if order.order_status != OrderStatus.PROCESSING:
                order = self._transitions.change_order_status(
                    order.id,
                    OrderStatus.PROCESSING,
                    actor,
                    reason="Preparation started",
                    notes=notes or "Preparation started",
                )

            message = f"We have started preparing order {order.order_number}."
            if estimated_time:
                message += f" Estimated ready time: {estimated_time}."
            self._dispatcher.send(
                NotificationType.ORDER_PREPARATION_STARTED,
                order.user_id,
                NotificationPayload(
                    title="Preparation started",
                    message=message,
                    order_id=order.id,
                    data={
                        "order_number": order.order_number,
                        "estimated_time": estimated_time,
                    },
                ),
                dedup=True,
            )
            return ProgressResult(
                success=True,
                message="Order preparation started successfully.",
                order=order,
            )

        return self._guard("mark_preparation_started", order_id, start)

    def mark_preparation_complete(
        self, order_id: Any, actor: str, notes: Optional[str] = None
    ) -> ProgressResult:
        """PROCESSING -> READY, announced with the default pickup details."""
        return self._guard(
            "mark_preparation_complete",
            order_id,
            lambda: self._mark_ready(order_id, actor, None, notes),
        )

    def mark_ready_for_pickup(
        self,
        order_id: Any,
        actor: str,
        pickup_location: Optional[str] = None,
        pickup_hours: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ProgressResult:
        """PROCESSING -> READY, announced with the given location and hours."""
        default = self._pickup.default_pickup
        pickup = PickupDetails(
            location=pickup_location or default.location,
            hours=pickup_hours or default.hours,
        )
        return self._guard(
            "mark_ready_for_pickup",
            order_id,
            lambda: self._mark_ready(order_id, actor, pickup, notes),
        )

    def mark_order_delayed(
        self,
        order_id: Any,
        actor: str,
        reason: str,
        new_estimated_time: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ProgressResult:
        """Informational only: records the delay and re-notifies the customer."""

        def delay() -> ProgressResult:
            with transaction.atomic():
                order = self._lock(order_id)
                if order.order_status != OrderStatus.PROCESSING:
                    raise IneligibleState(
                        f"Order status {order.order_status} cannot be marked as delayed."
                    )
                order.notes = notes or f"Order delayed: {reason}"
                self._order_repo.save(order)
                self._audit.order_delayed(actor, order.id, reason, new_estimated_time)

            message = f"Order {order.order_number} is delayed: {reason}."
            if new_estimated_time:
                message += f" New estimated time: {new_estimated_time}."
            self._dispatcher.send(
                NotificationType.ORDER_DELAYED,
                order.user_id,
                NotificationPayload(
                    title="Order delayed",
                    message=message,
                    order_id=order.id,
                    data={
                        "order_number": order.order_number,
                        "reason": reason,
                        "new_estimated_time": new_estimated_time,
                    },
                ),
            )
            return ProgressResult(
                success=True,
                message="Order delay notification sent successfully.",
                order=order,
            )

        return self._guard("mark_order_delayed", order_id, delay)

    def mark_picked_up(self, order_id: Any, actor: str) -> ProgressResult:
        """READY -> COMPLETED and NOT_PICKED_UP -> PICKED_UP in one transaction."""

        def pick_up() -> ProgressResult:
            with transaction.atomic():
                order = self._lock(order_id)
                if order.pickup_status == PickupStatus.PICKED_UP:
                    raise IneligibleState(
                        f"Order {order.order_number} has already been picked up."
                    )
                if order.order_status != OrderStatus.READY:
                    raise IneligibleState(
                        f"Order status {order.order_status} is not ready for pickup."
                    )
                order.pickup_status = PickupStatus.PICKED_UP
                self._order_repo.save(order)
                order = self._transitions.change_order_status(
                    order.id, OrderStatus.COMPLETED, actor, reason="Picked up at venue"
                )
                self._audit.pickup_completed(actor, order.id)

            self._pickup.send_pickup_completed_notification(order)
            return ProgressResult(
                success=True,
                message="Order pickup confirmed successfully.",
                order=order,
            )

        return self._guard("mark_picked_up", order_id, pick_up)

    def schedule_pickup(
        self, order_id: Any, actor: str, pickup_date: date
    ) -> ProgressResult:
        """Set the pickup date of a confirmed, not yet completed order."""

        def schedule() -> ProgressResult:
            with transaction.atomic():
                order = self._lock(order_id)
                if order.order_status not in PICKUP_ELIGIBLE_STATUSES:
                    raise IneligibleState(
                        f"Cannot schedule pickup for an order in {order.order_status}."
                    )
                old_date = order.pickup_date
                if old_date == pickup_date:
                    return ProgressResult(
                        success=True, message="Pickup date unchanged.", order=order
                    )
                order.pickup_date = pickup_date
                self._order_repo.save(order)
                self._audit.pickup_scheduled(actor, order.id, old_date, pickup_date)
            return ProgressResult(
                success=True, message="Pickup date scheduled.", order=order
            )

        return self._guard("schedule_pickup", order_id, schedule)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or timezone.now()
        midnight = timezone.make_aware(
            datetime.combine(timezone.localdate(now), time.min)
        )
        count = self._order_repo.count_by_order_status
        return {
            "processing_orders": count(OrderStatus.PROCESSING),
            "ready_orders": count(OrderStatus.READY),
            "overdue_pickups": count(
                OrderStatus.READY, updated_before=now - OVERDUE_PICKUP_AFTER
            ),
            "completed_today": count(
                OrderStatus.COMPLETED,
                updated_since=midnight,
                updated_before=midnight + timedelta(days=1),
            ),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mark_ready(
        self,
        order_id: Any,
        actor: str,
        pickup: Optional[PickupDetails],
        notes: Optional[str],
    ) -> ProgressResult:
        pickup = pickup or self._pickup.default_pickup
        order = self._get(order_id)
        if order.order_status != OrderStatus.PROCESSING:
            raise IneligibleState(
                f"Order status {order.order_status} is not eligible for pickup."
            )
        order = self._transitions.change_order_status(
            order.id,
            OrderStatus.READY,
            actor,
            reason="Preparation complete",
            notes=notes or f"Ready for pickup at {pickup.location}",
        )
        self._pickup.send_pickup_ready_notification(order, pickup)
        return ProgressResult(
            success=True,
            message="Order marked as ready for pickup successfully.",
            order=order,
        )

    def _get(self, order_id: Any) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _lock(self, order_id: Any) -> Order:
        order = self._order_repo.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def _guard(
        self, action: str, order_id: Any, func: Callable[[], ProgressResult]
    ) -> ProgressResult:
        log = logger.bind(action=action, order_id=str(order_id))
        try:
            result = func()
        except OrderNotFound as exc:
            log.info("order.progress_rejected", error_code=ERROR_NOT_FOUND)
            return ProgressResult(
                success=False, error=str(exc), error_code=ERROR_NOT_FOUND
            )
        except IneligibleState as exc:
            log.warning("order.progress_rejected", error_code=ERROR_INELIGIBLE_STATE)
            return ProgressResult(
                success=False, error=str(exc), error_code=ERROR_INELIGIBLE_STATE
            )
        except InvalidTransition as exc:
            log.warning(
                "order.progress_rejected", error_code=ERROR_INVALID_TRANSITION
            )
            return ProgressResult(
                success=False, error=str(exc), error_code=ERROR_INVALID_TRANSITION
            )
        except TransientStoreError as exc:
            log.error("order.progress_failed", error_code=ERROR_TRANSIENT)
            return ProgressResult(
                success=False, error=str(exc), error_code=ERROR_TRANSIENT
            )

        log.info("order.progress_applied")
        return result
