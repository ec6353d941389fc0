"""Pickup Scheduler.

Two daily sweeps remind customers about their pickup date:

- H-1: orders whose ``pickup_date`` is tomorrow;
- same day: orders whose ``pickup_date`` is today.

Both only consider orders still expected at the venue (CONFIRMED,
PROCESSING or READY, not yet picked up).  Reminders are deduplicated per
(order, type, calendar day), so the sweeps can run several times a day
and still remind at most once per day.

The ready-for-pickup and pickup-completed notifications are not swept;
the progress controller calls them directly.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Dict, Optional

import structlog
from django.conf import settings
from django.utils import timezone

from modules.core.periodic import Deadline, SweepReport, iter_batches
from modules.notifications.constants import PICKUP_NOTIFICATION_TYPES, NotificationType
from modules.notifications.dtos import DeliveryResult, NotificationPayload
from modules.orders.constants import PICKUP_ELIGIBLE_STATUSES
from modules.orders.dtos import PickupDetails
from modules.orders.exceptions import TransientStoreError
from modules.orders.formatting import format_pickup_date

if TYPE_CHECKING:
    from modules.notifications.services import NotificationDispatcher
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)


class PickupScheduler:
    def __init__(
        self,
        order_repository: IOrderRepository,
        dispatcher: NotificationDispatcher,
        batch_size: Optional[int] = None,
        default_pickup: Optional[PickupDetails] = None,
    ) -> None:
        self._order_repo = order_repository
        self._dispatcher = dispatcher
        self._batch_size = batch_size or settings.SWEEP_BATCH_SIZE
        self.default_pickup = default_pickup or PickupDetails(
            location=settings.PICKUP_DEFAULT_LOCATION,
            hours=settings.PICKUP_DEFAULT_HOURS,
        )

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def send_h1_pickup_reminders(
        self, today: Optional[date] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        today = today or timezone.localdate()
        return self._reminder_sweep(
            "pickup_h1",
            NotificationType.PICKUP_REMINDER_H1,
            today + timedelta(days=1),
            today,
            deadline or Deadline.never(),
        )

    def send_today_pickup_reminders(
        self, today: Optional[date] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        today = today or timezone.localdate()
        return self._reminder_sweep(
            "pickup_today",
            NotificationType.PICKUP_REMINDER_TODAY,
            today,
            today,
            deadline or Deadline.never(),
        )

    def send_pickup_reminders_for_date(
        self,
        pickup_date: date,
        today: Optional[date] = None,
        deadline: Optional[Deadline] = None,
    ) -> SweepReport:
        """Operator-triggered reminder for every order picked up on *pickup_date*."""
        today = today or timezone.localdate()
        return self._reminder_sweep(
            f"pickup_date_{pickup_date.isoformat()}",
            NotificationType.PICKUP_REMINDER_TODAY,
            pickup_date,
            today,
            deadline or Deadline.never(),
        )

    def run(
        self, now: Optional[datetime] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        today = timezone.localdate(now) if now else timezone.localdate()
        deadline = deadline or Deadline.never()
        report = SweepReport(name="pickup_reminders")
        report.add_child(self.send_h1_pickup_reminders(today, deadline))
        report.add_child(self.send_today_pickup_reminders(today, deadline))
        return report.finish()

    # ------------------------------------------------------------------
    # On-demand notifications
    # ------------------------------------------------------------------

    def send_pickup_ready_notification(
        self, order: Order, pickup: Optional[PickupDetails] = None
    ) -> DeliveryResult:
        pickup = pickup or self.default_pickup
        return self._dispatcher.send(
            NotificationType.ORDER_READY,
            order.user_id,
            NotificationPayload(
                title="Your order is ready for pickup",
                message=(
                    f"Order {order.order_number} is ready. Pick it up at "
                    f"{pickup.location} ({pickup.hours}) on "
                    f"{format_pickup_date(order.pickup_date)}."
                ),
                order_id=order.id,
                data={
                    "order_number": order.order_number,
                    "pickup_location": pickup.location,
                    "pickup_hours": pickup.hours,
                    "pickup_date": order.pickup_date,
                },
            ),
            dedup=True,
        )

    def send_pickup_completed_notification(self, order: Order) -> DeliveryResult:
        return self._dispatcher.send(
            NotificationType.PICKUP_COMPLETED,
            order.user_id,
            NotificationPayload(
                title="Order picked up",
                message=(
                    f"Order {order.order_number} has been collected. "
                    "Thank you for your purchase!"
                ),
                order_id=order.id,
                data={"order_number": order.order_number},
            ),
            dedup=True,
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or timezone.now()
        today = timezone.localdate(now)
        return {
            "orders_for_tomorrow": self._order_repo.count_by_pickup_date(
                today + timedelta(days=1), PICKUP_ELIGIBLE_STATUSES
            ),
            "orders_for_today": self._order_repo.count_by_pickup_date(
                today, PICKUP_ELIGIBLE_STATUSES
            ),
            "notifications_last_24h": self._dispatcher.count_sent_since(
                PICKUP_NOTIFICATION_TYPES, now - timedelta(hours=24)
            ),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reminder_sweep(
        self,
        name: str,
        notification_type: str,
        pickup_date: date,
        today: date,
        deadline: Deadline,
    ) -> SweepReport:
        report = SweepReport(name=name)
        candidates = iter_batches(
            lambda after, limit: self._order_repo.find_orders_by_pickup_date(
                pickup_date, PICKUP_ELIGIBLE_STATUSES, limit=limit, after=after
            ),
            self._batch_size,
        )
        try:
            for order in candidates:
                report.found += 1
                if deadline.expired:
                    report.timed_out = True
                    logger.warning("sweep.timed_out", sub_sweep=name)
                    break

                result = self._dispatcher.send(
                    notification_type,
                    order.user_id,
                    self._reminder_payload(order, notification_type),
                    dedup=True,
                    day_key=today,
                )
                if result.sent:
                    report.processed += 1
                elif result.skipped:
                    report.skipped += 1
                else:
                    report.record_failure(order.id)
                    logger.error(
                        "sweep.order_failed",
                        sub_sweep=name,
                        order_id=str(order.id),
                        error=str(result.error),
                        error_kind=type(result.error).__name__,
                    )
        except TransientStoreError as exc:
            report.error = str(exc)
            logger.error("sweep.fetch_failed", sub_sweep=name, error=str(exc))
        return report.finish()

    def _reminder_payload(
        self, order: Order, notification_type: str
    ) -> NotificationPayload:
        when = (
            "tomorrow"
            if notification_type == NotificationType.PICKUP_REMINDER_H1
            else "today"
        )
        pickup = self.default_pickup
        return NotificationPayload(
            title=f"Pickup {when}",
            message=(
                f"Reminder: order {order.order_number} is scheduled for pickup "
                f"{when} ({format_pickup_date(order.pickup_date)}) at "
                f"{pickup.location}, {pickup.hours}."
            ),
            order_id=order.id,
            data={
                "order_number": order.order_number,
                "pickup_date": order.pickup_date,
                "pickup_location": pickup.location,
                "pickup_hours": pickup.hours,
            },
        )
