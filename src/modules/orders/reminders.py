"""Payment Reminder Scheduler.

Each run performs three sweeps over pending orders, keyed on the order's
age since creation (``now - created_at``):

=====================  ======================  ==========================
sweep                  age window              action
=====================  ======================  ==========================
reminder               [23h, 23.5h)            PAYMENT_REMINDER once
deadline warning       [23.5h, 24h)            PAYMENT_DEADLINE_WARNING once
expiry                 [24h, ...)              Payment -> FAILED (cancels)
=====================  ======================  ==========================

Windows are inclusive-lower/exclusive-upper so an order belongs to exactly
one window at any instant.  Reminder and warning are deduplicated through
the notification ledger for the lifetime of the order; the expiry uses
the transition engine, where a repeated FAILED is a no-op.

A failure on one order is logged and counted; the sweep moves on and the
order is picked up again on the next run.  After
``EXPIRY_ESCALATION_THRESHOLD`` consecutive failed cancellations of the
same order, admins get an OPERATIONAL_EXCEPTION notification (at most one
per order per day).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Optional

import structlog
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from modules.audit.constants import SYSTEM_ACTOR
from modules.core.periodic import Deadline, SweepReport, iter_batches
from modules.notifications.constants import NotificationType
from modules.notifications.dtos import NotificationPayload
from modules.orders.constants import (
    EXPIRED_ORDER_NOTE,
    EXPIRED_PAYMENT_NOTE,
    CancellationCause,
    PaymentStatus,
)
from modules.orders.exceptions import InvalidTransition, TransientStoreError
from modules.orders.formatting import format_amount, format_time_remaining

if TYPE_CHECKING:
    from modules.notifications.services import NotificationDispatcher
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderTransitionService

logger = structlog.get_logger(__name__)

EXPIRY_FAILURES_KEY = "payment-expiry:failures:{order_id}"
EXPIRY_FAILURES_TTL = 7 * 24 * 60 * 60


class PaymentReminderService:
    """Time-driven reminders, warnings and auto-cancellation of unpaid orders."""

    def __init__(
        self,
        order_repository: IOrderRepository,
        transition_service: OrderTransitionService,
        dispatcher: NotificationDispatcher,
        payment_window: Optional[timedelta] = None,
        reminder_after: Optional[timedelta] = None,
        warning_after: Optional[timedelta] = None,
        batch_size: Optional[int] = None,
        escalation_threshold: Optional[int] = None,
    ) -> None:
        self._order_repo = order_repository
        self._transitions = transition_service
        self._dispatcher = dispatcher
        self.payment_window = payment_window or timedelta(
            hours=settings.PAYMENT_WINDOW_HOURS
        )
        self.reminder_after = reminder_after or timedelta(
            hours=settings.PAYMENT_REMINDER_AFTER_HOURS
        )
        self.warning_after = warning_after or timedelta(
            hours=settings.PAYMENT_WARNING_AFTER_HOURS
        )
        if not self.reminder_after < self.warning_after < self.payment_window:
            raise ValueError(
                "Payment milestones must satisfy reminder < warning < window."
            )
        self._batch_size = batch_size or settings.SWEEP_BATCH_SIZE
        self._escalation_threshold = (
            escalation_threshold or settings.EXPIRY_ESCALATION_THRESHOLD
        )

    # ------------------------------------------------------------------
    # Deadline helpers
    # ------------------------------------------------------------------

    def payment_deadline(self, order: Order) -> datetime:
        return order.created_at + self.payment_window

    def time_remaining(self, order: Order, now: Optional[datetime] = None) -> timedelta:
        return self.payment_deadline(order) - (now or timezone.now())

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def send_payment_reminders(
        self, now: Optional[datetime] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        return self._notification_sweep(
            "payment_reminder",
            NotificationType.PAYMENT_REMINDER,
            self.reminder_after,
            self.warning_after,
            now or timezone.now(),
            deadline or Deadline.never(),
            self._reminder_payload,
        )

    def send_payment_deadline_warnings(
        self, now: Optional[datetime] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        return self._notification_sweep(
            "payment_deadline_warning",
            NotificationType.PAYMENT_DEADLINE_WARNING,
            self.warning_after,
            self.payment_window,
            now or timezone.now(),
            deadline or Deadline.never(),
            self._warning_payload,
        )

    def process_expired_payments(
        self, now: Optional[datetime] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        """Fail the payment of every pending order past its window."""
        now = now or timezone.now()
        deadline = deadline or Deadline.never()
        report = SweepReport(name="payment_expiry")

        try:
            for order in self._pending_orders(self.payment_window, None, now):
                report.found += 1
                if deadline.expired:
                    report.timed_out = True
                    logger.warning("sweep.timed_out", sub_sweep=report.name)
                    break
                self._expire(order, now, report)
        except TransientStoreError as exc:
            report.error = str(exc)
            logger.error("sweep.fetch_failed", sub_sweep=report.name, error=str(exc))

        return report.finish()

    def _expire(self, order: Order, now: datetime, report: SweepReport) -> None:
        log = logger.bind(order_id=str(order.id), order_number=order.order_number)
        try:
            self._transitions.change_payment_status(
                order.id,
                PaymentStatus.FAILED,
                SYSTEM_ACTOR,
                reason="Payment window expired",
                payment_notes=EXPIRED_PAYMENT_NOTE,
                order_notes=EXPIRED_ORDER_NOTE,
                cancellation_cause=CancellationCause.PAYMENT_EXPIRED,
            )
        except InvalidTransition as exc:
            # Paid or cancelled between the query and the lock.
            report.skipped += 1
            log.info("payment.expiry_skipped", reason=str(exc))
            return
        except Exception as exc:
            # One order must never abort the batch; it is retried next run.
            report.record_failure(order.id)
            log.error(
                "sweep.order_failed",
                sub_sweep=report.name,
                error=str(exc),
                error_kind=type(exc).__name__,
                exc_info=True,
            )
            self._register_expiry_failure(order, now)
            return

        report.processed += 1
        self._clear_expiry_failures(order)
        log.info("payment.auto_cancelled")

    def process_all(
        self, now: Optional[datetime] = None, deadline: Optional[Deadline] = None
    ) -> SweepReport:
        """Run the three sweeps in order; each one sees the same ``now``."""
        now = now or timezone.now()
        deadline = deadline or Deadline.never()
        report = SweepReport(name="payment_reminders")
        report.add_child(self.send_payment_reminders(now, deadline))
        report.add_child(self.send_payment_deadline_warnings(now, deadline))
        report.add_child(self.process_expired_payments(now, deadline))
        return report.finish()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or timezone.now()
        count = self._order_repo.count_by_status_and_age
        return {
            "pending_orders": count(PaymentStatus.PENDING, None, None, now),
            "orders_needing_reminders": count(
                PaymentStatus.PENDING, self.reminder_after, self.warning_after, now
            ),
            "orders_needing_warnings": count(
                PaymentStatus.PENDING, self.warning_after, self.payment_window, now
            ),
            "expired_orders": count(PaymentStatus.PENDING, self.payment_window, None, now),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _notification_sweep(
        self,
        name: str,
        notification_type: str,
        min_age: timedelta,
        max_age: timedelta,
        now: datetime,
        deadline: Deadline,
        build_payload: Callable[[Order, datetime], NotificationPayload],
    ) -> SweepReport:
        report = SweepReport(name=name)
        try:
            for order in self._pending_orders(min_age, max_age, now):
                report.found += 1
                if deadline.expired:
                    report.timed_out = True
                    logger.warning("sweep.timed_out", sub_sweep=name)
                    break

                result = self._dispatcher.send(
                    notification_type,
                    order.user_id,
                    build_payload(order, now),
                    dedup=True,
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

    def _pending_orders(
        self, min_age: timedelta, max_age: Optional[timedelta], now: datetime
    ) -> Iterator[Order]:
        return iter_batches(
            lambda after, limit: self._order_repo.find_orders_by_status_and_age(
                PaymentStatus.PENDING, min_age, max_age, now, limit=limit, after=after
            ),
            self._batch_size,
        )

    def _reminder_payload(self, order: Order, now: datetime) -> NotificationPayload:
        remaining = format_time_remaining(self.time_remaining(order, now))
        return NotificationPayload(
            title="Payment reminder",
            message=(
                f"Order {order.order_number} is waiting for your bank transfer of "
                f"{format_amount(order.total_amount)}. Time remaining: {remaining}."
            ),
            order_id=order.id,
            data=self._payment_data(order, remaining),
        )

    def _warning_payload(self, order: Order, now: datetime) -> NotificationPayload:
        remaining = format_time_remaining(self.time_remaining(order, now))
        return NotificationPayload(
            title="Payment deadline approaching",
            message=(
                f"Only {remaining} left to pay {format_amount(order.total_amount)} "
                f"for order {order.order_number}. Unpaid orders are cancelled "
                "automatically."
            ),
            order_id=order.id,
            data=self._payment_data(order, remaining),
        )

    def _payment_data(self, order: Order, remaining: str) -> Dict[str, Any]:
        return {
            "order_number": order.order_number,
            "total_amount": str(order.total_amount),
            "payment_deadline": self.payment_deadline(order).isoformat(),
            "time_remaining": remaining,
        }

    def _register_expiry_failure(self, order: Order, now: datetime) -> None:
        key = EXPIRY_FAILURES_KEY.format(order_id=order.id)
        if cache.add(key, 1, timeout=EXPIRY_FAILURES_TTL):
            failures = 1
        else:
            try:
                failures = cache.incr(key)
            except ValueError:
                # Expired between add and incr.
                cache.set(key, 1, timeout=EXPIRY_FAILURES_TTL)
                failures = 1

        if failures < self._escalation_threshold:
            return

        logger.error(
            "payment.expiry_escalated",
            order_id=str(order.id),
            consecutive_failures=failures,
        )
        self._dispatcher.send_to_admins(
            NotificationType.OPERATIONAL_EXCEPTION,
            NotificationPayload(
                title="Automatic cancellation keeps failing",
                message=(
                    f"Order {order.order_number} is past its payment deadline but "
                    f"could not be cancelled after {failures} attempts. "
                    "Manual intervention may be required."
                ),
                order_id=order.id,
                data={
                    "order_number": order.order_number,
                    "consecutive_failures": failures,
                },
            ),
            dedup=True,
            day_key=timezone.localdate(now),
        )

    def _clear_expiry_failures(self, order: Order) -> None:
        cache.delete(EXPIRY_FAILURES_KEY.format(order_id=order.id))

    def expiry_failures(self, order: Order) -> int:
        return cache.get(EXPIRY_FAILURES_KEY.format(order_id=order.id), 0)
