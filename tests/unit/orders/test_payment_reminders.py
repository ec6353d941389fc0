"""Unit tests for PaymentReminderService (reminder, warning and expiry sweeps).

Sweeps receive an explicit ``now``; orders are aged relative to it.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from modules.core.periodic import Deadline
from modules.notifications.constants import NotificationType
from modules.notifications.models import Notification
from modules.orders.constants import (
    EXPIRED_ORDER_NOTE,
    EXPIRED_PAYMENT_NOTE,
    OrderStatus,
    PaymentStatus,
)
from modules.orders.exceptions import TransientStoreError
from modules.orders.models import Order
from modules.orders.reminders import PaymentReminderService
from modules.orders.repositories.django_repository import OrderDjangoRepository

pytestmark = pytest.mark.unit


def _hours(value: float) -> timedelta:
    return timedelta(hours=value)


def _sent(order, notification_type) -> int:
    return Notification.objects.filter(order_id=order.id, type=notification_type).count()


class TestWindows:
    @pytest.mark.parametrize(
        "age, expected",
        [
            (_hours(22.99), 0),
            (_hours(23), 1),
            (_hours(23.49), 1),
            (_hours(23.5), 0),
        ],
    )
    def test_reminder_window_is_half_open(self, reminder_service, make_order, now, age, expected):
        order = make_order(age=age, now=now)

        reminder_service.send_payment_reminders(now)

        assert _sent(order, NotificationType.PAYMENT_REMINDER) == expected

    @pytest.mark.parametrize(
        "age, expected",
        [
            (_hours(23.49), 0),
            (_hours(23.5), 1),
            (_hours(23.99), 1),
            (_hours(24), 0),
        ],
    )
    def test_warning_window_is_half_open(self, reminder_service, make_order, now, age, expected):
        order = make_order(age=age, now=now)

        reminder_service.send_payment_deadline_warnings(now)

        assert _sent(order, NotificationType.PAYMENT_DEADLINE_WARNING) == expected

    @pytest.mark.parametrize(
        "age, expired",
        [(_hours(23.99), False), (_hours(24), True), (_hours(72), True)],
    )
    def test_expiry_starts_at_the_deadline(self, reminder_service, make_order, now, age, expired):
        order = make_order(age=age, now=now)

        reminder_service.process_expired_payments(now)

        status = Order.objects.get(id=order.id).order_status
        assert (status == OrderStatus.CANCELLED) is expired

    def test_paid_orders_are_never_swept(self, reminder_service, make_order, now):
        order = make_order(
            age=_hours(30),
            now=now,
            order_status=OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
        )

        report = reminder_service.process_all(now)

        assert report.found == 0
        assert Order.objects.get(id=order.id).order_status == OrderStatus.CONFIRMED


class TestReminderContent:
    def test_reminder_mentions_amount_and_time_left(self, reminder_service, make_order, now):
        order = make_order(age=_hours(23.25), now=now)

        reminder_service.send_payment_reminders(now)

        notification = Notification.objects.get(
            order_id=order.id, type=NotificationType.PAYMENT_REMINDER
        )
        assert "IDR 260,000" in notification.message
        assert "45 minutes" in notification.message
        assert notification.data["time_remaining"] == "45 minutes"
        assert notification.data["order_number"] == order.order_number

    def test_time_remaining_is_counted_from_creation(self, reminder_service, make_order, now):
        order = make_order(age=_hours(20), now=now)

        assert reminder_service.time_remaining(order, now) == _hours(4)
        assert reminder_service.payment_deadline(order) == order.created_at + _hours(24)


class TestDeduplication:
    def test_reminder_is_sent_once(self, reminder_service, make_order, now):
        order = make_order(age=_hours(23.1), now=now)

        first = reminder_service.send_payment_reminders(now)
        second = reminder_service.send_payment_reminders(now + timedelta(minutes=15))

        assert first.processed == 1
        assert second.processed == 0
        assert second.skipped == 1
        assert _sent(order, NotificationType.PAYMENT_REMINDER) == 1

    def test_warning_is_sent_once(self, reminder_service, make_order, now):
        order = make_order(age=_hours(23.6), now=now)

        reminder_service.send_payment_deadline_warnings(now)
        reminder_service.send_payment_deadline_warnings(now + timedelta(minutes=15))

        assert _sent(order, NotificationType.PAYMENT_DEADLINE_WARNING) == 1


class TestExpiry:
    def test_unpaid_order_is_auto_cancelled(self, reminder_service, make_order, now, customer, operator):
        """Order #1001: 235000 + 25000, unpaid at T+24h01m."""
        order = make_order(
            subtotal_amount="235000.00",
            service_fee="25000.00",
            age=timedelta(hours=24, minutes=1),
            now=now,
        )
        assert str(order.total_amount) == "260000.00"

        report = reminder_service.process_all(now)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.order_status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED
        assert order.payment.notes == EXPIRED_PAYMENT_NOTE
        assert order.notes == EXPIRED_ORDER_NOTE
        assert Notification.objects.filter(
            user=customer, order_id=order.id, type=NotificationType.PAYMENT_EXPIRED
        ).count() == 1
        assert Notification.objects.filter(
            user=operator, order_id=order.id, type=NotificationType.ORDER_AUTO_CANCELLED
        ).count() == 1
        assert report.children["payment_expiry"].processed == 1

    def test_second_run_does_not_cancel_again(self, reminder_service, make_order, now, customer):
        order = make_order(age=_hours(25), now=now)

        reminder_service.process_expired_payments(now)
        report = reminder_service.process_expired_payments(now + timedelta(minutes=15))

        assert report.found == 0
        assert Notification.objects.filter(
            user=customer, order_id=order.id, type=NotificationType.PAYMENT_EXPIRED
        ).count() == 1

    def test_one_failure_does_not_abort_the_batch(self, make_order, now, dispatcher, transition_service):
        first = make_order(age=_hours(26), now=now)
        second = make_order(age=_hours(25), now=now)
        flaky = MagicMock(wraps=transition_service)

        def fail_first(order_id, *args, **kwargs):
            if order_id == first.id:
                raise RuntimeError("deadlock detected")
            return transition_service.change_payment_status(order_id, *args, **kwargs)

        flaky.change_payment_status.side_effect = fail_first
        service = PaymentReminderService(OrderDjangoRepository(), flaky, dispatcher)

        report = service.process_expired_payments(now)

        assert report.processed == 1
        assert report.failed == 1
        assert report.failed_order_ids == [str(first.id)]
        assert Order.objects.get(id=first.id).order_status == OrderStatus.PENDING
        assert Order.objects.get(id=second.id).order_status == OrderStatus.CANCELLED


class TestEscalation:
    @pytest.fixture()
    def broken_service(self, dispatcher):
        transitions = MagicMock()
        transitions.change_payment_status.side_effect = RuntimeError("store outage")
        return PaymentReminderService(
            OrderDjangoRepository(), transitions, dispatcher, escalation_threshold=2
        )

    def test_admins_alerted_after_threshold_once_per_day(self, broken_service, make_order, now, operator):
        order = make_order(age=_hours(25), now=now)

        broken_service.process_expired_payments(now)
        assert _sent(order, NotificationType.OPERATIONAL_EXCEPTION) == 0

        broken_service.process_expired_payments(now + timedelta(minutes=15))
        broken_service.process_expired_payments(now + timedelta(minutes=30))

        assert broken_service.expiry_failures(order) == 3
        assert Notification.objects.filter(
            user=operator, order_id=order.id, type=NotificationType.OPERATIONAL_EXCEPTION
        ).count() == 1

    def test_success_clears_failure_count(self, dispatcher, make_order, now):
        order = make_order(age=_hours(25), now=now)
        transitions = MagicMock()
        transitions.change_payment_status.side_effect = RuntimeError("store outage")
        service = PaymentReminderService(OrderDjangoRepository(), transitions, dispatcher)

        service.process_expired_payments(now)
        assert service.expiry_failures(order) == 1

        transitions.change_payment_status.side_effect = None
        transitions.change_payment_status.return_value = order
        service.process_expired_payments(now)

        assert service.expiry_failures(order) == 0


class TestSweepControl:
    def test_expired_deadline_stops_between_orders(self, reminder_service, make_order, now):
        make_order(age=_hours(23.1), now=now)

        report = reminder_service.send_payment_reminders(now, Deadline(0))

        assert report.timed_out
        assert report.found == 1
        assert report.processed == 0

    def test_fetch_failure_is_reported(self, dispatcher, transition_service, now):
        repository = MagicMock()
        repository.find_orders_by_status_and_age.side_effect = TransientStoreError("db down")
        service = PaymentReminderService(repository, transition_service, dispatcher)

        report = service.process_all(now)

        assert report.error == "db down"
        assert report.found == 0

    def test_sweep_walks_every_batch(self, dispatcher, transition_service, make_order, now):
        orders = [make_order(age=_hours(23.1), now=now) for _ in range(3)]
        service = PaymentReminderService(
            OrderDjangoRepository(), transition_service, dispatcher, batch_size=2
        )

        first = service.send_payment_reminders(now)
        second = service.send_payment_reminders(now + timedelta(minutes=15))

        assert (first.found, first.processed) == (3, 3)
        assert (second.found, second.skipped) == (3, 3)
        for order in orders:
            assert _sent(order, NotificationType.PAYMENT_REMINDER) == 1

    def test_failing_expiries_do_not_starve_newer_ones(self, dispatcher, transition_service, make_order, now):
        stuck = [make_order(age=_hours(30 - i), now=now) for i in range(2)]
        newest = make_order(age=_hours(25), now=now)
        stuck_ids = {order.id for order in stuck}
        flaky = MagicMock(wraps=transition_service)

        def fail_stuck(order_id, *args, **kwargs):
            if order_id in stuck_ids:
                raise RuntimeError("row locked")
            return transition_service.change_payment_status(order_id, *args, **kwargs)

        flaky.change_payment_status.side_effect = fail_stuck
        service = PaymentReminderService(
            OrderDjangoRepository(), flaky, dispatcher, batch_size=2
        )

        report = service.process_expired_payments(now)

        assert report.found == 3
        assert report.failed == 2
        assert report.processed == 1
        assert Order.objects.get(id=newest.id).order_status == OrderStatus.CANCELLED

    def test_process_all_aggregates_children(self, reminder_service, make_order, now):
        make_order(age=_hours(23.1), now=now)
        make_order(age=_hours(23.7), now=now)
        make_order(age=_hours(24.5), now=now)

        report = reminder_service.process_all(now)

        assert set(report.children) == {
            "payment_reminder",
            "payment_deadline_warning",
            "payment_expiry",
        }
        assert report.processed == 3
        assert report.as_dict()["children"]["payment_expiry"]["processed"] == 1

    def test_milestones_must_be_ordered(self, dispatcher, transition_service):
        with pytest.raises(ValueError):
            PaymentReminderService(
                OrderDjangoRepository(),
                transition_service,
                dispatcher,
                reminder_after=_hours(23.5),
                warning_after=_hours(23),
            )


class TestStats:
    def test_counts_per_window(self, reminder_service, make_order, now):
        make_order(age=_hours(1), now=now)
        make_order(age=_hours(23.2), now=now)
        make_order(age=_hours(23.8), now=now)
        make_order(age=_hours(30), now=now)

        stats = reminder_service.get_stats(now)

        assert stats == {
            "pending_orders": 4,
            "orders_needing_reminders": 1,
            "orders_needing_warnings": 1,
            "expired_orders": 1,
        }
