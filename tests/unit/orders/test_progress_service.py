"""Unit tests for OrderProgressService (operator fulfilment steps)."""

from __future__ import annotations

from datetime import date, timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from modules.audit.constants import AuditAction
from modules.audit.models import AuditLogEntry
from modules.notifications.constants import NotificationType
from modules.notifications.models import Notification
from modules.orders.constants import OrderStatus, PaymentStatus, PickupStatus
from modules.orders.dtos import (
    ERROR_INELIGIBLE_STATE,
    ERROR_NOT_FOUND,
    ERROR_TRANSIENT,
)
from modules.orders.exceptions import TransientStoreError
from modules.orders.models import Order
from modules.orders.progress import OrderProgressService

pytestmark = pytest.mark.unit

ACTOR = "operator-1"


def _notifications(order, notification_type):
    return Notification.objects.filter(order_id=order.id, type=notification_type)


@pytest.fixture()
def confirmed_order(make_order):
    return make_order(
        order_status=OrderStatus.CONFIRMED,
        payment_status=PaymentStatus.PAID,
        pickup_date=date(2026, 10, 25),
    )


@pytest.fixture()
def processing_order(make_order):
    return make_order(
        order_status=OrderStatus.PROCESSING,
        payment_status=PaymentStatus.PAID,
        pickup_date=date(2026, 10, 25),
    )


@pytest.fixture()
def ready_order(make_order):
    return make_order(
        order_status=OrderStatus.READY,
        payment_status=PaymentStatus.PAID,
        pickup_date=date(2026, 10, 25),
    )


class TestPreparationStarted:
    def test_confirmed_moves_to_processing_and_notifies(
        self, progress_service, confirmed_order
    ):
        result = progress_service.mark_preparation_started(
            confirmed_order.id, ACTOR, estimated_time="14:00"
        )

        assert result.success
        assert result.order.order_status == OrderStatus.PROCESSING
        notification = _notifications(
            confirmed_order, NotificationType.ORDER_PREPARATION_STARTED
        ).get()
        assert "14:00" in notification.message

    def test_processing_is_accepted_without_a_second_transition(
        self, progress_service, processing_order
    ):
        result = progress_service.mark_preparation_started(processing_order.id, ACTOR)

        assert result.success
        assert not AuditLogEntry.objects.filter(
            resource_id=str(processing_order.id)
        ).exists()

    def test_repeat_does_not_duplicate_notification(
        self, progress_service, confirmed_order
    ):
        progress_service.mark_preparation_started(confirmed_order.id, ACTOR)
        progress_service.mark_preparation_started(confirmed_order.id, ACTOR)

        assert (
            _notifications(
                confirmed_order, NotificationType.ORDER_PREPARATION_STARTED
            ).count()
            == 1
        )

    def test_pending_order_is_ineligible(self, progress_service, make_order):
        order = make_order()

        result = progress_service.mark_preparation_started(order.id, ACTOR)

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE
        assert Order.objects.get(id=order.id).order_status == OrderStatus.PENDING

    def test_ready_order_is_left_untouched(self, progress_service, ready_order):
        result = progress_service.mark_preparation_started(ready_order.id, ACTOR)

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE
        reloaded = Order.objects.get(id=ready_order.id)
        assert reloaded.order_status == OrderStatus.READY
        assert reloaded.updated_at == ready_order.updated_at
        assert not AuditLogEntry.objects.filter(
            resource_id=str(ready_order.id)
        ).exists()
        assert not Notification.objects.filter(order_id=ready_order.id).exists()

    def test_unknown_order(self, progress_service):
        result = progress_service.mark_preparation_started(uuid4(), ACTOR)

        assert not result.success
        assert result.error_code == ERROR_NOT_FOUND


class TestReadyForPickup:
    def test_complete_preparation_uses_default_pickup(
        self, progress_service, processing_order, settings
    ):
        result = progress_service.mark_preparation_complete(processing_order.id, ACTOR)

        assert result.success
        assert result.order.order_status == OrderStatus.READY
        notification = _notifications(processing_order, NotificationType.ORDER_READY).get()
        assert notification.data["pickup_location"] == settings.PICKUP_DEFAULT_LOCATION
        assert notification.data["pickup_hours"] == settings.PICKUP_DEFAULT_HOURS

    def test_ready_for_pickup_uses_given_location(
        self, progress_service, processing_order
    ):
        result = progress_service.mark_ready_for_pickup(
            processing_order.id,
            ACTOR,
            pickup_location="Hall B, booth 12",
            pickup_hours="10:00 - 16:00",
        )

        assert result.success
        notification = _notifications(processing_order, NotificationType.ORDER_READY).get()
        assert "Hall B, booth 12" in notification.message
        assert notification.data["pickup_hours"] == "10:00 - 16:00"

    def test_confirmed_order_is_ineligible(self, progress_service, confirmed_order):
        result = progress_service.mark_ready_for_pickup(confirmed_order.id, ACTOR)

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE
        assert not _notifications(confirmed_order, NotificationType.ORDER_READY).exists()


class TestDelay:
    def test_delay_records_notes_audit_and_notification(
        self, progress_service, processing_order
    ):
        result = progress_service.mark_order_delayed(
            processing_order.id, ACTOR, reason="Supplier late", new_estimated_time="16:00"
        )

        assert result.success
        order = Order.objects.get(id=processing_order.id)
        assert order.order_status == OrderStatus.PROCESSING
        assert order.notes == "Order delayed: Supplier late"
        assert AuditLogEntry.objects.filter(
            resource_id=str(order.id), action=AuditAction.ORDER_DELAYED
        ).exists()
        notification = _notifications(order, NotificationType.ORDER_DELAYED).get()
        assert "Supplier late" in notification.message
        assert "16:00" in notification.message

    def test_every_delay_is_announced(self, progress_service, processing_order):
        progress_service.mark_order_delayed(processing_order.id, ACTOR, reason="one")
        progress_service.mark_order_delayed(processing_order.id, ACTOR, reason="two")

        assert (
            _notifications(processing_order, NotificationType.ORDER_DELAYED).count() == 2
        )

    def test_ready_order_cannot_be_delayed(self, progress_service, ready_order):
        result = progress_service.mark_order_delayed(ready_order.id, ACTOR, reason="x")

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE


class TestPickedUp:
    def test_ready_order_is_completed_and_picked_up(
        self, progress_service, ready_order
    ):
        result = progress_service.mark_picked_up(ready_order.id, ACTOR)

        assert result.success
        order = Order.objects.get(id=ready_order.id)
        assert order.order_status == OrderStatus.COMPLETED
        assert order.pickup_status == PickupStatus.PICKED_UP
        actions = set(
            AuditLogEntry.objects.filter(resource_id=str(order.id)).values_list(
                "action", flat=True
            )
        )
        assert actions == {AuditAction.UPDATE_ORDER_STATUS, AuditAction.MARK_PICKED_UP}
        assert _notifications(order, NotificationType.PICKUP_COMPLETED).count() == 1

    def test_second_pickup_is_rejected(self, progress_service, ready_order):
        progress_service.mark_picked_up(ready_order.id, ACTOR)

        result = progress_service.mark_picked_up(ready_order.id, ACTOR)

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE
        assert "already been picked up" in result.error

    def test_processing_order_cannot_be_picked_up(
        self, progress_service, processing_order
    ):
        result = progress_service.mark_picked_up(processing_order.id, ACTOR)

        assert not result.success
        order = Order.objects.get(id=processing_order.id)
        assert order.pickup_status == PickupStatus.NOT_PICKED_UP


class TestSchedulePickup:
    def test_confirmed_order_gets_new_date(self, progress_service, confirmed_order):
        result = progress_service.schedule_pickup(
            confirmed_order.id, ACTOR, date(2026, 11, 1)
        )

        assert result.success
        assert Order.objects.get(id=confirmed_order.id).pickup_date == date(2026, 11, 1)
        entry = AuditLogEntry.objects.get(
            resource_id=str(confirmed_order.id), action=AuditAction.SCHEDULE_PICKUP
        )
        assert entry.details["new_pickup_date"] == "2026-11-01"

    def test_same_date_is_a_noop(self, progress_service, confirmed_order):
        result = progress_service.schedule_pickup(
            confirmed_order.id, ACTOR, date(2026, 10, 25)
        )

        assert result.success
        assert not AuditLogEntry.objects.filter(
            resource_id=str(confirmed_order.id)
        ).exists()

    def test_pending_order_is_ineligible(self, progress_service, make_order):
        order = make_order()

        result = progress_service.schedule_pickup(order.id, ACTOR, date(2026, 11, 1))

        assert not result.success
        assert result.error_code == ERROR_INELIGIBLE_STATE


class TestStoreFailures:
    def test_transient_error_is_reported(
        self, transition_service, pickup_scheduler, dispatcher, audit_logger
    ):
        repository = MagicMock()
        repository.get_by_id.side_effect = TransientStoreError("db down")
        service = OrderProgressService(
            repository, transition_service, pickup_scheduler, dispatcher, audit_logger
        )

        result = service.mark_preparation_complete(uuid4(), ACTOR)

        assert not result.success
        assert result.error_code == ERROR_TRANSIENT


class TestStats:
    def test_backlog_counts(self, progress_service, make_order, now):
        def at(order_status, updated_at):
            order = make_order(order_status=order_status, payment_status=PaymentStatus.PAID)
            Order.objects.filter(id=order.id).update(updated_at=updated_at)

        at(OrderStatus.PROCESSING, now - timedelta(hours=1))
        at(OrderStatus.READY, now - timedelta(hours=1))
        at(OrderStatus.READY, now - timedelta(hours=25))
        at(OrderStatus.COMPLETED, now - timedelta(hours=2))
        at(OrderStatus.COMPLETED, now - timedelta(days=1))
        at(OrderStatus.CONFIRMED, now)

        assert progress_service.get_stats(now) == {
            "processing_orders": 1,
            "ready_orders": 2,
            "overdue_pickups": 1,
            "completed_today": 1,
        }
