"""Unit tests for OrderTransitionService (State Transition Engine).

Covers:
- Legal and illegal order/payment edges; same-state no-ops.
- Cross-constraints (PAID confirms, FAILED/REFUNDED cancel, cancel settles).
- One audit entry per status that changed.
- Events published after commit; handler failures never undo a change.
- Structured results and error codes at the ``transition`` boundary.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from django.db import DatabaseError

from modules.audit.constants import WEBHOOK_ACTOR, AuditAction
from modules.audit.models import AuditLogEntry
from modules.audit.services import AuditLogger
from modules.notifications.constants import NotificationType
from modules.notifications.models import Notification
from modules.orders.constants import CancellationCause, OrderStatus, PaymentStatus
from modules.orders.dtos import (
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    ERROR_TRANSIENT,
)
from modules.orders.events import OrderCancelled, OrderStatusChanged, PaymentStatusChanged
from modules.orders.exceptions import InvalidTransition, OrderNotFound, TransientStoreError
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderTransitionService
from shared.infrastructure.bus import InMemoryEventBus

pytestmark = pytest.mark.unit

ACTOR = "operator-1"


class RecordingHandler:
    def __init__(self):
        self.events = []

    def handle(self, event) -> None:
        self.events.append(event)


@pytest.fixture()
def bus():
    bus = InMemoryEventBus()
    recorder = RecordingHandler()
    for event_class in (OrderStatusChanged, OrderCancelled, PaymentStatusChanged):
        bus.subscribe(event_class, recorder)
    bus.recorder = recorder
    return bus


@pytest.fixture()
def engine(audit_logger, bus):
    return OrderTransitionService(
        order_repository=OrderDjangoRepository(),
        audit_logger=audit_logger,
        event_bus=bus,
    )


def _audit_actions(order):
    return list(
        AuditLogEntry.objects.filter(resource_id=str(order.id))
        .order_by("created_at", "id")
        .values_list("action", flat=True)
    )


# ---------------------------------------------------------------------------
# Order status
# ---------------------------------------------------------------------------


class TestOrderStatus:
    def test_legal_edge_is_applied_and_audited(self, engine, make_order):
        order = make_order(order_status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        updated = engine.change_order_status(order.id, OrderStatus.PROCESSING, ACTOR)

        assert updated.order_status == OrderStatus.PROCESSING
        assert Order.objects.get(id=order.id).order_status == OrderStatus.PROCESSING
        entry = AuditLogEntry.objects.get(resource_id=str(order.id))
        assert entry.action == AuditAction.UPDATE_ORDER_STATUS
        assert entry.actor_id == ACTOR
        assert entry.details["old_status"] == OrderStatus.CONFIRMED
        assert entry.details["new_status"] == OrderStatus.PROCESSING

    def test_illegal_edge_raises_and_mutates_nothing(self, engine, make_order, bus):
        order = make_order()

        with pytest.raises(InvalidTransition):
            engine.change_order_status(order.id, OrderStatus.READY, ACTOR)

        assert Order.objects.get(id=order.id).order_status == OrderStatus.PENDING
        assert _audit_actions(order) == []
        assert bus.recorder.events == []

    def test_ready_cannot_be_cancelled(self, engine, make_order):
        order = make_order(order_status=OrderStatus.READY, payment_status=PaymentStatus.PAID)

        with pytest.raises(InvalidTransition):
            engine.change_order_status(order.id, OrderStatus.CANCELLED, ACTOR)

    def test_unknown_status_is_rejected(self, engine, make_order):
        order = make_order()

        with pytest.raises(InvalidTransition):
            engine.change_order_status(order.id, "SHIPPED", ACTOR)

    def test_same_state_is_a_noop(self, engine, make_order, bus):
        order = make_order(order_status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)
        before = Order.objects.get(id=order.id).updated_at

        engine.change_order_status(order.id, OrderStatus.CONFIRMED, ACTOR)

        assert Order.objects.get(id=order.id).updated_at == before
        assert _audit_actions(order) == []
        assert bus.recorder.events == []

    def test_missing_order_raises(self, engine):
        with pytest.raises(OrderNotFound):
            engine.change_order_status(uuid4(), OrderStatus.CONFIRMED, ACTOR)

    def test_notes_are_stored(self, engine, make_order):
        order = make_order(order_status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        engine.change_order_status(order.id, OrderStatus.PROCESSING, ACTOR, notes="On it")

        assert Order.objects.get(id=order.id).notes == "On it"


class TestOperatorCancellation:
    def test_cancel_pending_order_fails_its_payment(self, engine, make_order):
        order = make_order()

        engine.change_order_status(order.id, OrderStatus.CANCELLED, ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.order_status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED
        assert _audit_actions(order) == [
            AuditAction.UPDATE_ORDER_STATUS,
            AuditAction.UPDATE_PAYMENT_STATUS,
        ]

    def test_cancel_paid_order_refunds_its_payment(self, engine, make_order):
        order = make_order(order_status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PAID)

        engine.change_order_status(order.id, OrderStatus.CANCELLED, ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.order_status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.REFUNDED

    def test_cancellation_event_carries_operator_cause(self, engine, make_order, bus):
        order = make_order()

        engine.change_order_status(order.id, OrderStatus.CANCELLED, ACTOR)

        cancelled = [e for e in bus.recorder.events if isinstance(e, OrderCancelled)]
        assert len(cancelled) == 1
        assert cancelled[0].cause == CancellationCause.OPERATOR
        assert cancelled[0].previous_status == OrderStatus.PENDING


# ---------------------------------------------------------------------------
# Payment status
# ---------------------------------------------------------------------------


class TestPaymentStatus:
    def test_paid_confirms_pending_order(self, engine, make_order):
        """Order #1002: PENDING -> PAID moves the order to CONFIRMED atomically."""
        order = make_order()

        engine.change_payment_status(order.id, PaymentStatus.PAID, WEBHOOK_ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.payment.status == PaymentStatus.PAID
        assert order.order_status == OrderStatus.CONFIRMED
        actions = _audit_actions(order)
        assert actions.count(AuditAction.UPDATE_PAYMENT_STATUS) == 1
        assert actions.count(AuditAction.UPDATE_ORDER_STATUS) == 1

    def test_paid_on_cancelled_order_is_rejected(self, engine, make_order):
        order = make_order(order_status=OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            engine.change_payment_status(order.id, PaymentStatus.PAID, WEBHOOK_ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.payment.status == PaymentStatus.PENDING

    def test_failed_cancels_order_with_given_notes(self, engine, make_order):
        order = make_order()

        engine.change_payment_status(
            order.id,
            PaymentStatus.FAILED,
            ACTOR,
            payment_notes="Bank rejected",
            order_notes="Cancelled: payment failed",
        )

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.order_status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED
        assert order.payment.notes == "Bank rejected"
        assert order.notes == "Cancelled: payment failed"

    def test_refund_cancels_order_when_still_cancellable(self, engine, make_order, bus):
        order = make_order(order_status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        engine.change_payment_status(order.id, PaymentStatus.REFUNDED, ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.payment.status == PaymentStatus.REFUNDED
        assert order.order_status == OrderStatus.CANCELLED
        cancelled = [e for e in bus.recorder.events if isinstance(e, OrderCancelled)]
        assert cancelled[0].cause == CancellationCause.PAYMENT_REFUNDED

    def test_refund_leaves_ready_order_alone(self, engine, make_order):
        order = make_order(order_status=OrderStatus.READY, payment_status=PaymentStatus.PAID)

        engine.change_payment_status(order.id, PaymentStatus.REFUNDED, ACTOR)

        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.payment.status == PaymentStatus.REFUNDED
        assert order.order_status == OrderStatus.READY

    def test_failed_to_paid_is_illegal(self, engine, make_order):
        order = make_order(order_status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED)

        with pytest.raises(InvalidTransition):
            engine.change_payment_status(order.id, PaymentStatus.PAID, ACTOR)

    def test_repeated_status_is_a_noop(self, engine, make_order, bus):
        order = make_order(order_status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        engine.change_payment_status(order.id, PaymentStatus.PAID, WEBHOOK_ACTOR)

        assert _audit_actions(order) == []
        assert bus.recorder.events == []

    def test_amount_is_recorded(self, engine, make_order):
        order = make_order()

        engine.change_payment_status(
            order.id, PaymentStatus.PAID, WEBHOOK_ACTOR, amount=Decimal("260000")
        )

        assert Order.objects.get(id=order.id).payment.amount == Decimal("260000.00")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_paid_publishes_payment_and_order_events(self, engine, make_order, bus):
        order = make_order()

        engine.change_payment_status(order.id, PaymentStatus.PAID, WEBHOOK_ACTOR)

        kinds = [type(e) for e in bus.recorder.events]
        assert kinds == [PaymentStatusChanged, OrderStatusChanged]
        assert bus.recorder.events[1].new_status == OrderStatus.CONFIRMED
        assert all(e.aggregate_id == order.id for e in bus.recorder.events)

    def test_domain_events_are_cleared_after_publish(self, engine, make_order):
        order = make_order()

        updated = engine.change_payment_status(order.id, PaymentStatus.PAID, ACTOR)

        assert updated.domain_events == []

    def test_handler_failure_does_not_undo_transition(self, audit_logger, make_order):
        bus = InMemoryEventBus()

        class Exploding:
            def handle(self, event):
                raise RuntimeError("boom")

        bus.subscribe(PaymentStatusChanged, Exploding())
        engine = OrderTransitionService(OrderDjangoRepository(), audit_logger, bus)
        order = make_order()

        engine.change_payment_status(order.id, PaymentStatus.PAID, ACTOR)

        assert Order.objects.get(id=order.id).payment.status == PaymentStatus.PAID


class TestNotificationsThroughGlobalBus:
    def test_confirmation_reaches_customer(self, transition_service, make_order, customer):
        order = make_order()

        transition_service.change_payment_status(order.id, PaymentStatus.PAID, WEBHOOK_ACTOR)

        types = set(
            Notification.objects.filter(user=customer, order_id=order.id).values_list(
                "type", flat=True
            )
        )
        assert types == {
            NotificationType.PAYMENT_CONFIRMED,
            NotificationType.ORDER_CONFIRMED,
        }

    def test_operator_cancellation_notifies_customer_and_admins(
        self, transition_service, make_order, customer, operator
    ):
        order = make_order()

        transition_service.change_order_status(order.id, OrderStatus.CANCELLED, ACTOR)

        assert Notification.objects.filter(
            user=customer, order_id=order.id, type=NotificationType.ORDER_CANCELLED
        ).count() == 1
        assert Notification.objects.filter(
            user=operator, order_id=order.id, type=NotificationType.ORDER_CANCELLED
        ).count() == 1


# ---------------------------------------------------------------------------
# Boundary
# ---------------------------------------------------------------------------


class TestTransitionBoundary:
    def test_success_result(self, engine, make_order):
        order = make_order()

        result = engine.transition(order.id, ACTOR, payment_status=PaymentStatus.PAID)

        assert result.success
        assert result.changed
        assert result.order_status == OrderStatus.CONFIRMED
        assert result.payment_status == PaymentStatus.PAID
        assert result.order.id == order.id

    def test_noop_result(self, engine, make_order):
        order = make_order()

        result = engine.transition(order.id, ACTOR, order_status=OrderStatus.PENDING)

        assert result.success
        assert not result.changed

    def test_invalid_transition_result(self, engine, make_order):
        order = make_order()

        result = engine.transition(order.id, ACTOR, order_status=OrderStatus.COMPLETED)

        assert not result.success
        assert result.error_code == ERROR_INVALID_TRANSITION
        assert "PENDING" in result.error

    def test_not_found_result(self, engine):
        result = engine.transition(uuid4(), ACTOR, order_status=OrderStatus.CONFIRMED)

        assert not result.success
        assert result.error_code == ERROR_NOT_FOUND

    def test_transient_result(self, audit_logger, bus):
        repository = MagicMock()
        repository.get_for_update.side_effect = TransientStoreError("db down")
        engine = OrderTransitionService(repository, audit_logger, bus)

        result = engine.transition(uuid4(), ACTOR, order_status=OrderStatus.CONFIRMED)

        assert not result.success
        assert result.error_code == ERROR_TRANSIENT

    def test_exactly_one_target_is_required(self, engine, make_order):
        order = make_order()

        with pytest.raises(ValueError):
            engine.transition(order.id, ACTOR)
        with pytest.raises(ValueError):
            engine.transition(
                order.id,
                ACTOR,
                order_status=OrderStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
            )

    def test_audit_failure_does_not_block_transition(self, bus, make_order):
        broken_repository = MagicMock()
        broken_repository.create.side_effect = DatabaseError("audit table locked")
        engine = OrderTransitionService(
            OrderDjangoRepository(), AuditLogger(broken_repository), bus
        )
        order = make_order()

        result = engine.transition(order.id, ACTOR, order_status=OrderStatus.CONFIRMED)

        assert result.success
        assert Order.objects.get(id=order.id).order_status == OrderStatus.CONFIRMED
        assert _audit_actions(order) == []
