"""Unit tests for the Order/Payment model state helpers.

Covers:
- Transition tables (legal edges, terminal states).
- Model-level helpers (can_transition_to, is_terminal, awaits_pickup).
- total_amount recomputation and order number format.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

import pytest

from modules.orders.constants import (
    PAYMENT_TERMINAL_STATES,
    PAYMENT_TRANSITIONS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
    PickupStatus,
)

pytestmark = pytest.mark.unit


class TestTransitionTables:
    def test_every_order_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(OrderStatus.values)

    def test_every_payment_status_has_an_entry(self):
        assert set(PAYMENT_TRANSITIONS) == set(PaymentStatus.values)

    def test_terminal_states_have_no_outgoing_edges(self):
        for terminal in TERMINAL_STATES:
            assert VALID_TRANSITIONS[terminal] == set()
        for terminal in PAYMENT_TERMINAL_STATES:
            assert PAYMENT_TRANSITIONS[terminal] == set()

    def test_ready_cannot_be_cancelled(self):
        assert OrderStatus.CANCELLED not in VALID_TRANSITIONS[OrderStatus.READY]

    @pytest.mark.parametrize(
        "source",
        [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING],
    )
    def test_pre_ready_states_can_be_cancelled(self, source):
        assert OrderStatus.CANCELLED in VALID_TRANSITIONS[source]

    def test_no_state_can_skip_ahead(self):
        assert OrderStatus.READY not in VALID_TRANSITIONS[OrderStatus.PENDING]
        assert OrderStatus.COMPLETED not in VALID_TRANSITIONS[OrderStatus.PROCESSING]

    def test_refund_only_from_paid(self):
        sources = [s for s, targets in PAYMENT_TRANSITIONS.items() if PaymentStatus.REFUNDED in targets]
        assert sources == [PaymentStatus.PAID]


class TestOrderModel:
    def test_total_is_subtotal_plus_fee(self, make_order):
        order = make_order(subtotal_amount="235000.00", service_fee="25000.00")

        assert order.total_amount == Decimal("260000.00")
        assert order.payment.amount == Decimal("260000.00")
        assert order.payment.status == PaymentStatus.PENDING
        assert order.order_status == OrderStatus.PENDING

    def test_total_is_recomputed_on_save(self, make_order):
        order = make_order()
        order.service_fee = Decimal("5000.00")
        order.save(update_fields=["service_fee"])
        order.refresh_from_db()

        assert order.total_amount == Decimal("240000.00")

    def test_order_number_format(self, make_order):
        order = make_order()
        assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{6}", order.order_number)

    def test_order_number_is_unique_per_order(self, make_order):
        assert make_order().order_number != make_order().order_number

    def test_can_transition_to(self, make_order):
        order = make_order()
        assert order.can_transition_to(OrderStatus.CONFIRMED)
        assert not order.can_transition_to(OrderStatus.READY)

    def test_is_terminal(self, make_order):
        assert make_order(order_status=OrderStatus.COMPLETED).is_terminal
        assert make_order(order_status=OrderStatus.CANCELLED).is_terminal
        assert not make_order(order_status=OrderStatus.READY).is_terminal

    def test_awaits_pickup(self, make_order):
        assert make_order(order_status=OrderStatus.READY).awaits_pickup
        assert not make_order(order_status=OrderStatus.PENDING).awaits_pickup

        picked = make_order(order_status=OrderStatus.READY)
        picked.pickup_status = PickupStatus.PICKED_UP
        assert not picked.awaits_pickup

    def test_pickup_days_from(self, make_order):
        order = make_order(pickup_date=date(2026, 10, 20))
        assert order.pickup_days_from(date(2026, 10, 19)) == 1
        assert make_order().pickup_days_from(date(2026, 10, 19)) is None


class TestPaymentModel:
    def test_payment_helpers(self, make_order):
        payment = make_order(payment_status=PaymentStatus.PAID).payment

        assert payment.can_transition_to(PaymentStatus.REFUNDED)
        assert not payment.can_transition_to(PaymentStatus.FAILED)
        assert not payment.is_terminal
