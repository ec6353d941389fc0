"""Unit tests for payment webhook normalization and handling."""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest

from modules.notifications.constants import NotificationType
from modules.notifications.models import Notification
from modules.orders.constants import OrderStatus, PaymentStatus
from modules.orders.dtos import ERROR_INVALID_TRANSITION, ERROR_NOT_FOUND
from modules.orders.models import Order
from modules.orders.webhooks import (
    PaymentWebhookService,
    normalize_payment_status,
    normalize_webhook,
)

pytestmark = pytest.mark.unit


class TestNormalization:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("success", PaymentStatus.PAID),
            ("COMPLETED", PaymentStatus.PAID),
            (" paid ", PaymentStatus.PAID),
            ("failed", PaymentStatus.FAILED),
            ("error", PaymentStatus.FAILED),
            ("refunded", PaymentStatus.REFUNDED),
            ("chargeback", PaymentStatus.PENDING),
            ("", PaymentStatus.PENDING),
            (None, PaymentStatus.PENDING),
        ],
    )
    def test_provider_status_mapping(self, raw, expected):
        assert normalize_payment_status(raw) == expected

    def test_camel_case_payment_id(self):
        dto = normalize_webhook({"paymentId": "abc", "status": "success", "amount": "260000"})

        assert dto.payment_id == "abc"
        assert dto.status == PaymentStatus.PAID
        assert dto.amount == Decimal("260000")
        assert dto.provider_status == "success"

    def test_snake_case_payment_id(self):
        dto = normalize_webhook({"payment_id": "abc", "status": "failed"})

        assert dto.payment_id == "abc"
        assert dto.amount is None

    def test_missing_payment_id_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_webhook({"status": "success"})

    def test_blank_payment_id_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_webhook({"paymentId": "   ", "status": "success"})

    def test_non_numeric_amount_is_rejected(self):
        with pytest.raises(ValueError):
            normalize_webhook({"paymentId": "abc", "status": "success", "amount": "lots"})


@pytest.fixture()
def webhook_service(order_repository, transition_service):
    return PaymentWebhookService(order_repository, transition_service)


class TestPaymentWebhookService:
    def test_unrecognised_status_is_a_noop(self, webhook_service, make_order):
        order = make_order()

        result = webhook_service.handle(
            {"paymentId": str(order.payment.id), "status": "on_hold"}
        )

        assert result.success
        assert not result.changed
        assert Order.objects.get(id=order.id).order_status == OrderStatus.PENDING

    def test_unknown_payment(self, webhook_service):
        result = webhook_service.handle({"paymentId": str(uuid4()), "status": "success"})

        assert not result.success
        assert result.error_code == ERROR_NOT_FOUND

    def test_malformed_payment_id_is_not_found(self, webhook_service):
        result = webhook_service.handle({"paymentId": "not-a-uuid", "status": "success"})

        assert result.error_code == ERROR_NOT_FOUND

    def test_paid_confirms_the_order(self, webhook_service, make_order, customer):
        order = make_order()

        result = webhook_service.handle(
            {"paymentId": str(order.payment.id), "status": "success", "amount": "260000"}
        )

        assert result.success
        assert result.changed
        order = Order.objects.select_related("payment").get(id=order.id)
        assert order.order_status == OrderStatus.CONFIRMED
        assert order.payment.status == PaymentStatus.PAID
        assert order.payment.notes == "Updated via webhook: success"
        assert Notification.objects.filter(
            user=customer, order_id=order.id, type=NotificationType.PAYMENT_CONFIRMED
        ).exists()

    def test_failed_cancels_the_order(self, webhook_service, make_order):
        order = make_order()

        webhook_service.handle({"payment_id": str(order.payment.id), "status": "failed"})

        assert Order.objects.get(id=order.id).order_status == OrderStatus.CANCELLED

    def test_repeated_delivery_changes_nothing(self, webhook_service, make_order):
        order = make_order()
        payload = {"paymentId": str(order.payment.id), "status": "paid"}

        webhook_service.handle(payload)
        result = webhook_service.handle(payload)

        assert result.success
        assert not result.changed

    def test_illegal_payment_edge_is_rejected(self, webhook_service, make_order):
        order = make_order(payment_status=PaymentStatus.FAILED, order_status=OrderStatus.CANCELLED)

        result = webhook_service.handle({"paymentId": str(order.payment.id), "status": "paid"})

        assert not result.success
        assert result.error_code == ERROR_INVALID_TRANSITION
