from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from modules.orders.factories import (
    build_audit_logger,
    build_dispatcher,
    build_payment_reminder_service,
    build_pickup_scheduler,
    build_progress_service,
    build_transition_service,
)
from modules.orders.models import Order, Payment
from modules.orders.repositories.django_repository import OrderDjangoRepository

User = get_user_model()


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _clear_cache():
    """Sweep locks, failure counters and throttle history live in the cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer():
    return User.objects.create_user(
        username="customer", email="customer@example.com", password="testpass123"
    )


@pytest.fixture()
def operator():
    return User.objects.create_user(
        username="operator",
        email="operator@example.com",
        password="testpass123",
        is_staff=True,
    )


@pytest.fixture()
def customer_client(customer):
    client = APIClient()
    client.force_authenticate(user=customer)
    return client


@pytest.fixture()
def operator_client(operator):
    client = APIClient()
    client.force_authenticate(user=operator)
    return client


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@pytest.fixture()
def now():
    """Fixed local noon, so day-scoped ledger keys never straddle midnight."""
    return timezone.make_aware(datetime(2026, 10, 18, 12, 0))


@pytest.fixture()
def make_order(customer):
    """Create an order, then place it at a given age and state.

    State is written directly so tests can start from any point of the
    lifecycle without replaying it through the engine.
    """
    repository = OrderDjangoRepository()

    def _make(
        user=None,
        age: timedelta | None = None,
        order_status: str | None = None,
        payment_status: str | None = None,
        pickup_date=None,
        subtotal_amount: str = "235000.00",
        service_fee: str = "25000.00",
        now=None,
    ) -> Order:
        order = repository.create(
            {
                "user_id": (user or customer).pk,
                "subtotal_amount": Decimal(subtotal_amount),
                "service_fee": Decimal(service_fee),
                "pickup_date": pickup_date,
            }
        )
        updates = {}
        if age is not None:
            updates["created_at"] = (now or timezone.now()) - age
        if order_status is not None:
            updates["order_status"] = order_status
        if updates:
            Order.objects.filter(id=order.id).update(**updates)
        if payment_status is not None:
            Payment.objects.filter(order_id=order.id).update(status=payment_status)
        return repository.get_by_id(str(order.id))

    return _make


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository()


@pytest.fixture()
def dispatcher():
    return build_dispatcher()


@pytest.fixture()
def audit_logger():
    return build_audit_logger()


@pytest.fixture()
def transition_service():
    return build_transition_service()


@pytest.fixture()
def reminder_service():
    return build_payment_reminder_service()


@pytest.fixture()
def pickup_scheduler():
    return build_pickup_scheduler()


@pytest.fixture()
def progress_service():
    return build_progress_service()
