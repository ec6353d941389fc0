"""Integration tests for the Celery configuration and sweep tasks."""

from datetime import timedelta

import pytest

from modules.orders.constants import OrderStatus
from modules.orders.models import Order

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def _celery_eager(settings):
    """Run tasks synchronously inside the test process."""
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True


class TestCeleryConfig:
    def test_celery_app_is_importable(self):
        from config.celery import app

        assert app.main == "fulfillment"

    def test_celery_app_exported_from_init(self):
        from config import celery_app

        assert celery_app.main == "fulfillment"

    def test_celery_serializer_is_json(self, settings):
        assert settings.CELERY_TASK_SERIALIZER == "json"
        assert settings.CELERY_RESULT_SERIALIZER == "json"
        assert settings.CELERY_ACCEPT_CONTENT == ["json"]

    def test_celery_timezone_matches_django(self, settings):
        assert settings.CELERY_TIMEZONE == settings.TIME_ZONE

    def test_beat_schedules_both_sweeps(self, settings):
        tasks = {entry["task"] for entry in settings.CELERY_BEAT_SCHEDULE.values()}

        assert tasks == {
            "orders.process_payment_reminders",
            "orders.process_pickup_reminders",
        }


class TestSweepTasks:
    def test_payment_reminders_task(self, make_order):
        from modules.orders.tasks import process_payment_reminders

        order = make_order(age=timedelta(hours=25))

        result = process_payment_reminders.delay()

        assert result.successful()
        assert result.result["name"] == "payment_reminders"
        assert result.result["children"]["payment_expiry"]["processed"] == 1
        assert Order.objects.get(id=order.id).order_status == OrderStatus.CANCELLED

    def test_pickup_reminders_task(self):
        from modules.orders.tasks import process_pickup_reminders

        result = process_pickup_reminders.delay()

        assert result.successful()
        assert set(result.result["children"]) == {"pickup_h1", "pickup_today"}
