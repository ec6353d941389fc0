from datetime import timedelta

from django.apps import AppConfig
from django.conf import settings


def _run_payment_reminders(now=None, deadline=None):
    from modules.orders.factories import build_payment_reminder_service

    return build_payment_reminder_service().process_all(now=now, deadline=deadline)


def _payment_reminder_stats(now=None):
    from modules.orders.factories import build_payment_reminder_service

    return build_payment_reminder_service().get_stats(now=now)


def _run_pickup_reminders(now=None, deadline=None):
    from modules.orders.factories import build_pickup_scheduler

    return build_pickup_scheduler().run(now=now, deadline=deadline)


def _pickup_reminder_stats(now=None):
    from modules.orders.factories import build_pickup_scheduler

    return build_pickup_scheduler().get_stats(now=now)


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.orders"
    label = "orders"

    def ready(self) -> None:
        from modules.core.periodic import PeriodicTask, periodic_tasks
        from modules.orders.events import (
            OrderCancelled,
            OrderStatusChanged,
            PaymentStatusChanged,
        )
        from modules.orders.factories import build_dispatcher
        from modules.orders.handlers import (
            OrderCancelledHandler,
            OrderStatusChangedHandler,
            PaymentStatusChangedHandler,
        )
        from shared.infrastructure.bus import event_bus

        dispatcher = build_dispatcher()
        event_bus.subscribe(OrderStatusChanged, OrderStatusChangedHandler(dispatcher))
        event_bus.subscribe(OrderCancelled, OrderCancelledHandler(dispatcher))
        event_bus.subscribe(
            PaymentStatusChanged, PaymentStatusChangedHandler(dispatcher)
        )

        periodic_tasks.register(
            PeriodicTask(
                name="payment_reminders",
                func=_run_payment_reminders,
                interval=timedelta(minutes=settings.PAYMENT_REMINDER_INTERVAL_MINUTES),
                soft_timeout=settings.SWEEP_SOFT_TIMEOUT_SECONDS,
                stats=_payment_reminder_stats,
            )
        )
        periodic_tasks.register(
            PeriodicTask(
                name="pickup_reminders",
                func=_run_pickup_reminders,
                interval=timedelta(hours=1),
                soft_timeout=settings.SWEEP_SOFT_TIMEOUT_SECONDS,
                stats=_pickup_reminder_stats,
            )
        )
