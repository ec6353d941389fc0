"""Composition root for the orders context.

Views, Celery tasks and management commands build their services here so
each collaborator is wired the same way everywhere.
"""

from __future__ import annotations

from modules.audit.repositories import AuditLogDjangoRepository
from modules.audit.services import AuditLogger
from modules.notifications.repositories import NotificationDjangoRepository
from modules.notifications.services import NotificationDispatcher
from modules.orders.pickup import PickupScheduler
from modules.orders.progress import OrderProgressService
from modules.orders.reminders import PaymentReminderService
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderTransitionService
from modules.orders.webhooks import PaymentWebhookService
from shared.infrastructure.bus import event_bus


def build_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(repository=NotificationDjangoRepository())


def build_audit_logger() -> AuditLogger:
    return AuditLogger(repository=AuditLogDjangoRepository())


def build_transition_service() -> OrderTransitionService:
    return OrderTransitionService(
        order_repository=OrderDjangoRepository(),
        audit_logger=build_audit_logger(),
        event_bus=event_bus,
    )


def build_payment_reminder_service() -> PaymentReminderService:
    return PaymentReminderService(
        order_repository=OrderDjangoRepository(),
        transition_service=build_transition_service(),
        dispatcher=build_dispatcher(),
    )


def build_pickup_scheduler() -> PickupScheduler:
    return PickupScheduler(
        order_repository=OrderDjangoRepository(),
        dispatcher=build_dispatcher(),
    )


def build_progress_service() -> OrderProgressService:
    return OrderProgressService(
        order_repository=OrderDjangoRepository(),
        transition_service=build_transition_service(),
        pickup_scheduler=build_pickup_scheduler(),
        dispatcher=build_dispatcher(),
        audit_logger=build_audit_logger(),
    )


def build_webhook_service() -> PaymentWebhookService:
    return PaymentWebhookService(
        order_repository=OrderDjangoRepository(),
        transition_service=build_transition_service(),
    )
