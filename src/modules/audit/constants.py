"""Audit vocabulary: actors, actions and resources."""

from django.db import models

SYSTEM_ACTOR = "SYSTEM"
"""Actor id recorded for scheduler-driven actions."""

WEBHOOK_ACTOR = "PAYMENT_WEBHOOK"
"""Actor id recorded for changes arriving from the payment provider."""


class AuditAction(models.TextChoices):
    UPDATE_ORDER_STATUS = "UPDATE_ORDER_STATUS", "Update order status"
    UPDATE_PAYMENT_STATUS = "UPDATE_PAYMENT_STATUS", "Update payment status"
    ORDER_DELAYED = "ORDER_DELAYED", "Order delayed"
    MARK_PICKED_UP = "MARK_PICKED_UP", "Mark picked up"
    SCHEDULE_PICKUP = "SCHEDULE_PICKUP", "Schedule pickup"


class AuditResource(models.TextChoices):
    ORDER = "order", "Order"
