"""Notification records.

A ``Notification`` is both what the recipient sees in their inbox and the
deduplication ledger for scheduled notifications: when ``dedup_key`` is
set, at most one row per (recipient, key) can exist, enforced by a partial
unique constraint.  Keys come from ``constants.ledger_key``.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.notifications.constants import NotificationType


class Notification(BaseModel):
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type: models.CharField = models.CharField(
        max_length=40, choices=NotificationType.choices
    )
    title: models.CharField = models.CharField(max_length=200)
    message: models.TextField = models.TextField()
    data: models.JSONField = models.JSONField(default=dict, blank=True)
    order_id: models.UUIDField = models.UUIDField(null=True, blank=True)
    dedup_key: models.CharField = models.CharField(  # noqa: DJ01
        max_length=120, null=True, blank=True, default=None
    )
    day_key: models.DateField = models.DateField(null=True, blank=True, default=None)
    is_read: models.BooleanField = models.BooleanField(default=False)
    read_at: models.DateTimeField = models.DateTimeField(
        null=True, blank=True, default=None
    )

    class Meta:
        db_table = "notifications"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="notif_user_created_idx"),
            models.Index(fields=["order_id", "type"], name="notif_order_type_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "dedup_key"],
                condition=models.Q(dedup_key__isnull=False),
                name="notif_user_dedup_key_uniq",
            ),
        ]

    def mark_as_read(self) -> None:
        if self.is_read:
            return
        self.is_read = True
        self.read_at = timezone.now()
        self.save(update_fields=["is_read", "read_at"])

    def __str__(self) -> str:
        return f"{self.type} -> {self.user_id}"
