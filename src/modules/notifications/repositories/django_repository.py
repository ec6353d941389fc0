"""Django ORM implementation of the notification repository."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db.models import Q, QuerySet
from django.utils import timezone

from modules.notifications.constants import ledger_key
from modules.notifications.exceptions import NotificationNotFound
from modules.notifications.models import Notification
from modules.notifications.repositories.interfaces import INotificationRepository


class NotificationDjangoRepository(INotificationRepository):
    def create(self, data: Dict[str, Any]) -> Notification:
        notification = Notification(
            user_id=data["recipient_id"],
            type=data["type"],
            title=data["title"],
            message=data["message"],
            data=data.get("data") or {},
            order_id=data.get("order_id"),
            dedup_key=data.get("dedup_key"),
            day_key=data.get("day_key"),
        )
        notification.save()
        return notification

    def get_by_id(self, id: str) -> Optional[Notification]:
        try:
            return Notification.objects.filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Notification]:
        queryset = Notification.objects.all()
        if filters:
            queryset = queryset.filter(**filters)
        return list(queryset)

    def save(self, entity: Notification) -> Notification:
        entity.save()
        return entity

    def exists(
        self,
        recipient_id: Any,
        notification_type: str,
        order_id: Any,
        day_key: Optional[date] = None,
    ) -> bool:
        key = ledger_key(notification_type, order_id, day_key)
        return Notification.objects.filter(
            Q(dedup_key=key)
            | Q(type=notification_type, order_id=order_id, day_key=day_key),
            user_id=recipient_id,
        ).exists()

    def admin_recipient_ids(self) -> List[str]:
        user_model = get_user_model()
        return [
            str(pk)
            for pk in user_model.objects.filter(is_active=True)
            .filter(Q(is_staff=True) | Q(is_superuser=True))
            .order_by("pk")
            .values_list("pk", flat=True)
        ]

    def recipient_email(self, recipient_id: Any) -> Optional[str]:
        user_model = get_user_model()
        email = (
            user_model.objects.filter(pk=recipient_id)
            .values_list("email", flat=True)
            .first()
        )
        return email or None

    def for_recipient(self, recipient_id: Any) -> QuerySet[Notification]:
        return Notification.objects.filter(user_id=recipient_id).order_by(
            "-created_at", "-id"
        )

    def mark_read(self, notification_id: Any, recipient_id: Any) -> Notification:
        try:
            notification = Notification.objects.filter(
                id=notification_id, user_id=recipient_id
            ).first()
        except (ValueError, ValidationError):
            notification = None
        if notification is None:
            raise NotificationNotFound(f"Notification {notification_id} not found.")
        notification.mark_as_read()
        return notification

    def mark_all_read(self, recipient_id: Any) -> int:
        return Notification.objects.filter(user_id=recipient_id, is_read=False).update(
            is_read=True, read_at=timezone.now()
        )

    def count_since(self, types: Sequence[str], since: datetime) -> int:
        return Notification.objects.filter(
            type__in=list(types), created_at__gte=since
        ).count()
