"""Notification Dispatcher.

Turns a logical business event into one persisted ``Notification`` per
recipient and, when enabled, an email copy of it.  Delivery is
best-effort: a storage or mail failure is logged as a non-fatal
``NotificationDeliveryError`` and returned inside the ``DeliveryResult``,
never raised, so it cannot abort the transition that triggered it.

With ``dedup=True`` the notification is also a ledger entry: the key
``(type, order[, day])`` is checked before writing and enforced by a
unique constraint, so concurrent sweeps cannot both send it.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

import structlog
from django.conf import settings
from django.core.mail import send_mail
from django.db import DatabaseError, IntegrityError, transaction

from modules.notifications.constants import ledger_key
from modules.notifications.dtos import (
    DeliveryResult,
    DeliveryStatus,
    NotificationPayload,
)
from modules.notifications.exceptions import NotificationDeliveryError

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.notifications.models import Notification
    from modules.notifications.repositories.interfaces import (
        INotificationRepository,
    )

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Idempotent, best-effort notification fan-out."""

    def __init__(
        self,
        repository: INotificationRepository,
        email_enabled: Optional[bool] = None,
    ) -> None:
        self._repo = repository
        if email_enabled is None:
            email_enabled = getattr(settings, "NOTIFICATIONS_EMAIL_ENABLED", False)
        self._email_enabled = email_enabled

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def already_sent(
        self,
        recipient_id: Any,
        notification_type: str,
        order_id: Any,
        day_key: Optional[date] = None,
    ) -> bool:
        return self._repo.exists(recipient_id, notification_type, order_id, day_key)

    def count_sent_since(self, types: Sequence[str], since: datetime) -> int:
        return self._repo.count_since(types, since)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def send(
        self,
        notification_type: str,
        recipient_id: Any,
        payload: NotificationPayload,
        dedup: bool = False,
        day_key: Optional[date] = None,
    ) -> DeliveryResult:
        """Persist one notification for *recipient_id*.

        ``dedup`` makes the call a no-op (``skipped``) when the ledger
        already holds this notification for the recipient; ``day_key``
        scopes the ledger entry to one calendar day.
        """
        if dedup and payload.order_id is None:
            raise ValueError("Deduplicated notifications must reference an order.")

        recipient = str(recipient_id)
        log = logger.bind(
            notification_type=str(notification_type),
            recipient_id=recipient,
            order_id=str(payload.order_id) if payload.order_id else None,
        )
        dedup_key = (
            ledger_key(notification_type, payload.order_id, day_key) if dedup else None
        )

        try:
            if dedup and self.already_sent(
                recipient_id, notification_type, payload.order_id, day_key
            ):
                log.info("notification.skipped_duplicate")
                return self._result(DeliveryStatus.SKIPPED, recipient, notification_type)

            with transaction.atomic():
                notification = self._repo.create(
                    {
                        "recipient_id": recipient_id,
                        "type": notification_type,
                        "title": payload.title,
                        "message": payload.message,
                        "data": _payload_data(payload),
                        "order_id": payload.order_id,
                        "dedup_key": dedup_key,
                        "day_key": day_key,
                    }
                )
        except IntegrityError:
            if dedup:
                # Lost the race against a concurrent sweep.
                log.info("notification.skipped_duplicate", race=True)
                return self._result(DeliveryStatus.SKIPPED, recipient, notification_type)
            return self._failure(log, recipient, notification_type)
        except DatabaseError:
            return self._failure(log, recipient, notification_type)

        log.info("notification.sent", notification_id=str(notification.id))
        if self._email_enabled:
            self._send_email(recipient_id, payload, log)
        return self._result(
            DeliveryStatus.SENT,
            recipient,
            notification_type,
            notification_id=notification.id,
        )

    def send_to_admins(
        self,
        notification_type: str,
        payload: NotificationPayload,
        dedup: bool = False,
        day_key: Optional[date] = None,
    ) -> List[DeliveryResult]:
        """Broadcast ``send`` to every active admin."""
        try:
            admin_ids = self._repo.admin_recipient_ids()
        except DatabaseError:
            error = NotificationDeliveryError(
                f"Could not resolve admin recipients for {notification_type}."
            )
            logger.error(
                "notification.delivery_failed",
                error_kind=error.kind,
                non_fatal=True,
                notification_type=str(notification_type),
                recipient_id="admins",
                exc_info=True,
            )
            return [
                self._result(
                    DeliveryStatus.FAILED, "admins", notification_type, error=error
                )
            ]

        if not admin_ids:
            logger.warning(
                "notification.no_admins", notification_type=str(notification_type)
            )
        return [
            self.send(notification_type, admin_id, payload, dedup=dedup, day_key=day_key)
            for admin_id in admin_ids
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _send_email(self, recipient_id: Any, payload: NotificationPayload, log) -> None:
        try:
            address = self._repo.recipient_email(recipient_id)
            if not address:
                return
            send_mail(
                subject=payload.title,
                message=payload.message,
                from_email=None,
                recipient_list=[address],
                fail_silently=False,
            )
        except (DatabaseError, OSError, ValueError):
            error = NotificationDeliveryError("Email fan-out failed.")
            log.error(
                "notification.email_failed",
                error_kind=error.kind,
                non_fatal=True,
                exc_info=True,
            )

    def _failure(self, log, recipient: str, notification_type: str) -> DeliveryResult:
        error = NotificationDeliveryError(
            f"Could not persist {notification_type} for recipient {recipient}."
        )
        log.error(
            "notification.delivery_failed",
            error_kind=error.kind,
            non_fatal=True,
            exc_info=True,
        )
        return self._result(
            DeliveryStatus.FAILED, recipient, notification_type, error=error
        )

    @staticmethod
    def _result(
        status: DeliveryStatus,
        recipient: str,
        notification_type: str,
        notification_id: Any = None,
        error: Optional[Exception] = None,
    ) -> DeliveryResult:
        return DeliveryResult(
            status=status,
            recipient_id=recipient,
            notification_type=str(notification_type),
            notification_id=notification_id,
            error=error,
        )


class NotificationInbox:
    """Recipient-facing reads and read-state updates."""

    def __init__(self, repository: INotificationRepository) -> None:
        self._repo = repository

    def list_for(self, recipient_id: Any) -> QuerySet[Notification]:
        return self._repo.for_recipient(recipient_id)

    def mark_read(self, notification_id: Any, recipient_id: Any) -> Notification:
        return self._repo.mark_read(notification_id, recipient_id)

    def mark_all_read(self, recipient_id: Any) -> int:
        count = self._repo.mark_all_read(recipient_id)
        logger.info(
            "notification.marked_all_read", recipient_id=str(recipient_id), count=count
        )
        return count


def _payload_data(payload: NotificationPayload) -> dict:
    data = {key: _jsonable(value) for key, value in payload.data.items()}
    if payload.order_id is not None:
        data.setdefault("order_id", str(payload.order_id))
    return data


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)
