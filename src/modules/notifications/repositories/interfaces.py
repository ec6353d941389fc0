"""Notification repository interface.

Besides storing notifications, the repository answers the ledger
question "was this notification already sent?" and resolves the admin
recipient list for broadcasts.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.notifications.models import Notification


class INotificationRepository(IRepository["Notification"]):
    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Notification:
        """Persist a new notification.

        Raises ``IntegrityError`` when ``dedup_key`` already exists for
        the recipient.
        """

    @abstractmethod
    def exists(
        self,
        recipient_id: Any,
        notification_type: str,
        order_id: Any,
        day_key: Optional[date] = None,
    ) -> bool:
        """Ledger lookup for a (recipient, type, order[, day]) notification."""

    @abstractmethod
    def admin_recipient_ids(self) -> List[str]:
        """Ids of every active admin user."""

    @abstractmethod
    def recipient_email(self, recipient_id: Any) -> Optional[str]:
        """Email address of the recipient, if any."""

    @abstractmethod
    def for_recipient(self, recipient_id: Any) -> Iterable[Notification]:
        """Queryable collection of the recipient's notifications, newest first."""

    @abstractmethod
    def mark_read(self, notification_id: Any, recipient_id: Any) -> Notification:
        """Mark one of the recipient's notifications read."""

    @abstractmethod
    def mark_all_read(self, recipient_id: Any) -> int:
        """Mark every unread notification of the recipient read."""

    @abstractmethod
    def count_since(self, types: Sequence[str], since: datetime) -> int:
        """Number of notifications of *types* created at or after *since*."""
