"""Order repository interface.

Extends ``IRepository[Order]`` with what the transition engine and the
schedulers need: locked reads, payment persistence and the two sweep
queries (by payment age and by pickup date).

Services and schedulers depend exclusively on this contract.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.orders.models import Order, Payment


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate (Order + Payment)."""

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order and its pending payment atomically.

        ``data`` must include ``user_id`` and ``subtotal_amount``; optional
        keys are ``service_fee``, ``pickup_date``, ``notes`` and
        ``payment_method``.
        """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with its payment and owner."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet[Order]:
        """Queryable collection of orders with optional filters."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order and its payment under a row-level lock."""

    @abstractmethod
    def get_by_payment_id(self, payment_id: str) -> Optional[Order]:
        """Retrieve the order owning *payment_id*."""

    @abstractmethod
    def save_payment(self, payment: Payment) -> Payment:
        """Persist a payment."""

    @abstractmethod
    def find_orders_by_status_and_age(
        self,
        payment_status: str,
        min_age: timedelta,
        max_age: Optional[timedelta],
        now: datetime,
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, Any]] = None,
    ) -> List[Order]:
        """Pending orders whose age since creation lies in ``[min_age, max_age)``.

        ``max_age=None`` leaves the window open-ended.  Results are ordered
        by ``(created_at, id)`` and start strictly after the ``after`` cursor.
        """

    @abstractmethod
    def count_by_status_and_age(
        self,
        payment_status: str,
        min_age: Optional[timedelta],
        max_age: Optional[timedelta],
        now: datetime,
    ) -> int:
        """Count of the orders ``find_orders_by_status_and_age`` would return."""

    @abstractmethod
    def find_orders_by_pickup_date(
        self,
        day: date,
        statuses: Sequence[str],
        limit: Optional[int] = None,
        after: Optional[Tuple[datetime, Any]] = None,
    ) -> List[Order]:
        """Orders picked up on *day*, in *statuses*, not yet picked up.

        Paged like ``find_orders_by_status_and_age``.
        """

    @abstractmethod
    def count_by_pickup_date(self, day: date, statuses: Sequence[str]) -> int:
        """Count of the orders ``find_orders_by_pickup_date`` would return."""

    @abstractmethod
    def count_by_order_status(
        self,
        order_status: str,
        updated_since: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
    ) -> int:
        """Orders in *order_status* last updated in ``[updated_since, updated_before)``."""
