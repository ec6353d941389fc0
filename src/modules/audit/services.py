"""Audit Logger.

Records every state-changing action of the order lifecycle and serves the
audit review queries.

``record`` is fire-and-forget from the caller's point of view: it writes
inside its own savepoint, so a failed audit insert neither raises nor
poisons the caller's transaction.  When the caller's transaction rolls
back, the entry rolls back with it, which keeps a status change and its
audit entry all-or-nothing.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple, Union

import structlog
from django.db import DatabaseError, transaction

from modules.audit.constants import AuditAction, AuditResource
from modules.audit.exceptions import AuditWriteError
from modules.core.middleware import get_correlation_id

if TYPE_CHECKING:
    from modules.audit.dtos import AuditQuery
    from modules.audit.models import AuditLogEntry
    from modules.audit.repositories.interfaces import IAuditLogRepository

logger = structlog.get_logger(__name__)

EXPORT_MAX_ROWS = 10_000


class AuditLogger:
    """Append-only audit trail service.

    Receives its repository via constructor injection.
    """

    def __init__(self, repository: IAuditLogRepository) -> None:
        self._repo = repository

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def record(
        self,
        actor: str,
        action: str,
        resource: str,
        resource_id: Any = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> Union[AuditLogEntry, AuditWriteError]:
        """Append an entry; on failure return (never raise) ``AuditWriteError``."""
        try:
            with transaction.atomic():
                entry = self._repo.create(
                    {
                        "actor_id": actor,
                        "action": action,
                        "resource": resource,
                        "resource_id": resource_id,
                        "details": details or {},
                        "correlation_id": get_correlation_id(),
                    }
                )
        except (DatabaseError, TypeError, ValueError) as exc:
            error = AuditWriteError(
                f"Could not record {action} on {resource}:{resource_id}: {exc}"
            )
            logger.error(
                "audit.write_failed",
                error_kind=error.kind,
                non_fatal=True,
                actor=str(actor),
                action=action,
                resource=resource,
                resource_id=str(resource_id),
                exc_info=True,
            )
            return error

        logger.info(
            "audit.recorded",
            actor=str(actor),
            action=action,
            resource=resource,
            resource_id=str(resource_id),
        )
        return entry

    def order_status_changed(
        self,
        actor: str,
        order_id: Any,
        old_status: str,
        new_status: str,
        reason: str = "",
    ) -> Union[AuditLogEntry, AuditWriteError]:
        return self.record(
            actor,
            AuditAction.UPDATE_ORDER_STATUS,
            AuditResource.ORDER,
            order_id,
            {"old_status": old_status, "new_status": new_status, "reason": reason},
        )

    def payment_status_changed(
        self,
        actor: str,
        order_id: Any,
        payment_id: Any,
        old_status: str,
        new_status: str,
        reason: str = "",
    ) -> Union[AuditLogEntry, AuditWriteError]:
        return self.record(
            actor,
            AuditAction.UPDATE_PAYMENT_STATUS,
            AuditResource.ORDER,
            order_id,
            {
                "payment_id": payment_id,
                "old_status": old_status,
                "new_status": new_status,
                "reason": reason,
            },
        )

    def order_delayed(
        self,
        actor: str,
        order_id: Any,
        reason: str,
        new_estimated_time: Optional[str] = None,
    ) -> Union[AuditLogEntry, AuditWriteError]:
        return self.record(
            actor,
            AuditAction.ORDER_DELAYED,
            AuditResource.ORDER,
            order_id,
            {"reason": reason, "new_estimated_time": new_estimated_time},
        )

    def pickup_scheduled(
        self, actor: str, order_id: Any, old_date: Any, new_date: Any
    ) -> Union[AuditLogEntry, AuditWriteError]:
        return self.record(
            actor,
            AuditAction.SCHEDULE_PICKUP,
            AuditResource.ORDER,
            order_id,
            {"old_pickup_date": old_date, "new_pickup_date": new_date},
        )

    def pickup_completed(
        self, actor: str, order_id: Any
    ) -> Union[AuditLogEntry, AuditWriteError]:
        return self.record(
            actor,
            AuditAction.MARK_PICKED_UP,
            AuditResource.ORDER,
            order_id,
            {"pickup_status": "PICKED_UP"},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, filters: AuditQuery) -> Tuple[List[AuditLogEntry], int]:
        """Return ``(entries, total)`` for one page of matching entries."""
        return self._repo.search(filters)

    def export(
        self, filters: AuditQuery, limit: int = EXPORT_MAX_ROWS
    ) -> Iterator[AuditLogEntry]:
        """Every entry matching *filters* (page and page size ignored), newest first."""
        return self._repo.iter_matching(filters, limit)

    def stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Dict[str, Any]:
        rows = self._repo.count_by_action_and_resource(start, end)
        by_action: Dict[str, int] = {}
        for row in rows:
            by_action[row["action"]] = by_action.get(row["action"], 0) + row["count"]
        return {
            "total": sum(by_action.values()),
            "by_action": by_action,
            "by_action_and_resource": rows,
        }
