"""Audit log repository interface.

Append-only: the contract exposes creation and reads, nothing else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

if TYPE_CHECKING:
    from modules.audit.dtos import AuditQuery
    from modules.audit.models import AuditLogEntry


class IAuditLogRepository(ABC):
    @abstractmethod
    def create(self, data: Dict[str, Any]) -> AuditLogEntry:
        """Persist a new entry."""

    @abstractmethod
    def search(self, query: AuditQuery) -> Tuple[List[AuditLogEntry], int]:
        """Return one page of entries matching *query* plus the total count."""

    @abstractmethod
    def iter_matching(self, query: AuditQuery, limit: int) -> Iterator[AuditLogEntry]:
        """Every entry matching *query*, newest first, at most *limit*; paging is ignored."""

    @abstractmethod
    def count_by_action_and_resource(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """``{action, resource, count}`` rows within the optional date range."""
