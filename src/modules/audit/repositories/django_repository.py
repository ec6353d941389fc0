"""Django ORM implementation of the audit log repository."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import UUID

from django.db.models import Count, QuerySet

from modules.audit.dtos import AuditQuery
from modules.audit.models import AuditLogEntry
from modules.audit.repositories.interfaces import IAuditLogRepository
from modules.core.middleware import CORRELATION_ID_MAX_LENGTH


class AuditLogDjangoRepository(IAuditLogRepository):
    def create(self, data: Dict[str, Any]) -> AuditLogEntry:
        entry = AuditLogEntry(
            actor_id=str(data["actor_id"]),
            action=data["action"],
            resource=data["resource"],
            resource_id=str(data.get("resource_id") or ""),
            details=_serialize_details(data.get("details") or {}),
            correlation_id=(data.get("correlation_id") or "")[
                :CORRELATION_ID_MAX_LENGTH
            ],
        )
        entry.save()
        return entry

    def search(self, query: AuditQuery) -> Tuple[List[AuditLogEntry], int]:
        queryset = _matching(query)
        total = queryset.count()
        offset = (query.page - 1) * query.page_size
        entries = list(
            queryset.order_by("-created_at", "-id")[offset : offset + query.page_size]
        )
        return entries, total

    def iter_matching(self, query: AuditQuery, limit: int) -> Iterator[AuditLogEntry]:
        return _matching(query).order_by("-created_at", "-id")[:limit].iterator()

    def count_by_action_and_resource(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        queryset = AuditLogEntry.objects.all()
        if start:
            queryset = queryset.filter(created_at__gte=start)
        if end:
            queryset = queryset.filter(created_at__lte=end)
        rows = (
            queryset.values("action", "resource")
            .annotate(count=Count("id"))
            .order_by("action", "resource")
        )
        return [dict(row) for row in rows]


def _matching(query: AuditQuery) -> QuerySet[AuditLogEntry]:
    queryset = AuditLogEntry.objects.all()
    if query.actor_id:
        queryset = queryset.filter(actor_id=query.actor_id)
    if query.action:
        queryset = queryset.filter(action=query.action)
    if query.resource:
        queryset = queryset.filter(resource=query.resource)
    if query.resource_id:
        queryset = queryset.filter(resource_id=query.resource_id)
    if query.start:
        queryset = queryset.filter(created_at__gte=query.start)
    if query.end:
        queryset = queryset.filter(created_at__lte=query.end)
    return queryset


def _serialize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    normalized = _normalize_for_json(details)
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalize_for_json(val) for key, val in value.items()}
    return value
