"""Audit review API (read-only, admin only)."""

from __future__ import annotations

import csv
import json

from django.http import HttpResponse
from django.utils import timezone
from rest_framework.permissions import IsAdminUser
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import ViewSet

from modules.audit.dtos import AuditQuery
from modules.audit.repositories import AuditLogDjangoRepository
from modules.audit.serializers import (
    AuditLogEntrySerializer,
    AuditQuerySerializer,
    AuditStatsQuerySerializer,
)
from modules.audit.services import AuditLogger

EXPORT_COLUMNS = [
    "created_at",
    "actor_id",
    "action",
    "resource",
    "resource_id",
    "details",
    "correlation_id",
]


class AuditLogViewSet(ViewSet):
    """Filterable, paginated audit log for compliance tooling."""

    permission_classes = [IsAdminUser]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._audit = AuditLogger(repository=AuditLogDjangoRepository())

    def list(self, request: Request) -> Response:
        """GET /api/v1/audit-logs/"""
        query = self._query(request)
        entries, total = self._audit.query(query)
        return Response(
            {
                "results": AuditLogEntrySerializer(entries, many=True).data,
                "total": total,
                "page": query.page,
                "page_size": query.page_size,
                "has_more": query.page * query.page_size < total,
            }
        )

    @action(detail=False, methods=["get"])
    def export(self, request: Request) -> HttpResponse:
        """GET /api/v1/audit-logs/export/

        Same filters as the list, as a CSV attachment.
        """
        query = self._query(request)
        filename = f"audit-logs-{timezone.localdate().isoformat()}.csv"
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        writer = csv.writer(response)
        writer.writerow(EXPORT_COLUMNS)
        for entry in self._audit.export(query):
            writer.writerow(
                [
                    entry.created_at.isoformat(),
                    entry.actor_id,
                    entry.action,
                    entry.resource,
                    entry.resource_id,
                    json.dumps(entry.details, sort_keys=True),
                    entry.correlation_id,
                ]
            )
        return response

    @action(detail=False, methods=["get"])
    def stats(self, request: Request) -> Response:
        """GET /api/v1/audit-logs/stats/"""
        params = AuditStatsQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data
        return Response(self._audit.stats(data.get("start"), data.get("end")))

    @staticmethod
    def _query(request: Request) -> AuditQuery:
        params = AuditQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data
        return AuditQuery(
            actor_id=data.get("actor"),
            action=data.get("action"),
            resource=data.get("resource"),
            resource_id=data.get("resource_id"),
            start=data.get("start"),
            end=data.get("end"),
            page=data["page"],
            page_size=data["page_size"],
        )
