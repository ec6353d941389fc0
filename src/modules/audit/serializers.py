"""Audit DRF serializers."""

from __future__ import annotations

from rest_framework import serializers

from modules.audit.dtos import MAX_PAGE_SIZE
from modules.audit.models import AuditLogEntry


class AuditQuerySerializer(serializers.Serializer):
    """Validates audit query-string filters."""

    actor = serializers.CharField(required=False)
    action = serializers.CharField(required=False)
    resource = serializers.CharField(required=False)
    resource_id = serializers.CharField(required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    page = serializers.IntegerField(required=False, min_value=1, default=1)
    page_size = serializers.IntegerField(
        required=False, min_value=1, max_value=MAX_PAGE_SIZE, default=50
    )

    def validate(self, attrs):
        start, end = attrs.get("start"), attrs.get("end")
        if start and end and start > end:
            raise serializers.ValidationError("start must not be after end.")
        return attrs


class AuditStatsQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)


class AuditLogEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditLogEntry
        fields = [
            "id",
            "actor_id",
            "action",
            "resource",
            "resource_id",
            "details",
            "correlation_id",
            "created_at",
        ]
        read_only_fields = fields
