"""Notification inbox API.

Every endpoint is scoped to the authenticated user; one user can never
see or mark another user's notifications.
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.notifications.exceptions import NotificationNotFound
from modules.notifications.filters import NotificationFilter
from modules.notifications.models import Notification
from modules.notifications.repositories import NotificationDjangoRepository
from modules.notifications.serializers import NotificationSerializer
from modules.notifications.services import NotificationInbox


class NotificationViewSet(GenericViewSet):
    queryset = Notification.objects.none()
    serializer_class = NotificationSerializer
    filterset_class = NotificationFilter
    filter_backends = [DjangoFilterBackend]
    pagination_class = StandardResultsSetPagination

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._inbox = NotificationInbox(repository=NotificationDjangoRepository())

    def get_queryset(self):
        return self._inbox.list_for(self.request.user.pk)

    def list(self, request: Request) -> Response:
        """GET /api/v1/notifications/"""
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        serializer = NotificationSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @action(detail=True, methods=["post"])
    def read(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/notifications/{pk}/read/"""
        try:
            notification = self._inbox.mark_read(pk, request.user.pk)
        except NotificationNotFound:
            return Response(
                {"detail": "Notification not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(NotificationSerializer(notification).data)

    @action(detail=False, methods=["post"], url_path="read-all")
    def read_all(self, request: Request) -> Response:
        """POST /api/v1/notifications/read-all/"""
        updated = self._inbox.mark_all_read(request.user.pk)
        return Response({"updated": updated})
