"""Notification domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import NonFatalError


class NotificationDeliveryError(NonFatalError):
    """A notification could not be persisted or fanned out."""


class NotificationNotFound(Exception):
    """The notification does not exist or belongs to another recipient."""
