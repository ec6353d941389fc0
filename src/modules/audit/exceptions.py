"""Audit domain exceptions."""

from __future__ import annotations

from modules.core.exceptions import NonFatalError


class AuditWriteError(NonFatalError):
    """An audit entry could not be persisted; the audited action still stands."""


class ImmutableAuditEntry(Exception):
    """An attempt was made to modify or delete an existing audit entry."""
