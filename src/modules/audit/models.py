"""Append-only audit trail.

``AuditLogEntry`` rows are written once and never updated or deleted by the
application: ``save()`` refuses updates and ``delete()`` always raises.
``actor_id`` is a free-form string so scheduler actions can be attributed
to ``SYSTEM`` and webhook actions to the payment provider.
"""

from __future__ import annotations

from django.db import models

from modules.audit.exceptions import ImmutableAuditEntry
from modules.core.middleware import CORRELATION_ID_MAX_LENGTH
from modules.core.models import BaseModel


class AuditLogEntry(BaseModel):
    actor_id: models.CharField = models.CharField(max_length=64)
    action: models.CharField = models.CharField(max_length=64)
    resource: models.CharField = models.CharField(max_length=64)
    resource_id: models.CharField = models.CharField(
        max_length=64, blank=True, default=""
    )
    details: models.JSONField = models.JSONField(default=dict, blank=True)
    correlation_id: models.CharField = models.CharField(
        max_length=CORRELATION_ID_MAX_LENGTH, blank=True, default=""
    )

    class Meta:
        db_table = "audit_log_entries"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["actor_id"], name="audit_actor_idx"),
            models.Index(fields=["action"], name="audit_action_idx"),
            models.Index(
                fields=["resource", "resource_id"], name="audit_resource_idx"
            ),
            models.Index(fields=["-created_at"], name="audit_created_idx"),
        ]

    def save(self, *args, **kwargs) -> None:
        if not self._state.adding:
            raise ImmutableAuditEntry(f"Audit entry {self.pk} is append-only.")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise ImmutableAuditEntry(f"Audit entry {self.pk} cannot be deleted.")

    def __str__(self) -> str:
        return f"{self.actor_id} {self.action} {self.resource}:{self.resource_id}"
