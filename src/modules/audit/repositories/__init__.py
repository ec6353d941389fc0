"""Audit repositories package."""

from modules.audit.repositories.django_repository import AuditLogDjangoRepository
from modules.audit.repositories.interfaces import IAuditLogRepository

__all__ = ["IAuditLogRepository", "AuditLogDjangoRepository"]
