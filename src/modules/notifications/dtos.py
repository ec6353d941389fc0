"""Notification DTOs (Pydantic v2, immutable)."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeliveryStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


class NotificationPayload(BaseModel):
    """What a single notification says, independent of its recipient."""

    model_config = ConfigDict(frozen=True)

    title: str
    message: str
    order_id: Optional[UUID] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("title", "message")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Must not be blank.")
        return v


class DeliveryResult(BaseModel):
    """Outcome of one ``send`` call for one recipient."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: DeliveryStatus
    recipient_id: str
    notification_type: str
    notification_id: Optional[UUID] = None
    error: Optional[Exception] = None

    @property
    def sent(self) -> bool:
        return self.status == DeliveryStatus.SENT

    @property
    def skipped(self) -> bool:
        return self.status == DeliveryStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status == DeliveryStatus.FAILED
