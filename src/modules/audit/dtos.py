"""Audit DTOs (Pydantic v2, immutable)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

MAX_PAGE_SIZE = 200


class AuditQuery(BaseModel):
    """Filters and page for an audit review query."""

    model_config = ConfigDict(frozen=True)

    actor_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    page: int = 1
    page_size: int = 50

    @field_validator("page")
    @classmethod
    def page_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Page must be at least 1.")
        return v

    @field_validator("page_size")
    @classmethod
    def page_size_in_range(cls, v: int) -> int:
        if not 1 <= v <= MAX_PAGE_SIZE:
            raise ValueError(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")
        return v

    @model_validator(mode="after")
    def start_not_after_end(self):
        if self.start and self.end and self.start > self.end:
            raise ValueError("start must not be after end.")
        return self

