"""Order DTOs for the service layer.

Framework-agnostic contracts (Pydantic v2, ``frozen=True``) between the
API layer and the services:

- ``TransitionResult``: outcome of a State Transition Engine call.
- ``ProgressResult``: outcome of an Order Progress Controller call.
- ``PaymentWebhookDTO``: a provider payload normalized to our statuses.
- ``PickupDetails``: where and when a ready order can be collected.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from modules.orders.constants import PaymentStatus

ERROR_NOT_FOUND = "not_found"
ERROR_INVALID_TRANSITION = "invalid_transition"
ERROR_INELIGIBLE_STATE = "ineligible_state"
ERROR_TRANSIENT = "transient_store_error"


class TransitionResult(BaseModel):
    """Structured result of ``OrderTransitionService.transition``.

    ``changed`` is ``False`` for a same-state request, which succeeds
    without touching the store.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    changed: bool = False
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    order: Any = Field(default=None, exclude=True, repr=False)


class ProgressResult(BaseModel):
    """``{success, message}`` or ``{success: False, error}``."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    order: Any = Field(default=None, exclude=True, repr=False)


class PaymentWebhookDTO(BaseModel):
    """Provider webhook payload after status normalization."""

    model_config = ConfigDict(frozen=True)

    payment_id: str
    status: PaymentStatus
    amount: Optional[Decimal] = None
    provider_status: str = ""

    @field_validator("payment_id")
    @classmethod
    def payment_id_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Payment ID is required.")
        return v.strip()


class PickupDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str
    hours: str
