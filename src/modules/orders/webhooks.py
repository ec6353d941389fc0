"""Payment webhook boundary.

Provider payloads are normalized to ``{payment_id, status, amount}``
before anything else sees them.  Provider statuses we do not recognise
map to PENDING, which is a no-op: an unknown state must never cancel an
order.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Mapping, Optional

import structlog

from modules.audit.constants import WEBHOOK_ACTOR
from modules.orders.constants import PaymentStatus
from modules.orders.dtos import ERROR_NOT_FOUND, PaymentWebhookDTO, TransitionResult

if TYPE_CHECKING:
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderTransitionService

logger = structlog.get_logger(__name__)

PROVIDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "success": PaymentStatus.PAID,
    "completed": PaymentStatus.PAID,
    "paid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "error": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


def normalize_payment_status(raw: Any) -> PaymentStatus:
    return PROVIDER_STATUS_MAP.get(str(raw or "").strip().lower(), PaymentStatus.PENDING)


def _parse_amount(raw: Any) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"Invalid amount {raw!r}.") from None


def normalize_webhook(payload: Mapping[str, Any]) -> PaymentWebhookDTO:
    """Accepts both ``paymentId`` and ``payment_id`` spellings.

    Raises ``ValueError`` (pydantic ``ValidationError`` included) when the
    payment id is missing or the amount is not a number.
    """
    payment_id = payload.get("paymentId") or payload.get("payment_id") or ""
    raw_status = payload.get("status")
    return PaymentWebhookDTO(
        payment_id=str(payment_id),
        status=normalize_payment_status(raw_status),
        amount=_parse_amount(payload.get("amount")),
        provider_status=str(raw_status or ""),
    )


class PaymentWebhookService:
    def __init__(
        self,
        order_repository: IOrderRepository,
        transition_service: OrderTransitionService,
    ) -> None:
        self._order_repo = order_repository
        self._transitions = transition_service

    def handle(self, payload: Mapping[str, Any]) -> TransitionResult:
        webhook = normalize_webhook(payload)
        log = logger.bind(
            payment_id=webhook.payment_id,
            provider_status=webhook.provider_status,
            status=webhook.status.value,
        )

        if webhook.status == PaymentStatus.PENDING:
            log.info("payment.webhook_ignored")
            return TransitionResult(
                success=True,
                changed=False,
                payment_status=PaymentStatus.PENDING,
                message="Status maps to PENDING; nothing to do.",
            )

        order = self._order_repo.get_by_payment_id(webhook.payment_id)
        if order is None:
            log.warning("payment.webhook_unknown_payment")
            return TransitionResult(
                success=False,
                error=f"Payment {webhook.payment_id} not found.",
                error_code=ERROR_NOT_FOUND,
            )

        result = self._transitions.transition(
            order.id,
            WEBHOOK_ACTOR,
            payment_status=webhook.status,
            reason=f"Provider status: {webhook.provider_status}",
            payment_notes=f"Updated via webhook: {webhook.provider_status}",
            amount=webhook.amount,
        )
        log.info(
            "payment.webhook_processed",
            order_id=str(order.id),
            success=result.success,
            changed=result.changed,
            error_code=result.error_code,
        )
        return result
