"""Human-readable fragments used in notification messages."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any


def format_amount(amount: Any) -> str:
    """``Decimal("260000.00")`` -> ``"IDR 260,000"``."""
    value = Decimal(str(amount or 0))
    if value == value.to_integral_value():
        return f"IDR {value:,.0f}"
    return f"IDR {value:,.2f}"


def format_time_remaining(remaining: timedelta) -> str:
    """``timedelta(minutes=95)`` -> ``"1 hour 35 minutes"``; ``"expired"`` when <= 0."""
    total_minutes = int(remaining.total_seconds() // 60)
    if remaining.total_seconds() <= 0:
        return "expired"
    hours, minutes = divmod(total_minutes, 60)
    minutes_text = f"{minutes} minute{'' if minutes == 1 else 's'}"
    if hours:
        return f"{hours} hour{'' if hours == 1 else 's'} {minutes_text}"
    return minutes_text


def format_pickup_date(day: date | None) -> str:
    if day is None:
        return "to be announced"
    return f"{day:%A, %d %B %Y}"
