"""
maturation.py
=============
When a commission becomes withdrawable.

A commission matures `maturity_days` after the order is delivered. The
pending -> available transition is never stored: it is derived from the
timestamp every time it is read, including right before money moves.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from schemas import EarningStatus, TimeRemaining

MIN_MATURITY_DAYS = 0
MAX_MATURITY_DAYS = 90
DEFAULT_MATURITY_DAYS = 7


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_maturity_days(days) -> int:
    try:
        days = int(days)
    except (TypeError, ValueError):
        return DEFAULT_MATURITY_DAYS
    return max(MIN_MATURITY_DAYS, min(MAX_MATURITY_DAYS, days))


def commission_available_at(delivered_at: datetime, maturity_days: int) -> datetime:
    if not MIN_MATURITY_DAYS <= maturity_days <= MAX_MATURITY_DAYS:
        raise ValueError(
            f"maturity_days must be between {MIN_MATURITY_DAYS} and {MAX_MATURITY_DAYS}, got {maturity_days}"
        )
    return as_utc(delivered_at) + timedelta(days=maturity_days)


def is_available(now: datetime, available_at: Optional[datetime]) -> bool:
    if available_at is None:
        return False
    return as_utc(now) >= as_utc(available_at)


def remaining(now: datetime, available_at: Optional[datetime]) -> TimeRemaining:
    """Countdown until `available_at`. Undelivered orders (no timestamp) never mature."""
    if available_at is None:
        return TimeRemaining(days=0, hours=0, minutes=0, is_available=False)
    if is_available(now, available_at):
        return TimeRemaining(days=0, hours=0, minutes=0, is_available=True)

    seconds = int((as_utc(available_at) - as_utc(now)).total_seconds())
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    return TimeRemaining(days=days, hours=hours, minutes=seconds // 60, is_available=False)


def format_countdown(left: TimeRemaining) -> str:
    if left.is_available:
        return "available"
    if left.days > 0:
        return f"{left.days}d {left.hours}h"
    if left.hours > 0:
        return f"{left.hours}h {left.minutes}m"
    return f"{left.minutes}m"


def derive_earning_status(stored_status: str, available_at: Optional[datetime], now: datetime) -> EarningStatus:
    if stored_status == EarningStatus.paid.value:
        return EarningStatus.paid
    if is_available(now, available_at):
        return EarningStatus.available
    return EarningStatus.pending
