"""Delay arithmetic for refresh scheduling."""

from __future__ import annotations

from datetime import datetime, timedelta


def refresh_delay(
    expires_at: datetime,
    now: datetime,
    safety_margin: timedelta,
    minimum: float,
) -> float:
    """Seconds until a refresh is due, floored at `minimum`."""
    delay = (expires_at - now - safety_margin).total_seconds()
    return max(delay, minimum)


def retry_delay(failures: int, base: float, cap: float, minimum: float) -> float:
    """Bounded exponential delay after the n-th consecutive failure."""
    if failures < 1:
        failures = 1
    delay = min(base * (2 ** (failures - 1)), cap)
    return max(delay, minimum)
