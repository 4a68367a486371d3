from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Literal, Optional
from zoneinfo import ZoneInfo

from inoffice.schemas.transaction import Transaction

from .settings import Settings

FreshnessMode = Literal["day_boundary", "rolling"]


@dataclass(frozen=True)
class FreshnessPolicy:
    """
    day_boundary: fresh while created after local midnight of today.
    rolling:      fresh while no older than `window`.
    """

    mode: FreshnessMode = "day_boundary"
    window: timedelta = timedelta(hours=12)
    tz_name: str = "Australia/Melbourne"

    @classmethod
    def from_settings(cls, settings: Settings) -> "FreshnessPolicy":
        return cls(
            mode=settings.freshness_policy,
            window=timedelta(hours=settings.freshness_window_hours),
            tz_name=settings.presence_timezone,
        )


def _aware(now: datetime) -> datetime:
    # naive clocks are UTC
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def local_midnight(now: datetime, tz_name: str) -> datetime:
    tz = ZoneInfo(tz_name)
    now = _aware(now)
    return datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)


def is_fresh(cached: Optional[Transaction], now: datetime, policy: FreshnessPolicy) -> bool:
    if cached is None:
        return False
    now = _aware(now)
    if policy.mode == "rolling":
        return now - cached.created_at <= policy.window
    return cached.created_at > local_midnight(now, policy.tz_name)
