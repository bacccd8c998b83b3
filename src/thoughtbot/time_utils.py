"""Helpers for dealing with timezone-aware datetimes."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def get_timezone(tz_name: str) -> ZoneInfo:
    """Return ZoneInfo instance with graceful fallback to UTC."""

    try:
        return ZoneInfo(tz_name)
    except Exception:
        return ZoneInfo("UTC")


def get_today(tz: ZoneInfo) -> date:
    """Return today's date in the provided timezone."""

    return datetime.now(tz).date()


def get_tomorrow(today: date) -> date:
    return today + timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["get_timezone", "get_today", "get_tomorrow", "utcnow"]
