"""Cafe wall-clock helpers

Stations store their timestamps as "YYYY-MM-DD HH:MM:SS" strings in the
cafe's local time (India Standard Time unless configured otherwise).
"""
from datetime import datetime, timezone, timedelta
from typing import Optional

from app.config import CAFE_TIMEZONE_OFFSET_MINUTES, CAFE_TIMEZONE_NAME

CAFE_TZ = timezone(timedelta(minutes=CAFE_TIMEZONE_OFFSET_MINUTES))
CAFE_TZ_OFFSET_LABEL = (
    f"{'+' if CAFE_TIMEZONE_OFFSET_MINUTES >= 0 else '-'}"
    f"{abs(CAFE_TIMEZONE_OFFSET_MINUTES) // 60:02d}:{abs(CAFE_TIMEZONE_OFFSET_MINUTES) % 60:02d}"
)

WALL_CLOCK_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to an aware UTC value.

    Naive values are treated as UTC; some drivers (SQLite) drop tzinfo
    on the way back from the database.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


def from_epoch_ms(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def format_wall_clock(timestamp_ms: int) -> str:
    """
    Format an epoch timestamp as a cafe wall-clock string.

    Returns:
        str: "2026-10-19 21:05:09" style string in cafe local time
    """
    return from_epoch_ms(timestamp_ms).astimezone(CAFE_TZ).strftime(WALL_CLOCK_FORMAT)


def parse_wall_clock(value: Optional[str]) -> Optional[int]:
    """
    Parse a stored station timestamp back into epoch milliseconds.

    Accepts the cafe wall-clock format as well as ISO-8601 strings
    (with or without an offset). Strings without an offset are read
    as cafe local time.

    Returns:
        Epoch milliseconds, or None for empty/unparseable input
    """
    if not value:
        return None

    text = value.strip()
    try:
        parsed = datetime.strptime(text, WALL_CLOCK_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=CAFE_TZ)

    return int(parsed.timestamp() * 1000)


def server_time_payload(now: Optional[datetime] = None) -> dict:
    """Build the /api/time response body for a given instant"""
    now = ensure_utc(now) if now else utcnow()
    local = now.astimezone(CAFE_TZ)
    return {
        "timestamp": to_epoch_ms(now),
        "iso": now.isoformat().replace("+00:00", "Z"),
        "timeString": local.strftime("%H:%M:%S"),
        "dateString": local.strftime("%Y-%m-%d"),
        "dateTimeString": local.strftime(WALL_CLOCK_FORMAT),
        "timezone": CAFE_TIMEZONE_NAME,
        "timezoneOffset": CAFE_TZ_OFFSET_LABEL,
    }
