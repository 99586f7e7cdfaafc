from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC; every DateTime column stores this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def unix_timestamp() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def unix_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string to naive UTC. Blank gives None.

    A bare date is midnight; an offset-free time is taken as UTC; a "Z" or
    numeric offset is converted. Malformed input raises ValueError.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_iso_date(value: date | datetime | None) -> str:
    """YYYY-MM-DD as the registry contract stores it; None is today."""
    return (value or utcnow()).strftime("%Y-%m-%d")


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO string with a trailing Z. Naive input is UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(microsecond=0)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")
