"""Wall-clock <-> UTC conversion for habit timestamps.

Local values are ISO strings without an offset, interpreted in an IANA zone.
Ambiguous and nonexistent wall-clock times follow ``fold=0``: a repeated hour
resolves to its first (daylight) instant, and a skipped hour is read with the
offset in force before the transition, which places it after the gap.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from habitcache.core.errors import InvalidTimestamp, UnknownTimezone


def resolve_zone(tz: str) -> ZoneInfo:
    name = str(tz or "").strip()
    if not name:
        raise UnknownTimezone("Timezone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise UnknownTimezone(f"Unknown timezone: {name}") from exc


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        raise InvalidTimestamp("Timestamp is required")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidTimestamp(f"Invalid timestamp: {value!r}") from exc


def parse_utc(value: str | datetime) -> datetime:
    """Return an aware UTC datetime; naive input is taken to be UTC already."""
    dt = parse_timestamp(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def localize(local: str | datetime, zone: ZoneInfo) -> datetime:
    dt = parse_timestamp(local)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=zone)
    return dt.astimezone(zone)


def to_utc(local: str | datetime, tz: str) -> datetime:
    zone = resolve_zone(tz)
    return localize(local, zone).astimezone(timezone.utc)


def to_local(instant: str | datetime, tz: str) -> str:
    zone = resolve_zone(tz)
    local = parse_utc(instant).astimezone(zone).replace(tzinfo=None)
    return local.isoformat()
