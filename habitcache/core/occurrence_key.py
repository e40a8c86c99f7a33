from __future__ import annotations

import re
from datetime import datetime, timezone

from habitcache.core.errors import InvalidTimestamp
from habitcache.core.time_conv import parse_utc

_KEY_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})Z$")


def encode(instant: str | datetime) -> str:
    # Fixed-width fields keep string order equal to time order.
    dt = parse_utc(instant)
    return (
        f"{dt.year:04d}{dt.month:02d}{dt.day:02d}"
        f"T{dt.hour:02d}{dt.minute:02d}{dt.second:02d}Z"
    )


def decode(key: str) -> datetime:
    match = _KEY_RE.match(str(key or "").strip())
    if match is None:
        raise InvalidTimestamp(f"Invalid occurrence key: {key!r}")
    try:
        return datetime(*(int(part) for part in match.groups()), tzinfo=timezone.utc)
    except ValueError as exc:
        raise InvalidTimestamp(f"Invalid occurrence key: {key!r}") from exc
