"""RRULE expansion into concrete UTC occurrence instants.

Rules are evaluated on the item's local wall clock so a daily 09:00 habit stays
at 09:00 local across DST changes; every generated local time is then mapped
to UTC with the policy of :mod:`habitcache.core.time_conv`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from dateutil.rrule import rruleset, rrulestr
from loguru import logger

from habitcache.config import settings
from habitcache.core.errors import InvalidRecurrenceRule
from habitcache.core.time_conv import localize, parse_utc, resolve_zone

_UNTIL_UTC_RE = re.compile(r"UNTIL=(\d{8}T\d{6})Z", re.IGNORECASE)
_INTERVAL_RE = re.compile(r"INTERVAL=([+-]?\d+)", re.IGNORECASE)

# Local-time padding around the UTC window; covers any zone offset.
_WINDOW_PAD = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class RecurrenceSpec:
    item_id: str
    anchor_local: str
    timezone: str
    rule: str
    additions: tuple[str, ...] = ()
    exclusions: tuple[str, ...] = ()
    duration_minutes: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "additions", tuple(self.additions or ()))
        object.__setattr__(self, "exclusions", tuple(self.exclusions or ()))
        if int(self.duration_minutes or 0) < 0:
            raise ValueError("duration_minutes must be >= 0")
        object.__setattr__(self, "duration_minutes", int(self.duration_minutes or 0))

    @property
    def is_complete(self) -> bool:
        return all(str(value or "").strip() for value in (self.anchor_local, self.timezone, self.rule))


def _localize_until(rule_text: str, zone: ZoneInfo) -> str:
    # dateutil refuses a UTC UNTIL next to a floating DTSTART, so move it to local time.
    def _sub(match: re.Match[str]) -> str:
        until_utc = datetime.strptime(match.group(1), "%Y%m%dT%H%M%S").replace(tzinfo=timezone.utc)
        until_local = until_utc.astimezone(zone).replace(tzinfo=None)
        return "UNTIL=" + until_local.strftime("%Y%m%dT%H%M%S")

    return _UNTIL_UTC_RE.sub(_sub, rule_text)


def parse_rule(rule: str, anchor_local: datetime, zone: ZoneInfo) -> rruleset:
    text = str(rule or "").strip()
    if not text:
        raise InvalidRecurrenceRule("Recurrence rule is required")
    if "DTSTART" in text.upper():
        raise InvalidRecurrenceRule("DTSTART must come from the anchor, not the rule")
    # dateutil accepts INTERVAL=0 and then never advances.
    for match in _INTERVAL_RE.finditer(text):
        if int(match.group(1)) < 1:
            raise InvalidRecurrenceRule(f"INTERVAL must be >= 1: {text!r}")
    try:
        return rrulestr(_localize_until(text, zone), dtstart=anchor_local, forceset=True)
    except (ValueError, TypeError, KeyError, IndexError) as exc:
        raise InvalidRecurrenceRule(f"Invalid recurrence rule: {text!r} ({exc})") from exc


def _local_to_utc(local: datetime, zone: ZoneInfo) -> datetime:
    return local.replace(tzinfo=zone).astimezone(timezone.utc)


def _base_occurrences(
    rules: rruleset,
    zone: ZoneInfo,
    window_start: datetime,
    window_end: datetime,
) -> list[datetime]:
    lo = window_start.astimezone(zone).replace(tzinfo=None) - _WINDOW_PAD
    hi = window_end.astimezone(zone).replace(tzinfo=None) + _WINDOW_PAD
    try:
        local_hits = rules.between(lo, hi, inc=True)
    except (ValueError, TypeError) as exc:
        raise InvalidRecurrenceRule(f"Recurrence rule cannot be evaluated: {exc}") from exc
    out: list[datetime] = []
    for local in local_hits:
        instant = _local_to_utc(local, zone)
        if window_start <= instant <= window_end:
            out.append(instant)
    return out


def _to_instants(values: Iterable[str], zone: ZoneInfo) -> list[datetime]:
    return [localize(value, zone).astimezone(timezone.utc) for value in values]


def expand(
    spec: RecurrenceSpec,
    window_start_utc: str | datetime,
    window_end_utc: str | datetime,
    *,
    exdate_tolerance: timedelta | None = None,
) -> list[datetime]:
    zone = resolve_zone(spec.timezone)
    anchor = localize(spec.anchor_local, zone).replace(tzinfo=None)
    rules = parse_rule(spec.rule, anchor, zone)
    additions = _to_instants(spec.additions, zone)
    exclusions = _to_instants(spec.exclusions, zone)

    window_start = parse_utc(window_start_utc)
    window_end = parse_utc(window_end_utc)
    if window_start > window_end:
        return []

    if exdate_tolerance is None:
        exdate_tolerance = timedelta(seconds=settings.exdate_tolerance_sec)

    candidates = _base_occurrences(rules, zone, window_start, window_end)
    candidates.extend(instant for instant in additions if window_start <= instant <= window_end)
    if exclusions:
        candidates = [
            instant
            for instant in candidates
            if not any(abs(instant - excluded) < exdate_tolerance for excluded in exclusions)
        ]

    result = sorted({instant.replace(microsecond=0) for instant in candidates})
    logger.debug(
        "expand item={} window=[{}, {}] occurrences={}",
        spec.item_id,
        window_start.isoformat(),
        window_end.isoformat(),
        len(result),
    )
    return result
