from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from habitcache.core.errors import HabitCacheError, InvalidTimestamp
from habitcache.core.recurrence import RecurrenceSpec
from habitcache.core.reconcile import reconcile_future, rolling_window
from habitcache.core.time_conv import parse_utc
from habitcache.db.models import Card, HabitProperties
from habitcache.db.repositories.instances_repo import replace_window
from habitcache.db.session import atomic

_SPEC_FIELDS = {"dtstart_local", "tzid", "rrule", "rdates", "exdates", "duration_minutes"}
_DISPLAY_FIELDS = {
    "unit_label",
    "target_per_occurrence",
    "adherence_target",
    "status",
    "color_hex",
    "icon",
    "notes",
}
_STATUSES = {"active", "paused"}
_ROW_DEFAULTS = {
    "unit_label": None,
    "target_per_occurrence": 1,
    "adherence_target": None,
    "status": "active",
    "color_hex": None,
    "icon": None,
    "notes": None,
    "streak_count": 0,
    "longest_streak": 0,
    "last_completed_at": None,
    "deleted_at": None,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _dump_dates(values: Iterable[str] | None) -> str | None:
    dates = [str(v) for v in (values or [])]
    return json.dumps(dates, ensure_ascii=False) if dates else None


def _load_dates(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        values = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidTimestamp(f"Invalid date list: {raw!r}") from exc
    if not isinstance(values, list):
        raise InvalidTimestamp(f"Date list must be a JSON array: {raw!r}")
    return tuple(str(v) for v in values)


def _apply_fields(habit: HabitProperties, fields: dict) -> None:
    for name, value in fields.items():
        if name in ("rdates", "exdates"):
            setattr(habit, f"{name}_json", _dump_dates(value))
        elif name == "status":
            if value not in _STATUSES:
                raise ValueError(f"Unsupported habit status: {value}")
            habit.status = value
        elif name == "duration_minutes":
            if int(value or 0) < 0:
                raise ValueError("duration_minutes must be >= 0")
            habit.duration_minutes = int(value or 0)
        elif name in ("dtstart_local", "tzid", "rrule"):
            # Empty means "no schedule"; the reconciler then only clears future rows.
            setattr(habit, name, str(value or "").strip())
        else:
            setattr(habit, name, value)


def _reset_row(habit: HabitProperties) -> None:
    # Re-creating replaces the whole row, soft-deleted or not.
    for name, value in _ROW_DEFAULTS.items():
        setattr(habit, name, value)


def spec_for_habit(habit: HabitProperties) -> RecurrenceSpec:
    return RecurrenceSpec(
        item_id=habit.card_id,
        anchor_local=habit.dtstart_local,
        timezone=habit.tzid,
        rule=habit.rrule,
        additions=_load_dates(habit.rdates_json),
        exclusions=_load_dates(habit.exdates_json),
        duration_minutes=habit.duration_minutes or 0,
    )


def create_habit(
    session: Session,
    *,
    card_id: str,
    dtstart_local: str,
    tzid: str,
    rrule: str,
    rdates: Iterable[str] | None = None,
    exdates: Iterable[str] | None = None,
    duration_minutes: int = 0,
    now: datetime | None = None,
    **fields,
) -> HabitProperties:
    """
    Attach a recurrence to a card and fill the cache around ``now``.
    - the card must exist and not be deleted
    - an existing (even soft-deleted) habit row for the card is replaced
    - an invalid rule aborts the whole call, nothing is stored
    """
    unknown = set(fields) - _DISPLAY_FIELDS
    if unknown:
        raise ValueError(f"Unknown habit fields: {', '.join(sorted(unknown))}")
    card = session.get(Card, card_id)
    if card is None or card.deleted_at is not None:
        raise ValueError("Card not found")
    now = parse_utc(now) if now is not None else _now_utc()
    window_start, window_end = rolling_window(now)

    try:
        with atomic(session, "create_habit"):
            habit = session.get(HabitProperties, card_id)
            if habit is None:
                habit = HabitProperties(card_id=card_id)
                session.add(habit)
            else:
                _reset_row(habit)
            _apply_fields(
                habit,
                {
                    "dtstart_local": dtstart_local,
                    "tzid": tzid,
                    "rrule": rrule,
                    "rdates": rdates,
                    "exdates": exdates,
                    "duration_minutes": duration_minutes,
                    **fields,
                },
            )
            session.flush()
            rows = replace_window(session, card_id, spec_for_habit(habit), window_start, window_end, now=now)
    except HabitCacheError as exc:
        logger.error("create_habit card={} failed err={}", card_id, exc)
        raise

    logger.info("habit created card={} rrule={} instances={}", card_id, rrule, len(rows))
    return habit


def get_habit(session: Session, card_id: str) -> HabitProperties | None:
    return session.scalar(
        select(HabitProperties).where(HabitProperties.card_id == card_id, HabitProperties.deleted_at.is_(None))
    )


def list_habits(session: Session) -> list[HabitProperties]:
    return list(
        session.scalars(
            select(HabitProperties)
            .join(Card, Card.id == HabitProperties.card_id)
            .where(HabitProperties.deleted_at.is_(None), Card.deleted_at.is_(None))
            .order_by(HabitProperties.created_at.desc())
        ).all()
    )


def update_habit(
    session: Session,
    card_id: str,
    *,
    now: datetime | None = None,
    **updates,
) -> HabitProperties:
    unknown = set(updates) - _SPEC_FIELDS - _DISPLAY_FIELDS
    if unknown:
        raise ValueError(f"Unknown habit fields: {', '.join(sorted(unknown))}")
    habit = get_habit(session, card_id)
    if habit is None:
        raise ValueError("Habit not found")
    if not updates:
        return habit
    now = parse_utc(now) if now is not None else _now_utc()
    spec_changed = bool(set(updates) & _SPEC_FIELDS)

    try:
        with atomic(session, "update_habit"):
            _apply_fields(habit, updates)
            session.flush()
            regenerated = reconcile_future(session, card_id, spec_for_habit(habit), now=now) if spec_changed else 0
    except HabitCacheError as exc:
        logger.error("update_habit card={} failed err={}", card_id, exc)
        raise

    logger.info(
        "habit updated card={} fields={} spec_changed={} regenerated={}",
        card_id,
        sorted(updates),
        spec_changed,
        regenerated,
    )
    return habit


def delete_habit(session: Session, card_id: str, *, now: datetime | None = None) -> HabitProperties:
    habit = get_habit(session, card_id)
    if habit is None:
        raise ValueError("Habit not found")
    with atomic(session, "delete_habit"):
        habit.deleted_at = parse_utc(now) if now is not None else _now_utc()
        session.flush()
    logger.info("habit deleted card={}", card_id)
    return habit
