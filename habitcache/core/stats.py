from __future__ import annotations

from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from habitcache.config import settings
from habitcache.core.time_conv import parse_utc
from habitcache.db.models import HabitInstance, HabitLog, HabitProperties
from habitcache.db.session import atomic

_LOG_JOIN = and_(
    HabitLog.card_id == HabitInstance.card_id,
    HabitLog.occurrence_key == HabitInstance.occurrence_key,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _completion_flags(
    session: Session,
    item_id: str,
    *,
    until: datetime | None = None,
    newest_first: bool = False,
) -> list[bool]:
    stmt = (
        select(HabitInstance.occurrence_key, HabitLog.id)
        .outerjoin(HabitLog, _LOG_JOIN)
        .where(HabitInstance.card_id == item_id, HabitInstance.is_exception.is_(False))
    )
    if until is not None:
        stmt = stmt.where(HabitInstance.start_utc <= until)
    order = HabitInstance.start_utc.desc() if newest_first else HabitInstance.start_utc.asc()
    return [log_id is not None for _key, log_id in session.execute(stmt.order_by(order)).all()]


def current_streak(session: Session, item_id: str, as_of: str | datetime | None = None) -> int:
    as_of = parse_utc(as_of) if as_of is not None else _now_utc()
    streak = 0
    for done in _completion_flags(session, item_id, until=as_of, newest_first=True):
        if not done:
            break
        streak += 1
    return streak


def longest_streak(session: Session, item_id: str) -> int:
    best = 0
    run = 0
    for done in _completion_flags(session, item_id):
        run = run + 1 if done else 0
        best = max(best, run)
    return best


def adherence(
    session: Session,
    item_id: str,
    days: int | None = None,
    *,
    now: datetime | None = None,
) -> float:
    """Percentage (0-100) of instances in the last ``days`` days that have a log row."""
    window_end = parse_utc(now) if now is not None else _now_utc()
    window_start = window_end - timedelta(days=settings.adherence_days if days is None else days)
    in_window = (
        HabitInstance.card_id == item_id,
        HabitInstance.start_utc >= window_start,
        HabitInstance.start_utc <= window_end,
        HabitInstance.is_exception.is_(False),
    )

    total = session.scalar(select(func.count()).select_from(HabitInstance).where(*in_window)) or 0
    if total == 0:
        return 0.0
    completed = (
        session.scalar(select(func.count()).select_from(HabitInstance).join(HabitLog, _LOG_JOIN).where(*in_window))
        or 0
    )
    return 100.0 * completed / total


def refresh_habit_stats(session: Session, item_id: str, *, now: datetime | None = None) -> HabitProperties:
    habit = session.get(HabitProperties, item_id)
    if habit is None:
        raise ValueError("Habit not found")
    now = parse_utc(now) if now is not None else _now_utc()

    current = current_streak(session, item_id, now)
    longest = longest_streak(session, item_id)
    last_done = session.scalar(select(func.max(HabitLog.updated_at)).where(HabitLog.card_id == item_id))

    with atomic(session, "refresh_habit_stats"):
        habit.streak_count = current
        habit.longest_streak = longest
        habit.last_completed_at = parse_utc(last_done) if last_done is not None else None
        session.flush()

    logger.debug("habit_stats item={} current={} longest={}", item_id, current, longest)
    return habit
