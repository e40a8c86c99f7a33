from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from habitcache.config import settings
from habitcache.core.time_conv import parse_utc, to_utc
from habitcache.db.models import Card, HabitInstance, HabitLog, HabitProperties


@dataclass(slots=True)
class DayOccurrence:
    card_id: str
    occurrence_key: str
    start_utc: datetime
    end_utc: datetime | None
    title: str
    unit_label: str | None
    target_per_occurrence: float
    color_hex: str | None
    icon: str | None
    done_quantity: float | None = None
    note: str | None = None
    completed_at: datetime | None = None


_LOG_JOIN = and_(
    HabitLog.card_id == HabitInstance.card_id,
    HabitLog.occurrence_key == HabitInstance.occurrence_key,
)


def _day_query(day_start_local: str, day_end_local: str, tzid: str | None):
    tzid = tzid or settings.timezone
    day_start = to_utc(day_start_local, tzid)
    day_end = to_utc(day_end_local, tzid)
    return (
        select(HabitInstance, Card.title, HabitProperties, HabitLog)
        .select_from(HabitInstance)
        .join(Card, Card.id == HabitInstance.card_id)
        .join(HabitProperties, HabitProperties.card_id == HabitInstance.card_id)
        .where(
            HabitInstance.start_utc >= day_start,
            HabitInstance.start_utc < day_end,
            HabitInstance.is_exception.is_(False),
            Card.deleted_at.is_(None),
            HabitProperties.deleted_at.is_(None),
        )
        .order_by(HabitInstance.start_utc)
    )


def _to_entry(instance: HabitInstance, title: str, habit: HabitProperties, log: HabitLog | None) -> DayOccurrence:
    return DayOccurrence(
        card_id=instance.card_id,
        occurrence_key=instance.occurrence_key,
        start_utc=parse_utc(instance.start_utc),
        end_utc=parse_utc(instance.end_utc) if instance.end_utc is not None else None,
        title=title,
        unit_label=habit.unit_label,
        target_per_occurrence=habit.target_per_occurrence,
        color_hex=habit.color_hex,
        icon=habit.icon,
        done_quantity=log.done_quantity if log is not None else None,
        note=log.note if log is not None else None,
        completed_at=parse_utc(log.updated_at) if log is not None else None,
    )


def get_day_pending(
    session: Session,
    day_start_local: str,
    day_end_local: str,
    tzid: str | None = None,
) -> list[DayOccurrence]:
    """Active occurrences in ``[day_start, day_end)`` with no log; ``tzid`` defaults to ``settings.timezone``."""
    stmt = (
        _day_query(day_start_local, day_end_local, tzid)
        .outerjoin(HabitLog, _LOG_JOIN)
        .where(HabitProperties.status == "active", HabitLog.id.is_(None))
    )
    return [_to_entry(*row) for row in session.execute(stmt).all()]


def get_day_done(
    session: Session,
    day_start_local: str,
    day_end_local: str,
    tzid: str | None = None,
) -> list[DayOccurrence]:
    stmt = _day_query(day_start_local, day_end_local, tzid).join(HabitLog, _LOG_JOIN)
    return [_to_entry(*row) for row in session.execute(stmt).all()]
