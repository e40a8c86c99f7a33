from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from habitcache.core.errors import HabitCacheError
from habitcache.core.occurrence_key import encode
from habitcache.core.recurrence import RecurrenceSpec, expand
from habitcache.core.time_conv import parse_utc
from habitcache.db.models import HabitInstance, HabitLog
from habitcache.db.session import atomic


@dataclass(slots=True)
class InstanceView:
    card_id: str
    occurrence_key: str
    start_utc: datetime
    end_utc: datetime | None
    is_completed: bool
    done_quantity: float | None = None
    note: str | None = None
    completed_at: datetime | None = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _delete_range(session: Session, item_id: str, start: datetime, end: datetime | None) -> int:
    stmt = delete(HabitInstance).where(HabitInstance.card_id == item_id, HabitInstance.start_utc >= start)
    if end is not None:
        stmt = stmt.where(HabitInstance.start_utc <= end)
    result = session.execute(stmt.execution_options(synchronize_session="fetch"))
    return int(getattr(result, "rowcount", 0) or 0)


def delete_future_instances(session: Session, item_id: str, now: datetime) -> int:
    """Drop cached rows starting at or after ``now``. Does not commit."""
    return _delete_range(session, item_id, parse_utc(now), None)


def replace_window(
    session: Session,
    item_id: str,
    spec: RecurrenceSpec,
    window_start: datetime,
    window_end: datetime,
    *,
    now: datetime,
) -> list[HabitInstance]:
    """Expand ``spec`` and swap the cached rows of the window. Does not commit.

    Expansion runs before the delete, so a bad rule never reaches the table.
    """
    starts = expand(spec, window_start, window_end)
    _delete_range(session, item_id, window_start, window_end)

    duration = timedelta(minutes=spec.duration_minutes) if spec.duration_minutes > 0 else None
    rows: list[HabitInstance] = []
    for start in starts:
        key = encode(start)
        row = session.get(HabitInstance, (item_id, key))
        if row is None:
            row = HabitInstance(card_id=item_id, occurrence_key=key)
            session.add(row)
        row.start_utc = start
        row.end_utc = start + duration if duration is not None else None
        row.is_exception = False
        row.generated_at = now
        rows.append(row)
    session.flush()
    return rows


def materialize(
    session: Session,
    item_id: str,
    spec: RecurrenceSpec,
    window_start_utc: str | datetime,
    window_end_utc: str | datetime,
    *,
    now: datetime | None = None,
) -> list[HabitInstance]:
    window_start = parse_utc(window_start_utc)
    window_end = parse_utc(window_end_utc)
    now = parse_utc(now) if now is not None else _now_utc()

    try:
        with atomic(session, "materialize"):
            rows = replace_window(session, item_id, spec, window_start, window_end, now=now)
    except HabitCacheError as exc:
        logger.error("materialize item={} failed err={}", item_id, exc)
        raise

    logger.info(
        "materialize item={} window=[{}, {}] rows={}",
        item_id,
        window_start.isoformat(),
        window_end.isoformat(),
        len(rows),
    )
    return rows


def list_instances(
    session: Session,
    item_id: str,
    start_utc: str | datetime,
    end_utc: str | datetime,
) -> list[InstanceView]:
    stmt = (
        select(HabitInstance, HabitLog)
        .outerjoin(
            HabitLog,
            and_(
                HabitLog.card_id == HabitInstance.card_id,
                HabitLog.occurrence_key == HabitInstance.occurrence_key,
            ),
        )
        .where(
            HabitInstance.card_id == item_id,
            HabitInstance.start_utc >= parse_utc(start_utc),
            HabitInstance.start_utc <= parse_utc(end_utc),
            HabitInstance.is_exception.is_(False),
        )
        .order_by(HabitInstance.start_utc)
    )
    out: list[InstanceView] = []
    for instance, log in session.execute(stmt).all():
        out.append(
            InstanceView(
                card_id=instance.card_id,
                occurrence_key=instance.occurrence_key,
                start_utc=parse_utc(instance.start_utc),
                end_utc=parse_utc(instance.end_utc) if instance.end_utc is not None else None,
                is_completed=log is not None,
                done_quantity=log.done_quantity if log is not None else None,
                note=log.note if log is not None else None,
                completed_at=parse_utc(log.updated_at) if log is not None else None,
            )
        )
    return out
