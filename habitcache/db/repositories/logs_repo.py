from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from habitcache.core.time_conv import parse_utc
from habitcache.db.models import HabitLog
from habitcache.db.session import atomic


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_log(session: Session, item_id: str, occurrence_key: str) -> HabitLog | None:
    return session.scalar(
        select(HabitLog).where(HabitLog.card_id == item_id, HabitLog.occurrence_key == occurrence_key)
    )


def list_logs(session: Session, item_id: str, *, limit: int | None = None) -> list[HabitLog]:
    stmt = select(HabitLog).where(HabitLog.card_id == item_id).order_by(desc(HabitLog.updated_at))
    if limit:
        stmt = stmt.limit(int(limit))
    return list(session.scalars(stmt).all())


def check(
    session: Session,
    item_id: str,
    occurrence_key: str,
    quantity: float = 1,
    note: str | None = None,
    *,
    now: datetime | None = None,
) -> HabitLog:
    """
    Record a completion for one occurrence.
    - first write sets created_at; later writes keep it and overwrite the rest
    - the occurrence does not need a cached instance row
    """
    if quantity is None or quantity <= 0:
        raise ValueError("Quantity must be positive; use set_quantity to clear")
    now = parse_utc(now) if now is not None else _now_utc()

    with atomic(session, "check"):
        row = get_log(session, item_id, occurrence_key)
        if row is None:
            row = HabitLog(card_id=item_id, occurrence_key=occurrence_key, created_at=now)
            session.add(row)
        row.done_quantity = float(quantity)
        row.note = note
        row.updated_at = now
        session.flush()

    logger.info("check item={} key={} quantity={}", item_id, occurrence_key, quantity)
    return row


def uncheck(session: Session, item_id: str, occurrence_key: str) -> bool:
    with atomic(session, "uncheck"):
        result = session.execute(
            delete(HabitLog)
            .where(HabitLog.card_id == item_id, HabitLog.occurrence_key == occurrence_key)
            .execution_options(synchronize_session="fetch")
        )
    removed = int(getattr(result, "rowcount", 0) or 0) > 0
    logger.info("uncheck item={} key={} removed={}", item_id, occurrence_key, removed)
    return removed


def set_quantity(
    session: Session,
    item_id: str,
    occurrence_key: str,
    quantity: float,
    *,
    now: datetime | None = None,
) -> HabitLog | None:
    if quantity <= 0:
        uncheck(session, item_id, occurrence_key)
        return None
    return check(session, item_id, occurrence_key, quantity, now=now)
