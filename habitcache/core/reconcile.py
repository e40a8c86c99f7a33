from __future__ import annotations

from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy.orm import Session

from habitcache.config import settings
from habitcache.core.errors import HabitCacheError
from habitcache.core.recurrence import RecurrenceSpec
from habitcache.core.time_conv import parse_utc
from habitcache.db.repositories.instances_repo import delete_future_instances, replace_window
from habitcache.db.session import atomic


def rolling_window(now: datetime, weeks: int | None = None) -> tuple[datetime, datetime]:
    span = timedelta(weeks=settings.reconcile_window_weeks if weeks is None else weeks)
    return now - span, now + span


def reconcile_future(
    session: Session,
    item_id: str,
    new_spec: RecurrenceSpec | None,
    *,
    now: datetime,
) -> int:
    """Rebuild ``[now, now + window]`` for ``new_spec``. Does not commit.

    Rows before ``now`` are left alone: completion logs still point at them.
    """
    _, window_end = rolling_window(now)
    removed = delete_future_instances(session, item_id, now)
    if new_spec is None or not new_spec.is_complete:
        logger.warning("rule_updated item={} spec incomplete, cleared future rows={}", item_id, removed)
        return 0
    rows = replace_window(session, item_id, new_spec, now, window_end, now=now)
    return len(rows)


def on_rule_updated(
    session: Session,
    item_id: str,
    previous_spec: RecurrenceSpec | None,
    new_spec: RecurrenceSpec | None,
    *,
    now: datetime | None = None,
) -> int:
    now = parse_utc(now) if now is not None else datetime.now(timezone.utc)
    window_start, window_end = rolling_window(now)
    logger.info(
        "rule_updated item={} window=[{}, {}] old_rule={} new_rule={}",
        item_id,
        window_start.isoformat(),
        window_end.isoformat(),
        previous_spec.rule if previous_spec else None,
        new_spec.rule if new_spec else None,
    )
    try:
        with atomic(session, "on_rule_updated"):
            regenerated = reconcile_future(session, item_id, new_spec, now=now)
    except HabitCacheError as exc:
        logger.error("rule_updated item={} failed err={}", item_id, exc)
        raise
    logger.info("rule_updated item={} regenerated={}", item_id, regenerated)
    return regenerated
