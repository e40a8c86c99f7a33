from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from habitcache.core.errors import InvalidRecurrenceRule
from habitcache.core.stats import refresh_habit_stats
from habitcache.core.time_conv import parse_utc
from habitcache.db.models import Card, HabitInstance, HabitLog, HabitProperties
from habitcache.db.repositories.habits_repo import (
    create_habit,
    delete_habit,
    get_habit,
    list_habits,
    spec_for_habit,
    update_habit,
)
from habitcache.db.repositories.logs_repo import check

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _create(session: Session, **overrides) -> HabitProperties:
    fields = {
        "card_id": "card-1",
        "dtstart_local": "2024-01-01T09:00:00",
        "tzid": "UTC",
        "rrule": "FREQ=DAILY",
        "now": NOW,
    }
    fields.update(overrides)
    return create_habit(session, **fields)


def _cache(session: Session) -> list[tuple[str, datetime, datetime]]:
    rows = session.scalars(
        select(HabitInstance).where(HabitInstance.card_id == "card-1").order_by(HabitInstance.start_utc)
    ).all()
    return [(row.occurrence_key, parse_utc(row.start_utc), parse_utc(row.generated_at)) for row in rows]


def _count(session: Session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


def test_create_materializes_rolling_window(session: Session, card) -> None:
    habit = _create(session, unit_label="pages", target_per_occurrence=10)
    assert habit.status == "active"
    assert habit.unit_label == "pages"

    cache = _cache(session)
    # window opens six weeks before NOW, so it starts at the anchor
    assert cache[0][0] == "20240101T090000Z"
    assert cache[-1][0] == "20240226T090000Z"
    assert len(cache) == 57


def test_create_with_invalid_rule_stores_nothing(session: Session, card) -> None:
    with pytest.raises(InvalidRecurrenceRule):
        _create(session, rrule="FREQ=FORTNIGHTLY")
    assert get_habit(session, "card-1") is None
    assert _count(session, HabitInstance) == 0


def test_create_requires_live_card(session: Session) -> None:
    with pytest.raises(ValueError):
        _create(session, card_id="nope")


def test_unknown_fields_are_rejected(session: Session, card) -> None:
    with pytest.raises(ValueError):
        _create(session, colour="red")
    _create(session)
    with pytest.raises(ValueError):
        update_habit(session, "card-1", colour="red", now=NOW)


def test_invalid_status_is_rejected(session: Session, card) -> None:
    _create(session)
    with pytest.raises(ValueError):
        update_habit(session, "card-1", status="archived", now=NOW)
    assert get_habit(session, "card-1").status == "active"


def test_display_update_leaves_cache_alone(session: Session, card) -> None:
    _create(session)
    before = _cache(session)
    habit = update_habit(session, "card-1", color_hex="#ff0000", notes="after dinner", now=datetime(2024, 1, 20, tzinfo=timezone.utc))
    assert habit.color_hex == "#ff0000"
    assert _cache(session) == before


def test_rule_update_regenerates_future(session: Session, card) -> None:
    _create(session)
    update_habit(session, "card-1", rrule="FREQ=WEEKLY;BYDAY=MO", now=NOW)

    starts = [start for _key, start, _gen in _cache(session)]
    past = [s for s in starts if s < NOW]
    future = [s for s in starts if s >= NOW]
    assert len(past) == 15
    assert [s.day for s in future] == [22, 29, 5, 12, 19, 26]
    assert all(s.weekday() == 0 for s in future)


def test_invalid_rule_update_is_rolled_back(session: Session, card) -> None:
    _create(session)
    before = _cache(session)
    with pytest.raises(InvalidRecurrenceRule):
        update_habit(session, "card-1", rrule="FREQ=DAILY;BYHOUR=late", now=NOW)
    assert get_habit(session, "card-1").rrule == "FREQ=DAILY"
    assert _cache(session) == before


def test_clearing_rule_clears_future(session: Session, card) -> None:
    _create(session)
    update_habit(session, "card-1", rrule=None, now=NOW)
    assert get_habit(session, "card-1").rrule == ""
    starts = [start for _key, start, _gen in _cache(session)]
    assert len(starts) == 15
    assert max(starts) < NOW


def test_spec_for_habit_reads_date_lists(session: Session, card) -> None:
    habit = _create(
        session,
        rdates=["2024-01-20T18:00:00"],
        exdates=["2024-01-21T09:00:00"],
        duration_minutes=20,
    )
    spec = spec_for_habit(habit)
    assert spec.additions == ("2024-01-20T18:00:00",)
    assert spec.exclusions == ("2024-01-21T09:00:00",)
    assert spec.duration_minutes == 20

    keys = [key for key, _start, _gen in _cache(session)]
    assert "20240120T180000Z" in keys
    assert "20240121T090000Z" not in keys


def test_soft_delete_hides_habit(session: Session, card) -> None:
    _create(session)
    assert [h.card_id for h in list_habits(session)] == ["card-1"]

    deleted = delete_habit(session, "card-1", now=NOW)
    assert parse_utc(deleted.deleted_at) == NOW
    assert get_habit(session, "card-1") is None
    assert list_habits(session) == []
    with pytest.raises(ValueError):
        delete_habit(session, "card-1")


def test_recreate_after_soft_delete(session: Session, card) -> None:
    _create(session)
    delete_habit(session, "card-1", now=NOW)
    habit = _create(session, rrule="FREQ=WEEKLY")
    assert habit.deleted_at is None
    assert get_habit(session, "card-1").rrule == "FREQ=WEEKLY"


def test_recreate_resets_display_fields_and_counters(session: Session, card) -> None:
    _create(session, unit_label="pages", color_hex="#22aa55", notes="before bed", status="paused")
    check(session, "card-1", "20240114T090000Z", now=NOW)
    check(session, "card-1", "20240115T090000Z", now=NOW)
    assert refresh_habit_stats(session, "card-1", now=NOW).streak_count == 2
    delete_habit(session, "card-1", now=NOW)

    habit = _create(session, icon="book")
    assert habit.unit_label is None
    assert habit.color_hex is None
    assert habit.notes is None
    assert habit.icon == "book"
    assert habit.status == "active"
    assert habit.target_per_occurrence == 1
    assert habit.streak_count == 0
    assert habit.longest_streak == 0
    assert habit.last_completed_at is None


def test_card_delete_cascades(session: Session, card) -> None:
    _create(session)
    check(session, "card-1", "20240101T090000Z", now=NOW)

    session.execute(delete(Card).where(Card.id == "card-1"))
    session.commit()
    session.expunge_all()

    assert _count(session, HabitProperties) == 0
    assert _count(session, HabitInstance) == 0
    assert _count(session, HabitLog) == 0
