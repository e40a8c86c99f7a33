from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select, text

from habitcache.core.errors import StorageFailure
from habitcache.db.models import Card, HabitLog
from habitcache.db.session import atomic, build_database_url, get_session


def _cards(session_factory) -> int:
    with session_factory() as db_session:
        return db_session.scalar(select(func.count()).select_from(Card))


def test_get_session_commits_on_success(session_factory) -> None:
    with get_session(session_factory) as db_session:
        db_session.add(Card(id="card-9", title="Walk"))
    assert _cards(session_factory) == 1


def test_get_session_rolls_back_on_error(session_factory) -> None:
    with pytest.raises(RuntimeError):
        with get_session(session_factory) as db_session:
            db_session.add(Card(id="card-9", title="Walk"))
            db_session.flush()
            raise RuntimeError("abort")
    assert _cards(session_factory) == 0


def test_foreign_keys_are_enforced(session) -> None:
    assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_atomic_wraps_storage_errors(session, card) -> None:
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(StorageFailure) as err:
        with atomic(session, "orphan_log"):
            session.add(
                HabitLog(
                    card_id="missing",
                    occurrence_key="20240101T090000Z",
                    done_quantity=1,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            session.flush()
    assert err.value.__cause__ is not None
    assert session.scalar(select(func.count()).select_from(HabitLog)) == 0
    assert session.get(Card, "card-1").title == "Read 10 pages"


def test_atomic_keeps_outer_work_on_inner_failure(session) -> None:
    with atomic(session, "first"):
        session.add(Card(id="card-a", title="A"))
    with pytest.raises(ValueError):
        with atomic(session, "second"):
            session.add(Card(id="card-b", title="B"))
            session.flush()
            raise ValueError("nope")
    session.rollback()
    assert session.get(Card, "card-a") is not None
    assert session.get(Card, "card-b") is None


def test_database_url_is_absolute_sqlite() -> None:
    url = build_database_url()
    assert url.startswith("sqlite+pysqlite:///")
    assert url.endswith(".db")
