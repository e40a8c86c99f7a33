from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from habitcache.db.models import Base, Card
from habitcache.db.session import build_engine, build_sessionmaker


@pytest.fixture
def engine(tmp_path: Path):
    db_engine = build_engine(f"sqlite+pysqlite:///{(tmp_path / 'habits.db').as_posix()}")
    Base.metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as db_session:
        yield db_session


@pytest.fixture
def card(session: Session) -> Card:
    row = Card(id="card-1", title="Read 10 pages")
    session.add(row)
    session.commit()
    return row
