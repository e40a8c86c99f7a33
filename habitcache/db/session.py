from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from habitcache.config import settings
from habitcache.core.errors import StorageFailure


def build_database_url() -> str:
    db_path = Path(settings.sqlite_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db_path = db_path.resolve()
    return f"sqlite+pysqlite:///{db_path.as_posix()}"


def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
    # SQLAlchemy issues BEGIN itself (see _begin), which keeps SAVEPOINTs inside the transaction.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin(connection) -> None:
    connection.exec_driver_sql("BEGIN")


def build_engine(url: str | None = None) -> Engine:
    new_engine = create_engine(url or build_database_url(), future=True)
    event.listen(new_engine, "connect", _set_sqlite_pragma)
    event.listen(new_engine, "begin", _begin)
    return new_engine


def build_sessionmaker(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


engine = build_engine()
SessionLocal = build_sessionmaker(engine)


@contextmanager
def atomic(session: Session, action: str) -> Iterator[None]:
    """Run the block in a SAVEPOINT and commit; storage errors become StorageFailure.

    Any other exception rolls the SAVEPOINT back and propagates unchanged.
    """
    try:
        with session.begin_nested():
            yield
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("{} failed err={}", action, type(exc).__name__)
        raise StorageFailure(f"{action} failed: {exc}") from exc


@contextmanager
def get_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
