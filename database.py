from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url)

    eng = create_engine(url, connect_args={"check_same_thread": False})
    # WAL needs a file; in-memory databases keep their default journal.
    in_memory = url.database in (None, "", ":memory:")
    event.listen(eng, "connect", _sqlite_pragmas(wal=not in_memory))
    return eng


def _sqlite_pragmas(wal: bool) -> Callable[..., None]:
    def on_connect(dbapi_conn, _record) -> None:
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        # ON DELETE CASCADE / SET NULL are ignored without this.
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return on_connect


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """One unit of work: commit on success, roll back on any error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
