"""Engine and session factories for the SQLAlchemy execution repository.

``create_batch_engine(url)`` returns an Engine tuned for the repository's
write pattern (many short transactions, one per commit point):

* SQLite files get WAL journaling so a CLI ``executions stop`` can write
  STOPPING while the engine process holds the database open, and
  ``busy_timeout`` so the two writers wait instead of failing.
* In-memory SQLite shares one connection (``StaticPool``) between threads,
  otherwise split flows would each see an empty database.
* The parent directory of a SQLite file is created on first use.

Tags:
    batch-core, sqlalchemy, sqlite, session
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

SQLITE_BUSY_TIMEOUT_MS = 5000


def _is_memory(database: str | None) -> bool:
    return database in (None, "", ":memory:")


def create_batch_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create the Engine behind a :class:`SqlAlchemyExecutionRepository`.

    Extra keyword arguments go to :func:`sqlalchemy.create_engine` unchanged,
    so pool settings for server databases are the caller's choice.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, **kwargs)

    in_memory = _is_memory(parsed.database)
    kwargs.setdefault("connect_args", {"check_same_thread": False})
    if in_memory:
        kwargs.setdefault("poolclass", StaticPool)
    else:
        Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def batch_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions whose loaded rows stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)
