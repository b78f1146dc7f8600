"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` and provides small helpers used by the
application and tests. By default the database is a SQLite file next to
the backend package; production deployments point the URL at MySQL.
"""

import logging
import time

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session

from .config import settings

sql_logger = logging.getLogger("accountbook.sql")


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args(settings.DATABASE_URL))


def enable_sql_logging(target_engine) -> None:
    """Log every statement with its parameters and elapsed milliseconds."""

    @event.listens_for(target_engine, "before_cursor_execute")
    def _before(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_started", []).append(time.perf_counter())

    @event.listens_for(target_engine, "after_cursor_execute")
    def _after(conn, cursor, statement, parameters, context, executemany):
        started = conn.info["query_started"].pop()
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        sql_logger.info("%s | params=%r | %.2fms", " ".join(statement.split()), parameters, elapsed_ms)


if settings.SQL_LOG:
    enable_sql_logging(engine)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    This is intended for local development and tests; production
    deployments apply the versioned scripts with `run_migrations.py`.
    """
    from . import models  # noqa: F401  registers the tables on the metadata

    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
