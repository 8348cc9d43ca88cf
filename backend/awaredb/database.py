# backend/awaredb/database.py
"""
Engines, session factories and FastAPI session dependencies.

Tracking writes (state timestamps, scores, outbox rows) go through the write
engine. `DATABASE_READ_URL` points the read engine at a replica; without it
both engines share the write URL. SQLite engines get the pysqlite savepoint
hook so `Session.begin_nested()` behaves as on Postgres.

Environment:
    DATABASE_WRITE_URL / DATABASE_URL   e.g. postgresql+psycopg2://aware:pw@db:5432/awaredb
    DATABASE_READ_URL                   optional replica
    DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT, DB_POOL_RECYCLE_SEC
"""

import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

WRITE_DB_URL = os.getenv("DATABASE_WRITE_URL") or os.getenv("DATABASE_URL")
READ_DB_URL = os.getenv("DATABASE_READ_URL") or WRITE_DB_URL

if not WRITE_DB_URL:
    raise RuntimeError(
        "Set DATABASE_URL (or DATABASE_WRITE_URL), for example "
        "postgresql+psycopg2://aware:secret@db:5432/awaredb"
    )


def _pool_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
        "pool_recycle": int(os.getenv("DB_POOL_RECYCLE_SEC", "1800")),
    }


def enable_sqlite_savepoints(engine_: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINT.

    The driver otherwise manages BEGIN itself and releases savepoints as
    commits; SQLAlchemy emits BEGIN instead.
    """

    @event.listens_for(engine_, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine_, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _build_engine(url: str) -> Engine:
    engine_ = create_engine(url, pool_pre_ping=True, future=True, **_pool_options(url))
    if engine_.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine_)
    return engine_


write_engine = _build_engine(WRITE_DB_URL)
read_engine = write_engine if READ_DB_URL == WRITE_DB_URL else _build_engine(READ_DB_URL)

WriteSessionLocal = sessionmaker(bind=write_engine, autoflush=False, future=True)
ReadSessionLocal = sessionmaker(bind=read_engine, autoflush=False, future=True)

Base = declarative_base()


def get_write_db():
    """Session for endpoints that record tracking state, scores or events."""
    db = WriteSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_read_db():
    db = ReadSessionLocal()
    try:
        yield db
    finally:
        db.close()


engine = write_engine
get_db = get_write_db
