"""
cluster_bootstrap.db.session

Engine and session factories for the state database.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cluster_bootstrap.settings import Settings


def _is_sqlite_file(url: str) -> Path | None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or not parsed.database:
        return None
    if parsed.database == ":memory:":
        return None
    return Path(parsed.database)


def create_engine(settings: Settings) -> AsyncEngine:
    db_file = _is_sqlite_file(settings.database_url)
    if db_file is None:
        return create_async_engine(settings.database_url, pool_pre_ping=True)

    # The state directory may not exist yet on a freshly provisioned host.
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = create_async_engine(settings.database_url)

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record) -> None:
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Runs are read back after commit by the CLI and the status API.
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
