"""
cluster_bootstrap.db.init_db

Schema creation for the local state database.

Responsibilities:
- Create missing tables on first use (the state DB is a local sqlite file per master).
- Report which tables a call actually created, so `serve` and the CLI can log it.
"""

from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from cluster_bootstrap.db import models  # noqa: F401  # register tables on Base.metadata
from cluster_bootstrap.db.base import Base
from cluster_bootstrap.observability.logging import get_logger

log = get_logger(__name__)


async def init_db(engine: AsyncEngine) -> list[str]:
    async with engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync: inspect(sync).get_table_names()))
        await conn.run_sync(Base.metadata.create_all)

    created = sorted(set(Base.metadata.tables) - existing)
    if created:
        log.info("state_db_initialized", tables=created, url=engine.url.render_as_string())
    return created


# --- Module Notes -----------------------------------------------------------
# create_all never alters existing tables; schema changes go through alembic/.
