"""
cluster_bootstrap.api.deps

Dependencies shared by the status API routers.

Responsibilities:
- Expose the Settings the app was built with.
- Open one state-database session per request from the app's session factory.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cluster_bootstrap.settings import Settings


def settings_dep(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    factory = getattr(request.app.state, "sessionmaker", None)
    if factory is None:
        # Lifespan has not run (app used without its startup hook).
        raise RuntimeError("state database is not initialized")
    return factory


async def db_session(
    factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Status endpoints only read; nothing is committed here.
    async with factory() as session:
        yield session
