"""
cluster_bootstrap.api.app

FastAPI app factory for the provisioning status API.

Responsibilities:
- Build the application: request logging middleware, health checks, and the
  runs / units / bundles routers.
- Own the state-database engine for the app's lifetime; create missing tables at
  startup because the API may come up before the first provisioning run.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cluster_bootstrap import __version__
from cluster_bootstrap.api.routers import bundles, health, runs, units
from cluster_bootstrap.db.init_db import init_db
from cluster_bootstrap.db.session import create_engine, create_sessionmaker
from cluster_bootstrap.observability.logging import configure_logging, get_logger
from cluster_bootstrap.observability.middleware import RequestContextMiddleware
from cluster_bootstrap.settings import Settings

log = get_logger(__name__)


@asynccontextmanager
async def state_db_lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    engine = create_engine(settings)
    app.state.engine = engine
    app.state.sessionmaker = create_sessionmaker(engine)
    created = await init_db(engine)
    log.info("status_api_started", env=settings.env, created_tables=created)
    try:
        yield
    finally:
        await engine.dispose()
        app.state.sessionmaker = None
        log.info("status_api_stopped")


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="cluster-bootstrap status",
        version=__version__,
        lifespan=state_db_lifespan,
        # Interactive docs stay off on production masters.
        docs_url=None if settings.env == "prod" else "/docs",
    )
    app.state.settings = settings
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health.router, tags=["health"])
    for module in (runs, units, bundles):
        app.include_router(module.router)
    return app
