"""
FastAPI application factory.

* Registers routes for rides, activity, dashboards, live sockets and admin.
* Builds the database engine, change feed and record store in the
  lifespan and tears them down on shutdown.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridesync.api.middleware import limiter
from ridesync.api.routes import activity, admin, dashboards, live, rides
from ridesync.config import Settings, settings as default_settings
from ridesync.infrastructure.change_feed import (
    ChangeFeed,
    LocalChangeFeed,
    RedisChangeFeed,
)
from ridesync.infrastructure.database import build_engine, build_session_factory
from ridesync.infrastructure.redis_client import create_redis
from ridesync.infrastructure.store import RecordStore, SqlRecordStore

logger = logging.getLogger(__name__)


def build_change_feed(settings: Settings) -> ChangeFeed:
    if settings.change_feed_backend == "redis":
        return RedisChangeFeed(create_redis(settings.redis_url))
    if settings.change_feed_backend != "local":
        raise ValueError(
            f"Unknown change_feed_backend {settings.change_feed_backend!r}"
        )
    return LocalChangeFeed()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    """
    Build the app.  Passing *store* skips building the database engine
    and change feed (the caller owns them).
    """
    settings = settings or default_settings
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the store on startup; release it on shutdown."""
        if store is not None:
            yield
            return

        engine = build_engine(settings.database_url)
        feed = build_change_feed(settings)
        app.state.store = SqlRecordStore(build_session_factory(engine), feed)
        logger.info("Record store ready (change feed: %s)", settings.change_feed_backend)
        try:
            yield
        finally:
            await feed.close()
            await engine.dispose()
            logger.info("Record store closed")

    app = FastAPI(
        title="Ride Coordination Sync API",
        description=(
            "Ride requests for riders, drivers, employers, employees and "
            "admins.  Role-scoped ride lists, guarded lifecycle "
            "transitions (request, accept, start, complete, cancel), a "
            "live change stream per dashboard and an audit activity feed."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    if store is not None:
        app.state.store = store

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(activity.router, prefix="/api/v1")
    app.include_router(dashboards.router, prefix="/api/v1")
    app.include_router(live.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
