"""Canchaya API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from canchaya.core.config import settings
from canchaya.core.database import async_session_factory
from canchaya.core.logging import add_audit_middleware, configure_logging
from canchaya.routes import bookings, changes, courts, customers, dashboard, expiration
from canchaya.services.change_feed import ChangeFeed, RedisRelay
from canchaya.services.expiration import sweep

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    feed: ChangeFeed = app.state.change_feed
    await feed.start()

    relay = None
    if settings.change_relay_enabled:
        # Scheduled sweeps run in the Celery worker and arrive over Redis
        relay = RedisRelay(feed, settings.redis_url, settings.change_channel)
        try:
            await relay.start()
        except (RedisError, OSError):
            logger.exception("Change relay unavailable, scheduled sweeps will not reach the feed")
            await relay.stop()
            relay = None

    if settings.sweep_on_startup:
        # Catch up on bookings that expired while the API was down
        async with async_session_factory() as db:
            result = await sweep(db, trigger="startup", feed=feed)
        if not result.success:
            logger.error("Startup expiry sweep failed: %s", result.error)

    yield

    if relay is not None:
        await relay.stop()
    await feed.stop()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url=f"{settings.api_prefix}/docs",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)
app.state.change_feed = ChangeFeed()

# CORS - permissive in dev, lock down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
add_audit_middleware(app)

# Mount routes. Expiry goes before bookings so /bookings/expire-pending
# is not captured by /bookings/{booking_id}.
app.include_router(expiration.router, prefix=settings.api_prefix)
app.include_router(courts.router, prefix=settings.api_prefix)
app.include_router(customers.router, prefix=settings.api_prefix)
app.include_router(bookings.router, prefix=settings.api_prefix)
app.include_router(dashboard.router, prefix=settings.api_prefix)
app.include_router(changes.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
