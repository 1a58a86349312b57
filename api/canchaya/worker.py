"""Celery worker configuration.

Run the worker with beat embedded to get the periodic expiry sweep:

    celery -A canchaya.worker worker --beat --loglevel=info
"""

import asyncio
import logging

import redis
from celery import Celery

from canchaya.core.config import settings
from canchaya.core.database import async_session_factory, engine
from canchaya.services.change_feed import RedisChangePublisher
from canchaya.services.expiration import sweep

logger = logging.getLogger(__name__)

celery_app = Celery(
    "canchaya",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "expire-pending-bookings": {
            "task": "canchaya.worker.expire_pending_bookings",
            "schedule": float(settings.sweep_interval_seconds),
            # A late tick is superseded by the next one
            "options": {"expires": float(settings.sweep_interval_seconds)},
        },
    },
)


def _publisher() -> RedisChangePublisher:
    # The API relays this channel into its change feed
    return RedisChangePublisher(redis.Redis.from_url(settings.redis_url), settings.change_channel)


async def _run_sweep() -> dict:
    try:
        async with async_session_factory() as db:
            result = await sweep(db, trigger="schedule", feed=_publisher())
    finally:
        # Each task runs in a fresh event loop; pooled connections cannot outlive it
        await engine.dispose()
    return result.__dict__


@celery_app.task(name="canchaya.worker.expire_pending_bookings")
def expire_pending_bookings() -> dict:
    """Cancel pending bookings past their grace period."""
    result = asyncio.run(_run_sweep())
    if not result["success"]:
        logger.error("Scheduled expiry sweep failed: %s", result["error"])
    return result
