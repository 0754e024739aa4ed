"""
arq glue for the booking job queue
Producers enqueue ``processBooking`` jobs; the worker settings live in
``backend.workers.booking_worker``.
"""

import asyncio
import logging
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import RedisSettings

from backend.core import config

logger = logging.getLogger(__name__)

POOL_TIMEOUT_SECONDS = 10


def get_redis_settings() -> RedisSettings:
    if config.REDIS_URL:
        parsed = urlparse(config.REDIS_URL)
        database = parsed.path.lstrip("/")
        return RedisSettings(
            host=parsed.hostname or "localhost",
            port=parsed.port or 6379,
            password=parsed.password,
            database=int(database) if database.isdigit() else 0,
            ssl=parsed.scheme == "rediss",
            conn_timeout=15,
            conn_retry_delay=1,
        )

    return RedisSettings(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        password=config.REDIS_PASSWORD,
        ssl=config.REDIS_SSL,
        conn_timeout=15,
        conn_retry_delay=1,
    )


def backoff_seconds(job_try: int) -> int:
    """Exponential delay before the next attempt: 5, 10, 20, 40 seconds."""
    return config.BOOKING_JOB_BACKOFF_SECONDS * 2 ** (max(job_try, 1) - 1)


async def enqueue_booking_job(booking_id: str) -> str | None:
    """Queue confirmation/calendar work for a booking; returns the job id or None."""
    try:
        pool = await asyncio.wait_for(create_pool(get_redis_settings()), timeout=POOL_TIMEOUT_SECONDS)
    except Exception:
        logger.exception("Could not connect to the job queue; booking %s will not be processed", booking_id)
        return None

    try:
        job = await pool.enqueue_job(config.BOOKING_JOB_NAME, booking_id)
    except Exception:
        logger.exception("Failed to enqueue %s for booking %s", config.BOOKING_JOB_NAME, booking_id)
        return None
    finally:
        await pool.aclose()

    if job is None:
        logger.warning("Job for booking %s was already queued", booking_id)
        return None

    logger.info("Queued %s job %s for booking %s", config.BOOKING_JOB_NAME, job.job_id, booking_id)
    return job.job_id
