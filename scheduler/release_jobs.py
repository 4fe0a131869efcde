"""
Scheduler for releasing abandoned reservations using APScheduler.
Runs the reclaim sweeper every few minutes.

Supports Redis backend for horizontal scaling (multiple service instances).
"""

from typing import Optional
from urllib.parse import urlparse

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from services.reclaim import ReclaimSweeper
from utils.exceptions import DatabaseError
from utils.logging_config import get_logger

logger = get_logger(__name__, log_file="scheduler.log")

RELEASE_JOB_ID = "release_expired_bookings"


def _create_scheduler(redis_url: Optional[str] = None) -> AsyncIOScheduler:
    """
    Create scheduler with Redis backend for clustering support.

    Uses the default in-memory job store when Redis is not configured.
    """
    if not redis_url:
        logger.info("Scheduler using in-memory backend (single instance mode)")
        return AsyncIOScheduler()

    from apscheduler.jobstores.redis import RedisJobStore

    # redis://host:port/db or redis://:password@host:port/db
    parsed = urlparse(redis_url)
    host = parsed.hostname or "localhost"
    port = parsed.port or 6379
    db = int(parsed.path.lstrip("/")) if parsed.path.lstrip("/") else 0

    jobstores = {
        "default": RedisJobStore(host=host, port=port, db=db, password=parsed.password)
    }
    logger.info(f"Scheduler using Redis backend: {host}:{port}/{db}")
    return AsyncIOScheduler(jobstores=jobstores)


scheduler: Optional[AsyncIOScheduler] = None

# Sweeper instance - injected via setup_scheduler
_sweeper_instance: Optional[ReclaimSweeper] = None


def set_sweeper_instance(sweeper: ReclaimSweeper) -> None:
    """Set the sweeper used by the release job.

    Args:
        sweeper: ReclaimSweeper bound to the process store
    """
    global _sweeper_instance
    _sweeper_instance = sweeper
    logger.info("Reclaim sweeper set for scheduler")


async def release_expired_bookings(max_age_minutes: Optional[int] = None) -> int:
    """
    Release pending bookings whose form was never submitted.

    Returns:
        Number of bookings released (0 when the sweep could not run)
    """
    if not _sweeper_instance:
        logger.error("Sweeper instance not available - cannot release bookings")
        return 0

    try:
        return await _sweeper_instance.release_expired(max_age_minutes)
    except DatabaseError as e:
        logger.error(f"Database error releasing expired bookings: {e}", exc_info=True)
    except Exception as e:
        logger.error(f"Unexpected error releasing expired bookings: {e}", exc_info=True)
    return 0


def setup_scheduler(
    sweeper: Optional[ReclaimSweeper] = None,
    interval_minutes: Optional[int] = None,
    max_age_minutes: Optional[int] = None,
) -> AsyncIOScheduler:
    """Setup and start the scheduler.

    Args:
        sweeper: Optional sweeper to inject. If None, must be set earlier via set_sweeper_instance()
        interval_minutes: Minutes between sweeps (defaults to settings)
        max_age_minutes: Age after which pending bookings are released (defaults to settings)
    """
    global scheduler

    if sweeper:
        set_sweeper_instance(sweeper)

    interval = interval_minutes or settings.release_interval_minutes
    max_age = max_age_minutes or settings.pending_form_timeout_minutes

    if scheduler is None:
        scheduler = _create_scheduler(settings.redis_url)

    scheduler.add_job(
        release_expired_bookings,
        trigger=IntervalTrigger(minutes=interval),
        kwargs={"max_age_minutes": max_age},
        id=RELEASE_JOB_ID,
        name="Release expired pending bookings",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        f"Scheduler started: sweeping every {interval} min, releasing after {max_age} min"
    )
    return scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler."""
    global scheduler

    if scheduler is None:
        return
    if scheduler.running:
        scheduler.shutdown()
    scheduler = None
    logger.info("Scheduler stopped")
