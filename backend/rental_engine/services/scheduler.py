"""
Periodic sweeps run inside the API process with APScheduler.

  expire_driver_requests  persist `expired` on requests past their window
  mark_overdue            move rentals past their return date to `overdue`
  sweep_presence          drop drivers whose heartbeat is older than the TTL

Every job is idempotent; max_instances=1 keeps a slow run from overlapping the
next one. Failures are logged and the job runs again on its next tick.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rental_engine.core.config import get_settings
from rental_engine.core.logging import get_logger
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.services.assignment_service import expire_stale_requests
from rental_engine.services.interfaces import DriverPresenceRegistry
from rental_engine.services.rental_service import mark_overdue_bookings

logger = get_logger(__name__)
settings = get_settings()


async def expire_driver_requests_job(uow: UnitOfWork) -> None:
    try:
        await expire_stale_requests(uow)
    except Exception as e:
        logger.error("job_failed", job="expire_driver_requests", error=str(e))


async def mark_overdue_job(uow: UnitOfWork) -> None:
    try:
        await mark_overdue_bookings(uow)
    except Exception as e:
        logger.error("job_failed", job="mark_overdue", error=str(e))


async def sweep_presence_job(presence: DriverPresenceRegistry) -> None:
    try:
        await presence.sweep()
    except Exception as e:
        logger.error("job_failed", job="sweep_presence", error=str(e))


def build_scheduler(uow: UnitOfWork, presence: DriverPresenceRegistry) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

    scheduler.add_job(
        expire_driver_requests_job,
        IntervalTrigger(seconds=settings.REQUEST_EXPIRY_SWEEP_SECONDS),
        args=[uow],
        id="expire_driver_requests",
        **job_defaults,
    )
    scheduler.add_job(
        mark_overdue_job,
        IntervalTrigger(seconds=settings.OVERDUE_SWEEP_SECONDS),
        args=[uow],
        id="mark_overdue",
        **job_defaults,
    )
    scheduler.add_job(
        sweep_presence_job,
        IntervalTrigger(seconds=settings.PRESENCE_SWEEP_SECONDS),
        args=[presence],
        id="sweep_presence",
        **job_defaults,
    )
    return scheduler
