"""
Background scheduler for the sync outbox
Handles:
- Periodic catch-up drains of the sync queue
- Daily purge of synced and abandoned operations past retention
- Hourly decay evaluation, so tier changes are announced without user action
"""

import logging
from contextlib import AbstractContextManager
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from habitsync.constants import DEFAULT_SYNC_INTERVAL_MINUTES
from habitsync.services.sync_service import SyncWorker

HabitServiceFactory = Callable[[], AbstractContextManager]

logger = logging.getLogger("habitsync.scheduler")


def drain_sync_queue(worker: SyncWorker):
    """Catch-up pass; coalesces with any drain already running"""
    try:
        result = worker.request_drain()
        if result.coalesced:
            logger.debug("Drain already running, catch-up coalesced")
        elif result.attempted:
            logger.info(
                f"Sync catch-up: {result.synced} synced, {result.failed} failed, "
                f"{result.abandoned} abandoned"
            )
    except Exception as e:
        logger.error(f"Error in drain_sync_queue: {e}")


def purge_sync_queue(worker: SyncWorker):
    """Remove expired synced and abandoned operations"""
    try:
        removed = worker.purge()
        logger.info(f"Retention purge removed {removed} sync operation(s)")
    except Exception as e:
        logger.error(f"Error in purge_sync_queue: {e}")


def evaluate_habit_decay(service_factory: HabitServiceFactory):
    """Announce decay tier changes caused by missed days"""
    try:
        with service_factory() as service:
            events = service.evaluate_decay()
        if events:
            logger.info(f"Decay evaluation: {len(events)} tier change(s)")
    except Exception as e:
        logger.error(f"Error in evaluate_habit_decay: {e}")


# Create scheduler instance
scheduler = BackgroundScheduler()


def start_scheduler(
    worker: SyncWorker,
    interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
    service_factory: Optional[HabitServiceFactory] = None
):
    """Start the background scheduler"""
    logger.info("Starting HabitSync background scheduler")

    interval_minutes = max(1, interval_minutes or DEFAULT_SYNC_INTERVAL_MINUTES)
    scheduler.add_job(
        drain_sync_queue,
        CronTrigger(minute=f'*/{interval_minutes}'),
        args=[worker],
        id='drain_sync_queue',
        replace_existing=True
    )

    scheduler.add_job(
        purge_sync_queue,
        CronTrigger(hour=3, minute=30),  # Daily
        args=[worker],
        id='purge_sync_queue',
        replace_existing=True
    )

    if service_factory is not None:
        # Hourly: the logical day boundary shifts with timezone and grace period
        scheduler.add_job(
            evaluate_habit_decay,
            CronTrigger(minute=5),
            args=[service_factory],
            id='evaluate_habit_decay',
            replace_existing=True
        )

    scheduler.start()
    logger.info("Background scheduler started successfully")


def stop_scheduler():
    """Stop the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")
