"""
APScheduler Background Jobs

Purges expired KV entries (idempotency records, leases, expired claims).
Jobs run via BackgroundScheduler in FastAPI process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vault_orders.config import Settings
from vault_orders.services.kv_store import KVStore

logger = structlog.get_logger(__name__)


def run_kv_purge(store: KVStore):
    """
    Wrapper function for the scheduled purge job.

    Errors are logged and the job runs again on the next interval.
    """
    try:
        deleted_count = store.purge_expired()
        logger.info("kv_purge_completed", deleted_count=deleted_count)

    except Exception as e:
        logger.error("kv_purge_crashed", error=str(e), exc_info=True)


def start_scheduler(settings: Settings, store: KVStore) -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        settings: Application settings (scheduler is skipped in testing)
        store: KV store to purge

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="UTC")

    if settings.environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    scheduler.add_job(
        run_kv_purge,
        trigger=IntervalTrigger(minutes=settings.kv_purge_interval_minutes),
        args=[store],
        id="kv_purge",
        name="Expired KV Entry Purge",
        replace_existing=True
    )
    logger.info("job_registered", job="kv_purge", interval_minutes=settings.kv_purge_interval_minutes)

    scheduler.start()
    logger.info("scheduler_started", jobs=["kv_purge"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_kv_purge",
]
