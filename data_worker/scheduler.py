# data_worker/scheduler.py
"""
Background jobs: polling, hourly compaction, finance windows, retention.

Each job runs through its own SingleFlightTask so a slow run is never
overlapped by the next trigger; the overlapping trigger is skipped.
"""
import logging
import threading
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backend.config import get_settings
from data_worker.aggregation import recompute_all
from data_worker.compaction import run_compaction_tick
from data_worker.ingestion_poll import poll_once
from data_worker.retention import purge_expired

logger = logging.getLogger(__name__)

settings = get_settings()


class SingleFlightTask:
    """At most one execution of `fn` at a time; concurrent triggers are dropped."""

    def __init__(self, name: str, fn: Callable[..., Any]):
        self.name = name
        self.fn = fn
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def __call__(self, *args, **kwargs) -> Optional[Any]:
        if not self._lock.acquire(blocking=False):
            logger.info(f"⏭️ {self.name} skipped, previous run still active")
            return None
        try:
            return self.fn(*args, **kwargs)
        except Exception:
            logger.exception(f"{self.name} failed")
            return None
        finally:
            self._lock.release()


# Global task instances, shared by the scheduler and startup runs
poll_task = SingleFlightTask("poll", poll_once)
compaction_task = SingleFlightTask("compaction", run_compaction_tick)
aggregation_task = SingleFlightTask("aggregation", recompute_all)
retention_task = SingleFlightTask("retention", purge_expired)

_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone="UTC")
    return _scheduler


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(poll_task, IntervalTrigger(seconds=settings.POLL_INTERVAL_SECONDS),
                      id="poll", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.add_job(compaction_task, CronTrigger(minute="*/5"),
                      id="compaction", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.add_job(aggregation_task, IntervalTrigger(minutes=settings.AGGREGATION_INTERVAL_MINUTES),
                      id="aggregation", replace_existing=True, max_instances=1, coalesce=True)
    scheduler.add_job(retention_task, CronTrigger(hour=3, minute=0),
                      id="retention", replace_existing=True, max_instances=1, coalesce=True)


def start_scheduler() -> BackgroundScheduler:
    scheduler = get_scheduler()
    if scheduler.running:
        logger.debug("Scheduler already running")
        return scheduler
    register_jobs(scheduler)
    scheduler.start()
    logger.info(f"✅ Scheduler started with jobs: {', '.join(j.id for j in scheduler.get_jobs())}")
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
