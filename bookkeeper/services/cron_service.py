"""
APScheduler-based CronService for processing due recurring payments.

Runs the processor once at startup and then daily (03:15 by default).
Overlapping runs are rejected by the processor lease, so a manual trigger
during a scheduled run is a no-op rather than a double booking.
"""

import logging
import threading
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .. import processor
from ..core import config

logger = logging.getLogger(__name__)


class CronService:
    """Background scheduler for recurring jobs."""

    def __init__(self, hour: int = config.RECURRING_CRON_HOUR, minute: int = config.RECURRING_CRON_MINUTE) -> None:
        self._scheduler: BackgroundScheduler | None = None
        self._daily_job_id = "process_recurring_daily"
        self._startup_job_id = "process_recurring_startup"
        self._hour = hour
        self._minute = minute
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            logger.info("CronService already started; ignoring duplicate start.")
            return

        self._stop_event.clear()
        scheduler = BackgroundScheduler()

        # Immediate run on startup
        scheduler.add_job(
            self._run_due_payments,
            id=self._startup_job_id,
            next_run_time=datetime.now(),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        # Daily schedule (server local time)
        daily_trigger = CronTrigger(hour=self._hour, minute=self._minute)
        scheduler.add_job(
            self._run_due_payments,
            id=self._daily_job_id,
            trigger=daily_trigger,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "CronService started: startup and daily (%02d:%02d) recurring payment jobs scheduled.",
            self._hour,
            self._minute,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        # Let the occurrence in flight finish; no new schedules are started
        self._stop_event.set()
        try:
            self._scheduler.shutdown(wait=False)
            logger.info("CronService stopped.")
        finally:
            self._scheduler = None

    def _run_due_payments(self) -> None:
        try:
            result = processor.run_due_payments(stop_event=self._stop_event)
            if result.success:
                logger.info(
                    "process_due_payments executed: processed=%s failed=%s occurrences=%s",
                    result.processed, result.failed, result.occurrences,
                )
            else:
                logger.warning("process_due_payments did not complete: %s", result.error)
        except Exception:
            logger.exception("process_due_payments failed")
