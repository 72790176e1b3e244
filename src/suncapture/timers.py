"""Cancellable timers on top of APScheduler."""

from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from suncapture.logger import get_logger

logger = get_logger(__name__)


class SchedulerError(Exception):
    """Exception raised for scheduler-related errors."""

    pass


class TimerHandle:
    """Handle for one scheduled job; cancelling is idempotent."""

    def __init__(self, scheduler: BackgroundScheduler, job_id: str, name: str):
        self._scheduler = scheduler
        self.job_id = job_id
        self.name = name
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            # one-shot jobs are removed by APScheduler once they fire
            pass
        logger.debug(f"Timer cancelled: {self.name}")

    @property
    def next_run_time(self) -> Optional[datetime]:
        if self.cancelled:
            return None
        job = self._scheduler.get_job(self.job_id)
        return job.next_run_time if job is not None else None


class Timers:
    """Scheduling abstraction handing out cancellable timer handles."""

    def __init__(self, timezone: str):
        try:
            self._timezone = ZoneInfo(timezone)
        except (KeyError, ValueError):
            raise SchedulerError(f"Invalid timezone: {timezone}")

        self._scheduler: Optional[BackgroundScheduler] = None
        self._counter = 0

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = BackgroundScheduler(timezone=self._timezone)
        self._scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler and drop every job."""
        if self._scheduler is not None:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def _add(self, func: Callable[[], None], trigger, name: str, **kwargs) -> TimerHandle:
        if self._scheduler is None:
            raise SchedulerError("Scheduler is not running")
        self._counter += 1
        job_id = f"{name}-{self._counter}"
        self._scheduler.add_job(func, trigger=trigger, id=job_id, name=name, **kwargs)
        return TimerHandle(self._scheduler, job_id, name)

    def call_at(self, when: datetime, func: Callable[[], None], name: str) -> TimerHandle:
        """Run ``func`` once at ``when``; an instant in the past fires at once."""
        now = datetime.now(self._timezone)
        run_date = max(when, now)
        return self._add(
            func,
            DateTrigger(run_date=run_date, timezone=self._timezone),
            name,
            misfire_grace_time=None,
        )

    def call_every(
        self, seconds: float, func: Callable[[], None], name: str
    ) -> TimerHandle:
        """Run ``func`` every ``seconds``, starting one interval from now.

        A run still in progress when the next one is due makes APScheduler
        skip the due run instead of starting a second instance.
        """
        start = datetime.now(self._timezone) + timedelta(seconds=seconds)
        return self._add(
            func,
            IntervalTrigger(seconds=seconds, start_date=start, timezone=self._timezone),
            name,
            max_instances=1,
            coalesce=True,
        )

    def daily(self, hour: int, minute: int, func: Callable[[], None], name: str) -> TimerHandle:
        """Run ``func`` every day at ``hour:minute`` local time."""
        trigger = CronTrigger(hour=hour, minute=minute, timezone=self._timezone)
        return self._add(func, trigger, name, coalesce=True, misfire_grace_time=300)
