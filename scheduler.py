"""Cron-style scheduler for the periodic checks and reports."""
from dataclasses import dataclass
from datetime import datetime
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronTrigger:
    """Matches wall-clock minutes. ``None`` fields are wildcards.

    ``weekday`` follows ``datetime.weekday()`` (Monday is 0, Sunday is 6).
    """
    minute: int = None
    hour: int = None
    day: int = None
    weekday: int = None

    def matches(self, now):
        return ((self.minute is None or now.minute == self.minute)
                and (self.hour is None or now.hour == self.hour)
                and (self.day is None or now.day == self.day)
                and (self.weekday is None or now.weekday() == self.weekday))


class ScheduledJob:
    """A named action bound to a trigger, guarded against overlapping runs."""

    def __init__(self, name, trigger, action):
        self.name = name
        self.trigger = trigger
        self.action = action
        self._running = threading.Lock()

    @property
    def running(self):
        return self._running.locked()

    def run(self):
        """Run the action unless a previous run is still in progress.

        Returns False when the run was skipped. Failures are logged, never raised.
        """
        if not self._running.acquire(blocking=False):
            logger.warning("Skipping %s: previous run still in progress", self.name)
            return False
        try:
            logger.info("Running %s...", self.name)
            self.action()
        except Exception:
            logger.exception("%s failed", self.name)
        finally:
            self._running.release()
        return True


def _spawn(job):
    threading.Thread(target=job.run, name=f"job-{job.name}", daemon=True).start()


class ReportScheduler:
    """Fires due jobs once per wall-clock minute, each on its own thread."""

    def __init__(self, jobs=None, clock=datetime.now, spawn=_spawn):
        self.jobs = list(jobs or [])
        self.clock = clock
        self.spawn = spawn
        self._last_minute = None
        self._running = False
        self._thread = None

    def add_job(self, name, trigger, action):
        job = ScheduledJob(name, trigger, action)
        self.jobs.append(job)
        return job

    def tick(self, now=None):
        """Fire jobs due at ``now``; each minute is handled at most once."""
        now = (now or self.clock()).replace(second=0, microsecond=0)
        if now == self._last_minute:
            return []
        self._last_minute = now
        fired = []
        for job in self.jobs:
            if job.trigger.matches(now):
                self.spawn(job)
                fired.append(job.name)
        return fired

    def run(self):
        """Main loop: check for due jobs every second."""
        self._running = True
        logger.info("Scheduler started with %d jobs", len(self.jobs))
        while self._running:
            self.tick()
            time.sleep(1)

    def start(self):
        """Start the scheduler in a background thread."""
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._running = False


def build_scheduler(monitor, reports, clock=datetime.now):
    """Bind the alert monitor and report service to their firing times."""
    scheduler = ReportScheduler(clock=clock)
    scheduler.add_job("daily checks", CronTrigger(minute=59, hour=19), monitor.daily_checks)
    scheduler.add_job("weekly report", CronTrigger(minute=0, hour=21, weekday=6), reports.weekly_report)
    scheduler.add_job("monthly report", CronTrigger(minute=0, hour=21, day=1), reports.monthly_report)
    scheduler.add_job("hourly checks", CronTrigger(minute=5), monitor.hourly_check)
    scheduler.add_job("urgent check", CronTrigger(), monitor.check_urgent)
    return scheduler
