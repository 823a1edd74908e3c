#!/usr/bin/env python3
"""
Sync Scheduler
Runs the incremental and bulk syncs on their own cadences inside a
long-running process.

Cadences (local time):
- Incremental: every ``incremental_interval_hours`` on the hour, counted from midnight
- Bulk: once a day at ``bulk_hour``:00

Each job gets a daemon thread that sleeps on a shared stop event until its
next fire time. Both jobs go through the same RunGuard: a job that fires
while the other job runs waits for it, so the daily bulk run still happens
when an incremental run fires at the same hour. A job is skipped only
when another process holds the database sync lock.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from trac_core.secure_config import SchedulerConfig
from .run_guard import RunGuard
from .sync_runner import SyncReport, TicketSyncRunner

logger = logging.getLogger(__name__)


class Trigger(ABC):
    """Computes the next fire time of a job"""

    @abstractmethod
    def next_run(self, after: datetime) -> datetime:
        """First fire time strictly after ``after``"""


class IntervalTrigger(Trigger):
    """Fires every ``hours`` hours on the hour, aligned to midnight"""

    def __init__(self, hours: int):
        if not 1 <= hours <= 24:
            raise ValueError("Interval must be between 1 and 24 hours")
        self.hours = hours

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        while candidate.hour % self.hours:
            candidate += timedelta(hours=1)
        return candidate

    def __repr__(self):
        return f"IntervalTrigger(every {self.hours}h)"


class DailyTrigger(Trigger):
    """Fires once a day at ``hour``:00"""

    def __init__(self, hour: int):
        if not 0 <= hour <= 23:
            raise ValueError("Hour must be between 0 and 23")
        self.hour = hour

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self):
        return f"DailyTrigger({self.hour:02d}:00)"


@dataclass
class ScheduledJob:
    name: str
    trigger: Trigger
    action: Callable[[], Optional[SyncReport]]


class SyncScheduler:
    def __init__(self, runner: TicketSyncRunner, scheduler_config: SchedulerConfig,
                 guard: Optional[RunGuard] = None, clock: Callable[[], datetime] = datetime.now):
        self.runner = runner
        self.config = scheduler_config
        self.guard = guard or RunGuard()
        self.clock = clock
        self.jobs: List[ScheduledJob] = [
            ScheduledJob('incremental', IntervalTrigger(scheduler_config.incremental_interval_hours),
                         self.run_incremental),
            ScheduledJob('bulk', DailyTrigger(scheduler_config.bulk_hour), self.run_bulk),
        ]
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def run_incremental(self) -> Optional[SyncReport]:
        """Sync the most recent tickets"""
        return self._run_guarded(
            'incremental', lambda: self.runner.sync_recent(self.config.incremental_count)
        )

    def run_bulk(self) -> Optional[SyncReport]:
        """Page through the listing up to the configured maximum"""
        return self._run_guarded(
            'bulk', lambda: self.runner.sync_bulk(self.config.bulk_max_tickets, self.config.bulk_page_size)
        )

    def _run_guarded(self, name: str, action: Callable[[], SyncReport]) -> Optional[SyncReport]:
        logger.info(f"Starting scheduled {name} sync")
        try:
            with self.guard.hold(name, wait=True) as acquired:
                if not acquired:
                    return None
                return action()
        except Exception:
            # A failed run must not take the scheduler down with it
            logger.exception(f"Scheduled {name} sync failed")
            return None

    def _job_loop(self, job: ScheduledJob):
        while not self._stop_event.is_set():
            next_at = job.trigger.next_run(self.clock())
            logger.info(f"Next {job.name} sync at {next_at:%Y-%m-%d %H:%M}")
            wait_seconds = max((next_at - self.clock()).total_seconds(), 0)
            if self._stop_event.wait(wait_seconds):
                break
            job.action()

    def start(self):
        if self.is_running:
            logger.warning("Scheduler already running")
            return
        self._stop_event.clear()
        self._threads = []
        for job in self.jobs:
            thread = threading.Thread(target=self._job_loop, args=(job,),
                                      name=f"trac-sync-{job.name}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Sync scheduler started: " + ", ".join(f"{j.name} {j.trigger!r}" for j in self.jobs))

    def stop(self, timeout: Optional[float] = 5.0):
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Sync scheduler stopped")

    def wait(self):
        """Block until stop() is called or the process is interrupted"""
        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping scheduler")
            self.stop()


def start_scheduler_if_enabled(runner: TicketSyncRunner, scheduler_config: SchedulerConfig,
                               guard: Optional[RunGuard] = None) -> Optional[SyncScheduler]:
    """Start background sync when ENABLE_SCRAPING is on; otherwise do nothing"""
    if not scheduler_config.enabled:
        logger.info("Scheduled scraping disabled (set ENABLE_SCRAPING=true to enable)")
        return None
    scheduler = SyncScheduler(runner, scheduler_config, guard)
    scheduler.start()
    return scheduler
