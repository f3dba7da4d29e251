"""
Interval scheduling for the maintenance jobs on APScheduler.

Each job is an APScheduler interval job with `max_instances=1` and
`coalesce=True`: a tick that comes due while the previous run is still in
flight is dropped by APScheduler and counted here as skipped. Manual runs
(`run_now`) go through the same in-flight guard, so a job never runs
concurrently with itself however it was triggered.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


@dataclass
class JobRun:
    name: str
    ran: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class ScheduledJob:
    name: str
    func: Callable[[], Any]
    interval_seconds: float
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0
    skipped: int = 0


class UnknownJobError(KeyError):
    pass


class JobScheduler:
    def __init__(self, background: Optional[BackgroundScheduler] = None):
        self.background = background or BackgroundScheduler(timezone="UTC")
        self.background.add_listener(
            self._on_tick_skipped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED
        )
        self.jobs: dict[str, ScheduledJob] = {}
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def register(
        self, name: str, func: Callable[[], Any], interval_seconds: float
    ) -> ScheduledJob:
        if name in self.jobs:
            raise ValueError(f"Job {name} is already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = ScheduledJob(name=name, func=func, interval_seconds=interval_seconds)
        self.jobs[name] = job
        self.background.add_job(
            self.run_now,
            IntervalTrigger(seconds=interval_seconds),
            args=[name],
            id=name,
            name=name,
            max_instances=1,
            coalesce=True,
        )
        return job

    @property
    def running(self) -> bool:
        return self.background.running

    def is_in_flight(self, name: str) -> bool:
        with self._lock:
            return name in self._in_flight

    def start(self) -> None:
        if self.background.running:
            return
        self.background.start()
        logger.info("Scheduler started with %d jobs", len(self.jobs))

    def shutdown(self, wait: bool = True) -> None:
        if not self.background.running:
            return
        self.background.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def _on_tick_skipped(self, event: JobEvent) -> None:
        job = self.jobs.get(event.job_id)
        if job is None:
            return
        job.skipped += 1
        logger.warning("Skipped a scheduled run of %s", event.job_id)

    def run_now(self, name: str) -> JobRun:
        """Run a job in the calling thread unless it is already in flight."""
        job = self.jobs.get(name)
        if job is None:
            raise UnknownJobError(name)

        with self._lock:
            if name in self._in_flight:
                job.skipped += 1
                logger.warning("Skipping %s: previous run still in progress", name)
                return JobRun(name=name, ran=False)
            self._in_flight.add(name)

        try:
            result = job.func()
        except Exception as e:
            logger.exception("Job %s failed", name)
            job.last_error = str(e)
            return JobRun(name=name, ran=True, error=str(e))
        finally:
            job.runs += 1
            job.last_run_at = datetime.now(timezone.utc)
            with self._lock:
                self._in_flight.discard(name)

        job.last_error = None
        return JobRun(name=name, ran=True, result=result)

    def _next_run_at(self, name: str) -> Optional[str]:
        aps_job = self.background.get_job(name)
        next_run = getattr(aps_job, "next_run_time", None)
        return next_run.isoformat() if next_run else None

    def status(self) -> list[dict]:
        return [
            {
                "name": job.name,
                "intervalSeconds": job.interval_seconds,
                "running": self.is_in_flight(job.name),
                "lastRunAt": job.last_run_at.isoformat() if job.last_run_at else None,
                "nextRunAt": self._next_run_at(job.name),
                "lastError": job.last_error,
                "runs": job.runs,
                "skipped": job.skipped,
            }
            for job in self.jobs.values()
        ]
