"""Periodic job scheduling on the engine clock."""
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Union

import structlog

from paper_trading.utils.clock import Clock

logger = structlog.get_logger(__name__)

JobCallback = Callable[[], Union[None, Awaitable[None]]]

ONE_DAY = timedelta(days=1)


def next_utc_midnight(moment: datetime) -> datetime:
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + ONE_DAY


@dataclass
class PeriodicJob:
    """
    A callback run on a fixed cadence.

    Attributes:
        name: Unique job name
        callback: Sync or async zero-argument callable
        interval_seconds: Cadence; ignored for daily jobs
        daily: Fire on every UTC day boundary instead of a fixed interval
        next_run: Next due time on the engine clock
        run_count: Number of completed runs
    """
    name: str
    callback: JobCallback
    interval_seconds: float = 0.0
    daily: bool = False
    next_run: Optional[datetime] = None
    run_count: int = 0
    last_error: Optional[str] = field(default=None, repr=False)

    def schedule_from(self, now: datetime) -> None:
        self.next_run = next_utc_midnight(now) if self.daily else now + self._step()

    def advance(self) -> None:
        if self.daily:
            self.next_run = next_utc_midnight(self.next_run)
        else:
            self.next_run = self.next_run + self._step()

    def _step(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)

    def is_due(self, now: datetime) -> bool:
        return self.next_run is not None and now >= self.next_run


class Scheduler:
    """
    Runs due jobs when asked.

    The scheduler owns no task of its own: the engine's main loop (or a test
    driving a ``VirtualClock``) calls ``run_due()``. Missed runs are caught up
    in order, so advancing a virtual clock by 60s fires 12 five-second jobs.
    """

    MAX_CATCH_UP = 1000

    def __init__(self, clock: Clock):
        self.clock = clock
        self._jobs: Dict[str, PeriodicJob] = {}

    @property
    def jobs(self) -> List[PeriodicJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> Optional[PeriodicJob]:
        return self._jobs.get(name)

    def add_job(self, name: str, callback: JobCallback, interval_seconds: float = 0.0,
                daily: bool = False) -> PeriodicJob:
        if name in self._jobs:
            raise ValueError(f"Job {name} is already scheduled")
        if not daily and interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        job = PeriodicJob(name=name, callback=callback,
                          interval_seconds=interval_seconds, daily=daily)
        job.schedule_from(self.clock.now())
        self._jobs[name] = job
        logger.debug("scheduler.job_added", job=name, next_run=job.next_run.isoformat())
        return job

    def remove_job(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def clear(self) -> None:
        self._jobs.clear()

    def reschedule_all(self) -> None:
        now = self.clock.now()
        for job in self._jobs.values():
            job.schedule_from(now)

    async def run_due(self) -> List[str]:
        """Run every due job, oldest due time first. Returns the names run."""
        now = self.clock.now()
        ran: List[str] = []

        for _ in range(self.MAX_CATCH_UP * max(len(self._jobs), 1)):
            due = [job for job in self._jobs.values() if job.is_due(now)]
            if not due:
                break
            job = min(due, key=lambda j: j.next_run)
            await self._run(job)
            job.advance()
            ran.append(job.name)
        else:
            logger.warning("scheduler.catch_up_limit", jobs=len(self._jobs))
            self.reschedule_all()

        return ran

    async def _run(self, job: PeriodicJob) -> None:
        try:
            result = job.callback()
            if inspect.isawaitable(result):
                await result
            job.run_count += 1
            job.last_error = None
        except Exception as e:
            job.last_error = str(e)
            logger.error("scheduler.job_error", job=job.name, error=str(e))
