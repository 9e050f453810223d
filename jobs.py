"""A small job queue with per-job retry options.

Jobs are enqueued by name with a JSON-able payload and plain-data options
(attempts, backoff, cleanup). When a scheduler is attached, ready jobs are
handed to its thread pool; without one, ``drain`` runs ready jobs inline.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

ANY_JOB = "*"


class JobStatus(str, Enum):
    waiting = "waiting"
    delayed = "delayed"
    active = "active"
    completed = "completed"
    failed = "failed"


@dataclass(frozen=True)
class Backoff:
    type: str = "exponential"
    delay_ms: int = 5000

    def delay_for(self, attempts_made: int) -> timedelta:
        if self.type == "fixed":
            return timedelta(milliseconds=self.delay_ms)
        if self.type == "exponential":
            return timedelta(milliseconds=self.delay_ms * 2 ** max(attempts_made - 1, 0))
        raise ValueError(f"Unsupported backoff type: {self.type}")


@dataclass(frozen=True)
class JobOptions:
    attempts: int = 1
    backoff: Optional[Backoff] = None
    remove_on_complete: bool = True
    remove_on_fail: bool = False


@dataclass
class Job:
    id: str
    name: str
    data: dict[str, Any]
    options: JobOptions
    run_at: datetime
    attempts_made: int = 0
    status: JobStatus = JobStatus.waiting
    failed_reason: Optional[str] = None
    history: list[str] = field(default_factory=list)


JobHandler = Callable[[Job], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    def __init__(
        self,
        name: str,
        *,
        scheduler: Optional[BaseScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.name = name
        self.scheduler = scheduler
        self._clock = clock
        self._handlers: dict[str, JobHandler] = {}
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def consume(self, job_name: str, handler: JobHandler) -> None:
        """Register ``handler`` for ``job_name``; ``ANY_JOB`` matches every name."""
        self._handlers[job_name] = handler

    def enqueue(
        self, job_name: str, payload: dict[str, Any], options: Optional[JobOptions] = None
    ) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            name=job_name,
            data=dict(payload),
            options=options or JobOptions(),
            run_at=self._clock(),
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.debug(f"job_queue: queue={self.name} enqueued job_id={job.id} name={job_name}")
        self._dispatch(job)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self, status: Optional[JobStatus] = None) -> list[Job]:
        with self._lock:
            return [
                job for job in self._jobs.values() if status is None or job.status == status
            ]

    def failed_jobs(self) -> list[Job]:
        return self.jobs(JobStatus.failed)

    def drain(self, now: Optional[datetime] = None) -> int:
        """Run every job that is due at ``now``; returns the number of runs."""
        moment = now or self._clock()
        runs = 0
        while True:
            with self._lock:
                ready = [
                    job
                    for job in self._jobs.values()
                    if job.status in (JobStatus.waiting, JobStatus.delayed)
                    and job.run_at <= moment
                ]
            if not ready:
                return runs
            for job in ready:
                self.process(job.id, now=moment)
                runs += 1

    def _dispatch(self, job: Job) -> None:
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.process,
            DateTrigger(run_date=job.run_at),
            args=[job.id],
            id=f"{self.name}:{job.id}:{job.attempts_made}",
            misfire_grace_time=None,
        )

    def _handler_for(self, job: Job) -> Optional[JobHandler]:
        return self._handlers.get(job.name) or self._handlers.get(ANY_JOB)

    def process(self, job_id: str, now: Optional[datetime] = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in (JobStatus.waiting, JobStatus.delayed):
                return
            job.status = JobStatus.active
            job.attempts_made += 1

        handler = self._handler_for(job)
        try:
            if handler is None:
                logger.debug(f"job_queue: queue={self.name} no handler name={job.name}")
            else:
                handler(job)
        except Exception as exc:
            self._on_failure(job, exc, now or self._clock())
            return
        self._on_success(job)

    def _on_success(self, job: Job) -> None:
        with self._lock:
            job.status = JobStatus.completed
            if job.options.remove_on_complete:
                self._jobs.pop(job.id, None)
        logger.info(
            f"job_queue: queue={self.name} completed job_id={job.id} attempts={job.attempts_made}"
        )

    def _on_failure(self, job: Job, exc: Exception, now: datetime) -> None:
        reason = f"{type(exc).__name__}: {exc}"
        job.history.append(reason)
        if job.attempts_made < job.options.attempts:
            backoff = job.options.backoff or Backoff("fixed", 0)
            delay = backoff.delay_for(job.attempts_made)
            with self._lock:
                job.status = JobStatus.delayed
                job.run_at = now + delay
            logger.warning(
                f"job_queue: queue={self.name} retry job_id={job.id} "
                f"attempt={job.attempts_made}/{job.options.attempts} "
                f"delay_secs={delay.total_seconds():.0f} reason={reason}"
            )
            self._dispatch(job)
            return

        with self._lock:
            job.status = JobStatus.failed
            job.failed_reason = reason
            if job.options.remove_on_fail:
                self._jobs.pop(job.id, None)
        logger.error(
            f"job_queue: queue={self.name} failed job_id={job.id} "
            f"attempts={job.attempts_made} reason={reason}"
        )
