"""Infrastructure layer for job persistence."""
from __future__ import annotations

import secrets
import time
from collections import OrderedDict
from typing import Callable, Protocol

from patent_bridge.domain import Job


class JobRepository(Protocol):
    """Persistence contract for lookup jobs."""

    def next_job_id(self) -> str: ...

    def add(self, job: Job) -> None: ...

    def get(self, job_id: str) -> Job | None: ...

    def list_jobs(self) -> list[Job]: ...

    def reset(self) -> None: ...


class InMemoryJobRepository:
    """Bounded in-memory store.

    Finished jobs expire after ``ttl_seconds``; once more than ``max_jobs``
    are held the oldest finished ones are dropped.  Running jobs stay until
    they finish.
    """

    def __init__(
        self,
        *,
        max_jobs: int = 200,
        ttl_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._jobs: OrderedDict[str, Job] = OrderedDict()
        self._max_jobs = max(1, max_jobs)
        self._ttl = ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _evict(self, keep: str | None = None) -> None:
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_finished and job.finished_at is not None and now - job.finished_at > self._ttl
        ]
        for job_id in expired:
            del self._jobs[job_id]

        overflow = len(self._jobs) - self._max_jobs
        if overflow <= 0:
            return
        for job_id in [job_id for job_id, job in self._jobs.items() if job.is_finished and job_id != keep][:overflow]:
            del self._jobs[job_id]

    # ------------------------------------------------------------------
    # CRUD operations
    # ------------------------------------------------------------------
    def next_job_id(self) -> str:
        while True:
            job_id = secrets.token_hex(8)
            if job_id not in self._jobs:
                return job_id

    def add(self, job: Job) -> None:
        self._jobs[job.id] = job
        self._evict(keep=job.id)

    def get(self, job_id: str) -> Job | None:
        self._evict()
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        self._evict()
        return list(self._jobs.values())

    def reset(self) -> None:
        self._jobs.clear()
