from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from patent_bridge.core.validation import IDENTIFIER_FIELD, ValidationError, normalize_identifier, validate_identifier
from patent_bridge.domain import Job, JobError, RegistryRecord
from patent_bridge.infrastructure import (
    AuthError,
    InMemoryJobRepository,
    JobRepository,
    LookupTrace,
    RegistryClientProtocol,
    RegistryLookupError,
    get_registry_client,
)
from patent_bridge.workers.limiter import RateLimitedRetrier

logger = logging.getLogger(__name__)

ROW_ERRORS = (ValidationError, AuthError, RegistryLookupError, httpx.HTTPError)


class JobTracker:
    """Fans a batch of rows out to the register and collects the results.

    Every row is one asyncio task; the shared retrier is the only place where
    outbound calls are throttled.  ``results[idx]`` is written by the task of
    row ``idx`` alone, so completion order never affects row alignment.
    """

    def __init__(
        self,
        repository: JobRepository | None = None,
        retrier: RateLimitedRetrier | None = None,
        client: RegistryClientProtocol | None = None,
    ) -> None:
        self.repository = repository or InMemoryJobRepository()
        self.retrier = retrier or RateLimitedRetrier()
        self._client = client
        self._tasks: dict[str, list[asyncio.Task[None]]] = {}

    @property
    def client(self) -> RegistryClientProtocol:
        return self._client or get_registry_client()

    def create_job(
        self,
        rows: Iterable[dict[str, Any]],
        *,
        debug: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        """Register a job and start processing it in the background.

        Must be called from a running event loop.
        """

        job = Job(
            id=self.repository.next_job_id(),
            rows=list(rows),
            debug=debug,
            metadata=dict(metadata or {}),
        )
        self.repository.add(job)
        logger.info("job %s created with %s rows (debug=%s)", job.id, job.total, debug)

        tasks = [asyncio.create_task(self._process_row(job, idx, row)) for idx, row in enumerate(job.rows)]
        if tasks:
            self._tasks[job.id] = tasks
        return job

    def get_job(self, job_id: str) -> Job | None:
        return self.repository.get(job_id)

    async def wait(self, job_id: str) -> Job | None:
        """Wait until every row task of the job has completed."""

        tasks = self._tasks.get(job_id, [])
        if tasks:
            await asyncio.gather(*tasks)
        self._tasks.pop(job_id, None)
        return self.repository.get(job_id)

    async def _lookup(self, identifier: str, trace: LookupTrace | None) -> RegistryRecord:
        client = self.client
        return await self.retrier.schedule(lambda: client.lookup(identifier, trace=trace))

    async def _process_row(self, job: Job, idx: int, row: dict[str, Any]) -> None:
        identifier = normalize_identifier(row.get(IDENTIFIER_FIELD))
        trace = LookupTrace() if job.debug else None
        try:
            identifier = validate_identifier(identifier)
            record = await self._lookup(identifier, trace)
        except ROW_ERRORS as exc:
            logger.warning("job %s row %s (%s) failed: %s", job.id, idx, identifier, exc)
            record = self._fail(job, idx, identifier, exc)
        except Exception as exc:
            logger.exception("job %s row %s (%s) failed unexpectedly", job.id, idx, identifier)
            record = self._fail(job, idx, identifier, exc)

        if trace is not None:
            record.debug = trace.as_dict()
        job.results[idx] = record
        job.mark_row_done()
        if job.is_finished:
            self._tasks.pop(job.id, None)
            logger.info("job %s finished: %s rows, %s errors", job.id, job.total, len(job.errors))

    @staticmethod
    def _fail(job: Job, idx: int, identifier: str, exc: BaseException) -> RegistryRecord:
        message = str(exc) or exc.__class__.__name__
        job.errors.append(JobError(idx=idx, identifier=identifier, error=message))
        return RegistryRecord.error(message)


__all__ = ["JobTracker", "ROW_ERRORS"]
