"""Application service layer for batch lookup jobs."""
from __future__ import annotations

import logging

from patent_bridge.core.schema import JobCreatedModel, JobFullModel, JobStatusModel
from patent_bridge.core.validation import ValidationError
from patent_bridge.domain import Job
from patent_bridge.exporters.poa import OwnerEntry, build_poa_archive, collect_owner_groups, owners_from_sheet
from patent_bridge.exporters.workbook import (
    append_results_to_workbook,
    available_splits,
    build_split_archive,
)
from patent_bridge.extractors.workbook import parse_workbook
from patent_bridge.infrastructure import DocumentRenderer, get_document_renderer
from patent_bridge.workers.jobs import JobTracker

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_MAX_BYTES = 25 * 1024 * 1024


class JobNotFoundError(LookupError):
    """Raised when a job id is unknown or has expired."""


class JobNotReadyError(RuntimeError):
    """Raised when a job result is requested before every row finished."""


class UploadTooLargeError(ValidationError):
    """Raised when an uploaded workbook exceeds the configured limit."""


class NoOwnersError(ValidationError):
    """Raised when a PoA archive would contain no documents."""


class JobService:
    """Coordinates upload, progress and export use cases."""

    def __init__(
        self,
        tracker: JobTracker | None = None,
        *,
        upload_max_bytes: int = DEFAULT_UPLOAD_MAX_BYTES,
        renderer: DocumentRenderer | None = None,
    ) -> None:
        self.tracker = tracker or JobTracker()
        self.upload_max_bytes = upload_max_bytes
        self._renderer = renderer

    @property
    def renderer(self) -> DocumentRenderer:
        return self._renderer or get_document_renderer()

    # ------------------------------------------------------------------
    # job lifecycle
    # ------------------------------------------------------------------
    def check_upload_size(self, data: bytes) -> None:
        if len(data) > self.upload_max_bytes:
            raise UploadTooLargeError(f"File too large (limit {self.upload_max_bytes} bytes)")

    def create_job_from_upload(
        self,
        data: bytes,
        *,
        identifier_column: str | None = None,
        debug: bool = False,
    ) -> JobCreatedModel:
        """Parse an uploaded workbook and start looking up its rows."""

        self.check_upload_size(data)
        parsed = parse_workbook(data, identifier_column)
        job = self.tracker.create_job(
            parsed.rows,
            debug=debug,
            metadata={
                "source": parsed.source,
                "sheet_name": parsed.sheet_name,
                "headers": parsed.headers,
                "identifier_column": parsed.identifier_column,
            },
        )
        splits = available_splits(parsed.headers)
        return JobCreatedModel(
            jobId=job.id,
            total=job.total,
            debug=debug,
            canSplit=bool(splits),
            availableSplits=splits,
        )

    def get_job(self, job_id: str) -> Job:
        job = self.tracker.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def require_finished(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if not job.is_finished:
            raise JobNotReadyError(job_id)
        return job

    def status(self, job_id: str) -> JobStatusModel:
        return JobStatusModel.from_job(self.get_job(job_id))

    def full(self, job_id: str) -> JobFullModel:
        return JobFullModel.from_job(self.require_finished(job_id))

    # ------------------------------------------------------------------
    # exports
    # ------------------------------------------------------------------
    def results_workbook(self, job_id: str) -> bytes:
        job = self.require_finished(job_id)
        return append_results_to_workbook(
            job.metadata["source"],
            job.metadata["sheet_name"],
            job.rows,
            job.results,
        )

    def split_archive(self, job_id: str, split_by: str) -> bytes:
        job = self.require_finished(job_id)
        return build_split_archive(job.rows, job.results, split_by)

    async def poa_archive(self, job_id: str, group_by: str = "client") -> bytes:
        job = self.require_finished(job_id)
        groups = collect_owner_groups(job.rows, job.results, group_by)
        return await self._render_archive(groups)

    async def poa_archive_from_sheet(self, data: bytes) -> bytes:
        self.check_upload_size(data)
        return await self._render_archive(owners_from_sheet(data))

    async def _render_archive(self, groups: dict[str, list[OwnerEntry]]) -> bytes:
        count = sum(len(owners) for owners in groups.values())
        if not count:
            raise NoOwnersError("No owners found to render")
        logger.info("rendering %s PoA documents in %s groups", count, len(groups))
        return await build_poa_archive(groups, self.renderer)

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self.tracker.repository.reset()


_service = JobService()


def configure_job_service(service: JobService) -> None:
    """Install the service used by the HTTP routes."""

    global _service
    _service = service


def get_job_service() -> JobService:
    """Return the singleton job service for the process."""

    return _service


def reset_job_state() -> None:
    """Reset the in-memory job store (used in tests)."""

    _service.reset()
