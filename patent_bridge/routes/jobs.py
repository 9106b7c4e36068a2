from __future__ import annotations

import asyncio
import json
import zipfile
from typing import AsyncIterator

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from openpyxl.utils.exceptions import InvalidFileException

from patent_bridge.application import JobNotFoundError, JobNotReadyError, get_job_service
from patent_bridge.core.validation import IdentifierColumnError, ValidationError
from patent_bridge.exporters.workbook import SPLIT_KEYS

router = APIRouter(prefix="/jobs", tags=["jobs"])

STREAM_INTERVAL_SECONDS = 1.0

UNREADABLE_WORKBOOK = (ValueError, zipfile.BadZipFile, InvalidFileException)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _is_debug(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"true", "full", "1"}


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"content-disposition": f'attachment; filename="{filename}"'},
    )


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, JobNotFoundError):
        return HTTPException(status_code=404, detail="Not found")
    if isinstance(exc, JobNotReadyError):
        return HTTPException(status_code=409, detail="Job not finished")
    return HTTPException(status_code=400, detail=str(exc))


async def _read_upload(file: UploadFile | None) -> bytes:
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    try:
        data = await file.read()
    finally:
        await file.close()
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    return data


@router.post("")
async def create_job(
    file: UploadFile | None = File(default=None),
    debug: str | None = Query(default=None),
    ep_col: str | None = Query(default=None, alias="epCol"),
) -> dict:
    """Upload a batch workbook and start the register lookups."""
    data = await _read_upload(file)
    service = get_job_service()
    try:
        created = service.create_job_from_upload(data, identifier_column=ep_col, debug=_is_debug(debug))
    except IdentifierColumnError as exc:
        raise HTTPException(status_code=422, detail={"error": "no_ep_column", "headers": exc.headers}) from exc
    except ValidationError as exc:
        raise _translate(exc) from exc
    except UNREADABLE_WORKBOOK as exc:
        raise HTTPException(status_code=400, detail=f"Unreadable workbook: {exc}") from exc
    return created.model_dump()


@router.get("/{job_id}")
async def get_job_status(job_id: str) -> dict:
    try:
        return get_job_service().status(job_id).model_dump()
    except JobNotFoundError as exc:
        raise _translate(exc) from exc


@router.get("/{job_id}/stream")
async def stream_job_progress(job_id: str) -> StreamingResponse:
    """Server-sent progress events until the job finishes."""
    try:
        job = get_job_service().get_job(job_id)
    except JobNotFoundError as exc:
        raise _translate(exc) from exc

    async def events() -> AsyncIterator[str]:
        while True:
            yield f"data: {json.dumps(job.progress())}\n\n"
            if job.is_finished:
                yield "event: complete\n"
                yield f"data: {json.dumps({'done': job.done, 'total': job.total})}\n\n"
                return
            await asyncio.sleep(STREAM_INTERVAL_SECONDS)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"cache-control": "no-cache", "connection": "keep-alive"},
    )


@router.get("/{job_id}/full")
async def get_job_full(job_id: str) -> dict:
    try:
        return get_job_service().full(job_id).model_dump()
    except (JobNotFoundError, JobNotReadyError) as exc:
        raise _translate(exc) from exc


@router.get("/{job_id}/download")
async def download_results(job_id: str) -> Response:
    try:
        content = get_job_service().results_workbook(job_id)
    except (JobNotFoundError, JobNotReadyError) as exc:
        raise _translate(exc) from exc
    return _attachment(content, XLSX_MEDIA_TYPE, f"swissreg-results-{job_id}.xlsx")


@router.get("/{job_id}/download-split")
async def download_split(job_id: str, split_by: str = Query(default="address_name", alias="splitBy")) -> Response:
    """One workbook per client group, zipped."""
    if split_by not in SPLIT_KEYS:
        raise HTTPException(status_code=400, detail=f"Unknown splitBy: {split_by}")
    try:
        content = get_job_service().split_archive(job_id, split_by)
    except (JobNotFoundError, JobNotReadyError) as exc:
        raise _translate(exc) from exc
    return _attachment(content, "application/zip", f"swissreg-split-{job_id}.zip")


@router.post("/{job_id}/download-poas-only")
async def download_poas(job_id: str, group_by: str = Query(default="client", alias="groupBy")) -> Response:
    if group_by not in SPLIT_KEYS:
        raise HTTPException(status_code=400, detail=f"Unknown groupBy: {group_by}")
    try:
        content = await get_job_service().poa_archive(job_id, group_by)
    except (JobNotFoundError, JobNotReadyError, ValidationError) as exc:
        raise _translate(exc) from exc
    return _attachment(content, "application/zip", f"poas-{job_id}.zip")


@router.post("/{job_id}/poas-from-sheet")
async def poas_from_sheet(job_id: str, file: UploadFile | None = File(default=None)) -> Response:
    """Render PoAs from an edited results workbook instead of the job results."""
    data = await _read_upload(file)
    try:
        content = await get_job_service().poa_archive_from_sheet(data)
    except ValidationError as exc:
        raise _translate(exc) from exc
    except UNREADABLE_WORKBOOK as exc:
        raise HTTPException(status_code=400, detail=f"Unreadable workbook: {exc}") from exc
    return _attachment(content, "application/zip", f"poas-{job_id}.zip")
