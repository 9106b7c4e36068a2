from __future__ import annotations

import asyncio
from io import BytesIO
from pathlib import Path
import sys
import threading
import time
import zipfile

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook, load_workbook

sys.path.append(str(Path(__file__).resolve().parents[1]))

from patent_bridge.application import JobService, configure_job_service
from patent_bridge.core.config import Settings
from patent_bridge.domain import RegistryRecord
from patent_bridge.extractors.workbook import REQUIRED_COLUMNS
from patent_bridge.infrastructure import InMemoryJobRepository, NoMatchError
from patent_bridge.routes import jobs as job_routes
from patent_bridge.workers.jobs import JobTracker
from patent_bridge.workers.limiter import RateLimitedRetrier, RateLimiter, RetryPolicy

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class GatedRegistryClient:
    """Holds every lookup until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.calls: list[str] = []

    async def lookup(self, identifier: str, *, trace=None) -> RegistryRecord:
        self.calls.append(identifier)
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        if identifier == "EP2":
            raise NoMatchError("No exact PublicationNumber match for EP2")
        return RegistryRecord(
            status_code="ACTIVE",
            last_change_date="2023-01-01",
            owner_names=["Alice", "Bob"],
            owner_addresses=["Addr1", "Addr2"],
        )


class FakeRenderer:
    async def render_many(self, documents):
        return [b"%PDF-1.4 fake" for _ in documents]


@pytest.fixture()
def registry() -> GatedRegistryClient:
    return GatedRegistryClient()


@pytest.fixture()
def service(registry) -> JobService:
    async def no_sleep(delay: float) -> None:
        return None

    retrier = RateLimitedRetrier(
        RateLimiter(max_concurrent=4, min_time_ms=0),
        RetryPolicy(),
        sleep=no_sleep,
    )
    tracker = JobTracker(InMemoryJobRepository(), retrier, registry)
    return JobService(tracker, upload_max_bytes=1024 * 1024, renderer=FakeRenderer())


@pytest.fixture()
def client(service, monkeypatch):
    from patent_bridge.app import create_app

    app = create_app(Settings())
    configure_job_service(service)
    monkeypatch.setattr(job_routes, "STREAM_INTERVAL_SECONDS", 0.01)
    with TestClient(app) as test_client:
        yield test_client


def _batch(header: list[str] | None = None, patents: tuple[str, ...] = ("EP1", "EP2", "bogus")) -> bytes:
    header = header or REQUIRED_COLUMNS
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Batch"
    sheet.append(header)
    for number, patent in enumerate(patents, start=1):
        values = {
            "Client Account Name": "Acme" if number < 3 else "Beta",
            "Sales Order Correspondence Address": "Acme Legal\nlegal@acme.example",
            "Patent Number": patent,
        }
        sheet.append([values.get(column, f"{column} {number}") for column in header])
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _upload(client: TestClient, data: bytes, params: dict | None = None):
    files = {"file": ("batch.xlsx", data, XLSX)}
    return client.post("/api/jobs", files=files, params=params or {})


def _wait_finished(client: TestClient, job_id: str) -> dict:
    for _ in range(500):
        payload = client.get(f"/api/jobs/{job_id}").json()
        if payload["status"] == "finished":
            return payload
        time.sleep(0.01)
    raise AssertionError("job did not finish")


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_full_batch_lifecycle(client, registry):
    response = _upload(client, _batch())

    assert response.status_code == 200
    created = response.json()
    assert created["total"] == 3
    assert created["debug"] is False
    assert created["canSplit"] is True
    assert created["availableSplits"] == ["client", "address_name", "address_email"]
    job_id = created["jobId"]

    status = _wait_finished(client, job_id)
    assert status["done"] == 3
    assert sorted(error["idx"] for error in status["errors"]) == [1, 2]
    assert sorted(registry.calls) == ["EP1", "EP2"]

    full = client.get(f"/api/jobs/{job_id}/full").json()
    assert [result["statusCode"] for result in full["results"]] == [
        "ACTIVE",
        "ERROR: No exact PublicationNumber match for EP2",
        "ERROR: Invalid EP format: BOGUS",
    ]

    download = client.get(f"/api/jobs/{job_id}/download")
    assert download.status_code == 200
    assert f"swissreg-results-{job_id}.xlsx" in download.headers["content-disposition"]
    rows = list(load_workbook(BytesIO(download.content)).active.iter_rows(values_only=True))
    header = list(rows[0])
    assert header[-4:] == ["Owner1", "Owner1Address", "Owner2", "Owner2Address"]
    assert rows[1][header.index("Owner2")] == "Bob"
    assert rows[2][header.index("StatusCode")].startswith("ERROR: ")

    split = client.get(f"/api/jobs/{job_id}/download-split", params={"splitBy": "client"})
    assert split.status_code == 200
    assert sorted(zipfile.ZipFile(BytesIO(split.content)).namelist()) == ["Acme.xlsx", "Beta.xlsx"]

    poas = client.post(f"/api/jobs/{job_id}/download-poas-only")
    assert poas.status_code == 200
    assert sorted(zipfile.ZipFile(BytesIO(poas.content)).namelist()) == ["Acme/Alice.pdf", "Acme/Bob.pdf"]


def test_results_are_unavailable_while_running(client, registry):
    registry.gate.clear()
    job_id = _upload(client, _batch(patents=("EP1",))).json()["jobId"]

    for path in ("full", "download", "download-split"):
        response = client.get(f"/api/jobs/{job_id}/{path}")
        assert response.status_code == 409
        assert response.json() == {"error": "Job not finished"}
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "running"

    registry.gate.set()
    _wait_finished(client, job_id)
    assert client.get(f"/api/jobs/{job_id}/full").status_code == 200


def test_progress_stream_ends_with_complete_event(client):
    job_id = _upload(client, _batch()).json()["jobId"]

    response = client.get(f"/api/jobs/{job_id}/stream")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    body = response.text
    assert body.startswith("data: ")
    assert "event: complete\n" in body
    assert body.rstrip().endswith('data: {"done": 3, "total": 3}')


def test_missing_columns_are_rejected(client, registry):
    header = [column for column in REQUIRED_COLUMNS if column != "Applicant Names"]

    response = _upload(client, _batch(header))

    assert response.status_code == 400
    assert "Applicant Names" in response.json()["error"]
    assert registry.calls == []


def test_missing_identifier_column_lists_headers(client):
    header = [column if column != "Patent Number" else "EP" for column in REQUIRED_COLUMNS]
    data = _batch(header)

    response = _upload(client, data)

    assert response.status_code == 422
    payload = response.json()
    assert payload["error"] == "no_ep_column"
    assert "EP" in payload["headers"]

    retry = _upload(client, data, params={"epCol": "EP"})
    assert retry.status_code == 200


def test_upload_requires_a_file(client):
    response = client.post("/api/jobs")

    assert response.status_code == 400
    assert response.json() == {"error": "No file uploaded"}


def test_upload_size_limit(client, service):
    service.upload_max_bytes = 10

    response = _upload(client, _batch())

    assert response.status_code == 400
    assert "too large" in response.json()["error"]


def test_unknown_job_and_split_key(client):
    assert client.get("/api/jobs/missing").status_code == 404
    assert client.get("/api/jobs/missing").json() == {"error": "Not found"}

    response = client.get("/api/jobs/missing/download-split", params={"splitBy": "country"})
    assert response.status_code == 400


def test_poas_from_uploaded_sheet(client):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Client Account Name", "Owner1", "Owner1Address"])
    sheet.append(["Gamma", "Carol", "Addr9"])
    buffer = BytesIO()
    workbook.save(buffer)

    files = {"file": ("results.xlsx", buffer.getvalue(), XLSX)}
    response = client.post("/api/jobs/any/poas-from-sheet", files=files)

    assert response.status_code == 200
    assert zipfile.ZipFile(BytesIO(response.content)).namelist() == ["Gamma/Carol.pdf"]


def test_main_serves_app_with_uvicorn(monkeypatch):
    from patent_bridge import app as app_module

    calls: list[tuple[tuple, dict]] = []
    monkeypatch.setattr(app_module.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))
    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("LOG_LEVEL", "info")

    app_module.main()

    assert calls == [(("patent_bridge.app:app",), {"host": "127.0.0.1", "port": 8123, "log_level": "info"})]
