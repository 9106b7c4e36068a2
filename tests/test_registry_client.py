from __future__ import annotations

import asyncio
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from patent_bridge.infrastructure.registry import (
    LookupTrace,
    NoMatchError,
    RegistryClient,
    RegistryLookupError,
    RetryableStatusError,
    build_request_xml,
)

API_URL = "https://ipi.example.com/api"


class StaticCredentials:
    def __init__(self) -> None:
        self.calls = 0
        self.invalidated = 0

    async def get_bearer_token(self) -> str:
        self.calls += 1
        return "token-123"

    def invalidate(self) -> None:
        self.invalidated += 1


def _search_response(publication: str) -> str:
    return (
        "<ApiResponse><pat:PatentRecord xmlns:pat='urn:pat'>"
        f"<pat:PublicationNumber>{publication}</pat:PublicationNumber>"
        "<pat:StatusEventData><EventDate>2022-01-01</EventDate><KeyEventCode>ACTIVE</KeyEventCode>"
        "</pat:StatusEventData>"
        "<pat:Owner><PersonFullName>Alice</PersonFullName><CountryCode>CH</CountryCode></pat:Owner>"
        "</pat:PatentRecord></ApiResponse>"
    )


def _client(handler, credentials: StaticCredentials | None = None) -> RegistryClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RegistryClient(API_URL, credentials or StaticCredentials(), http_client=http_client)


def test_lookup_posts_search_envelope():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        captured["body"] = request.content.decode("utf-8")
        return httpx.Response(200, text=_search_response("EP1234567"))

    record = asyncio.run(_client(handler).lookup("ep1234567"))

    headers = captured["headers"]
    assert headers["authorization"] == "Bearer token-123"
    assert headers["content-type"] == "application/xml"
    assert headers["accept"] == "application/xml"
    assert "<Query><Any>EP1234567</Any></Query>" in captured["body"]
    assert 'Action type="PatentSearch"' in captured["body"]
    assert record.status_code == "ACTIVE"
    assert record.owner_names == ["Alice"]
    assert record.owner_addresses == ["CH"]


def test_neighbouring_publication_number_is_not_a_match():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_search_response("EP1234568"))

    with pytest.raises(NoMatchError, match="No exact PublicationNumber match for EP1234567"):
        asyncio.run(_client(handler).lookup("EP1234567"))


def test_retryable_status_carries_retry_after_and_truncated_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="x" * 1000, headers={"retry-after": "3"})

    with pytest.raises(RetryableStatusError) as excinfo:
        asyncio.run(_client(handler).lookup("EP1"))

    error = excinfo.value
    assert error.status == 429
    assert error.throttled
    assert error.retry_after == 3.0
    assert len(error.body) == 300


def test_client_error_is_not_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not found")

    with pytest.raises(RegistryLookupError) as excinfo:
        asyncio.run(_client(handler).lookup("EP1"))

    assert not isinstance(excinfo.value, RetryableStatusError)
    assert str(excinfo.value) == "IPI API error 404: not found"


def test_unauthorised_response_invalidates_token():
    credentials = StaticCredentials()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="expired")

    with pytest.raises(RegistryLookupError):
        asyncio.run(_client(handler, credentials).lookup("EP1"))

    assert credentials.invalidated == 1


def test_trace_captures_request_and_comparison():
    trace = LookupTrace()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=_search_response("EP1234568"))

    with pytest.raises(NoMatchError):
        asyncio.run(_client(handler).lookup("EP1234567", trace=trace))

    payload = trace.as_dict()
    assert payload["status"] == 200
    assert payload["compare"] == {"want": "EP1234567", "pubs": ["EP1234568"], "matched": False}
    assert "EP1234567" in payload["requestXml"]
    assert "EP1234568" in payload["responseXml"]


def test_request_xml_escapes_identifier():
    xml = build_request_xml("ep<1>", correlation_id="fixed")

    assert 'uuid="fixed"' in xml
    assert "<Any>EP&lt;1&gt;</Any>" in xml
