"""Client for the IPI data-delivery patent search API."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Protocol
from xml.sax.saxutils import escape

import httpx

from patent_bridge.domain import RegistryRecord
from patent_bridge.extractors.registry_xml import extract_fields, publication_numbers

from .credentials import CredentialCache

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 409, 420, 429, 500, 502, 503, 504})
BODY_PREVIEW_CHARS = 300

_CORE_NS = "urn:ige:schema:xsd:datadeliverycore-1.0.0"
_PATENT_NS = "urn:ige:schema:xsd:datadeliverypatent-1.0.0"
_COMMON_NS = "urn:ige:schema:xsd:datadeliverycommon-1.0.0"


class RegistryLookupError(RuntimeError):
    """Raised when the register answers with a non-success status."""

    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class RetryableStatusError(RegistryLookupError):
    """A transient status (throttling, timeouts, gateway errors)."""

    def __init__(self, status: int, body: str = "", *, retry_after: float | None = None) -> None:
        super().__init__(f"IPI API error {status}: {body}", status=status, body=body)
        self.retry_after = retry_after

    @property
    def throttled(self) -> bool:
        return self.status == 429


class NoMatchError(RegistryLookupError):
    """The response does not contain the exact requested publication number."""


class RegistryClientProtocol(Protocol):
    async def lookup(self, identifier: str, *, trace: "LookupTrace | None" = None) -> RegistryRecord:
        """Look up a single patent identifier."""


@dataclass(slots=True)
class LookupTrace:
    """Request/response capture for debug uploads."""

    request_xml: str = ""
    response_xml: str = ""
    want: str = ""
    publication_numbers: list[str] = field(default_factory=list)
    matched: bool = False
    status: int | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "requestXml": self.request_xml,
            "responseXml": self.response_xml,
            "status": self.status,
            "compare": {
                "want": self.want,
                "pubs": list(self.publication_numbers),
                "matched": self.matched,
            },
        }


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def build_request_xml(identifier: str, *, correlation_id: str | None = None) -> str:
    request_id = correlation_id or str(uuid.uuid4())
    query = escape(identifier.upper(), {'"': "&quot;", "'": "&apos;"})
    return (
        "<?xml version='1.0' encoding='UTF-8'?>"
        f'<ApiRequest uuid="{request_id}" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        f'xmlns="{_CORE_NS}" xmlns:pat="{_PATENT_NS}">'
        '<Action type="PatentSearch">'
        f'<pat:PatentSearchRequest xmlns="{_COMMON_NS}">'
        f"<Query><Any>{query}</Any></Query>"
        "</pat:PatentSearchRequest></Action></ApiRequest>"
    )


class RegistryClient:
    """Looks up European patents in the Swiss register.

    One call posts a free-text search for the identifier; the response is only
    accepted when it carries that exact publication number, since the search
    also returns loosely related documents.
    """

    def __init__(
        self,
        api_url: str,
        credentials: CredentialCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._api_url = api_url
        self._credentials = credentials
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    async def lookup(self, identifier: str, *, trace: LookupTrace | None = None) -> RegistryRecord:
        want = re.sub(r"\s+", "", identifier).upper()
        token = await self._credentials.get_bearer_token()
        request_xml = build_request_xml(identifier)
        if trace is not None:
            trace.request_xml = request_xml
            trace.want = want

        response = await self._client.post(
            self._api_url,
            content=request_xml.encode("utf-8"),
            headers={
                "content-type": "application/xml",
                "accept": "application/xml",
                "authorization": f"Bearer {token}",
            },
        )
        text = response.text
        if trace is not None:
            trace.status = response.status_code
            trace.response_xml = text

        if not response.is_success:
            body = text[:BODY_PREVIEW_CHARS]
            if response.status_code == 401:
                self._credentials.invalidate()
            if response.status_code in RETRYABLE_STATUSES:
                raise RetryableStatusError(response.status_code, body, retry_after=_retry_after(response))
            raise RegistryLookupError(
                f"IPI API error {response.status_code}: {body}",
                status=response.status_code,
                body=body,
            )

        pubs = publication_numbers(text)
        matched = want in pubs
        if trace is not None:
            trace.publication_numbers = pubs
            trace.matched = matched
        if not matched:
            logger.debug("no exact publication number for %s in %s", want, pubs)
            raise NoMatchError(f"No exact PublicationNumber match for {identifier}", status=response.status_code)

        return extract_fields(text)

    async def aclose(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            await self._client.aclose()


class UnconfiguredRegistryClient:
    """Fallback used when no register credentials are configured."""

    async def lookup(self, identifier: str, *, trace: LookupTrace | None = None) -> RegistryRecord:
        raise RegistryLookupError("IPI API is not configured (set IDP_TOKEN_URL and IPI_API_URL)")


_client: RegistryClientProtocol = UnconfiguredRegistryClient()


def configure_registry_client(client: RegistryClientProtocol) -> None:
    """Install the register client used by the job tracker."""

    global _client
    _client = client


def get_registry_client() -> RegistryClientProtocol:
    """Return the currently configured register client."""

    return _client


__all__ = [
    "LookupTrace",
    "NoMatchError",
    "RegistryClient",
    "RegistryClientProtocol",
    "RegistryLookupError",
    "RetryableStatusError",
    "UnconfiguredRegistryClient",
    "build_request_xml",
    "configure_registry_client",
    "get_registry_client",
]
