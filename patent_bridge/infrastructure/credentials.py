"""Bearer token handling for the register data-delivery API."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_LIFETIME = 30 * 24 * 3600
SAFETY_MARGIN_SECONDS = 30


class AuthError(RuntimeError):
    """Raised when no usable bearer token can be obtained."""


@dataclass(slots=True)
class TokenState:
    access_token: str
    refresh_token: str | None
    obtained_at: float
    expires_in: float
    refresh_expires_in: float

    def access_valid(self, now: float, margin: float) -> bool:
        return bool(self.access_token) and (now - self.obtained_at) < self.expires_in - margin

    def refresh_valid(self, now: float, margin: float) -> bool:
        return bool(self.refresh_token) and (now - self.obtained_at) < self.refresh_expires_in - margin


def _as_seconds(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number == number else default


class CredentialCache:
    """Caches one access/refresh token pair for the process.

    Lookups reuse the access token while it is inside its lifetime minus the
    safety margin, refresh it with the refresh token while that one is still
    valid and fall back to a password grant otherwise.  Token exchanges are
    serialised so concurrent row tasks never log in twice.
    """

    def __init__(
        self,
        token_url: str | None,
        client_id: str,
        username: str | None = None,
        password: str | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        safety_margin: float = SAFETY_MARGIN_SECONDS,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id
        self._username = username
        self._password = password
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._clock = clock
        self._margin = safety_margin
        self._state: TokenState | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TokenState | None:
        return self._state

    def invalidate(self) -> None:
        self._state = None

    async def get_bearer_token(self) -> str:
        async with self._lock:
            now = self._clock()
            state = self._state
            if state is not None and state.access_valid(now, self._margin):
                return state.access_token

            if state is not None and state.refresh_valid(now, self._margin):
                token = await self._refresh(state.refresh_token or "")
                if token is not None:
                    return token

            return await self._login()

    # ------------------------------------------------------------------
    # grant flows
    # ------------------------------------------------------------------
    async def _refresh(self, refresh_token: str) -> str | None:
        data = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "refresh_token": refresh_token,
        }
        try:
            response = await self._post(data)
        except httpx.HTTPError as exc:
            logger.warning("token refresh failed (%s) - falling back to password", exc)
            return None
        if not response.is_success:
            logger.warning("token refresh failed with %s - falling back to password", response.status_code)
            return None
        try:
            return self._save(response.json())
        except (AuthError, ValueError) as exc:
            logger.warning("token refresh returned an unusable payload (%s) - falling back to password", exc)
            return None

    async def _login(self) -> str:
        if not self._username or not self._password:
            raise AuthError("Missing IPI credentials")
        data = {
            "grant_type": "password",
            "client_id": self._client_id,
            "username": self._username,
            "password": self._password,
        }
        try:
            response = await self._post(data)
        except httpx.HTTPError as exc:
            raise AuthError(f"Login failed: {exc}") from exc
        if not response.is_success:
            raise AuthError(f"Login failed {response.status_code} {response.text}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Login response is not valid JSON") from exc
        return self._save(payload)

    async def _post(self, data: dict[str, str]) -> httpx.Response:
        if not self._token_url:
            raise AuthError("IDP_TOKEN_URL is not configured")
        return await self._client.post(
            self._token_url,
            data=data,
            headers={"content-type": "application/x-www-form-urlencoded"},
        )

    def _save(self, payload: Any) -> str:
        if not isinstance(payload, dict):
            raise AuthError("Token response is not a JSON object")
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError("Token response missing access_token")
        self._state = TokenState(
            access_token=str(access_token),
            refresh_token=payload.get("refresh_token"),
            obtained_at=self._clock(),
            expires_in=_as_seconds(payload.get("expires_in"), 0.0),
            refresh_expires_in=_as_seconds(payload.get("refresh_expires_in"), DEFAULT_REFRESH_LIFETIME) or DEFAULT_REFRESH_LIFETIME,
        )
        return self._state.access_token

    async def aclose(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            await self._client.aclose()


__all__ = ["AuthError", "CredentialCache", "TokenState"]
