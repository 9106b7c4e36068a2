from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


@dataclass(frozen=True)
class Settings:
    token_url: str | None = None
    client_id: str = "datadelivery-api-client"
    api_url: str | None = None
    username: str | None = None
    password: str | None = None
    max_concurrent: int = 1
    min_time_ms: int = 600
    max_retries: int = 5
    http_timeout: float = 30.0
    job_ttl_seconds: int = 6 * 3600
    job_max_entries: int = 200
    upload_max_bytes: int = 25 * 1024 * 1024
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 10000

    @property
    def registry_configured(self) -> bool:
        return bool(self.token_url and self.api_url)

    @classmethod
    def from_env(cls) -> "Settings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
        if not origins:
            origins = list(DEFAULT_CORS_ORIGINS)

        return cls(
            token_url=os.getenv("IDP_TOKEN_URL") or None,
            client_id=os.getenv("IPI_CLIENT_ID") or "datadelivery-api-client",
            api_url=os.getenv("IPI_API_URL") or None,
            username=os.getenv("IPI_USERNAME") or None,
            password=os.getenv("IPI_PASSWORD") or None,
            max_concurrent=max(1, _env_int("RATE_MAX_CONCURRENT", 1)),
            min_time_ms=max(0, _env_int("RATE_MIN_TIME_MS", 600)),
            max_retries=max(0, _env_int("MAX_RETRIES", 5)),
            http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
            job_ttl_seconds=_env_int("JOB_TTL_SECONDS", 6 * 3600),
            job_max_entries=max(1, _env_int("JOB_MAX_ENTRIES", 200)),
            upload_max_bytes=_env_int("UPLOAD_MAX_BYTES", 25 * 1024 * 1024),
            cors_origins=origins,
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            host=os.getenv("HOST") or "0.0.0.0",
            port=_env_int("PORT", 10000),
        )
