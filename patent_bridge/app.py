import logging

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from patent_bridge.application import JobService, configure_job_service
from patent_bridge.core.config import Settings
from patent_bridge.infrastructure import (
    CredentialCache,
    InMemoryJobRepository,
    RegistryClient,
    configure_registry_client,
)
from patent_bridge.routes import jobs
from patent_bridge.workers.jobs import JobTracker
from patent_bridge.workers.limiter import RateLimitedRetrier, RateLimiter, RetryPolicy

logger = logging.getLogger(__name__)


def _configure_registry(settings: Settings) -> None:
    if not settings.registry_configured:
        logger.warning("IDP_TOKEN_URL/IPI_API_URL not set; register lookups will fail")
        return
    http_client = httpx.AsyncClient(timeout=settings.http_timeout)
    credentials = CredentialCache(
        settings.token_url,
        settings.client_id,
        settings.username,
        settings.password,
        http_client=http_client,
    )
    configure_registry_client(RegistryClient(settings.api_url, credentials, http_client=http_client))


def build_job_service(settings: Settings) -> JobService:
    retrier = RateLimitedRetrier(
        RateLimiter(settings.max_concurrent, settings.min_time_ms),
        RetryPolicy(max_retries=settings.max_retries),
    )
    repository = InMemoryJobRepository(max_jobs=settings.job_max_entries, ttl_seconds=settings.job_ttl_seconds)
    return JobService(JobTracker(repository, retrier), upload_max_bytes=settings.upload_max_bytes)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Patent Register Bridge API", version="0.1.0")

    _configure_registry(settings)
    configure_job_service(build_job_service(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def error_payload(_: Request, exc: HTTPException) -> JSONResponse:
        """Render errors as ``{"error": ...}``, the shape the front end reads."""
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(content, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    app.include_router(jobs.router, prefix="/api")

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> dict:
        return {"ok": True}

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Patent Register Bridge API",
                "docs": "/docs",
                "health": "/healthz",
            }
        )

    return app


app = create_app()


def main() -> None:
    """Serve the API with uvicorn on HOST:PORT."""

    settings = Settings.from_env()
    uvicorn.run("patent_bridge.app:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
