"""Application services."""

from .jobs import (
    JobNotFoundError,
    JobNotReadyError,
    JobService,
    configure_job_service,
    get_job_service,
    reset_job_state,
)

__all__ = [
    "JobNotFoundError",
    "JobNotReadyError",
    "JobService",
    "configure_job_service",
    "get_job_service",
    "reset_job_state",
]
