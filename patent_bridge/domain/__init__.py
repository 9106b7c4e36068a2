"""Domain layer definitions."""

from .jobs import Job, JobError, RegistryRecord

__all__ = [
    "Job",
    "JobError",
    "RegistryRecord",
]
