from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from patent_bridge.domain import Job, JobError, RegistryRecord


class RegistryRecordModel(BaseModel):
    statusCode: str = ""
    lastChangeDate: str = ""
    representative: str = ""
    filingDate: str = ""
    grantDate: str = ""
    ownerNames: list[str] = Field(default_factory=list)
    ownerAddresses: list[str] = Field(default_factory=list)
    debug: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, record: RegistryRecord | None) -> "RegistryRecordModel":
        if record is None:
            return cls()
        return cls(
            statusCode=record.status_code,
            lastChangeDate=record.last_change_date,
            representative=record.representative,
            filingDate=record.filing_date,
            grantDate=record.grant_date,
            ownerNames=list(record.owner_names),
            ownerAddresses=list(record.owner_addresses),
            debug=record.debug,
        )


class JobErrorModel(BaseModel):
    idx: int
    ep: str
    error: str

    @classmethod
    def from_error(cls, error: JobError) -> "JobErrorModel":
        return cls(idx=error.idx, ep=error.identifier, error=error.error)


class JobStatusModel(BaseModel):
    id: str
    total: int
    done: int
    status: Literal["running", "finished"]
    errors: list[JobErrorModel] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job, *, error_limit: int = 10) -> "JobStatusModel":
        return cls(
            id=job.id,
            total=job.total,
            done=job.done,
            status=job.status,
            errors=[JobErrorModel.from_error(error) for error in job.errors[:error_limit]],
        )


class JobFullModel(BaseModel):
    id: str
    total: int
    done: int
    status: Literal["running", "finished"]
    results: list[RegistryRecordModel]
    errors: list[JobErrorModel]

    @classmethod
    def from_job(cls, job: Job) -> "JobFullModel":
        return cls(
            id=job.id,
            total=job.total,
            done=job.done,
            status=job.status,
            results=[RegistryRecordModel.from_record(record) for record in job.results],
            errors=[JobErrorModel.from_error(error) for error in job.errors],
        )


class JobCreatedModel(BaseModel):
    jobId: str
    total: int
    debug: bool = False
    canSplit: bool = False
    availableSplits: list[str] = Field(default_factory=list)
