"""Domain entities for register lookup jobs."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

ERROR_PREFIX = "ERROR: "


@dataclass(slots=True)
class RegistryRecord:
    """Fields extracted from a single register lookup.

    ``owner_names[i]`` and ``owner_addresses[i]`` always describe the same
    owner; either entry may be blank.
    """

    status_code: str = ""
    last_change_date: str = ""
    representative: str = ""
    filing_date: str = ""
    grant_date: str = ""
    owner_names: list[str] = field(default_factory=list)
    owner_addresses: list[str] = field(default_factory=list)
    debug: dict[str, Any] | None = None

    @classmethod
    def error(cls, message: str) -> "RegistryRecord":
        return cls(status_code=f"{ERROR_PREFIX}{message}")

    @property
    def is_error(self) -> bool:
        return self.status_code.startswith(ERROR_PREFIX)

    @property
    def owner_count(self) -> int:
        return max(len(self.owner_names), len(self.owner_addresses))

    def owners(self) -> list[tuple[str, str]]:
        pairs: list[tuple[str, str]] = []
        for index in range(self.owner_count):
            name = self.owner_names[index] if index < len(self.owner_names) else ""
            address = self.owner_addresses[index] if index < len(self.owner_addresses) else ""
            pairs.append((name, address))
        return pairs


@dataclass(slots=True)
class JobError:
    """Row-level failure captured while a job runs."""

    idx: int
    identifier: str
    error: str


@dataclass(slots=True)
class Job:
    """A batch of workbook rows looked up against the register.

    ``results[idx]`` belongs to ``rows[idx]``; slots are pre-sized at creation
    and filled in whatever order the row tasks complete.
    """

    id: str
    rows: list[dict[str, Any]]
    total: int = 0
    done: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    results: list[RegistryRecord | None] = field(default_factory=list)
    errors: list[JobError] = field(default_factory=list)
    status: str = "running"
    debug: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.total = len(self.rows)
        if len(self.results) != self.total:
            self.results = [None] * self.total
        if self.total == 0:
            self.finished_at = self.started_at
            self.status = "finished"

    @property
    def is_finished(self) -> bool:
        return self.status == "finished"

    def mark_row_done(self) -> None:
        self.done += 1
        if self.done >= self.total and not self.is_finished:
            self.finished_at = time.time()
            self.status = "finished"

    def progress(self) -> dict[str, Any]:
        return {"done": self.done, "total": self.total, "status": self.status}
