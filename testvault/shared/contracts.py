from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ReportStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


def _normalize_status(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class TestResult(BaseModel):
    name: str = Field(..., min_length=1)
    status: ReportStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value)


class TestReport(BaseModel):
    serial_number: str = Field(..., min_length=1, description="Device serial identifier")
    part_number: str = Field(..., min_length=1, description="Device part/model identifier")
    operation: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    status: ReportStatus
    tests: list[TestResult] = Field(..., min_length=1)

    @field_validator("serial_number", "part_number")
    @classmethod
    def strip_identifier(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate:
            raise ValueError("identifier must not be blank")
        return candidate

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        return _normalize_status(value)

    @model_validator(mode="after")
    def validate_time_range(self) -> TestReport:
        if self.started_at is not None and self.ended_at is not None:
            if (self.started_at.tzinfo is None) != (self.ended_at.tzinfo is None):
                raise ValueError("started_at and ended_at must both carry a UTC offset")
            if self.started_at > self.ended_at:
                raise ValueError("started_at cannot be later than ended_at")
        return self


@dataclass(frozen=True)
class SubmissionKey:
    submitted_at: datetime
    filename: str

    @property
    def timestamp(self) -> int:
        return int(self.submitted_at.timestamp())

    def __str__(self) -> str:
        return f"{self.timestamp}_{self.filename}"


class TestLogEntry(BaseModel):
    id: str
    key: str
    submitted_at: datetime
    filename: str
    model: str
    serial: str
    report: TestReport
    data: str
    content_hash: str
    received_at: datetime

    model_config = {"frozen": True}


class PermissionClass(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    STANDARD = "standard"
    ADMIN = "admin"
    SYNC = "sync"
    SUPERUSER = "superuser"


@dataclass(frozen=True)
class Principal:
    identity: str
    permission: PermissionClass
    authorized_models: frozenset[str] = field(default_factory=frozenset)


ANONYMOUS = Principal(identity="", permission=PermissionClass.UNAUTHENTICATED)


class StandardResponse(BaseModel):
    success: bool
    error_code: str = ""
    error_subcode: str = ""
    message: str = ""


class ListResponse(StandardResponse):
    logs: list[TestLogEntry]


class HealthResponse(BaseModel):
    status: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
