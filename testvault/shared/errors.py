"""
Error taxonomy for test log ingestion and listing.

Every failure the service reports is a ``TestLogError`` carrying a closed
``ErrorKind``. The wire strings live on the enum and are only read when a
response is serialized.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "error-auth"
    INVALID_REPORT = "invalid-report"
    DUPLICATE_SUBMISSION = "duplicate-submission"
    STORE_WRITE = "error-store"
    STORE_FETCH = "error-fetch"
    INTERNAL = "error-internal"


class TestLogError(Exception):
    """Base exception for every classified test log failure."""

    kind: ErrorKind = ErrorKind.INVALID_REPORT

    def __init__(self, message: str = "", *, subcode: str = "", kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        self.subcode = subcode
        if kind is not None:
            self.kind = kind


class AuthorizationError(TestLogError):
    """Caller lacks the permission class required by the operation."""

    kind = ErrorKind.AUTH


class ReportValidationError(TestLogError):
    """Report payload is empty or structurally invalid."""

    kind = ErrorKind.INVALID_REPORT


class InvalidSubmissionKeyError(ReportValidationError):
    """Request path cannot be turned into a submission key."""

    def __init__(self, message: str = ""):
        super().__init__(message, subcode="invalid-key")


class ConflictError(TestLogError):
    """A test log is already stored under the submission key."""

    kind = ErrorKind.DUPLICATE_SUBMISSION


class StoreError(TestLogError):
    """Backend failure. Raised with STORE_WRITE or STORE_FETCH."""

    kind = ErrorKind.STORE_WRITE
