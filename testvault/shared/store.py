"""
Test log persistence.

A store is injected into the API service. ``put`` is first-writer-wins per
submission key: a second write under the same key raises ``ConflictError``
and leaves the stored entry untouched. ``list_for`` only ever returns entries
for models the principal is authorized on, most recently received first.
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
from uuid import uuid4

import psycopg

from testvault.shared.config import RuntimeConfig
from testvault.shared.contracts import Principal, SubmissionKey, TestLogEntry, TestReport, utcnow
from testvault.shared.db import ensure_testlog_schema, get_connection, insert_test_log, list_test_logs
from testvault.shared.errors import ConflictError, ErrorKind, StoreError


def new_entry(
    key: SubmissionKey,
    report: TestReport,
    *,
    data: str,
    document: bytes,
    received_at: datetime | None = None,
) -> TestLogEntry:
    return TestLogEntry(
        id=str(uuid4()),
        key=str(key),
        submitted_at=key.submitted_at,
        filename=key.filename,
        model=report.part_number,
        serial=report.serial_number,
        report=report,
        data=data,
        content_hash=hashlib.sha256(document).hexdigest(),
        received_at=received_at or utcnow(),
    )


def _scoped_models(principal: Principal, model: str | None) -> set[str]:
    if model is None:
        return set(principal.authorized_models)
    return {model} & set(principal.authorized_models)


class TestLogStore(ABC):
    """Persistence backend for test logs."""

    @abstractmethod
    def put(self, entry: TestLogEntry) -> None:
        """Store a new entry. Raises ConflictError if its key is taken."""

    @abstractmethod
    def list_for(
        self,
        principal: Principal,
        *,
        model: str | None = None,
        limit: int | None = None,
    ) -> list[TestLogEntry]:
        """Entries visible to the principal, newest receipt first."""

    def ping(self) -> None:
        return None


class MemoryTestLogStore(TestLogStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[TestLogEntry] = []
        self._keys: set[tuple[datetime, str]] = set()

    def put(self, entry: TestLogEntry) -> None:
        identity = (entry.submitted_at, entry.filename)
        with self._lock:
            if identity in self._keys:
                raise ConflictError(f"Test log {entry.key} already exists", subcode="exists")
            self._keys.add(identity)
            self._entries.append(entry)

    def list_for(
        self,
        principal: Principal,
        *,
        model: str | None = None,
        limit: int | None = None,
    ) -> list[TestLogEntry]:
        models = _scoped_models(principal, model)
        if not models:
            return []
        with self._lock:
            # Insertion index breaks ties between equal receipt times.
            visible = [(entry, index) for index, entry in enumerate(self._entries) if entry.model in models]
        visible.sort(key=lambda item: (item[0].received_at, item[1]), reverse=True)
        entries = [entry for entry, _ in visible]
        if limit is not None:
            entries = entries[:limit]
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PostgresTestLogStore(TestLogStore):
    def __init__(self, database_url: str):
        self.database_url = database_url
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    def put(self, entry: TestLogEntry) -> None:
        try:
            with get_connection(self.database_url) as conn:
                with conn.cursor() as cur:
                    self._ensure_schema(conn, cur)
                    created = insert_test_log(
                        cur,
                        log_id=entry.id,
                        submitted_at=entry.submitted_at,
                        filename=entry.filename,
                        model=entry.model,
                        serial=entry.serial,
                        report=entry.report.model_dump(mode="json"),
                        data=entry.data,
                        content_hash=entry.content_hash,
                        received_at=entry.received_at,
                    )
                    conn.commit()
        except psycopg.Error as exc:
            raise StoreError(str(exc), subcode="backend", kind=ErrorKind.STORE_WRITE) from exc

        if not created:
            raise ConflictError(f"Test log {entry.key} already exists", subcode="exists")

    def list_for(
        self,
        principal: Principal,
        *,
        model: str | None = None,
        limit: int | None = None,
    ) -> list[TestLogEntry]:
        models = _scoped_models(principal, model)
        if not models:
            return []
        try:
            with get_connection(self.database_url) as conn:
                with conn.cursor() as cur:
                    self._ensure_schema(conn, cur)
                    rows = list_test_logs(cur, models=sorted(models), limit=limit)
        except psycopg.Error as exc:
            raise StoreError(str(exc), subcode="backend", kind=ErrorKind.STORE_FETCH) from exc
        return [_map_test_log_row(row) for row in rows]

    def ping(self) -> None:
        try:
            with get_connection(self.database_url) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except psycopg.Error as exc:
            raise StoreError(str(exc), subcode="backend", kind=ErrorKind.STORE_FETCH) from exc

    def _ensure_schema(self, conn: psycopg.Connection, cur: psycopg.Cursor) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            ensure_testlog_schema(cur)
            conn.commit()
            self._schema_ready = True


def _map_test_log_row(row: dict[str, Any]) -> TestLogEntry:
    key = SubmissionKey(submitted_at=row["submitted_at"], filename=row["filename"])
    return TestLogEntry(
        id=str(row["id"]),
        key=str(key),
        submitted_at=row["submitted_at"],
        filename=row["filename"],
        model=row["model"],
        serial=row["serial"],
        report=TestReport.model_validate(row["report"]),
        data=row["data"],
        content_hash=row["content_hash"],
        received_at=row["received_at"],
    )


def build_store(config: RuntimeConfig) -> TestLogStore:
    if config.database_url:
        return PostgresTestLogStore(config.database_url)
    return MemoryTestLogStore()
