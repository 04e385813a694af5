from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json


@contextmanager
def get_connection(database_url: str):
    conn = psycopg.connect(database_url, row_factory=dict_row)
    try:
        yield conn
    finally:
        conn.close()


def ensure_testlog_schema(cur: psycopg.Cursor) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS test_logs (
          id TEXT PRIMARY KEY,
          seq BIGSERIAL,
          submitted_at TIMESTAMPTZ NOT NULL,
          filename TEXT NOT NULL,
          model TEXT NOT NULL,
          serial TEXT NOT NULL,
          report JSONB NOT NULL,
          data TEXT NOT NULL,
          content_hash TEXT NOT NULL,
          received_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
          UNIQUE (submitted_at, filename)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_test_logs_model_received ON test_logs (model, received_at DESC, seq DESC)"
    )


def insert_test_log(
    cur: psycopg.Cursor,
    *,
    log_id: str,
    submitted_at: datetime,
    filename: str,
    model: str,
    serial: str,
    report: dict[str, Any],
    data: str,
    content_hash: str,
    received_at: datetime,
) -> bool:
    """Insert a test log; returns False when the submission key already exists."""
    cur.execute(
        """
        INSERT INTO test_logs (id, submitted_at, filename, model, serial, report, data, content_hash, received_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (submitted_at, filename) DO NOTHING
        RETURNING id
        """,
        (log_id, submitted_at, filename, model, serial, Json(report), data, content_hash, received_at),
    )
    return cur.fetchone() is not None


def list_test_logs(
    cur: psycopg.Cursor,
    *,
    models: list[str],
    limit: int | None = None,
) -> list[dict[str, Any]]:
    sql = """
        SELECT id, submitted_at, filename, model, serial, report, data, content_hash, received_at
        FROM test_logs
        WHERE model = ANY(%s)
        ORDER BY received_at DESC, seq DESC
    """
    params: list[Any] = [models]
    if limit is not None:
        sql += " LIMIT %s"
        params.append(limit)
    cur.execute(sql, params)
    return list(cur.fetchall())
