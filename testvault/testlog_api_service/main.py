from __future__ import annotations

import os
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from testvault.shared.access import Operation, require_permission
from testvault.shared.auth import resolve_principal
from testvault.shared.config import RuntimeConfig, load_runtime_config
from testvault.shared.contracts import HealthResponse, Principal
from testvault.shared.decoder import decode_base64, normalize_payload, parse_report_document
from testvault.shared.errors import ErrorKind, ReportValidationError, StoreError, TestLogError
from testvault.shared.logging_utils import log_event
from testvault.shared.responses import assemble_error, assemble_ingest_success, assemble_list_success
from testvault.shared.store import TestLogStore, build_store, new_entry
from testvault.shared.submission_key import resolve_submission_key


def create_app(config: RuntimeConfig | None = None, store: TestLogStore | None = None) -> FastAPI:
    if config is None:
        config = load_runtime_config()
    if store is None:
        store = build_store(config)
    app = FastAPI(title="testlog-api-service", version="0.1.0")
    app.state.config = config
    app.state.store = store

    @app.exception_handler(TestLogError)
    async def handle_testlog_error(request: Request, exc: TestLogError) -> JSONResponse:
        _log_failure(request, exc)
        return assemble_error(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ReportValidationError(_describe_request_errors(exc), subcode="invalid-query")
        _log_failure(request, error)
        return assemble_error(error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        error = TestLogError("Internal error", subcode=type(exc).__name__, kind=ErrorKind.INTERNAL)
        _log_failure(request, error, cause=str(exc))
        return assemble_error(error)

    @app.get("/v1/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/v1/readyz", response_model=HealthResponse)
    def readyz() -> HealthResponse:
        store.ping()
        return HealthResponse(status="ready")

    @app.post("/api/testlog/{key:path}")
    async def ingest_testlog(key: str, request: Request) -> JSONResponse:
        principal = _begin(request, config)
        require_permission(principal, Operation.INGEST)

        submission_key = resolve_submission_key(key)
        request.state.submission_key = str(submission_key)

        body = await request.body()
        document = decode_base64(body, max_bytes=config.max_report_bytes)
        report = parse_report_document(document)
        request.state.model = report.part_number

        entry = new_entry(
            submission_key,
            report,
            data=normalize_payload(body).decode("ascii"),
            document=document,
        )
        await run_in_threadpool(store.put, entry)

        log_event(
            "info",
            "testlog_ingested",
            trace_id=request.state.trace_id,
            principal=principal.identity,
            submission_key=entry.key,
            model=entry.model,
            serial=entry.serial,
            status=report.status.value,
            tests=len(report.tests),
        )
        return assemble_ingest_success()

    @app.get("/api/testlog")
    async def list_testlogs(request: Request, model: str | None = None, limit: str | None = None) -> JSONResponse:
        principal = _begin(request, config)
        require_permission(principal, Operation.LIST)

        page_size = _parse_limit(limit, config.list_max_limit)
        entries = await run_in_threadpool(store.list_for, principal, model=model, limit=page_size)

        log_event(
            "info",
            "testlog_listed",
            trace_id=request.state.trace_id,
            principal=principal.identity,
            model=model,
            authorized_models=len(principal.authorized_models),
            returned=len(entries),
        )
        return assemble_list_success(entries)

    return app


def _begin(request: Request, config: RuntimeConfig) -> Principal:
    request.state.trace_id = request.headers.get("x-trace-id") or str(uuid4())
    principal = resolve_principal(request, config=config)
    request.state.principal = principal.identity
    return principal


def _parse_limit(raw: str | None, maximum: int) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ReportValidationError(f"limit must be an integer, got {raw!r}", subcode="invalid-query") from exc
    return min(max(value, 1), maximum)


def _describe_request_errors(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(problems)


def _log_failure(request: Request, exc: TestLogError, cause: str | None = None) -> None:
    if exc.kind == ErrorKind.DUPLICATE_SUBMISSION:
        level, message = "info", "testlog_duplicate"
    elif isinstance(exc, StoreError):
        level, message = "error", "testlog_store_failed"
    elif exc.kind == ErrorKind.INTERNAL:
        level, message = "error", "testlog_internal_error"
    else:
        level, message = "warning", "testlog_rejected"
    log_event(
        level,
        message,
        trace_id=getattr(request.state, "trace_id", None),
        principal=getattr(request.state, "principal", None),
        submission_key=getattr(request.state, "submission_key", None),
        model=getattr(request.state, "model", None),
        error_code=exc.kind.value,
        error_subcode=exc.subcode,
        error=exc.message,
        cause=cause,
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("testvault.testlog_api_service.main:app", host="0.0.0.0", port=port)
