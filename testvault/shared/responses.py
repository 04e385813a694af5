from __future__ import annotations

from fastapi.responses import JSONResponse

from testvault.shared.contracts import ListResponse, StandardResponse, TestLogEntry
from testvault.shared.errors import TestLogError


JSON_CONTENT_TYPE = "application/json; charset=UTF-8"


def _json_response(body: StandardResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        content=body.model_dump(mode="json"),
        status_code=status_code,
        media_type=JSON_CONTENT_TYPE,
    )


def assemble_ingest_success() -> JSONResponse:
    return _json_response(StandardResponse(success=True), 200)


def assemble_list_success(entries: list[TestLogEntry]) -> JSONResponse:
    return _json_response(ListResponse(success=True, logs=entries), 200)


def assemble_error(exc: TestLogError) -> JSONResponse:
    # Failures never carry a logs payload.
    body = StandardResponse(
        success=False,
        error_code=exc.kind.value,
        error_subcode=exc.subcode,
        message=exc.message,
    )
    return _json_response(body, 400)
