"""
Decoding of factory test report payloads.

Sync clients POST the XML report base64-encoded. Line wrapping and other
whitespace inside the encoded text is dropped before decoding, so a wrapped
payload and its single-line form produce the same report.
"""

from __future__ import annotations

import base64
import binascii
import re
import xml.etree.ElementTree as ElementTree

from pydantic import ValidationError

from testvault.shared.contracts import TestReport
from testvault.shared.errors import ReportValidationError


REPORT_ROOT_TAG = "test_report"
_WHITESPACE_RE = re.compile(rb"\s+")
_SUMMARY_FIELDS = ("part_number", "serial_number", "operation", "started_at", "ended_at", "status")


def normalize_payload(raw_body: bytes | str) -> bytes:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return _WHITESPACE_RE.sub(b"", raw_body)


def decode_base64(raw_body: bytes | str, *, max_bytes: int | None = None) -> bytes:
    encoded = normalize_payload(raw_body)
    if not encoded:
        raise ReportValidationError("Report payload is empty", subcode="empty")
    if max_bytes is not None and len(encoded) > max_bytes:
        raise ReportValidationError(f"Report payload exceeds {max_bytes} bytes", subcode="too-large")
    if not encoded.isascii():
        raise ReportValidationError("Report payload contains non-ASCII characters", subcode="malformed")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ReportValidationError(f"Report payload is not valid base64: {exc}", subcode="malformed") from exc


def decode_report(raw_body: bytes | str, *, max_bytes: int | None = None) -> TestReport:
    document = decode_base64(raw_body, max_bytes=max_bytes)
    return parse_report_document(document)


def parse_report_document(document: bytes) -> TestReport:
    if not document.strip():
        raise ReportValidationError("Report document is empty", subcode="empty")
    try:
        root = ElementTree.fromstring(document)
    except ElementTree.ParseError as exc:
        raise ReportValidationError(f"Report is not valid XML: {exc}", subcode="malformed") from exc

    if root.tag != REPORT_ROOT_TAG:
        raise ReportValidationError(f"Unexpected root element: {root.tag}", subcode="malformed")

    uuts = root.findall("./uuts/uut")
    if not uuts:
        raise ReportValidationError("Report contains no unit under test", subcode="malformed")
    if len(uuts) > 1:
        raise ReportValidationError("Report must describe a single unit under test", subcode="malformed")

    uut = uuts[0]
    summary = uut.find("summary")
    if summary is None:
        raise ReportValidationError("Report is missing the summary section", subcode="malformed")

    fields: dict[str, object] = {}
    for name in _SUMMARY_FIELDS:
        value = _child_text(summary, name)
        if value is not None:
            fields[name] = value
    fields["tests"] = [
        {"name": _child_text(test, "name") or "", "status": _child_text(test, "status") or ""}
        for test in uut.findall("./tests/test")
    ]

    try:
        return TestReport.model_validate(fields)
    except ValidationError as exc:
        raise ReportValidationError(_describe_validation_error(exc), subcode="malformed") from exc


def _child_text(element: ElementTree.Element, tag: str) -> str | None:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None


def _describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg', 'invalid')}")
    return "Invalid report: " + "; ".join(problems)
