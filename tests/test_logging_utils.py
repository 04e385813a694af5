import json
import logging

from testvault.shared.logging_utils import log_event


def test_log_event_always_contains_context_keys(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="testvault"):
        log_event("info", "test_event", custom="value")

    payload = json.loads(caplog.records[-1].message)
    assert payload["message"] == "test_event"
    assert payload["trace_id"] is None
    assert payload["principal"] is None
    assert payload["submission_key"] is None
    assert payload["model"] is None
    assert payload["custom"] == "value"


def test_log_event_routes_levels(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="testvault"):
        log_event("error", "store_down", model="860-00014")
        log_event("warning", "rejected")

    assert caplog.records[-2].levelno == logging.ERROR
    assert json.loads(caplog.records[-2].message)["model"] == "860-00014"
    assert caplog.records[-1].levelno == logging.WARNING
