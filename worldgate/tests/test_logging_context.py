"""Tests for structured logging and request_id propagation."""

import json
import logging

from worldgate.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    latency_bucket_ms,
    request_id_ctx_var,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("worldgate", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="worldgate"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_incoming_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"x-request-id": "rid-123"})
    assert response.headers.get("x-request-id") == "rid-123"


def test_request_id_in_error_response(client):
    response = client.put("/v1/admin/plans/u", json={"plan": "pro"})
    rid = response.headers.get("x-request-id")
    assert response.status_code == 403
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_filter_injects_context_request_id():
    token = request_id_ctx_var.set("ctx-rid")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "ctx-rid"


def test_json_formatter_includes_extra_fields():
    record = _record("[gate] DENY", request_id="r1", user_id="u1", reason="RATE_LIMIT")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "[gate] DENY"
    assert payload["request_id"] == "r1"
    assert payload["user_id"] == "u1"
    assert payload["reason"] == "RATE_LIMIT"
    assert payload["timestamp"].endswith("Z")


def test_pretty_formatter_shows_rid():
    line = PrettyFormatter().format(_record("hi", request_id="r2", user_id="u9"))
    assert "[rid=r2]" in line
    assert "user_id=u9" in line


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(2000) == ">=1000ms"
