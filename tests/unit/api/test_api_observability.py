import json
import logging
import re

from fastapi.testclient import TestClient

from src.api.main import app
from src.api.observability import JsonFormatter, correlation_id_var, idempotency_key_var


def test_health_endpoints_return_expected_status_payloads():
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/health/live").json() == {"status": "live"}
        assert client.get("/api/v1/health/ready").json() == {"status": "ready"}


def test_inbound_correlation_and_trace_ids_are_echoed():
    with TestClient(app) as client:
        response = client.get(
            "/health",
            headers={
                "X-Correlation-Id": "corr-inbound-123",
                "X-Request-Id": "req-inbound-123",
                "traceparent": "00-1234567890abcdef1234567890abcdef-0000000000000001-01",
            },
        )

    assert response.headers["X-Correlation-Id"] == "corr-inbound-123"
    assert response.headers["X-Request-Id"] == "req-inbound-123"
    assert response.headers["X-Trace-Id"] == "1234567890abcdef1234567890abcdef"


def test_missing_ids_are_generated():
    with TestClient(app) as client:
        response = client.get("/health", headers={"traceparent": "garbage"})

    assert re.fullmatch(r"corr_[0-9a-f]{12}", response.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", response.headers["X-Request-Id"])
    assert re.fullmatch(r"[0-9a-f]{32}", response.headers["X-Trace-Id"])


def test_metrics_endpoint_available():
    with TestClient(app) as client:
        client.get("/health")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_request" in response.text


def test_json_formatter_includes_context_and_extra_fields():
    record = logging.LogRecord("rebalance", logging.INFO, __file__, 1, "run %s", ("ok",), None)
    record.extra_fields = {"group_id": "grp_test"}
    corr_token = correlation_id_var.set("corr-1")
    key_token = idempotency_key_var.set("idem-1")
    try:
        payload = json.loads(JsonFormatter().format(record))
    finally:
        idempotency_key_var.reset(key_token)
        correlation_id_var.reset(corr_token)

    assert payload["message"] == "run ok"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "corr-1"
    assert payload["idempotency_key"] == "idem-1"
    assert payload["group_id"] == "grp_test"
    assert "request_id" not in payload
