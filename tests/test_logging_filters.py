"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import REDACTED, JsonFormatter, SensitiveDataFilter, hash_identifier


@pytest.fixture
def capture(request: pytest.FixtureRequest):
    """Logger wired to a JSON handler with the redaction filter; yields (logger, stream)."""
    logger = logging.getLogger(f"test_redaction.{request.node.name}")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()


def test_redacts_api_keys(capture):
    logger, stream = capture

    logger.info(
        "auth.failed",
        extra={"api_key": "sk-secret-123", "x-api-key": "another-secret", "reason": "invalid_api_key"},
    )

    output = stream.getvalue()
    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert REDACTED in output
    assert "invalid_api_key" in output


def test_redacts_owner_and_scan_metadata(capture):
    logger, stream = capture

    logger.info(
        "record.tracked",
        extra={
            "owner_id": "alice@example.com",
            "source_address": "203.0.113.7",
            "user_agent": "Mozilla/5.0 (iPhone)",
            "referer": "https://private.example.com/page",
            "scan_count": 12,
        },
    )

    output = stream.getvalue()
    for secret in ("alice@example.com", "203.0.113.7", "iPhone", "private.example.com"):
        assert secret not in output
    assert '"scan_count": 12' in output


def test_safe_fields_pass_through(capture):
    logger, stream = capture

    logger.info(
        "record.created",
        extra={
            "record_id": "01HV6Z8K3Q0J8X9Y2T4B5N6M7P",
            "route": "/v1/records",
            "status": 201,
            "duration_ms": 150.5,
        },
    )

    output = stream.getvalue()
    assert "01HV6Z8K3Q0J8X9Y2T4B5N6M7P" in output
    assert "/v1/records" in output
    assert REDACTED not in output


def test_redacts_nested_dicts(capture):
    logger, stream = capture

    logger.info(
        "request.headers",
        extra={
            "headers": {"Authorization": "Bearer abc", "accept": "image/png"},
            "scans": [{"owner_id": "bob", "region": "DE"}],
        },
    )

    output = stream.getvalue()
    assert "Bearer abc" not in output
    assert "bob" not in output
    assert "image/png" in output
    assert "DE" in output


def test_output_is_one_json_object_per_line(capture):
    logger, stream = capture

    logger.info("record.deleted", extra={"record_id": "R1"})

    payload = json.loads(stream.getvalue().strip())
    assert payload["message"] == "record.deleted"
    assert payload["level"] == "info"
    assert payload["record_id"] == "R1"


def test_hash_identifier_is_stable_and_short():
    assert hash_identifier("owner:alice") == hash_identifier("owner:alice")
    assert hash_identifier("owner:alice") != hash_identifier("owner:bob")
    assert len(hash_identifier("ip:203.0.113.7")) == 16
