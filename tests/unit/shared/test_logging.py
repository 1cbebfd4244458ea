"""
Tests for structured logging and user-facing error messages.
"""

import json
import logging

from deeptutor.shared.exceptions import (
    CREDENTIAL_REMEDIATION,
    BackendRejected,
    CredentialMissing,
    GatewayTimeout,
    ProxyUnavailable,
    user_facing_message,
)
from deeptutor.shared.logging import StructuredFormatter, log_with_context


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_log_with_context_emits_json_fields():
    logger = logging.getLogger("deeptutor.test.context")
    handler = _Capture()
    logger.addHandler(handler)
    try:
        log_with_context(
            logger, logging.WARNING, "Unit failed",
            workspace_id="ws-1", section_id="sec-2", action="synthesize_unit", attempt=2,
        )
    finally:
        logger.removeHandler(handler)

    data = json.loads(StructuredFormatter().format(handler.records[0]))
    assert data["level"] == "WARNING"
    assert data["message"] == "Unit failed"
    assert data["workspace_id"] == "ws-1"
    assert data["section_id"] == "sec-2"
    assert data["action"] == "synthesize_unit"
    assert data["attempt"] == "2"


def test_missing_context_fields_are_left_out():
    record = logging.LogRecord("deeptutor", logging.INFO, __file__, 1, "Loaded", None, None)

    data = json.loads(StructuredFormatter().format(record))

    assert "workspace_id" not in data
    assert data["message"] == "Loaded"


def test_user_facing_messages():
    assert CREDENTIAL_REMEDIATION in user_facing_message(CredentialMissing("gemini API key not configured"))
    assert "retry" in user_facing_message(GatewayTimeout()).lower()
    assert "proxy" in user_facing_message(ProxyUnavailable("down")).lower()
    assert user_facing_message(BackendRejected("", status_code=429)).endswith("HTTP 429")
    assert user_facing_message(RuntimeError("boom")) == "Tutor engine interrupted. Please retry."
