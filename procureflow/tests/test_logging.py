"""
Tests for structured logging and redaction.
"""
import json
import logging

from procureflow.core.logging import AUDIT_ATTR, REDACTED, StructuredFormatter, scrub, scrub_text


class TestRedaction:
    """Secrets never reach the log."""

    def test_nested_keys_redacted(self):
        cleaned = scrub({"email": "a@b.com", "admin": {"password": "x1"}, "docs": [{"tax_id": "99"}]})
        assert cleaned["email"] == "a@b.com"
        assert cleaned["admin"]["password"] == REDACTED
        assert cleaned["docs"][0]["tax_id"] == REDACTED

    def test_inline_values_redacted(self):
        message = scrub_text("login failed password=hunter2 api_key: sk-123")
        assert "hunter2" not in message
        assert "sk-123" not in message
        assert f"password={REDACTED}" in message


class TestFormatter:
    """JSON output."""

    def _record(self, message, **extra):
        record = logging.LogRecord("procureflow.audit", logging.INFO, __file__, 1, message, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_audit_context_inlined(self):
        record = self._record(
            "AUDIT accept_proposal proposal:p1",
            **{AUDIT_ATTR: {"action": "accept_proposal", "entity_id": "p1", "org_id": None}},
        )
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["action"] == "accept_proposal"
        assert entry["entity_id"] == "p1"
        assert "org_id" not in entry

    def test_plain_record(self):
        entry = json.loads(StructuredFormatter().format(self._record("token=abc")))
        assert entry["message"] == f"token={REDACTED}"
