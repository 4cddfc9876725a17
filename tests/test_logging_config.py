"""Tests for PII redaction in logs."""

import logging

from case_workflow.logging_config import PIIRedactionFilter, sanitize_extra


def _record(msg: str, args: tuple | dict = ()) -> logging.LogRecord:
    return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)


def test_message_pii_redacted() -> None:
    record = _record("user email=rita@example.com opened case 4")
    PIIRedactionFilter().filter(record)
    assert "rita@example.com" not in record.getMessage()
    assert "email=[REDACTED]" in record.getMessage()
    assert "case 4" in record.getMessage()


def test_string_args_redacted_numeric_args_kept() -> None:
    record = _record("%s on case %d", ("title: Payroll", 12))
    PIIRedactionFilter().filter(record)
    assert record.getMessage() == "title=[REDACTED] on case 12"


def test_sanitize_extra_masks_secrets_and_pii() -> None:
    out = sanitize_extra({"api_key": "k", "email": "a@b.c", "case_id": 3})
    assert out == {"api_key": "***", "email": "[REDACTED]", "case_id": 3}
    assert sanitize_extra(None) == {}
