"""Tests for the logging helpers."""

import logging

from atlassian_mcp.log import log_completion, log_security_event, log_tool_call

logger = logging.getLogger("tests.log")


def test_tool_call_redacts_credentials(caplog):
    with caplog.at_level(logging.INFO, logger="tests.log"):
        log_tool_call(logger, "read_jira_issue", "req_1", {"issueKey": "PROJ-1", "apiToken": "s3cret"})
    assert "PROJ-1" in caplog.text
    assert "s3cret" not in caplog.text
    assert "[REDACTED]" in caplog.text


def test_slow_completion_is_a_warning(caplog):
    with caplog.at_level(logging.INFO, logger="tests.log"):
        log_completion(logger, "search", 6000, request_id="req_2")
        log_completion(logger, "search", 12)
    slow, fast = caplog.records
    assert slow.levelno == logging.WARNING
    assert "(slow)" in slow.getMessage()
    assert "request_id=req_2" in slow.getMessage()
    assert fast.levelno == logging.INFO


def test_security_event(caplog):
    with caplog.at_level(logging.WARNING, logger="tests.log"):
        log_security_event(logger, "upload_rejected", filename="run.exe", password="x")
    assert caplog.records[0].levelno == logging.WARNING
    message = caplog.records[0].getMessage()
    assert "upload_rejected" in message
    assert "filename=run.exe" in message
    assert "password=[REDACTED]" in message
