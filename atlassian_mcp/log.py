"""Logging setup. stdout carries the MCP protocol, so logs go to stderr."""

from __future__ import annotations

import logging
import sys
from typing import Any

from atlassian_mcp.security import redact_sensitive_data

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

SLOW_OPERATION_MS = 5000


def configure_logging(level: str = "INFO") -> None:
    """Configure application-wide logging."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _fmt(context: dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in context.items() if v is not None)


def log_tool_call(logger: logging.Logger, tool: str, request_id: str, args: Any) -> None:
    logger.info(
        "tool call %s request_id=%s args=%s", tool, request_id, redact_sensitive_data(args)
    )


def log_completion(
    logger: logging.Logger, operation: str, duration_ms: float, **context: Any
) -> None:
    level = logging.WARNING if duration_ms > SLOW_OPERATION_MS else logging.INFO
    suffix = " (slow)" if level == logging.WARNING else ""
    logger.log(
        level, "%s completed in %.0f ms%s %s", operation, duration_ms, suffix, _fmt(context)
    )


def log_failure(
    logger: logging.Logger, operation: str, error: BaseException, **context: Any
) -> None:
    logger.error(
        "%s failed: %s %s", operation, error, _fmt(context), exc_info=error
    )


def log_security_event(logger: logging.Logger, event: str, **context: Any) -> None:
    logger.warning("security event %s %s", event, _fmt(redact_sensitive_data(context)))
