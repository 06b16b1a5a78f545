"""Redaction, rate limiting and upload/URL checks."""

from __future__ import annotations

import logging
import time
from pathlib import PurePosixPath
from typing import Any, Callable
from urllib.parse import urlparse

from atlassian_mcp.validators import ValidationResult

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = ("password", "token", "apikey", "api_key", "secret", "authorization", "credentials")

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
BLOCKED_EXTENSIONS = frozenset({
    ".exe", ".scr", ".bat", ".cmd", ".com", ".pif", ".vbs", ".js", ".jar",
    ".php", ".asp", ".jsp", ".sh", ".ps1", ".py", ".rb", ".pl",
})


def _is_sensitive(key: str) -> bool:
    k = key.lower()
    return any(s in k for s in SENSITIVE_KEYS)


def redact_sensitive_data(data: Any) -> Any:
    """Return a copy of *data* with credential-like values replaced."""
    if isinstance(data, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(v) for v in data]
    return data


class RateLimiter:
    """Fixed-window request counter keyed by identifier."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def check(self, identifier: str) -> bool:
        """Count one request; return False if the window is exhausted."""
        now = self._clock()
        start, count = self._windows.get(identifier, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        if count >= self.max_requests:
            self._windows[identifier] = (start, count)
            logger.warning("rate limit exceeded for %s", identifier)
            return False
        self._windows[identifier] = (start, count + 1)
        return True

    def cleanup(self) -> int:
        now = self._clock()
        stale = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in stale:
            del self._windows[k]
        return len(stale)


def validate_file_upload(
    filename: Any, size: int, max_size: int = MAX_UPLOAD_BYTES
) -> ValidationResult[str]:
    if not isinstance(filename, str) or not filename.strip():
        return ValidationResult(["filename is required"])
    errors = []
    if size > max_size:
        errors.append(f"File too large: {size} bytes (max {max_size} bytes)")
    if ".." in filename or "/" in filename or "\\" in filename:
        errors.append("filename must not contain path separators or '..'")
    suffix = PurePosixPath(filename.lower()).suffix
    if suffix in BLOCKED_EXTENSIONS:
        errors.append(f"File type not allowed: {suffix}")
    if errors:
        return ValidationResult(errors)
    return ValidationResult(sanitized_value=filename.strip())


def is_same_host(url: str, base_url: str) -> bool:
    """True for relative URLs and URLs on the same host as *base_url*."""
    parsed = urlparse(url)
    if not parsed.scheme and not parsed.netloc:
        return not url.startswith("//")
    if parsed.scheme not in ("http", "https"):
        return False
    return parsed.hostname == urlparse(base_url).hostname
