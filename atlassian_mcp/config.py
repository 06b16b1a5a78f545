"""Settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from atlassian_mcp.errors import ConfigError
from atlassian_mcp.time_format import DISPLAY_FORMATS, WorkHoursConfig

REQUIRED_VARS = ("ATLASSIAN_BASE_URL", "ATLASSIAN_EMAIL", "ATLASSIAN_API_TOKEN")
PROXY_VARS = ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy")


@dataclass(frozen=True)
class Settings:
    base_url: str
    email: str
    api_token: str
    proxy: str | None = None
    log_level: str = "INFO"
    timeout: float = 30.0
    user_cache_max_size: int = 1000
    user_cache_ttl: float = 900.0
    rate_limit_max_requests: int = 100
    rate_limit_window: float = 60.0
    work_hours: WorkHoursConfig = WorkHoursConfig()


def _number(environ: Mapping[str, str], name: str, default, cast=int, low=None, high=None):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if low is not None and value < low:
        raise ConfigError(f"{name} must be at least {low}, got {raw!r}")
    if high is not None and value > high:
        raise ConfigError(f"{name} cannot exceed {high}, got {raw!r}")
    return value


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(environ: Mapping[str, str] = os.environ) -> Settings:
    """Build :class:`Settings`, failing if any required variable is missing."""
    missing = [v for v in REQUIRED_VARS if not environ.get(v, "").strip()]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    display_format = environ.get("TIME_DISPLAY_FORMAT", "mixed").strip().lower()
    if display_format not in DISPLAY_FORMATS:
        raise ConfigError(
            f"TIME_DISPLAY_FORMAT must be one of: {', '.join(DISPLAY_FORMATS)}"
        )

    return Settings(
        base_url=environ["ATLASSIAN_BASE_URL"].strip().rstrip("/"),
        email=environ["ATLASSIAN_EMAIL"].strip(),
        api_token=environ["ATLASSIAN_API_TOKEN"].strip(),
        proxy=next((environ[v] for v in PROXY_VARS if environ.get(v)), None),
        log_level=environ.get("LOG_LEVEL", "INFO"),
        timeout=_number(environ, "REQUEST_TIMEOUT_SECONDS", 30.0, float, low=1),
        user_cache_max_size=_number(environ, "USER_CACHE_MAX_SIZE", 1000, low=1),
        user_cache_ttl=_number(environ, "USER_CACHE_TTL_SECONDS", 900.0, float, low=1),
        rate_limit_max_requests=_number(environ, "RATE_LIMIT_MAX_REQUESTS", 100, low=1),
        rate_limit_window=_number(environ, "RATE_LIMIT_WINDOW_SECONDS", 60.0, float, low=1),
        work_hours=WorkHoursConfig(
            hours_per_day=_number(environ, "WORK_HOURS_PER_DAY", 8, low=1, high=24),
            display_format=display_format,
            include_seconds=_flag(environ, "INCLUDE_SECONDS"),
        ),
    )
