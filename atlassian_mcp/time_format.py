"""Work-time formatting for Jira time tracking (seconds to ``1d 2h 30m``)."""

from __future__ import annotations

import re
from dataclasses import dataclass

DISPLAY_FORMATS = ("mixed", "short", "long")

_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([wdhms])", re.I)


@dataclass(frozen=True)
class WorkHoursConfig:
    hours_per_day: int = 8
    minutes_per_hour: int = 60
    display_format: str = "mixed"
    include_seconds: bool = False

    @property
    def seconds_per_day(self) -> int:
        return self.hours_per_day * self.minutes_per_hour * 60


@dataclass
class TimeBreakdown:
    days: int
    hours: int
    minutes: int
    seconds: int


def breakdown_time(seconds: int, config: WorkHoursConfig = WorkHoursConfig()) -> TimeBreakdown:
    remaining = max(int(seconds or 0), 0)
    days, remaining = divmod(remaining, config.seconds_per_day)
    hours, remaining = divmod(remaining, config.minutes_per_hour * 60)
    minutes, secs = divmod(remaining, 60)
    return TimeBreakdown(days, hours, minutes, secs)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def format_seconds(seconds: int, config: WorkHoursConfig = WorkHoursConfig()) -> str:
    b = breakdown_time(seconds, config)
    parts = [(b.days, "d", "day"), (b.hours, "h", "hour"), (b.minutes, "m", "minute")]
    if config.include_seconds:
        parts.append((b.seconds, "s", "second"))
    present = [p for p in parts if p[0]]

    if config.display_format == "long":
        if not present:
            return "0 minutes"
        words = [_plural(n, unit) for n, _, unit in present]
        if len(words) == 1:
            return words[0]
        return ", ".join(words[:-1]) + ", and " + words[-1]

    if not present:
        return "0m"
    if config.display_format == "short":
        n, short, _ = present[0]
        return f"{n}{short}"
    return " ".join(f"{n}{short}" for n, short, _ in present)


def parse_time_string(value: str, config: WorkHoursConfig = WorkHoursConfig()) -> int | None:
    """Parse ``"1w 2d 3h 30m"`` into seconds (a week is five work days)."""
    if not value or not value.strip():
        return None
    matches = _PART_RE.findall(value)
    if not matches or _PART_RE.sub("", value).strip():
        return None
    unit_seconds = {
        "w": 5 * config.seconds_per_day,
        "d": config.seconds_per_day,
        "h": config.minutes_per_hour * 60,
        "m": 60,
        "s": 1,
    }
    return int(sum(float(n) * unit_seconds[u.lower()] for n, u in matches))
