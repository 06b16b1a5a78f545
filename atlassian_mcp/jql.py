"""Safe JQL construction.

Unlike the validators, the builder raises :class:`ValidationError` on bad
input. Callers must catch it at the handler boundary.
"""

from __future__ import annotations

import re

from atlassian_mcp.errors import InvalidFieldError, ValidationError
from atlassian_mcp.validators import parse_date

FIELD_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.]*$")
PROJECT_KEY_RE = re.compile(r"^[A-Z0-9]{1,10}$")
ACCOUNT_ID_RE = re.compile(r"^[a-zA-Z0-9:_-]+$")

# Backslash must come first so later escapes are not doubled.
_ESCAPES = (
    ("\\", "\\\\"),
    ('"', '\\"'),
    ("'", "\\'"),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
)


def escape_jql_string(value) -> str:
    """Escape a literal for use inside a double-quoted JQL (or CQL) string."""
    if not isinstance(value, str):
        raise ValidationError("JQL value must be a string")
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def validate_jql_field(name) -> str:
    if not isinstance(name, str) or not FIELD_RE.match(name):
        raise InvalidFieldError(f"Invalid JQL field name: {name}")
    return name


def _check_date(value: str, bound: str) -> str:
    if not isinstance(value, str) or parse_date(value) is None:
        raise ValidationError(f"Invalid {bound} date format: {value}. Use YYYY-MM-DD")
    return value


class JqlBuilder:
    """Accumulates escaped conditions and joins them with ``AND``.

    Each method validates everything before touching the condition list, so
    a rejected call leaves the builder unchanged.
    """

    def __init__(self):
        self._conditions: list[str] = []

    def equals(self, field: str, value: str) -> "JqlBuilder":
        validate_jql_field(field)
        self._conditions.append(f'{field} = "{escape_jql_string(value)}"')
        return self

    def in_(self, field: str, values: list[str]) -> "JqlBuilder":
        validate_jql_field(field)
        if not values:
            raise ValidationError(f"IN clause for {field} needs at least one value")
        escaped = ", ".join(f'"{escape_jql_string(v)}"' for v in values)
        self._conditions.append(f"{field} IN ({escaped})")
        return self

    def or_equals(self, fields: list[str], value: str) -> "JqlBuilder":
        if not fields:
            raise ValidationError("OR clause needs at least one field")
        for f in fields:
            validate_jql_field(f)
        escaped = escape_jql_string(value)
        terms = " OR ".join(f'{f} = "{escaped}"' for f in fields)
        self._conditions.append(f"({terms})")
        return self

    def date_range(
        self, field: str, start: str | None = None, end: str | None = None
    ) -> "JqlBuilder":
        validate_jql_field(field)
        if start:
            _check_date(start, "start")
        if end:
            _check_date(end, "end")
        if start:
            self._conditions.append(f'{field} >= "{start}"')
        if end:
            self._conditions.append(f'{field} <= "{end}"')
        return self

    def raw(self, condition: str) -> "JqlBuilder":
        """Append *condition* verbatim. Only for trusted, pre-validated text."""
        self._conditions.append(condition)
        return self

    def build(self) -> str:
        return " AND ".join(self._conditions)

    def clear(self) -> "JqlBuilder":
        self._conditions = []
        return self

    def __len__(self) -> int:
        return len(self._conditions)


def validate_project_keys(keys: list[str]) -> list[str]:
    invalid = [k for k in keys if not isinstance(k, str) or not PROJECT_KEY_RE.match(k)]
    if invalid:
        raise ValidationError(f"Invalid project keys: {', '.join(map(str, invalid))}")
    return keys


def validate_account_id(account_id) -> str:
    if (
        not isinstance(account_id, str)
        or len(account_id) < 10
        or not ACCOUNT_ID_RE.match(account_id)
    ):
        raise ValidationError(f"Invalid accountId format: {account_id}")
    return account_id
