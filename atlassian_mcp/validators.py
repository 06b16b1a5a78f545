"""Argument validators.

Every validator takes a raw value (``None`` when the caller omitted it), a
field name and an options value, and returns a :class:`ValidationResult`.
Validators never raise; callers decide what to do with the errors.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Generic, Pattern, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SAFE_INTEGER = 2**53 - 1
MIN_SAFE_INTEGER = -(2**53 - 1)

DEFAULT_START_AT = 0
DEFAULT_MAX_RESULTS = 50
MAX_PAGE_SIZE = 100

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MIN_DATE = date(1900, 1, 1)
MAX_DATE_RANGE_DAYS = 5 * 365

ACCOUNT_ID_RE = re.compile(r"^[a-zA-Z0-9:_-]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9._@-]+$")

EMAIL_DISABLED_MESSAGE = (
    "Email-based user lookup is disabled for privacy reasons. "
    "Please use accountId instead."
)


@dataclass
class ValidationResult(Generic[T]):
    errors: list[str] = field(default_factory=list)
    sanitized_value: T | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class StringOptions:
    required: bool = False
    min_length: int = 0
    max_length: int = 100_000
    allow_empty: bool = False
    pattern: Pattern[str] | None = None


@dataclass(frozen=True)
class NumberOptions:
    required: bool = False
    integer: bool = False
    min: float = MIN_SAFE_INTEGER
    max: float = MAX_SAFE_INTEGER


@dataclass(frozen=True)
class StringArrayOptions:
    required: bool = False
    max_length: int = 100
    max_items: int = 50
    allow_empty: bool = False
    pattern: Pattern[str] | None = None


@dataclass
class Pagination:
    start_at: int = DEFAULT_START_AT
    max_results: int = DEFAULT_MAX_RESULTS


@dataclass
class DateRange:
    start_date: str | None = None
    end_date: str | None = None


@dataclass
class UserIdentification:
    username: str | None = None
    account_id: str | None = None
    email: str | None = None


def validate_string(
    value: Any, field_name: str, options: StringOptions = StringOptions()
) -> ValidationResult[str]:
    """Validate a string, accumulating every applicable error.

    The sanitized value is the stripped input. Length limits apply to the raw
    value; emptiness and pattern checks apply to the stripped one.
    """
    if value is None:
        if options.required:
            return ValidationResult([f"{field_name} is required"])
        return ValidationResult()
    if not isinstance(value, str):
        return ValidationResult([f"{field_name} must be a string"])

    errors = []
    if len(value) < options.min_length:
        errors.append(f"{field_name} must be at least {options.min_length} characters")
    if len(value) > options.max_length:
        errors.append(f"{field_name} cannot exceed {options.max_length} characters")

    stripped = value.strip()
    if not options.allow_empty and not stripped:
        errors.append(f"{field_name} cannot be empty")
    if options.pattern is not None and stripped and not options.pattern.match(stripped):
        errors.append(f"{field_name} has invalid format")

    if errors:
        return ValidationResult(errors)
    return ValidationResult(sanitized_value=stripped)


def validate_number(
    value: Any, field_name: str, options: NumberOptions = NumberOptions()
) -> ValidationResult[float]:
    if value is None:
        if options.required:
            return ValidationResult([f"{field_name} is required"])
        return ValidationResult()
    # bool is an int subclass but never a meaningful count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return ValidationResult([f"{field_name} must be a valid number"])
    if isinstance(value, float) and not math.isfinite(value):
        return ValidationResult([f"{field_name} must be a valid number"])

    errors = []
    if options.integer:
        if isinstance(value, float) and not value.is_integer():
            errors.append(f"{field_name} must be an integer")
        else:
            value = int(value)
    if value < options.min:
        errors.append(f"{field_name} must be at least {_num(options.min)}")
    if value > options.max:
        errors.append(f"{field_name} cannot exceed {_num(options.max)}")

    if errors:
        return ValidationResult(errors)
    return ValidationResult(sanitized_value=value)


def _num(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else str(n)


def validate_string_array(
    value: Any, field_name: str, options: StringArrayOptions = StringArrayOptions()
) -> ValidationResult[list[str]]:
    if value is None:
        if options.required:
            return ValidationResult([f"{field_name} is required"])
        return ValidationResult()
    if not isinstance(value, (list, tuple)):
        return ValidationResult([f"{field_name} must be an array"])
    if len(value) > options.max_items:
        return ValidationResult(
            [f"{field_name} cannot have more than {options.max_items} items"]
        )
    if not value and not options.allow_empty:
        return ValidationResult([f"{field_name} cannot be empty"])

    errors = []
    sanitized = []
    for i, item in enumerate(value):
        if not isinstance(item, str):
            errors.append(f"{field_name}[{i}] must be a string")
            continue
        item = item.strip()
        if not item and not options.allow_empty:
            errors.append(f"{field_name}[{i}] cannot be empty")
        elif len(item) > options.max_length:
            errors.append(
                f"{field_name}[{i}] cannot exceed {options.max_length} characters"
            )
        elif options.pattern is not None and not options.pattern.match(item):
            errors.append(f"{field_name}[{i}] has invalid format: {item}")
        else:
            sanitized.append(item)

    if errors:
        return ValidationResult(errors)
    return ValidationResult(sanitized_value=sanitized)


def validate_enum(
    value: Any, field_name: str, allowed_values: list[str], required: bool = False
) -> ValidationResult[str]:
    if value is None:
        if required:
            return ValidationResult([f"{field_name} is required"])
        return ValidationResult()
    if not isinstance(value, str) or value not in allowed_values:
        return ValidationResult(
            [f"{field_name} must be one of: {', '.join(allowed_values)}"]
        )
    return ValidationResult(sanitized_value=value)


def validate_pagination(
    start_at: Any = None, max_results: Any = None
) -> ValidationResult[Pagination]:
    """Validate offset/limit; an invalid field keeps its default.

    The sanitized value is always populated, even when the result is invalid.
    """
    result = ValidationResult(sanitized_value=Pagination())

    if start_at is not None:
        check = validate_number(start_at, "startAt", NumberOptions(integer=True, min=0))
        if check.is_valid:
            result.sanitized_value.start_at = check.sanitized_value
        else:
            result.errors.append("startAt must be a non-negative integer")

    if max_results is not None:
        check = validate_number(
            max_results, "maxResults", NumberOptions(integer=True, min=1, max=MAX_PAGE_SIZE)
        )
        if check.is_valid:
            result.sanitized_value.max_results = check.sanitized_value
        else:
            result.errors.append(
                f"maxResults must be an integer between 1 and {MAX_PAGE_SIZE}"
            )

    return result


def _max_date() -> date:
    today = date.today()
    try:
        return today.replace(year=today.year + 100)
    except ValueError:  # Feb 29
        return today.replace(year=today.year + 100, day=28)


def parse_date(value: str) -> date | None:
    """Parse ``YYYY-MM-DD`` into a real calendar date, or ``None``."""
    if not DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def validate_date_string(value: Any, field_name: str) -> ValidationResult[str]:
    if not isinstance(value, str):
        return ValidationResult([f"{field_name} must be a string"])
    if not DATE_RE.match(value):
        return ValidationResult([f"{field_name} must be in YYYY-MM-DD format"])
    parsed = parse_date(value)
    if parsed is None:
        return ValidationResult([f"{field_name} is not a valid date: {value}"])
    upper = _max_date()
    if parsed < MIN_DATE or parsed > upper:
        return ValidationResult(
            [f"{field_name} must be between {MIN_DATE.isoformat()} and {upper.isoformat()}"]
        )
    return ValidationResult(sanitized_value=value)


def validate_date_range(
    start_date: Any = None, end_date: Any = None
) -> ValidationResult[DateRange]:
    result = ValidationResult(sanitized_value=DateRange())

    if start_date is not None:
        check = validate_date_string(start_date, "startDate")
        result.errors.extend(check.errors)
        result.sanitized_value.start_date = check.sanitized_value
    if end_date is not None:
        check = validate_date_string(end_date, "endDate")
        result.errors.extend(check.errors)
        result.sanitized_value.end_date = check.sanitized_value

    start = result.sanitized_value.start_date
    end = result.sanitized_value.end_date
    if start and end:
        start_d, end_d = parse_date(start), parse_date(end)
        if start_d > end_d:
            result.errors.append("startDate must be before or equal to endDate")
        elif end_d - start_d > timedelta(days=MAX_DATE_RANGE_DAYS):
            result.errors.append("Date range cannot exceed 5 years for performance reasons")

    if not result.is_valid:
        result.sanitized_value = None
    return result


def validate_user_identification(
    username: Any = None, account_id: Any = None, email: Any = None
) -> ValidationResult[UserIdentification]:
    """Validate a user identifier bundle.

    Supplying ``email`` always makes the result invalid: email lookup is
    disabled, and silently dropping it would hide that from the caller.
    """
    if username is None and account_id is None and email is None:
        return ValidationResult(
            ["At least one user identifier (username, accountId, or email) is required"]
        )

    result = ValidationResult(sanitized_value=UserIdentification())

    if account_id is not None:
        check = validate_string(
            account_id,
            "accountId",
            StringOptions(min_length=10, max_length=128, pattern=ACCOUNT_ID_RE),
        )
        result.errors.extend(check.errors)
        result.sanitized_value.account_id = check.sanitized_value

    if username is not None:
        check = validate_string(
            username,
            "username",
            StringOptions(min_length=1, max_length=255, pattern=USERNAME_RE),
        )
        result.errors.extend(check.errors)
        result.sanitized_value.username = check.sanitized_value

    if email is not None:
        result.errors.append(EMAIL_DISABLED_MESSAGE)

    if result.errors:
        logger.debug("Rejected user identification: %s", result.errors)
    return result


def collect_errors(*results: ValidationResult) -> list[str]:
    errors = []
    for r in results:
        errors.extend(r.errors)
    return errors
