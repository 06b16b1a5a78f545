"""Error taxonomy and user-facing error messages.

Two output shapes share one set of status-code rules:

* ``analyze_error`` / ``create_enhanced_error`` build a structured
  :class:`EnhancedError` and render it as a multi-line markdown block with
  suggestions and a retryability flag.
* ``format_api_error`` returns a single line for handlers that only need a
  short message.
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass, field

import httpx
from mcp.types import CallToolResult, TextContent

logger = logging.getLogger(__name__)


class AtlassianMCPError(Exception):
    """Base class for errors raised by this package."""


class ConfigError(AtlassianMCPError):
    """Raised when required settings are missing or malformed."""


class ValidationError(AtlassianMCPError):
    """Raised when caller input is rejected before any network call."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class InvalidFieldError(ValidationError):
    """Raised for query field names that could break out of a JQL clause."""


class ErrorType(str, enum.Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "notFound"
    RATE_LIMIT = "rateLimit"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    operation: str
    component: str
    user_input: dict | None = None
    suggestions: list[str] = field(default_factory=list)


@dataclass
class EnhancedError:
    type: ErrorType
    message: str
    details: str
    suggestions: list[str]
    retryable: bool
    context: ErrorContext
    status_code: int | None = None


def error_result(msg: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=msg)], isError=True)


def api_error_details(response: httpx.Response) -> str:
    """Pull the most useful message out of an Atlassian error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text.strip()[:500] or "No additional details available"
    if isinstance(data, dict):
        messages = data.get("errorMessages")
        if messages:
            return "; ".join(str(m) for m in messages)
        errors = data.get("errors")
        if isinstance(errors, dict) and errors:
            return "; ".join(f"{k}: {v}" for k, v in errors.items())
        if data.get("message"):
            return str(data["message"])
    if isinstance(data, str) and data:
        return data
    return "No additional details available"


def _not_found_suggestions(operation: str) -> list[str]:
    op = operation.lower()
    if "user" in op:
        return [
            "Ensure the username or accountId is valid",
            "Try using accountId instead of username",
            "Check if the user exists and is active",
        ]
    if "issue" in op:
        return [
            "Verify the issue key format (e.g., PROJ-123)",
            "Check if the issue exists and you have permission to view it",
            "Ensure the project key is correct",
        ]
    if "project" in op:
        return [
            "Verify the project key is correct",
            "Check if you have access to the project",
            "Ensure the project exists",
        ]
    return [
        "Verify the resource identifier is correct",
        "Check that the resource exists and you have permission to view it",
    ]


def _from_status(status: int, details: str, context: ErrorContext) -> EnhancedError:
    if status == 400:
        return EnhancedError(
            type=ErrorType.VALIDATION,
            message="Invalid request parameters",
            details=details,
            suggestions=[
                "Check the format of your input parameters",
                "Verify that required fields are provided",
                "Ensure date formats are YYYY-MM-DD",
            ],
            retryable=True,
            context=context,
            status_code=status,
        )
    if status == 401:
        return EnhancedError(
            type=ErrorType.AUTHENTICATION,
            message="Authentication failed",
            details="Your API credentials are invalid or expired",
            suggestions=[
                "Check that ATLASSIAN_API_TOKEN is set correctly",
                "Verify ATLASSIAN_EMAIL matches your Atlassian account",
                "Generate a new API token if the current one has expired",
            ],
            retryable=False,
            context=context,
            status_code=status,
        )
    if status == 403:
        return EnhancedError(
            type=ErrorType.PERMISSION,
            message="Access denied",
            details="You do not have permission to perform this operation",
            suggestions=[
                "Check that your account has the required permissions",
                "Contact your Atlassian administrator for access",
                "Verify you are accessing the correct project or space",
            ],
            retryable=False,
            context=context,
            status_code=status,
        )
    if status == 404:
        return EnhancedError(
            type=ErrorType.NOT_FOUND,
            message="Resource not found",
            details=details,
            suggestions=_not_found_suggestions(context.operation),
            retryable=False,
            context=context,
            status_code=status,
        )
    if status == 429:
        return EnhancedError(
            type=ErrorType.RATE_LIMIT,
            message="Rate limit exceeded",
            details="Too many requests sent to the Atlassian API",
            suggestions=[
                "Wait a few moments before trying again",
                "Reduce the number of results requested",
                "Consider using more specific search criteria",
            ],
            retryable=True,
            context=context,
            status_code=status,
        )
    if status in (500, 502, 503):
        return EnhancedError(
            type=ErrorType.SERVER,
            message="Atlassian server error",
            details="The Atlassian service is experiencing issues",
            suggestions=[
                "Try again in a few minutes",
                "Check the Atlassian status page for known issues",
                "Contact support if the problem persists",
            ],
            retryable=True,
            context=context,
            status_code=status,
        )
    return EnhancedError(
        type=ErrorType.NETWORK,
        message=f"HTTP error {status}",
        details=details,
        suggestions=[
            "Check your network connection",
            "Verify the Atlassian instance URL is correct",
            "Try again later",
        ],
        retryable=True,
        context=context,
        status_code=status,
    )


def analyze_error(error: BaseException, context: ErrorContext) -> EnhancedError:
    """Classify *error* into the taxonomy, with suggestions for *context*."""
    if isinstance(error, httpx.HTTPStatusError):
        return _from_status(
            error.response.status_code, api_error_details(error.response), context
        )
    if isinstance(error, httpx.RequestError):
        return EnhancedError(
            type=ErrorType.NETWORK,
            message="Network error",
            details=str(error) or type(error).__name__,
            suggestions=[
                "Check your network connection",
                "Verify ATLASSIAN_BASE_URL is reachable",
                "Check proxy settings if you are behind a firewall",
            ],
            retryable=True,
            context=context,
        )
    message = str(error)
    if isinstance(error, ValidationError) or "validation" in message.lower():
        return EnhancedError(
            type=ErrorType.VALIDATION,
            message="Input validation failed",
            details=message,
            suggestions=context.suggestions or [
                "Check the format of your input parameters",
                "Refer to the tool documentation for valid values",
            ],
            retryable=True,
            context=context,
        )
    return EnhancedError(
        type=ErrorType.UNKNOWN,
        message="An unexpected error occurred",
        details=message or type(error).__name__,
        suggestions=context.suggestions or [
            "Try the operation again",
            "Check the server logs for more information",
        ],
        retryable=True,
        context=context,
    )


def render_enhanced_error(err: EnhancedError) -> str:
    lines = [
        f"**Error in {err.context.component}**: {err.message}",
        "",
        f"**Operation**: {err.context.operation}",
        f"**Details**: {err.details}",
    ]
    if err.suggestions:
        lines += ["", "**Suggestions**:"]
        lines += [f"• {s}" for s in err.suggestions]
    type_line = f"**Type**: {err.type.value}"
    if err.status_code is not None:
        type_line += f" (HTTP {err.status_code})"
    lines += ["", type_line, f"**Retryable**: {'Yes' if err.retryable else 'No'}"]
    return "\n".join(lines)


def create_enhanced_error(error: BaseException, context: ErrorContext) -> CallToolResult:
    enhanced = analyze_error(error, context)
    logger.error(
        "%s failed in %s: %s (%s)",
        context.operation,
        context.component,
        enhanced.message,
        enhanced.type.value,
    )
    return error_result(render_enhanced_error(enhanced))


def create_validation_error(
    errors: list[str], operation: str, component: str
) -> CallToolResult:
    err = ValidationError("Validation failed: " + "; ".join(errors), errors)
    return create_enhanced_error(err, ErrorContext(operation=operation, component=component))


def create_user_not_found_error(identifier: str, component: str) -> CallToolResult:
    lines = [
        f"**User not found**: {identifier}",
        "",
        "**Suggestions**:",
        "• Use the user's accountId, which is stable and unique",
        "• Email lookup is disabled for privacy reasons",
        "• Username lookup is deprecated and only matches exact display names",
        f"• Look up the accountId with get_{component.lower()}_current_user or a user search",
        "",
        f"**Type**: {ErrorType.NOT_FOUND.value}",
        "**Retryable**: No",
    ]
    return error_result("\n".join(lines))


def format_api_error(error: BaseException) -> str:
    """Return a one-line message for an HTTP or network failure."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 400:
            return f"Invalid request: {api_error_details(error.response)}"
        if status == 401:
            return "Authentication failed. Please check your API token and email."
        if status == 403:
            return "Access forbidden. Your API token may not have the required permissions."
        if status == 404:
            details = api_error_details(error.response)
            if details != "No additional details available":
                return f"Not found: {details}"
            return "Resource not found. Please check the ID or key provided."
        if status == 429:
            return "Rate limit exceeded. Please try again later."
        if status in (500, 502, 503):
            return f"Atlassian server error ({status}). Please try again later."
        return f"API Error ({status}): {api_error_details(error.response)}"
    if isinstance(error, httpx.RequestError):
        return (
            "Network error: Unable to reach Atlassian API. "
            "Please check your connection and base URL."
        )
    return str(error) or type(error).__name__


def handle_tool_errors(operation: str, component: str, enhanced: bool = False):
    """Decorator turning validation and HTTP failures into error results.

    With ``enhanced`` set, HTTP failures are rendered as the full structured
    block instead of the one-line message.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ValidationError as e:
                return create_validation_error(e.errors, operation, component)
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                if enhanced:
                    return create_enhanced_error(
                        e, ErrorContext(operation=operation, component=component)
                    )
                logger.warning("%s failed: %s", operation, e)
                return error_result(format_api_error(e))
        return wrapper

    return decorator
