"""Tool registry and dispatcher.

``ToolRegistry.execute`` never raises. Every call ends in a
``CallToolResult``: unknown tools, rate-limit refusals, rejected arguments
and handler exceptions all come back with ``isError=True``.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from mcp import types

from atlassian_mcp.errors import ErrorContext, create_enhanced_error, error_result
from atlassian_mcp.log import log_completion, log_failure, log_security_event, log_tool_call
from atlassian_mcp.security import RateLimiter
from atlassian_mcp.validators import (
    NumberOptions,
    StringArrayOptions,
    StringOptions,
    ValidationResult,
    validate_enum,
    validate_number,
    validate_string,
    validate_string_array,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[types.CallToolResult]]
Validator = Callable[[dict], ValidationResult]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    handler: Handler
    description: str = ""
    input_schema: dict | None = None
    validator: Validator | None = None

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema or {"type": "object", "properties": {}},
        )


def text_result(msg: str) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=msg)])


def json_result(data: Any) -> types.CallToolResult:
    return text_result(json.dumps(data, indent=2, ensure_ascii=False, default=str))


_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_request_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


class ToolRegistry:
    def __init__(self, rate_limiter: RateLimiter | None = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._rate_limiter = rate_limiter

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            logger.warning("Tool %s is already registered, overwriting", definition.name)
        self._tools[definition.name] = definition

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def registered_tools(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[types.Tool]:
        return [t.to_mcp_tool() for t in self._tools.values()]

    async def execute(
        self, name: str, arguments: dict | None, request_id: str | None = None
    ) -> types.CallToolResult:
        request_id = request_id or new_request_id()
        start = time.perf_counter()
        args = arguments or {}
        log_tool_call(logger, name, request_id, args)

        def elapsed_ms() -> float:
            return (time.perf_counter() - start) * 1000

        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Unknown tool %s request_id=%s", name, request_id)
            log_completion(logger, name, elapsed_ms(), request_id=request_id, error="unknown_tool")
            return error_result(f"Unknown tool: {name}")

        if self._rate_limiter is not None and not self._rate_limiter.check(name):
            log_security_event(logger, "rate_limited", tool=name, request_id=request_id)
            log_completion(logger, name, elapsed_ms(), request_id=request_id, error="rate_limited")
            return error_result(
                f"Rate limit exceeded for tool {name}. "
                "Please wait before making more requests.\n\n"
                "**Type**: rateLimit\n**Retryable**: Yes"
            )

        try:
            if tool.validator is not None:
                check = tool.validator(args)
                if not check.is_valid:
                    logger.info(
                        "Validation failed for %s request_id=%s: %s",
                        name, request_id, check.errors,
                    )
                    log_completion(
                        logger, name, elapsed_ms(), request_id=request_id, error="validation"
                    )
                    return error_result(
                        f"Validation failed for tool {name}: {'; '.join(check.errors)}"
                    )
                if check.sanitized_value is not None:
                    args = check.sanitized_value

            result = await tool.handler(args)

            if not isinstance(result, types.CallToolResult):
                logger.error("Tool %s returned %r instead of a result", name, type(result))
                log_completion(
                    logger, name, elapsed_ms(), request_id=request_id, error="invalid_result"
                )
                return error_result(f"Tool {name} returned an invalid result")

            log_completion(
                logger, name, elapsed_ms(),
                request_id=request_id, error=result.isError or None,
            )
            return result
        except Exception as e:
            log_failure(
                logger, name, e,
                request_id=request_id,
                duration_ms=round(elapsed_ms()),
            )
            return create_enhanced_error(e, ErrorContext(operation=name, component="ToolRegistry"))


# ---------------------------------------------------------------------------
# Schema-driven validation
# ---------------------------------------------------------------------------

def _check_property(name: str, prop: dict, value: Any, required: bool) -> ValidationResult:
    kind = prop.get("type")
    if "enum" in prop:
        return validate_enum(value, name, list(prop["enum"]), required)
    if kind == "string":
        min_length = prop.get("minLength", 0)
        return validate_string(value, name, StringOptions(
            required=required,
            min_length=min_length,
            max_length=prop.get("maxLength", 100_000),
            allow_empty=not required and min_length == 0,
        ))
    if kind in ("integer", "number"):
        opts = {"required": required, "integer": kind == "integer"}
        if "minimum" in prop:
            opts["min"] = prop["minimum"]
        if "maximum" in prop:
            opts["max"] = prop["maximum"]
        return validate_number(value, name, NumberOptions(**opts))
    if kind == "array":
        min_items = prop.get("minItems", 0)
        if prop.get("items", {}).get("type", "string") == "string":
            return validate_string_array(value, name, StringArrayOptions(
                required=required,
                max_length=prop.get("items", {}).get("maxLength", 255),
                max_items=prop.get("maxItems", 50),
                allow_empty=min_items == 0,
            ))
    if value is None:
        return ValidationResult([f"{name} is required"] if required else [])
    if kind == "boolean" and not isinstance(value, bool):
        return ValidationResult([f"{name} must be a boolean"])
    if kind == "object" and not isinstance(value, dict):
        return ValidationResult([f"{name} must be an object"])
    if kind == "array":
        if not isinstance(value, list):
            return ValidationResult([f"{name} must be an array"])
        if len(value) > prop.get("maxItems", 50):
            return ValidationResult([f"{name} cannot have more than {prop.get('maxItems', 50)} items"])
        if len(value) < prop.get("minItems", 0):
            return ValidationResult([f"{name} must have at least {prop['minItems']} items"])
    return ValidationResult(sanitized_value=value)


def schema_validator(input_schema: dict) -> Validator:
    """Build a validator enforcing a tool's JSON input schema.

    Checks required-ness, string length, numeric bounds, integer-ness, enum
    membership and array cardinality, and fills in schema defaults. Unknown
    arguments are dropped.
    """
    properties = input_schema.get("properties", {})
    required = set(input_schema.get("required", []))

    def validate(args: dict) -> ValidationResult[dict]:
        if not isinstance(args, dict):
            return ValidationResult(["arguments must be an object"])
        errors = []
        clean = {}
        for name, prop in properties.items():
            value = args.get(name)
            if value is None and "default" in prop:
                clean[name] = prop["default"]
                continue
            check = _check_property(name, prop, value, name in required)
            if check.errors:
                errors.extend(check.errors)
            elif check.sanitized_value is not None:
                clean[name] = check.sanitized_value
        unknown = set(args) - set(properties)
        if unknown:
            logger.debug("Ignoring unknown arguments: %s", sorted(unknown))
        if errors:
            return ValidationResult(errors)
        return ValidationResult(sanitized_value=clean)

    return validate


def chain_validators(*validators: Validator) -> Validator:
    """Run validators in order, each seeing the previous sanitized args."""

    def validate(args: dict) -> ValidationResult[dict]:
        current = args
        for v in validators:
            check = v(current)
            if not check.is_valid:
                return check
            if check.sanitized_value is not None:
                current = check.sanitized_value
        return ValidationResult(sanitized_value=current)

    return validate
