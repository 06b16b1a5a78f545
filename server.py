"""MCP server entry point for the Atlassian Jira and Confluence tools."""

import asyncio
import logging
import sys

import httpx
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from atlassian_mcp import __version__, confluence, jira
from atlassian_mcp.config import Settings, load_settings
from atlassian_mcp.errors import ConfigError
from atlassian_mcp.http_client import create_atlassian_client
from atlassian_mcp.log import configure_logging
from atlassian_mcp.registry import ToolRegistry
from atlassian_mcp.security import RateLimiter
from atlassian_mcp.user_cache import UserCache

logger = logging.getLogger("atlassian_mcp.server")

SERVER_NAME = "atlassian-gateway"


def build_registry(settings: Settings, client: httpx.AsyncClient) -> ToolRegistry:
    """Wire both tool collections into one registry.

    Jira and Confluence share one user cache, since an accountId names the
    same person on both products.
    """
    user_cache = UserCache(
        max_size=settings.user_cache_max_size, ttl_seconds=settings.user_cache_ttl
    )
    registry = ToolRegistry(
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window,
        )
    )
    confluence.register_tools(registry, confluence.ConfluenceHandlers(client, user_cache))
    jira.register_tools(
        registry, jira.JiraHandlers(client, user_cache, work_hours=settings.work_hours)
    )
    logger.info("Registered %d tools", len(registry.registered_tools()))
    return registry


def create_server(registry: ToolRegistry) -> Server:
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return registry.list_tools()

    # Arguments are checked by the registry's own validators.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> types.CallToolResult:
        return await registry.execute(name, arguments)

    return server


async def serve(settings: Settings) -> None:
    async with create_atlassian_client(settings) as client:
        server = create_server(build_registry(settings, client))
        logger.info("Serving %s on stdio (%s)", SERVER_NAME, settings.base_url)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging()
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    configure_logging(settings.log_level)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
