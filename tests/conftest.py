"""Shared fixtures for the Atlassian MCP gateway test suite."""

import pytest

from atlassian_mcp.config import load_settings
from atlassian_mcp.confluence import ConfluenceHandlers
from atlassian_mcp.http_client import create_atlassian_client
from atlassian_mcp.jira import JiraHandlers
from atlassian_mcp.user_cache import UserCache

BASE = "https://test.atlassian.net"

ENV = {
    "ATLASSIAN_BASE_URL": BASE,
    "ATLASSIAN_EMAIL": "test@example.com",
    "ATLASSIAN_API_TOKEN": "test-token",
}


@pytest.fixture()
def settings():
    return load_settings(ENV)


@pytest.fixture()
async def client(settings):
    async with create_atlassian_client(settings) as c:
        yield c


@pytest.fixture()
def user_cache():
    return UserCache(max_size=100, ttl_seconds=900)


@pytest.fixture()
def confluence_handlers(client, user_cache):
    return ConfluenceHandlers(client, user_cache)


@pytest.fixture()
def jira_handlers(client, user_cache, settings):
    return JiraHandlers(client, user_cache, work_hours=settings.work_hours)


@pytest.fixture()
def no_sleep(monkeypatch):
    """Make retry back-off instant and record the requested waits."""
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr("atlassian_mcp.http_client.asyncio.sleep", fake_sleep)
    return waits
