"""Tests for server wiring and startup."""

import pytest
from mcp import types

import server
from atlassian_mcp import confluence, jira
from atlassian_mcp.errors import ConfigError


class TestBuildRegistry:
    async def test_registers_every_tool(self, settings, client):
        registry = server.build_registry(settings, client)
        names = set(registry.registered_tools())
        assert len(names) == len(confluence.TOOLS) + len(jira.TOOLS) == 40
        assert {"read_confluence_page", "get_user_time_tracking"} <= names

    async def test_tools_carry_schemas(self, settings, client):
        registry = server.build_registry(settings, client)
        tool = next(t for t in registry.list_tools() if t.name == "create_jira_issue")
        assert tool.inputSchema["required"] == ["projectKey", "issueType", "summary"]


class TestServer:
    async def test_list_tools(self, settings, client):
        srv = server.create_server(server.build_registry(settings, client))
        result = await srv.request_handlers[types.ListToolsRequest](
            types.ListToolsRequest(method="tools/list")
        )
        assert len(result.root.tools) == 40

    async def test_call_unknown_tool(self, settings, client):
        srv = server.create_server(server.build_registry(settings, client))
        result = await srv.request_handlers[types.CallToolRequest](
            types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(name="nope", arguments={}),
            )
        )
        assert result.root.isError
        assert result.root.content[0].text == "Unknown tool: nope"


def test_main_exits_on_missing_settings(monkeypatch):
    def fail():
        raise ConfigError("Missing required environment variables: ATLASSIAN_EMAIL")

    monkeypatch.setattr(server, "load_settings", fail)
    monkeypatch.setattr(server, "configure_logging", lambda *a: None)
    with pytest.raises(SystemExit) as exc:
        server.main()
    assert exc.value.code == 1


def test_entry_module_is_documented():
    assert server.__doc__.startswith("MCP server entry point")
