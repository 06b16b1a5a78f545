"""Tests for the Confluence tools, driven through the registry."""

import base64
import json

import httpx
import pytest
import respx

from atlassian_mcp import confluence
from atlassian_mcp.registry import ToolRegistry
from tests.conftest import BASE
from tests.factories import ACCOUNT_ID, make_attachment, make_page, make_user, result_json

API = f"{BASE}/wiki/rest/api"


@pytest.fixture()
def registry(confluence_handlers):
    registry = ToolRegistry()
    confluence.register_tools(registry, confluence_handlers)
    return registry


def request_json(route, index: int = 0) -> dict:
    return json.loads(route.calls[index].request.content)


async def test_every_tool_has_a_handler(confluence_handlers):
    assert {t["name"] for t in confluence.TOOLS} == set(confluence_handlers.handlers())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class TestUsers:
    @respx.mock
    async def test_current_user(self, registry, user_cache):
        respx.get(f"{API}/user/current").mock(return_value=httpx.Response(200, json=make_user()))
        data = result_json(await registry.execute("get_confluence_current_user", {}))
        assert data["accountId"] == ACCOUNT_ID
        assert data["profileUrl"] == f"{BASE}/wiki/people/{ACCOUNT_ID}"
        assert user_cache.get(ACCOUNT_ID) is not None

    @respx.mock
    async def test_get_user_reports_source(self, registry):
        route = respx.get(f"{API}/user").mock(return_value=httpx.Response(200, json=make_user()))
        first = result_json(await registry.execute("get_confluence_user", {"accountId": ACCOUNT_ID}))
        second = result_json(await registry.execute("get_confluence_user", {"accountId": ACCOUNT_ID}))
        assert first["source"] == "api"
        assert second["source"] == "cache"
        assert route.call_count == 1

    @respx.mock
    async def test_email_is_rejected_without_a_request(self, registry):
        result = await registry.execute("get_confluence_user", {"email": "jane@example.com"})
        assert result.isError
        assert "Email-based user lookup is disabled" in result.content[0].text
        assert len(respx.calls) == 0

    @respx.mock
    async def test_user_not_found(self, registry):
        respx.get(f"{API}/user").mock(return_value=httpx.Response(404))
        result = await registry.execute("get_confluence_user", {"accountId": ACCOUNT_ID})
        assert result.isError
        assert result.content[0].text.startswith(f"**User not found**: {ACCOUNT_ID}")


# ---------------------------------------------------------------------------
# User-centric searches
# ---------------------------------------------------------------------------

class TestUserSearches:
    @respx.mock
    async def test_involvement_both(self, registry):
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": [make_page()], "totalSize": 1, "start": 0, "limit": 25})
        )
        data = result_json(await registry.execute("search_pages_by_user_involvement", {
            "accountId": ACCOUNT_ID, "searchType": "both", "spaceKey": "DEV",
        }))
        cql = route.calls[0].request.url.params["cql"]
        assert cql == (
            f'space = "DEV" AND (creator = "{ACCOUNT_ID}" OR lastModifier = "{ACCOUNT_ID}") '
            "ORDER BY lastmodified DESC"
        )
        assert data["totalPages"] == 1
        assert data["pages"][0]["webUrl"] == f"{BASE}/wiki/spaces/DEV/pages/12345"

    @respx.mock
    async def test_involvement_by_username(self, registry):
        respx.get(f"{API}/search/user").mock(
            return_value=httpx.Response(200, json={"results": [{"user": make_user(display_name="jdoe")}]})
        )
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": []})
        )
        result = await registry.execute("search_pages_by_user_involvement", {
            "username": "jdoe", "searchType": "creator",
        })
        assert not result.isError
        assert route.calls[0].request.url.params["cql"].startswith(f'creator = "{ACCOUNT_ID}"')

    @respx.mock
    async def test_involvement_unknown_username(self, registry):
        respx.get(f"{API}/search/user").mock(return_value=httpx.Response(200, json={"results": []}))
        result = await registry.execute("search_pages_by_user_involvement", {
            "username": "ghost", "searchType": "creator",
        })
        assert result.isError
        assert "**User not found**: ghost" in result.content[0].text

    async def test_bad_space_key(self, registry):
        result = await registry.execute("search_pages_by_user_involvement", {
            "accountId": ACCOUNT_ID, "searchType": "both", "spaceKey": 'DEV" OR 1=1',
        })
        assert result.isError
        assert "spaceKey has invalid format" in result.content[0].text

    @respx.mock
    async def test_created_by_user_date_range(self, registry):
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": [make_page()]})
        )
        data = result_json(await registry.execute("list_pages_created_by_user", {
            "accountId": ACCOUNT_ID, "startDate": "2024-01-01", "endDate": "2024-03-31",
        }))
        cql = route.calls[0].request.url.params["cql"]
        assert 'created >= "2024-01-01"' in cql
        assert 'created <= "2024-03-31"' in cql
        assert cql.endswith("ORDER BY created DESC")
        assert data["dateRange"] == {"start": "2024-01-01", "end": "2024-03-31"}

    async def test_created_by_user_inverted_range(self, registry):
        result = await registry.execute("list_pages_created_by_user", {
            "accountId": ACCOUNT_ID, "startDate": "2024-03-01", "endDate": "2024-01-01",
        })
        assert result.isError
        assert "startDate must be before or equal to endDate" in result.content[0].text

    @respx.mock
    async def test_my_recent_pages(self, registry):
        respx.get(f"{API}/user/current").mock(return_value=httpx.Response(200, json=make_user()))
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": [make_page()]})
        )
        data = result_json(await registry.execute("get_my_recent_confluence_pages", {}))
        assert data["currentUser"] == "Jane Doe"
        assert f'lastModifier = "{ACCOUNT_ID}"' in route.calls[0].request.url.params["cql"]

    @respx.mock
    async def test_pages_mentioning_me(self, registry):
        respx.get(f"{API}/user/current").mock(return_value=httpx.Response(200, json=make_user()))
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": [make_page()]})
        )
        data = result_json(await registry.execute("get_confluence_pages_mentioning_me", {}))
        assert route.calls[0].request.url.params["cql"] == (
            f'mention = "{ACCOUNT_ID}" ORDER BY lastmodified DESC'
        )
        assert data["pages"][0]["lastModifier"] == "Jane Doe"


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

class TestReadPage:
    @respx.mock
    async def test_by_id_as_markdown(self, registry):
        respx.get(f"{API}/content/12345").mock(
            return_value=httpx.Response(200, json=make_page(storage="<h1>Title</h1><p>Body</p>"))
        )
        data = result_json(await registry.execute("read_confluence_page", {"pageId": "12345", "format": "markdown"}))
        assert data["content"] == "# Title\n\nBody"
        assert data["version"] == 1

    @respx.mock
    async def test_by_title(self, registry):
        route = respx.get(f"{API}/content").mock(
            return_value=httpx.Response(200, json={"results": [make_page()]})
        )
        data = result_json(await registry.execute("read_confluence_page", {"title": "Test Page", "spaceKey": "DEV"}))
        assert data["content"] == "<p>Hello</p>"
        params = route.calls[0].request.url.params
        assert params["title"] == "Test Page"
        assert params["spaceKey"] == "DEV"

    @respx.mock
    async def test_title_not_found(self, registry):
        respx.get(f"{API}/content").mock(return_value=httpx.Response(200, json={"results": []}))
        result = await registry.execute("read_confluence_page", {"title": "Nope", "spaceKey": "DEV"})
        assert not result.isError
        assert result.content[0].text == 'No page found with title "Nope" in space DEV'

    async def test_needs_id_or_title(self, registry):
        result = await registry.execute("read_confluence_page", {})
        assert result.isError
        assert "Either pageId or title must be provided" in result.content[0].text

    async def test_title_needs_space(self, registry):
        result = await registry.execute("read_confluence_page", {"title": "X"})
        assert "spaceKey is required when using title" in result.content[0].text

    async def test_bad_page_id(self, registry):
        result = await registry.execute("read_confluence_page", {"pageId": "../1"})
        assert result.isError
        assert "pageId has invalid format" in result.content[0].text

    @respx.mock
    async def test_not_found(self, registry):
        respx.get(f"{API}/content/999").mock(
            return_value=httpx.Response(404, json={"message": "No content found with id 999"})
        )
        result = await registry.execute("read_confluence_page", {"pageId": "999"})
        assert result.isError
        assert result.content[0].text == "Not found: No content found with id 999"

    @respx.mock
    async def test_auth_failure(self, registry):
        respx.get(f"{API}/content/1").mock(return_value=httpx.Response(401))
        result = await registry.execute("read_confluence_page", {"pageId": "1"})
        assert result.content[0].text.startswith("Authentication failed")


class TestSearchAndSpaces:
    @respx.mock
    async def test_cql_passthrough(self, registry):
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": [make_page()], "totalSize": 7})
        )
        data = result_json(await registry.execute("search_confluence_pages", {"cql": "type = page", "limit": 5}))
        params = route.calls[0].request.url.params
        assert params["cql"] == "type = page"
        assert params["limit"] == "5"
        assert data["totalResults"] == 7

    async def test_limit_over_maximum(self, registry):
        result = await registry.execute("search_confluence_pages", {"cql": "type = page", "limit": 500})
        assert result.isError
        assert "limit cannot exceed 100" in result.content[0].text

    @respx.mock
    async def test_list_spaces(self, registry):
        route = respx.get(f"{API}/space").mock(
            return_value=httpx.Response(200, json={"results": [{"id": 1, "key": "DEV", "name": "Dev", "_links": {"webui": "/spaces/DEV"}}]})
        )
        data = result_json(await registry.execute("list_confluence_spaces", {"type": "global"}))
        assert data["results"][0]["webUrl"] == f"{BASE}/wiki/spaces/DEV"
        params = route.calls[0].request.url.params
        assert params["type"] == "global"
        assert params["status"] == "current"

    @respx.mock
    async def test_get_space(self, registry):
        respx.get(f"{API}/space/DEV").mock(return_value=httpx.Response(200, json={
            "id": 1, "key": "DEV", "name": "Dev",
            "description": {"plain": {"value": "Team space"}},
            "homepage": {"id": "100"},
        }))
        data = result_json(await registry.execute("get_confluence_space", {"spaceKey": "DEV"}))
        assert data["description"] == "Team space"
        assert data["homepageId"] == "100"


class TestWritePages:
    @respx.mock
    async def test_create_from_markdown(self, registry):
        route = respx.post(f"{API}/content").mock(
            return_value=httpx.Response(200, json=make_page(page_id="777", title="New"))
        )
        data = result_json(await registry.execute("create_confluence_page", {
            "spaceKey": "DEV", "title": "New", "content": "# Hello\n\n<script>x</script>", "parentId": "12345",
        }))
        body = request_json(route)
        assert body["type"] == "page"
        assert body["space"] == {"key": "DEV"}
        assert body["ancestors"] == [{"id": "12345"}]
        storage = body["body"]["storage"]["value"]
        assert "<h1>Hello</h1>" in storage
        assert "script" not in storage
        assert data["id"] == "777"
        assert data["message"] == "Page created successfully"

    @respx.mock
    async def test_update_keeps_title_and_bumps_version(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        put = respx.put(f"{API}/content/12345").mock(
            return_value=httpx.Response(200, json=make_page(version=2))
        )
        data = result_json(await registry.execute("update_confluence_page", {
            "pageId": "12345", "version": 2, "content": "New **text**",
        }))
        body = request_json(put)
        assert body["title"] == "Test Page"
        assert body["version"] == {"number": 2, "minorEdit": False}
        assert body["body"]["storage"]["value"] == "<p>New <strong>text</strong></p>"
        assert data["previousVersion"] == 1
        assert data["version"] == 2

    @respx.mock
    async def test_update_conflict(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        respx.put(f"{API}/content/12345").mock(
            return_value=httpx.Response(409, json={"message": "Version must be incremented"})
        )
        result = await registry.execute("update_confluence_page", {"pageId": "12345", "version": 1})
        assert result.isError
        assert result.content[0].text == "API Error (409): Version must be incremented"

    @respx.mock
    async def test_comment_reply_is_sanitized(self, registry):
        route = respx.post(f"{API}/content").mock(
            return_value=httpx.Response(200, json={"id": "c1", "type": "comment", "version": {"number": 1}})
        )
        data = result_json(await registry.execute("add_confluence_comment", {
            "pageId": "12345", "content": '<p onclick="x()">Nice</p>', "parentCommentId": "c0",
        }))
        body = request_json(route)
        assert body["container"] == {"id": "12345", "type": "page"}
        assert body["ancestors"] == [{"id": "c0"}]
        assert body["body"]["storage"]["value"] == "<p>Nice</p>"
        assert data["parentCommentId"] == "c0"


class TestTree:
    @respx.mock
    async def test_children(self, registry):
        respx.get(f"{API}/content/12345/child/page").mock(
            return_value=httpx.Response(200, json={"results": [make_page(page_id="2", title="Child")], "size": 1})
        )
        data = result_json(await registry.execute("list_confluence_page_children", {"pageId": "12345"}))
        assert data["totalChildren"] == 1
        assert data["children"][0]["title"] == "Child"

    @respx.mock
    async def test_ancestors_root_first(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json={
            "id": "12345", "title": "Leaf",
            "ancestors": [{"id": "1", "title": "Root"}, {"id": "2", "title": "Middle"}],
        }))
        data = result_json(await registry.execute("list_confluence_page_ancestors", {"pageId": "12345"}))
        assert [a["title"] for a in data["ancestors"]] == ["Root", "Middle"]
        assert data["depth"] == 2


class TestLabels:
    @respx.mock
    async def test_list(self, registry):
        respx.get(f"{API}/content/12345/label").mock(
            return_value=httpx.Response(200, json={"results": [{"prefix": "global", "name": "docs", "id": "9"}]})
        )
        data = result_json(await registry.execute("list_confluence_page_labels", {"pageId": "12345"}))
        assert data["labels"][0]["name"] == "docs"

    @respx.mock
    async def test_add(self, registry):
        route = respx.post(f"{API}/content/12345/label").mock(
            return_value=httpx.Response(200, json={"results": [{"prefix": "global", "name": "docs"}]})
        )
        data = result_json(await registry.execute("add_confluence_page_label", {
            "pageId": "12345", "labels": [{"name": "docs"}],
        }))
        assert request_json(route) == [{"prefix": "global", "name": "docs"}]
        assert data["message"] == "Successfully added 1 label(s) to page"

    async def test_add_rejects_spaces(self, registry):
        result = await registry.execute("add_confluence_page_label", {
            "pageId": "12345", "labels": [{"name": "two words"}],
        })
        assert result.isError
        assert "labels[0].name cannot contain spaces" in result.content[0].text


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

class TestAttachments:
    @respx.mock
    async def test_list(self, registry):
        route = respx.get(f"{API}/content/12345/child/attachment").mock(
            return_value=httpx.Response(200, json={"results": [make_attachment()], "size": 1})
        )
        data = result_json(await registry.execute("list_attachments_on_page", {
            "pageId": "12345", "mediaType": "image/png",
        }))
        assert route.calls[0].request.url.params["mediaType"] == "image/png"
        assert data["attachments"][0]["downloadUrl"] == (
            f"{BASE}/wiki/download/attachments/12345/diagram.png"
        )

    @respx.mock
    async def test_download(self, registry):
        respx.get(f"{API}/content/att1").mock(return_value=httpx.Response(200, json=make_attachment()))
        respx.get(f"{BASE}/wiki/download/attachments/12345/diagram.png").mock(
            return_value=httpx.Response(200, content=b"\x89PNG")
        )
        data = result_json(await registry.execute("download_confluence_attachment", {"attachmentId": "att1"}))
        assert base64.b64decode(data["base64Data"]) == b"\x89PNG"
        assert data["mediaType"] == "image/png"
        assert data["fileSize"] == 4

    @respx.mock
    async def test_upload(self, registry):
        route = respx.post(f"{API}/content/12345/child/attachment").mock(
            return_value=httpx.Response(200, json={"results": [make_attachment(title="notes.txt", media_type="text/plain")]})
        )
        data = result_json(await registry.execute("upload_confluence_attachment", {
            "pageId": "12345",
            "file": base64.b64encode(b"hello").decode(),
            "filename": "notes.txt",
            "comment": "v1",
        }))
        request = route.calls[0].request
        assert request.headers["x-atlassian-token"] == "no-check"
        assert b'filename="notes.txt"' in request.content
        assert b"hello" in request.content
        assert data["filename"] == "notes.txt"

    @respx.mock
    async def test_upload_blocked_extension(self, registry):
        result = await registry.execute("upload_confluence_attachment", {
            "pageId": "12345", "file": base64.b64encode(b"x").decode(), "filename": "run.exe",
        })
        assert result.isError
        assert "File type not allowed: .exe" in result.content[0].text
        assert len(respx.calls) == 0

    async def test_upload_bad_base64(self, registry):
        result = await registry.execute("upload_confluence_attachment", {
            "pageId": "12345", "file": "not base64!!", "filename": "a.txt",
        })
        assert result.isError
        assert "file must be valid base64" in result.content[0].text

    @respx.mock
    async def test_page_with_attachments_partial_failure(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        respx.get(f"{API}/content/12345/child/attachment").mock(return_value=httpx.Response(200, json={
            "results": [
                make_attachment("a1", "ok.png"),
                make_attachment("a2", "broken.png"),
                make_attachment("a3", "huge.zip", "application/zip", 100 * 1024 * 1024),
            ],
        }))
        respx.get(f"{BASE}/wiki/download/attachments/12345/ok.png").mock(
            return_value=httpx.Response(200, content=b"data")
        )
        respx.get(f"{BASE}/wiki/download/attachments/12345/broken.png").mock(
            return_value=httpx.Response(500)
        )
        data = result_json(await registry.execute("get_page_with_attachments", {"pageId": "12345"}))
        assert data["summary"] == {
            "totalAttachments": 3,
            "downloadedAttachments": 1,
            "skippedAttachments": 1,
            "failedAttachments": 1,
        }
        by_id = {a["id"]: a for a in data["attachments"]}
        assert base64.b64decode(by_id["a1"]["base64Data"]) == b"data"
        assert by_id["a2"]["error"] == "Atlassian server error (500). Please try again later."
        assert by_id["a3"]["skipped"] is True
        assert data["page"]["content"]["storage"] == "<p>Hello</p>"

    @respx.mock
    async def test_page_without_attachments(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        data = result_json(await registry.execute("get_page_with_attachments", {
            "pageId": "12345", "includeAttachments": False,
        }))
        assert data["attachments"] == []
        assert "summary" not in data

    @respx.mock
    async def test_attachment_type_filter(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        respx.get(f"{API}/content/12345/child/attachment").mock(return_value=httpx.Response(200, json={
            "results": [make_attachment("a1", "ok.png"), make_attachment("a2", "doc.pdf", "application/pdf")],
        }))
        respx.get(f"{BASE}/wiki/download/attachments/12345/doc.pdf").mock(
            return_value=httpx.Response(200, content=b"%PDF")
        )
        data = result_json(await registry.execute("get_page_with_attachments", {
            "pageId": "12345", "attachmentTypes": ["application/pdf"],
        }))
        assert [a["id"] for a in data["attachments"]] == ["a2"]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class TestExport:
    def export_page(self, html: str) -> dict:
        page = make_page(title="Release Plan")
        page["body"] = {"export_view": {"value": html}}
        return page

    @respx.mock
    async def test_markdown_with_embedded_image(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=self.export_page(
            '<h2>Goals</h2><p>Ship it</p><img src="/wiki/download/img.png"><script>x()</script>'
        )))
        respx.get(f"{BASE}/wiki/download/img.png").mock(
            return_value=httpx.Response(200, content=b"PNG", headers={"content-type": "image/png"})
        )
        data = result_json(await registry.execute("export_confluence_page", {"pageId": "12345", "format": "markdown"}))
        document = base64.b64decode(data["base64Data"]).decode()
        assert document.startswith('---\ntitle: "Release Plan"')
        assert "## Goals" in document
        assert "data:image/png;base64,UE5H" in document
        assert "x()" not in document
        assert data["filename"] == "Release_Plan.md"
        assert data["mimeType"] == "text/markdown"
        assert data["imagesEmbedded"] == 1

    @respx.mock
    async def test_standalone_html_skips_external_images(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=self.export_page(
            '<p>Hi</p><img src="https://evil.example.com/track.gif">'
        )))
        data = result_json(await registry.execute("export_confluence_page", {
            "pageId": "12345", "format": "html", "standalone": True,
        }))
        document = base64.b64decode(data["base64Data"]).decode()
        assert document.startswith("<!DOCTYPE html>")
        assert "<title>Release Plan</title>" in document
        assert 'src="https://evil.example.com/track.gif"' in document
        assert data["imagesEmbedded"] == 0
        assert data["images"][0]["error"] == "external host"
        assert len(respx.calls) == 1

    @respx.mock
    async def test_missing_export_view(self, registry):
        respx.get(f"{API}/content/12345").mock(return_value=httpx.Response(200, json=make_page()))
        result = await registry.execute("export_confluence_page", {"pageId": "12345", "format": "html"})
        assert result.isError
        assert "export view" in result.content[0].text


# ---------------------------------------------------------------------------
# User search and uploads
# ---------------------------------------------------------------------------

class TestFindUsers:
    @respx.mock
    async def test_query_is_escaped(self, registry, user_cache):
        route = respx.get(f"{API}/search/user").mock(return_value=httpx.Response(200, json={
            "results": [{"user": make_user()}], "start": 0, "limit": 25, "totalSize": 1,
        }))
        data = result_json(await registry.execute("find_confluence_users", {"query": 'Jane "J" Doe'}))
        assert route.calls[0].request.url.params["cql"] == 'user.fullname ~ "Jane \\"J\\" Doe"'
        assert route.calls[0].request.url.params["limit"] == "25"
        assert data["totalUsers"] == 1
        assert data["users"][0]["accountId"] == ACCOUNT_ID
        assert user_cache.get(ACCOUNT_ID) is not None

    @respx.mock
    async def test_conditions_are_combined(self, registry):
        route = respx.get(f"{API}/search/user").mock(
            return_value=httpx.Response(200, json={"results": []})
        )
        data = result_json(await registry.execute("find_confluence_users", {
            "query": "Jane", "accountId": ACCOUNT_ID,
        }))
        assert route.calls[0].request.url.params["cql"] == (
            f'user.fullname ~ "Jane" AND user.accountid = "{ACCOUNT_ID}"'
        )
        assert data["users"] == []

    async def test_requires_a_criterion(self, registry):
        result = await registry.execute("find_confluence_users", {})
        assert result.isError
        assert "Provide query, accountId or cql" in result.content[0].text


class TestAttachmentsByUser:
    @staticmethod
    def uploaded(title: str = "diagram.png") -> dict:
        attachment = make_attachment(title=title)
        attachment.update({
            "container": {"id": "12345", "title": "Test Page"},
            "space": {"key": "DEV", "name": "Development"},
            "history": {"createdDate": "2024-05-01T10:00:00.000Z"},
        })
        return attachment

    @respx.mock
    async def test_lists_uploads_in_space(self, registry):
        route = respx.get(f"{API}/content/search").mock(return_value=httpx.Response(200, json={
            "results": [self.uploaded()], "start": 0, "limit": 25, "totalSize": 1,
        }))
        data = result_json(await registry.execute("list_attachments_uploaded_by_user", {
            "accountId": ACCOUNT_ID, "spaceKey": "DEV",
        }))
        assert route.calls[0].request.url.params["cql"] == (
            f'space = "DEV" AND (type = attachment AND creator = "{ACCOUNT_ID}") ORDER BY created DESC'
        )
        attachment = data["attachments"][0]
        assert data["uploader"] == ACCOUNT_ID
        assert data["spaceKey"] == "DEV"
        assert attachment["parentPageTitle"] == "Test Page"
        assert attachment["spaceKey"] == "DEV"
        assert attachment["mediaType"] == "image/png"
        assert attachment["downloadUrl"] == f"{BASE}/wiki/download/attachments/12345/diagram.png"

    @respx.mock
    async def test_resolves_username(self, registry):
        respx.get(f"{API}/search/user").mock(return_value=httpx.Response(200, json={
            "results": [{"user": make_user(display_name="jdoe")}],
        }))
        route = respx.get(f"{API}/content/search").mock(
            return_value=httpx.Response(200, json={"results": []})
        )
        data = result_json(await registry.execute("list_attachments_uploaded_by_user", {"username": "jdoe"}))
        assert f'creator = "{ACCOUNT_ID}"' in route.calls[0].request.url.params["cql"]
        assert data["spaceKey"] == "all"
        assert data["totalAttachments"] == 0

    @respx.mock
    async def test_unknown_user(self, registry):
        respx.get(f"{API}/search/user").mock(return_value=httpx.Response(200, json={"results": []}))
        result = await registry.execute("list_attachments_uploaded_by_user", {"username": "ghost"})
        assert result.isError
        assert result.content[0].text.startswith("**User not found**: ghost")
