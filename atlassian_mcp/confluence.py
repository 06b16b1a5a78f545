"""Confluence tools (``/wiki/rest/api``)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from datetime import datetime, timezone

import httpx
from mcp.types import CallToolResult

from atlassian_mcp.converters import (
    create_markdown_document,
    ensure_storage_format,
    html_to_markdown,
    prepare_html_for_export,
    process_images,
    storage_to_markdown,
)
from atlassian_mcp.errors import (
    ValidationError,
    create_user_not_found_error,
    error_result,
    format_api_error,
    handle_tool_errors,
)
from atlassian_mcp.html_sanitizer import sanitize_html
from atlassian_mcp.http_client import web_url
from atlassian_mcp.jql import escape_jql_string
from atlassian_mcp.log import log_security_event
from atlassian_mcp.registry import (
    ToolDefinition,
    ToolRegistry,
    chain_validators,
    json_result,
    schema_validator,
    text_result,
)
from atlassian_mcp.security import validate_file_upload
from atlassian_mcp.user_cache import UserCache
from atlassian_mcp.users import UserLookupPolicy, resolve_confluence_user
from atlassian_mcp.validators import (
    StringOptions,
    ValidationResult,
    validate_date_range,
    validate_string,
    validate_user_identification,
)

logger = logging.getLogger(__name__)

COMPONENT = "Confluence"
API = "/wiki/rest/api"

ID_RE = re.compile(r"^[A-Za-z0-9]+$")
SPACE_KEY_RE = re.compile(r"^~?[A-Za-z0-9_-]+$")

DEFAULT_MAX_ATTACHMENT_SIZE = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

def _limit(default: int = 25) -> dict:
    return {
        "type": "integer",
        "description": f"Maximum number of results to return. Default is {default}, maximum is 100.",
        "default": default,
        "minimum": 1,
        "maximum": 100,
    }


_START = {
    "type": "integer",
    "description": "Starting index for pagination. Default is 0.",
    "default": 0,
    "minimum": 0,
}
_PAGE_ID = {"type": "string", "description": "The ID of the page.", "maxLength": 64}
_SPACE_KEY = {"type": "string", "description": "Space key, e.g. DEV.", "maxLength": 255}
_USER_PROPS = {
    "username": {"type": "string", "description": "Display name of the user (deprecated, use accountId)."},
    "accountId": {"type": "string", "description": "The Atlassian account ID of the user."},
    "email": {"type": "string", "description": "Email address (lookup by email is disabled)."},
}


def _schema(properties: dict, required: tuple = ()) -> dict:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


TOOLS = [
    {
        "name": "get_confluence_current_user",
        "description": "Get details of the authenticated Confluence user, including account ID and display name.",
        "inputSchema": _schema({}),
    },
    {
        "name": "get_confluence_user",
        "description": (
            "Get a Confluence user's profile by accountId (preferred) or exact display name. "
            "Email lookup is disabled."
        ),
        "inputSchema": _schema(dict(_USER_PROPS)),
    },
    {
        "name": "find_confluence_users",
        "description": (
            "Search Confluence users by name, accountId or a CQL user query. "
            "Useful for finding the accountId other tools expect."
        ),
        "inputSchema": _schema({
            "query": {"type": "string", "description": "Text matched against the user's full name.", "maxLength": 255},
            "accountId": _USER_PROPS["accountId"],
            "cql": {
                "type": "string",
                "description": 'A CQL user query, e.g. user.fullname ~ "John Doe".',
                "maxLength": 2000,
            },
            "limit": _limit(),
            "start": _START,
        }),
    },
    {
        "name": "search_pages_by_user_involvement",
        "description": "Find pages a user created, last modified, or both.",
        "inputSchema": _schema({
            "username": _USER_PROPS["username"],
            "accountId": _USER_PROPS["accountId"],
            "searchType": {
                "type": "string",
                "enum": ["creator", "lastModifier", "both"],
                "description": "Pages created by the user, modified by the user, or both.",
            },
            "spaceKey": _SPACE_KEY,
            "limit": _limit(),
            "start": _START,
        }, ("searchType",)),
    },
    {
        "name": "list_pages_created_by_user",
        "description": "List pages created by a user, optionally within a space and creation date range.",
        "inputSchema": _schema({
            "username": _USER_PROPS["username"],
            "accountId": _USER_PROPS["accountId"],
            "spaceKey": _SPACE_KEY,
            "startDate": {"type": "string", "description": "Created on or after (YYYY-MM-DD)."},
            "endDate": {"type": "string", "description": "Created on or before (YYYY-MM-DD)."},
            "limit": _limit(),
            "start": _START,
        }),
    },
    {
        "name": "read_confluence_page",
        "description": "Read a page by ID, or by title within a space. Content is returned as storage format or markdown.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "title": {"type": "string", "description": "Page title (requires spaceKey).", "maxLength": 255},
            "spaceKey": _SPACE_KEY,
            "expand": {
                "type": "string",
                "description": "Comma separated properties to expand.",
                "default": "body.storage,version,space",
            },
            "format": {
                "type": "string",
                "enum": ["storage", "markdown"],
                "description": "Output format of the page body.",
                "default": "storage",
            },
        }),
    },
    {
        "name": "search_confluence_pages",
        "description": "Search content with a CQL query.",
        "inputSchema": _schema({
            "cql": {"type": "string", "description": "CQL query string.", "maxLength": 2000},
            "limit": _limit(),
            "start": _START,
            "expand": {"type": "string", "description": "Comma separated properties to expand."},
        }, ("cql",)),
    },
    {
        "name": "list_confluence_spaces",
        "description": "List spaces visible to the current user.",
        "inputSchema": _schema({
            "type": {"type": "string", "enum": ["global", "personal"], "description": "Space type filter."},
            "status": {
                "type": "string",
                "enum": ["current", "archived"],
                "description": "Space status filter.",
                "default": "current",
            },
            "limit": _limit(),
            "start": _START,
        }),
    },
    {
        "name": "get_confluence_space",
        "description": "Get details of a space.",
        "inputSchema": _schema({
            "spaceKey": _SPACE_KEY,
            "expand": {
                "type": "string",
                "description": "Comma separated properties to expand.",
                "default": "description.plain,homepage",
            },
        }, ("spaceKey",)),
    },
    {
        "name": "list_attachments_on_page",
        "description": "List the attachments of a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "mediaType": {"type": "string", "description": "Filter by media type, e.g. image/png."},
            "filename": {"type": "string", "description": "Filter by file name."},
            "limit": _limit(50),
            "start": _START,
        }, ("pageId",)),
    },
    {
        "name": "list_attachments_uploaded_by_user",
        "description": "List attachments a user uploaded, newest first, optionally within one space.",
        "inputSchema": _schema({
            "username": _USER_PROPS["username"],
            "accountId": _USER_PROPS["accountId"],
            "spaceKey": _SPACE_KEY,
            "limit": _limit(),
            "start": _START,
        }),
    },
    {
        "name": "download_confluence_attachment",
        "description": "Download an attachment. The file is returned base64 encoded.",
        "inputSchema": _schema({
            "attachmentId": {"type": "string", "description": "The ID of the attachment.", "maxLength": 64},
            "version": {"type": "integer", "description": "Attachment version to download.", "minimum": 1},
        }, ("attachmentId",)),
    },
    {
        "name": "upload_confluence_attachment",
        "description": "Upload a base64 encoded file as an attachment to a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "file": {"type": "string", "description": "Base64 encoded file content."},
            "filename": {"type": "string", "description": "Name of the file.", "maxLength": 255},
            "comment": {"type": "string", "description": "Attachment comment."},
            "minorEdit": {"type": "boolean", "description": "Do not notify watchers.", "default": False},
        }, ("pageId", "file", "filename")),
    },
    {
        "name": "get_page_with_attachments",
        "description": (
            "Get a page with its content, metadata and all attachments downloaded (base64). "
            "A failed attachment is reported inline without failing the call."
        ),
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "includeAttachments": {"type": "boolean", "description": "Download attachments.", "default": True},
            "attachmentTypes": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Only download these media types.",
            },
            "maxAttachmentSize": {
                "type": "integer",
                "description": "Skip attachments larger than this many bytes. Default 50MB.",
                "default": DEFAULT_MAX_ATTACHMENT_SIZE,
                "minimum": 0,
            },
        }, ("pageId",)),
    },
    {
        "name": "create_confluence_page",
        "description": "Create a page or blog post. Content may be markdown or storage format.",
        "inputSchema": _schema({
            "spaceKey": _SPACE_KEY,
            "title": {"type": "string", "description": "Page title.", "maxLength": 255},
            "content": {"type": "string", "description": "Page content (markdown or storage format)."},
            "parentId": {"type": "string", "description": "Parent page ID.", "maxLength": 64},
            "type": {
                "type": "string",
                "enum": ["page", "blogpost"],
                "description": "Content type.",
                "default": "page",
            },
        }, ("spaceKey", "title", "content")),
    },
    {
        "name": "update_confluence_page",
        "description": "Update a page's title and/or content. version must be the current version plus one.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "title": {"type": "string", "description": "New title.", "maxLength": 255},
            "content": {"type": "string", "description": "New content (markdown or storage format)."},
            "version": {"type": "integer", "description": "New version number.", "minimum": 1},
            "minorEdit": {"type": "boolean", "description": "Do not notify watchers.", "default": False},
            "versionComment": {"type": "string", "description": "Version message.", "maxLength": 1000},
        }, ("pageId", "version")),
    },
    {
        "name": "list_confluence_page_children",
        "description": "List the child pages of a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "limit": _limit(),
            "start": _START,
            "expand": {"type": "string", "description": "Comma separated properties to expand.", "default": "space"},
        }, ("pageId",)),
    },
    {
        "name": "list_confluence_page_ancestors",
        "description": "List the ancestors of a page, root first.",
        "inputSchema": _schema({"pageId": _PAGE_ID}, ("pageId",)),
    },
    {
        "name": "add_confluence_comment",
        "description": "Add a comment (or a reply to a comment) on a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "content": {"type": "string", "description": "Comment content (markdown or storage format)."},
            "parentCommentId": {"type": "string", "description": "Comment to reply to.", "maxLength": 64},
        }, ("pageId", "content")),
    },
    {
        "name": "list_confluence_page_labels",
        "description": "List the labels of a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "prefix": {"type": "string", "description": "Label prefix filter, e.g. global."},
            "limit": _limit(),
            "start": _START,
        }, ("pageId",)),
    },
    {
        "name": "add_confluence_page_label",
        "description": "Add labels to a page.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "labels": {
                "type": "array",
                "minItems": 1,
                "items": {
                    "type": "object",
                    "properties": {
                        "prefix": {"type": "string", "description": "Label prefix, default global."},
                        "name": {"type": "string", "description": "Label name."},
                    },
                    "required": ["name"],
                },
                "description": "Labels to add.",
            },
        }, ("pageId", "labels")),
    },
    {
        "name": "export_confluence_page",
        "description": "Export a page as HTML or markdown with images embedded. The document is returned base64 encoded.",
        "inputSchema": _schema({
            "pageId": _PAGE_ID,
            "format": {"type": "string", "enum": ["html", "markdown"], "description": "Export format."},
            "standalone": {
                "type": "boolean",
                "description": "Wrap HTML exports in a complete, styled document.",
                "default": False,
            },
        }, ("pageId", "format")),
    },
    {
        "name": "get_my_recent_confluence_pages",
        "description": "Pages the current user created or last modified, newest first.",
        "inputSchema": _schema({"limit": _limit(), "start": _START, "spaceKey": _SPACE_KEY}),
    },
    {
        "name": "get_confluence_pages_mentioning_me",
        "description": "Pages that mention the current user, newest first.",
        "inputSchema": _schema({"limit": _limit(), "start": _START, "spaceKey": _SPACE_KEY}),
    },
]


def validate_page_lookup(args: dict) -> ValidationResult[dict]:
    """A page is addressed by ``pageId``, or by ``title`` plus ``spaceKey``."""
    if not args.get("pageId") and not args.get("title"):
        return ValidationResult(["Either pageId or title must be provided"])
    if args.get("title") and not args.get("spaceKey"):
        return ValidationResult(["spaceKey is required when using title"])
    return ValidationResult(sanitized_value=args)


EXTRA_VALIDATORS = {
    "read_confluence_page": validate_page_lookup,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _checked(result: ValidationResult):
    if not result.is_valid:
        raise ValidationError("; ".join(result.errors), result.errors)
    return result.sanitized_value


def _content_id(value: str, field: str) -> str:
    return _checked(validate_string(value, field, StringOptions(required=True, pattern=ID_RE)))


def _space_clause(space_key: str | None) -> str | None:
    if not space_key:
        return None
    key = _checked(validate_string(space_key, "spaceKey", StringOptions(pattern=SPACE_KEY_RE)))
    return f'space = "{escape_jql_string(key)}"'


def _with_space(cql: str, space_key: str | None) -> str:
    clause = _space_clause(space_key)
    return f"{clause} AND ({cql})" if clause else cql


def _page_summary(client: httpx.AsyncClient, page: dict) -> dict:
    version = page.get("version") or {}
    space = page.get("space") or {}
    return {
        "id": page.get("id"),
        "title": page.get("title"),
        "type": page.get("type"),
        "spaceKey": space.get("key"),
        "spaceName": space.get("name"),
        "version": version.get("number"),
        "lastModified": version.get("when"),
        "webUrl": _wiki_link(client, page),
    }


def _wiki_link(client: httpx.AsyncClient, item: dict, link: str = "webui") -> str:
    return web_url(client, "/wiki" + ((item.get("_links") or {}).get(link) or ""))


def _user_profile(client: httpx.AsyncClient, user: dict) -> dict:
    return {
        "accountId": user.get("accountId"),
        "displayName": user.get("displayName"),
        "publicName": user.get("publicName"),
        "email": user.get("email"),
        "profilePicture": user.get("profilePicture"),
        "type": user.get("type"),
        "profileUrl": web_url(client, f"/wiki/people/{user.get('accountId')}"),
    }


def _attachment_meta(attachment: dict) -> dict:
    extensions = attachment.get("extensions") or {}
    return {
        "id": attachment.get("id"),
        "title": attachment.get("title"),
        "mediaType": extensions.get("mediaType")
        or (attachment.get("metadata") or {}).get("mediaType"),
        "fileSize": extensions.get("fileSize"),
    }


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class ConfluenceHandlers:
    def __init__(
        self,
        client: httpx.AsyncClient,
        user_cache: UserCache,
        policy: UserLookupPolicy = UserLookupPolicy(),
    ):
        self.client = client
        self.user_cache = user_cache
        self.policy = policy

    def handlers(self) -> dict:
        return {
            "get_confluence_current_user": self.get_current_user,
            "get_confluence_user": self.get_user,
            "find_confluence_users": self.find_users,
            "search_pages_by_user_involvement": self.search_pages_by_user_involvement,
            "list_pages_created_by_user": self.list_pages_created_by_user,
            "read_confluence_page": self.read_page,
            "search_confluence_pages": self.search_pages,
            "list_confluence_spaces": self.list_spaces,
            "get_confluence_space": self.get_space,
            "list_attachments_on_page": self.list_attachments,
            "list_attachments_uploaded_by_user": self.list_attachments_uploaded_by_user,
            "download_confluence_attachment": self.download_attachment,
            "upload_confluence_attachment": self.upload_attachment,
            "get_page_with_attachments": self.get_page_with_attachments,
            "create_confluence_page": self.create_page,
            "update_confluence_page": self.update_page,
            "list_confluence_page_children": self.list_children,
            "list_confluence_page_ancestors": self.list_ancestors,
            "add_confluence_comment": self.add_comment,
            "list_confluence_page_labels": self.list_labels,
            "add_confluence_page_label": self.add_labels,
            "export_confluence_page": self.export_page,
            "get_my_recent_confluence_pages": self.get_my_recent_pages,
            "get_confluence_pages_mentioning_me": self.get_pages_mentioning_me,
        }

    async def _get(self, path: str, **params) -> dict:
        resp = await self.client.get(
            API + path, params={k: v for k, v in params.items() if v is not None}
        )
        resp.raise_for_status()
        return resp.json()

    async def _search(self, cql: str, limit: int, start: int, expand: str | None) -> dict:
        return await self._get(
            "/content/search", cql=cql, limit=min(limit, 100), start=start, expand=expand
        )

    async def _current_user(self) -> dict:
        return await self._get("/user/current")

    async def _account_id_for(self, args: dict) -> str | CallToolResult:
        """Resolve the accountId for a tool's user arguments.

        Returns an error result when the user cannot be found.
        """
        ident = _checked(validate_user_identification(
            args.get("username"), args.get("accountId"), args.get("email")
        ))
        if ident.account_id:
            return ident.account_id
        resolved = await resolve_confluence_user(
            self.client, self.user_cache, username=ident.username, policy=self.policy
        )
        if resolved is None:
            return create_user_not_found_error(ident.username, COMPONENT)
        return resolved.user["accountId"]

    # -- users ---------------------------------------------------------------

    @handle_tool_errors("get_confluence_current_user", COMPONENT)
    async def get_current_user(self, args: dict) -> CallToolResult:
        user = await self._current_user()
        self.user_cache.set(user)
        return json_result(_user_profile(self.client, user))

    @handle_tool_errors("get_confluence_user", COMPONENT, enhanced=True)
    async def get_user(self, args: dict) -> CallToolResult:
        ident = _checked(validate_user_identification(
            args.get("username"), args.get("accountId"), args.get("email")
        ))
        resolved = await resolve_confluence_user(
            self.client, self.user_cache,
            account_id=ident.account_id, username=ident.username, policy=self.policy,
        )
        if resolved is None:
            return create_user_not_found_error(ident.account_id or ident.username, COMPONENT)
        return json_result({**_user_profile(self.client, resolved.user), "source": resolved.source})

    @handle_tool_errors("find_confluence_users", COMPONENT)
    async def find_users(self, args: dict) -> CallToolResult:
        conditions = []
        if args.get("query"):
            conditions.append(f'user.fullname ~ "{escape_jql_string(args["query"])}"')
        if args.get("accountId"):
            conditions.append(f'user.accountid = "{escape_jql_string(args["accountId"])}"')
        if args.get("cql"):
            conditions.append(f'({args["cql"]})')
        if not conditions:
            raise ValidationError("Provide query, accountId or cql to search for users")

        data = await self._get(
            "/search/user",
            cql=" AND ".join(conditions),
            limit=min(args["limit"], 100),
            start=args["start"],
        )
        users = []
        for item in data.get("results", []):
            user = item.get("user") or {}
            if user.get("accountId"):
                self.user_cache.set(user)
            users.append(_user_profile(self.client, user))
        return json_result({
            "totalUsers": data.get("totalSize", len(users)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "users": users,
        })

    @handle_tool_errors("search_pages_by_user_involvement", COMPONENT, enhanced=True)
    async def search_pages_by_user_involvement(self, args: dict) -> CallToolResult:
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id
        aid = escape_jql_string(account_id)
        search_type = args["searchType"]
        if search_type == "creator":
            cql = f'creator = "{aid}"'
        elif search_type == "lastModifier":
            cql = f'lastModifier = "{aid}"'
        else:
            cql = f'creator = "{aid}" OR lastModifier = "{aid}"'
        cql = _with_space(cql, args.get("spaceKey")) + " ORDER BY lastmodified DESC"

        data = await self._search(cql, args["limit"], args["start"], "space,version,history.lastUpdated")
        pages = []
        for page in data.get("results", []):
            history = page.get("history") or {}
            pages.append({
                **_page_summary(self.client, page),
                "created": history.get("createdDate"),
                "createdBy": (history.get("createdBy") or {}).get("displayName"),
                "lastModifiedBy": ((history.get("lastUpdated") or {}).get("by") or {}).get("displayName"),
            })
        return json_result({
            "searchType": search_type,
            "user": account_id,
            "totalPages": data.get("totalSize", len(pages)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "pages": pages,
        })

    @handle_tool_errors("list_pages_created_by_user", COMPONENT, enhanced=True)
    async def list_pages_created_by_user(self, args: dict) -> CallToolResult:
        dates = _checked(validate_date_range(args.get("startDate"), args.get("endDate")))
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        cql = f'creator = "{escape_jql_string(account_id)}"'
        if dates.start_date:
            cql += f' AND created >= "{dates.start_date}"'
        if dates.end_date:
            cql += f' AND created <= "{dates.end_date}"'
        cql = _with_space(cql, args.get("spaceKey")) + " ORDER BY created DESC"

        data = await self._search(cql, args["limit"], args["start"], "space,version,history")
        pages = [
            {**_page_summary(self.client, p), "created": (p.get("history") or {}).get("createdDate")}
            for p in data.get("results", [])
        ]
        return json_result({
            "author": account_id,
            "spaceKey": args.get("spaceKey") or "all",
            "dateRange": {
                "start": dates.start_date or "unlimited",
                "end": dates.end_date or "unlimited",
            },
            "totalPages": data.get("totalSize", len(pages)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "pages": pages,
        })

    # -- pages ---------------------------------------------------------------

    @handle_tool_errors("read_confluence_page", COMPONENT)
    async def read_page(self, args: dict) -> CallToolResult:
        expand = args["expand"]
        if args.get("pageId"):
            page = await self._get(f"/content/{_content_id(args['pageId'], 'pageId')}", expand=expand)
        else:
            space_key = _checked(validate_string(
                args["spaceKey"], "spaceKey", StringOptions(required=True, pattern=SPACE_KEY_RE)
            ))
            data = await self._get("/content", spaceKey=space_key, title=args["title"], expand=expand)
            if not data.get("results"):
                return text_result(f'No page found with title "{args["title"]}" in space {space_key}')
            page = data["results"][0]

        storage = ((page.get("body") or {}).get("storage") or {}).get("value", "")
        fmt = args["format"]
        return json_result({
            "id": page.get("id"),
            "title": page.get("title"),
            "space": page.get("space"),
            "version": (page.get("version") or {}).get("number"),
            "webUrl": _wiki_link(self.client, page),
            "content": storage_to_markdown(storage) if fmt == "markdown" else storage,
            "format": fmt,
        })

    @handle_tool_errors("search_confluence_pages", COMPONENT)
    async def search_pages(self, args: dict) -> CallToolResult:
        data = await self._search(args["cql"], args["limit"], args["start"], args.get("expand"))
        results = [
            {
                "id": p.get("id"),
                "title": p.get("title"),
                "type": p.get("type"),
                "space": p.get("space"),
                "webUrl": _wiki_link(self.client, p),
            }
            for p in data.get("results", [])
        ]
        return json_result({
            "totalResults": data.get("totalSize", len(results)),
            "startAt": data.get("start"),
            "limit": data.get("limit"),
            "results": results,
        })

    @handle_tool_errors("create_confluence_page", COMPONENT)
    async def create_page(self, args: dict) -> CallToolResult:
        space_key = _checked(validate_string(
            args["spaceKey"], "spaceKey", StringOptions(required=True, pattern=SPACE_KEY_RE)
        ))
        body = {
            "type": args["type"],
            "title": args["title"],
            "space": {"key": space_key},
            "body": {
                "storage": {
                    "value": ensure_storage_format(args["content"]),
                    "representation": "storage",
                }
            },
        }
        if args.get("parentId"):
            body["ancestors"] = [{"id": _content_id(args["parentId"], "parentId")}]

        resp = await self.client.post(API + "/content", json=body)
        resp.raise_for_status()
        page = resp.json()
        return json_result({
            "id": page.get("id"),
            "title": page.get("title"),
            "type": page.get("type"),
            "space": page.get("space"),
            "version": (page.get("version") or {}).get("number"),
            "webUrl": _wiki_link(self.client, page),
            "message": "Page created successfully",
        })

    @handle_tool_errors("update_confluence_page", COMPONENT)
    async def update_page(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        current = await self._get(f"/content/{page_id}", expand="body.storage,version,space")

        version = {"number": args["version"], "minorEdit": args["minorEdit"]}
        if args.get("versionComment"):
            version["message"] = args["versionComment"]
        if args.get("content"):
            body = {
                "storage": {
                    "value": ensure_storage_format(args["content"]),
                    "representation": "storage",
                }
            }
        else:
            body = current.get("body")

        resp = await self.client.put(API + f"/content/{page_id}", json={
            "id": page_id,
            "type": current.get("type", "page"),
            "title": args.get("title") or current.get("title"),
            "space": current.get("space"),
            "version": version,
            "body": body,
        })
        resp.raise_for_status()
        page = resp.json()
        return json_result({
            "id": page.get("id"),
            "title": page.get("title"),
            "version": (page.get("version") or {}).get("number"),
            "previousVersion": (current.get("version") or {}).get("number"),
            "webUrl": _wiki_link(self.client, page),
            "message": "Page updated successfully",
        })

    @handle_tool_errors("list_confluence_page_children", COMPONENT)
    async def list_children(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        data = await self._get(
            f"/content/{page_id}/child/page",
            limit=args["limit"], start=args["start"], expand=args["expand"],
        )
        children = [
            {
                "id": p.get("id"),
                "title": p.get("title"),
                "type": p.get("type"),
                "status": p.get("status"),
                "spaceKey": (p.get("space") or {}).get("key"),
                "webUrl": _wiki_link(self.client, p),
            }
            for p in data.get("results", [])
        ]
        return json_result({
            "parentPageId": page_id,
            "totalChildren": data.get("size", len(children)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "children": children,
        })

    @handle_tool_errors("list_confluence_page_ancestors", COMPONENT)
    async def list_ancestors(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        page = await self._get(f"/content/{page_id}", expand="ancestors")
        # The API lists ancestors root first
        ancestors = [
            {
                "id": a.get("id"),
                "title": a.get("title"),
                "type": a.get("type"),
                "status": a.get("status"),
                "webUrl": _wiki_link(self.client, a),
            }
            for a in page.get("ancestors") or []
        ]
        return json_result({
            "pageId": page_id,
            "pageTitle": page.get("title"),
            "ancestors": ancestors,
            "depth": len(ancestors),
        })

    @handle_tool_errors("add_confluence_comment", COMPONENT)
    async def add_comment(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        body = {
            "type": "comment",
            "container": {"id": page_id, "type": "page"},
            "body": {
                "storage": {
                    "value": ensure_storage_format(args["content"]),
                    "representation": "storage",
                }
            },
        }
        parent = args.get("parentCommentId")
        if parent:
            body["ancestors"] = [{"id": _content_id(parent, "parentCommentId")}]

        resp = await self.client.post(API + "/content", json=body)
        resp.raise_for_status()
        comment = resp.json()
        version = comment.get("version") or {}
        return json_result({
            "id": comment.get("id"),
            "type": comment.get("type"),
            "pageId": page_id,
            "parentCommentId": parent,
            "version": version.get("number"),
            "createdBy": (version.get("by") or {}).get("displayName"),
            "createdAt": version.get("when"),
            "webUrl": _wiki_link(self.client, comment),
            "message": "Comment added successfully",
        })

    @handle_tool_errors("list_confluence_page_labels", COMPONENT)
    async def list_labels(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        data = await self._get(
            f"/content/{page_id}/label",
            prefix=args.get("prefix") or None, limit=args["limit"], start=args["start"],
        )
        labels = [
            {"prefix": lb.get("prefix"), "name": lb.get("name"), "id": lb.get("id"), "label": lb.get("label")}
            for lb in data.get("results", [])
        ]
        return json_result({
            "pageId": page_id,
            "totalResults": data.get("size", len(labels)),
            "startAt": data.get("start"),
            "limit": data.get("limit"),
            "labels": labels,
        })

    @handle_tool_errors("add_confluence_page_label", COMPONENT)
    async def add_labels(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        labels = []
        for i, label in enumerate(args["labels"]):
            if not isinstance(label, dict):
                raise ValidationError(f"labels[{i}] must be an object")
            name = _checked(validate_string(
                label.get("name"), f"labels[{i}].name", StringOptions(required=True, max_length=255)
            ))
            if " " in name:
                raise ValidationError(f"labels[{i}].name cannot contain spaces")
            labels.append({"prefix": label.get("prefix") or "global", "name": name})

        resp = await self.client.post(API + f"/content/{page_id}/label", json=labels)
        resp.raise_for_status()
        added = [
            {"prefix": lb.get("prefix"), "name": lb.get("name"), "id": lb.get("id"), "label": lb.get("label")}
            for lb in resp.json().get("results", [])
        ]
        return json_result({
            "pageId": page_id,
            "addedLabels": added,
            "totalLabels": len(added),
            "message": f"Successfully added {len(added)} label(s) to page",
        })

    @handle_tool_errors("get_my_recent_confluence_pages", COMPONENT)
    async def get_my_recent_pages(self, args: dict) -> CallToolResult:
        me = await self._current_user()
        aid = escape_jql_string(me["accountId"])
        cql = _with_space(f'creator = "{aid}" OR lastModifier = "{aid}"', args.get("spaceKey"))
        data = await self._search(
            cql + " ORDER BY lastmodified DESC", args["limit"], args["start"], "space,version"
        )
        pages = [_page_summary(self.client, p) for p in data.get("results", [])]
        return json_result({
            "currentUser": me.get("displayName"),
            "totalPages": data.get("totalSize", len(pages)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "pages": pages,
        })

    @handle_tool_errors("get_confluence_pages_mentioning_me", COMPONENT)
    async def get_pages_mentioning_me(self, args: dict) -> CallToolResult:
        me = await self._current_user()
        cql = _with_space(f'mention = "{escape_jql_string(me["accountId"])}"', args.get("spaceKey"))
        data = await self._search(
            cql + " ORDER BY lastmodified DESC", args["limit"], args["start"], "space,version"
        )
        pages = [
            {
                **_page_summary(self.client, p),
                "lastModifier": (((p.get("version") or {}).get("by")) or {}).get("displayName"),
            }
            for p in data.get("results", [])
        ]
        return json_result({
            "currentUser": me.get("displayName"),
            "totalPages": data.get("totalSize", len(pages)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "pages": pages,
        })

    # -- spaces --------------------------------------------------------------

    @handle_tool_errors("list_confluence_spaces", COMPONENT)
    async def list_spaces(self, args: dict) -> CallToolResult:
        data = await self._get(
            "/space",
            type=args.get("type"), status=args["status"], limit=args["limit"], start=args["start"],
        )
        spaces = [
            {
                "id": s.get("id"),
                "key": s.get("key"),
                "name": s.get("name"),
                "type": s.get("type"),
                "status": s.get("status"),
                "webUrl": _wiki_link(self.client, s),
            }
            for s in data.get("results", [])
        ]
        return json_result({
            "totalResults": data.get("size", len(spaces)),
            "startAt": data.get("start"),
            "limit": data.get("limit"),
            "results": spaces,
        })

    @handle_tool_errors("get_confluence_space", COMPONENT)
    async def get_space(self, args: dict) -> CallToolResult:
        key = _checked(validate_string(
            args["spaceKey"], "spaceKey", StringOptions(required=True, pattern=SPACE_KEY_RE)
        ))
        space = await self._get(f"/space/{key}", expand=args["expand"])
        return json_result({
            "id": space.get("id"),
            "key": space.get("key"),
            "name": space.get("name"),
            "type": space.get("type"),
            "status": space.get("status"),
            "description": ((space.get("description") or {}).get("plain") or {}).get("value"),
            "homepageId": (space.get("homepage") or {}).get("id"),
            "webUrl": web_url(self.client, f"/wiki/spaces/{space.get('key')}"),
        })

    # -- attachments ---------------------------------------------------------

    @handle_tool_errors("list_attachments_on_page", COMPONENT)
    async def list_attachments(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        data = await self._get(
            f"/content/{page_id}/child/attachment",
            mediaType=args.get("mediaType") or None,
            filename=args.get("filename") or None,
            limit=args["limit"],
            start=args["start"],
        )
        attachments = [
            {
                **_attachment_meta(a),
                "version": (a.get("version") or {}).get("number"),
                "downloadUrl": _wiki_link(self.client, a, "download"),
                "webUrl": _wiki_link(self.client, a),
            }
            for a in data.get("results", [])
        ]
        return json_result({
            "pageId": page_id,
            "totalResults": data.get("size", len(attachments)),
            "startAt": data.get("start"),
            "limit": data.get("limit"),
            "attachments": attachments,
        })

    @handle_tool_errors("list_attachments_uploaded_by_user", COMPONENT, enhanced=True)
    async def list_attachments_uploaded_by_user(self, args: dict) -> CallToolResult:
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        cql = f'type = attachment AND creator = "{escape_jql_string(account_id)}"'
        cql = _with_space(cql, args.get("spaceKey")) + " ORDER BY created DESC"
        data = await self._search(
            cql, args["limit"], args["start"],
            "container,space,version,history,metadata.mediaType,extensions.fileSize",
        )
        attachments = []
        for a in data.get("results", []):
            container = a.get("container") or {}
            space = a.get("space") or {}
            attachments.append({
                **_attachment_meta(a),
                "created": (a.get("history") or {}).get("createdDate"),
                "version": (a.get("version") or {}).get("number"),
                "parentPageId": container.get("id"),
                "parentPageTitle": container.get("title"),
                "spaceKey": space.get("key"),
                "spaceName": space.get("name"),
                "downloadUrl": _wiki_link(self.client, a, "download"),
                "webUrl": _wiki_link(self.client, a),
            })
        return json_result({
            "uploader": account_id,
            "spaceKey": args.get("spaceKey") or "all",
            "totalAttachments": data.get("totalSize", len(attachments)),
            "start": data.get("start"),
            "limit": data.get("limit"),
            "attachments": attachments,
        })

    @handle_tool_errors("download_confluence_attachment", COMPONENT)
    async def download_attachment(self, args: dict) -> CallToolResult:
        attachment_id = _content_id(args["attachmentId"], "attachmentId")
        attachment = await self._get(f"/content/{attachment_id}", expand="version,metadata")
        download = (attachment.get("_links") or {}).get("download")
        if not download:
            return error_result("No download link available for this attachment")

        params = {}
        current_version = (attachment.get("version") or {}).get("number")
        if args.get("version") and args["version"] != current_version:
            params["version"] = args["version"]
        resp = await self.client.get("/wiki" + download, params=params)
        resp.raise_for_status()
        return json_result({
            **_attachment_meta(attachment),
            "mediaType": _attachment_meta(attachment)["mediaType"] or "application/octet-stream",
            "fileSize": len(resp.content),
            "version": params.get("version", current_version),
            "base64Data": base64.b64encode(resp.content).decode("ascii"),
        })

    @handle_tool_errors("upload_confluence_attachment", COMPONENT)
    async def upload_attachment(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        try:
            content = base64.b64decode(args["file"], validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("file must be valid base64") from None

        check = validate_file_upload(args["filename"], len(content))
        if not check.is_valid:
            log_security_event(
                logger, "upload_rejected", filename=args["filename"], reasons=check.errors
            )
        filename = _checked(check)

        data = {"minorEdit": "true" if args["minorEdit"] else "false"}
        if args.get("comment"):
            data["comment"] = args["comment"]
        resp = await self.client.post(
            API + f"/content/{page_id}/child/attachment",
            files={"file": (filename, content)},
            data=data,
            headers={"X-Atlassian-Token": "no-check"},
        )
        resp.raise_for_status()
        results = resp.json().get("results") or []
        if not results:
            return error_result("Upload succeeded but no attachment was returned")
        attachment = results[0]
        return json_result({
            **_attachment_meta(attachment),
            "filename": attachment.get("title"),
            "comment": (attachment.get("extensions") or {}).get("comment"),
            "version": (attachment.get("version") or {}).get("number"),
            "downloadUrl": _wiki_link(self.client, attachment, "download"),
            "webUrl": _wiki_link(self.client, attachment),
        })

    async def _download_one(self, attachment: dict) -> dict:
        meta = _attachment_meta(attachment)
        download = (attachment.get("_links") or {}).get("download")
        if not download:
            return {**meta, "error": "No download link available"}
        try:
            resp = await self.client.get("/wiki" + download)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Attachment %s download failed: %s", meta["id"], e)
            return {**meta, "error": format_api_error(e)}
        return {
            **meta,
            "fileSize": len(resp.content),
            "version": (attachment.get("version") or {}).get("number"),
            "base64Data": base64.b64encode(resp.content).decode("ascii"),
        }

    @handle_tool_errors("get_page_with_attachments", COMPONENT)
    async def get_page_with_attachments(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        page = await self._get(
            f"/content/{page_id}",
            expand="body.storage,body.view,version,space,ancestors,metadata.labels",
        )
        version = page.get("version") or {}
        body = page.get("body") or {}
        result = {
            "page": {
                "id": page.get("id"),
                "title": page.get("title"),
                "version": version.get("number"),
                "space": page.get("space"),
                "webUrl": _wiki_link(self.client, page),
                "content": {
                    "storage": (body.get("storage") or {}).get("value"),
                    "view": (body.get("view") or {}).get("value"),
                },
                "metadata": {
                    "labels": ((page.get("metadata") or {}).get("labels") or {}).get("results", []),
                    "lastModified": version.get("when"),
                    "lastModifiedBy": (version.get("by") or {}).get("displayName"),
                },
                "ancestors": page.get("ancestors") or [],
            },
            "attachments": [],
        }
        if not args["includeAttachments"]:
            return json_result(result)

        listing = await self._get(
            f"/content/{page_id}/child/attachment", limit=100, expand="version,metadata"
        )
        attachments = listing.get("results", [])
        wanted = set(args.get("attachmentTypes") or [])
        max_size = args["maxAttachmentSize"]

        skipped = []
        to_download = []
        for attachment in attachments:
            meta = _attachment_meta(attachment)
            if wanted and meta["mediaType"] not in wanted:
                continue
            if (meta["fileSize"] or 0) > max_size:
                skipped.append({
                    **meta,
                    "skipped": True,
                    "reason": f"File size ({meta['fileSize']} bytes) exceeds maximum ({max_size} bytes)",
                })
                continue
            to_download.append(attachment)

        downloaded = await asyncio.gather(*(self._download_one(a) for a in to_download))
        result["attachments"] = skipped + list(downloaded)
        result["summary"] = {
            "totalAttachments": len(attachments),
            "downloadedAttachments": sum(1 for a in downloaded if "base64Data" in a),
            "skippedAttachments": len(skipped),
            "failedAttachments": sum(1 for a in downloaded if "error" in a),
        }
        return json_result(result)

    # -- export --------------------------------------------------------------

    @handle_tool_errors("export_confluence_page", COMPONENT)
    async def export_page(self, args: dict) -> CallToolResult:
        page_id = _content_id(args["pageId"], "pageId")
        fmt = args["format"]
        page = await self._get(f"/content/{page_id}", expand="body.export_view,space,version")
        export_view = ((page.get("body") or {}).get("export_view") or {}).get("value")
        if export_view is None:
            return error_result(f"Could not retrieve the export view of page {page_id}")

        title = page.get("title") or "Untitled"
        space = page.get("space") or {}
        source = _wiki_link(self.client, page)
        html_body, images = await process_images(sanitize_html(export_view), self.client)
        embedded = sum(1 for i in images if i.get("embedded"))

        if fmt == "html":
            document = html_body
            if args["standalone"]:
                document = prepare_html_for_export(html_body, title, include_styles=True)
            mime_type, extension = "text/html", "html"
        else:
            document = create_markdown_document(html_to_markdown(html_body), {
                "title": title,
                "space": space.get("name"),
                "version": (page.get("version") or {}).get("number"),
                "modified": (page.get("version") or {}).get("when"),
                "source": source,
            })
            mime_type, extension = "text/markdown", "md"

        encoded = document.encode("utf-8")
        return json_result({
            "pageId": page_id,
            "title": title,
            "format": fmt,
            "spaceKey": space.get("key"),
            "spaceName": space.get("name"),
            "filename": re.sub(r"[^A-Za-z0-9]", "_", title) + "." + extension,
            "fileSize": len(encoded),
            "mimeType": mime_type,
            "base64Data": base64.b64encode(encoded).decode("ascii"),
            "imagesEmbedded": embedded,
            "images": images,
            "webUrl": source,
            "message": f"Page exported to {fmt.upper()} with {embedded} embedded images",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


def register_tools(registry: ToolRegistry, handlers: ConfluenceHandlers) -> None:
    bound = handlers.handlers()
    for tool in TOOLS:
        validators = [schema_validator(tool["inputSchema"])]
        if tool["name"] in EXTRA_VALIDATORS:
            validators.append(EXTRA_VALIDATORS[tool["name"]])
        registry.register(ToolDefinition(
            name=tool["name"],
            handler=bound[tool["name"]],
            description=tool["description"],
            input_schema=tool["inputSchema"],
            validator=chain_validators(*validators),
        ))
