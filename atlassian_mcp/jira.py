"""Jira tools (``/rest/api/3`` and ``/rest/agile/1.0``).

Every user, role, project and date filter goes through :class:`JqlBuilder`.
A handler that ends up with no conditions refuses to search rather than
sending an unconditioned query.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

import httpx
from mcp.types import CallToolResult

from atlassian_mcp.errors import (
    ValidationError,
    create_user_not_found_error,
    handle_tool_errors,
)
from atlassian_mcp.http_client import web_url
from atlassian_mcp.jql import JqlBuilder, validate_account_id, validate_project_keys
from atlassian_mcp.registry import ToolDefinition, ToolRegistry, json_result, schema_validator
from atlassian_mcp.time_format import WorkHoursConfig, format_seconds
from atlassian_mcp.user_cache import UserCache
from atlassian_mcp.users import UserLookupPolicy, resolve_jira_user
from atlassian_mcp.validators import (
    StringOptions,
    ValidationResult,
    validate_date_range,
    validate_enum,
    validate_string,
    validate_string_array,
    validate_user_identification,
)

logger = logging.getLogger(__name__)

COMPONENT = "Jira"
API = "/rest/api/3"
AGILE_API = "/rest/agile/1.0"

ISSUE_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*-[0-9]+$")
PROJECT_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
CUSTOM_FIELD_RE = re.compile(r"^customfield_[0-9]+$")

MAX_TEXT_LENGTH = 32767
INVOLVEMENT_FIELDS = ["assignee", "reporter", "creator", "watcher"]

ISSUE_LIST_FIELDS = "summary,status,priority,issuetype,assignee,reporter,created,updated,project"


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

def _max_results(default: int = 50) -> dict:
    return {
        "type": "integer",
        "description": f"Maximum number of results to return. Default is {default}, maximum is 100.",
        "default": default,
        "minimum": 1,
        "maximum": 100,
    }


_START_AT = {
    "type": "integer",
    "description": "Index of the first result to return. Default is 0.",
    "default": 0,
    "minimum": 0,
}
_ISSUE_KEY = {"type": "string", "description": 'The issue key, e.g. "PROJ-123".', "maxLength": 255}
_PROJECT_KEYS = {
    "type": "array",
    "items": {"type": "string", "maxLength": 10},
    "maxItems": 20,
    "description": 'Restrict to these project keys, e.g. ["PROJ", "OPS"].',
}
_USERNAME = {"type": "string", "description": "Display name of the user (deprecated, use accountId)."}
_ACCOUNT_ID = {"type": "string", "description": "The Atlassian account ID of the user."}
_START_DATE = {"type": "string", "description": "On or after this date (YYYY-MM-DD)."}
_END_DATE = {"type": "string", "description": "On or before this date (YYYY-MM-DD)."}


def _schema(properties: dict, required: tuple = ()) -> dict:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


TOOLS = [
    {
        "name": "get_jira_current_user",
        "description": "Get details of the authenticated Jira user, including account ID, display name and time zone.",
        "inputSchema": _schema({}),
    },
    {
        "name": "get_jira_user",
        "description": (
            "Get a Jira user's profile by accountId (preferred) or exact display name. "
            "Results are cached; the response says whether it came from the cache or the API. "
            "Email lookup is disabled."
        ),
        "inputSchema": _schema({
            "username": _USERNAME,
            "accountId": _ACCOUNT_ID,
            "email": {"type": "string", "description": "Email address (lookup by email is disabled)."},
        }),
    },
    {
        "name": "read_jira_issue",
        "description": "Read an issue by key, including its fields and available transitions.",
        "inputSchema": _schema({
            "issueKey": _ISSUE_KEY,
            "expand": {
                "type": "string",
                "description": "Comma separated properties to expand.",
                "default": "fields,transitions,changelog",
            },
        }, ("issueKey",)),
    },
    {
        "name": "search_jira_issues",
        "description": "Search issues with a JQL query.",
        "inputSchema": _schema({
            "jql": {"type": "string", "description": "JQL query string.", "minLength": 1, "maxLength": 2000},
            "maxResults": _max_results(),
            "startAt": _START_AT,
            "fields": {
                "type": "string",
                "description": "Comma separated fields to return.",
                "default": ISSUE_LIST_FIELDS,
            },
        }, ("jql",)),
    },
    {
        "name": "list_jira_projects",
        "description": "List the projects visible to the current user.",
        "inputSchema": _schema({
            "expand": {
                "type": "string",
                "description": "Comma separated properties to expand.",
                "default": "description,lead,issueTypes",
            },
        }),
    },
    {
        "name": "create_jira_issue",
        "description": (
            "Create an issue. Project, issue type and summary are required; "
            "description, priority, assignee, labels, components and custom fields are optional."
        ),
        "inputSchema": _schema({
            "projectKey": {"type": "string", "description": 'Project key, e.g. "PROJ".', "maxLength": 255},
            "issueType": {"type": "string", "description": 'Issue type name, e.g. "Bug" or "Task".', "maxLength": 255},
            "summary": {"type": "string", "description": "Issue summary.", "maxLength": 255},
            "description": {"type": "string", "description": "Plain text description.", "maxLength": MAX_TEXT_LENGTH},
            "priority": {"type": "string", "description": 'Priority name, e.g. "High".', "maxLength": 255},
            "assignee": {"type": "string", "description": "Account ID of the assignee.", "maxLength": 128},
            "labels": {"type": "array", "items": {"type": "string"}, "description": "Labels to set."},
            "components": {"type": "array", "items": {"type": "string"}, "description": "Component names."},
            "customFields": {
                "type": "object",
                "description": 'Custom field values keyed by field ID, e.g. {"customfield_10010": "value"}.',
            },
        }, ("projectKey", "issueType", "summary")),
    },
    {
        "name": "add_jira_comment",
        "description": "Add a comment to an issue, optionally restricted to a group or project role.",
        "inputSchema": _schema({
            "issueKey": _ISSUE_KEY,
            "body": {"type": "string", "description": "Comment text.", "maxLength": MAX_TEXT_LENGTH},
            "visibility": {
                "type": "object",
                "description": "Restrict the comment to a group or project role.",
                "properties": {
                    "type": {"type": "string", "enum": ["group", "role"]},
                    "value": {"type": "string", "description": "Group or role name."},
                },
            },
        }, ("issueKey", "body")),
    },
    {
        "name": "list_agile_boards",
        "description": "List agile boards, optionally for one project or of one type.",
        "inputSchema": _schema({
            "projectKeyOrId": {"type": "string", "description": "Project key or ID.", "maxLength": 255},
            "type": {"type": "string", "enum": ["scrum", "kanban"], "description": "Board type."},
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }),
    },
    {
        "name": "list_sprints_for_board",
        "description": "List the sprints of a board.",
        "inputSchema": _schema({
            "boardId": {"type": "integer", "description": "The board ID.", "minimum": 1},
            "state": {"type": "string", "enum": ["active", "closed", "future"], "description": "Sprint state."},
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }, ("boardId",)),
    },
    {
        "name": "get_sprint_details",
        "description": "Get a sprint and, when available, the issues in it.",
        "inputSchema": _schema({
            "sprintId": {"type": "integer", "description": "The sprint ID.", "minimum": 1},
        }, ("sprintId",)),
    },
    {
        "name": "get_my_current_sprint_issues",
        "description": (
            "Issues assigned to the current user in open sprints. "
            "With a boardId, the board's active sprint is included."
        ),
        "inputSchema": _schema({
            "boardId": {"type": "integer", "description": "Board whose active sprint to report.", "minimum": 1},
            "projectKey": {"type": "string", "description": 'Restrict to one project, e.g. "PROJ".', "maxLength": 10},
        }),
    },
    {
        "name": "get_my_unresolved_issues",
        "description": "Unresolved issues assigned to the current user, grouped by status, highest priority first.",
        "inputSchema": _schema({
            "projectKeys": _PROJECT_KEYS,
            "maxResults": _max_results(),
        }),
    },
    {
        "name": "search_issues_by_user_involvement",
        "description": "Find issues where a user is the assignee, reporter, creator or a watcher (or any of these).",
        "inputSchema": _schema({
            "username": _USERNAME,
            "accountId": _ACCOUNT_ID,
            "searchType": {
                "type": "string",
                "enum": ["assignee", "reporter", "creator", "watcher", "all"],
                "description": "How the user is involved in the issue.",
            },
            "projectKeys": _PROJECT_KEYS,
            "status": {"type": "string", "description": 'Status name, e.g. "In Progress".', "maxLength": 255},
            "issueType": {"type": "string", "description": 'Issue type name, e.g. "Bug".', "maxLength": 255},
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }, ("searchType",)),
    },
    {
        "name": "list_issues_by_user_role",
        "description": "List issues where a user has a given role, optionally by project and creation date range.",
        "inputSchema": _schema({
            "username": _USERNAME,
            "accountId": _ACCOUNT_ID,
            "role": {
                "type": "string",
                "enum": ["assignee", "reporter", "creator"],
                "description": "The user's role on the issue.",
            },
            "projectKeys": _PROJECT_KEYS,
            "startDate": _START_DATE,
            "endDate": _END_DATE,
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }, ("role",)),
    },
    {
        "name": "get_user_activity_history",
        "description": (
            "Recent activity of a user: issue updates, their comments and the status "
            "changes they made, newest first."
        ),
        "inputSchema": _schema({
            "username": _USERNAME,
            "accountId": _ACCOUNT_ID,
            "activityType": {
                "type": "string",
                "enum": ["comments", "transitions", "all"],
                "description": 'Kind of activity to include. Default is "all".',
                "default": "all",
            },
            "projectKeys": _PROJECT_KEYS,
            "days": {
                "type": "integer",
                "description": "Days to look back. Default is 30.",
                "default": 30,
                "minimum": 1,
                "maximum": 365,
            },
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }),
    },
    {
        "name": "get_user_time_tracking",
        "description": "Work logged by a user, optionally by project and date range, with the total formatted in work days.",
        "inputSchema": _schema({
            "username": _USERNAME,
            "accountId": _ACCOUNT_ID,
            "projectKeys": _PROJECT_KEYS,
            "startDate": _START_DATE,
            "endDate": _END_DATE,
            "maxResults": _max_results(),
            "startAt": _START_AT,
        }),
    },
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _checked(result: ValidationResult):
    if not result.is_valid:
        raise ValidationError("; ".join(result.errors), result.errors)
    return result.sanitized_value


def _issue_key(value: str) -> str:
    return _checked(validate_string(value, "issueKey", StringOptions(required=True, pattern=ISSUE_KEY_RE)))


def _project_keys(values: list[str] | None) -> list[str]:
    """Validated project keys, or an empty list when none were given."""
    if not values:
        return []
    return validate_project_keys(_checked(validate_string_array(values, "projectKeys")))


def adf_document(text: str) -> dict:
    """Wrap plain text in a single-paragraph Atlassian Document Format doc."""
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}],
    }


def adf_to_text(node) -> str:
    """Flatten the text nodes of an ADF document. Plain strings pass through."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if node.get("type") == "text":
        return node.get("text", "")
    parts = [adf_to_text(child) for child in node.get("content") or []]
    sep = "\n" if node.get("type") == "doc" else ""
    return sep.join(p for p in parts if p)


def _name(value: dict | None, key: str = "name"):
    return (value or {}).get(key)


def _browse_url(client: httpx.AsyncClient, key: str) -> str:
    return web_url(client, f"/browse/{key}")


def _issue_summary(client: httpx.AsyncClient, issue: dict) -> dict:
    fields = issue.get("fields") or {}
    return {
        "key": issue.get("key"),
        "summary": fields.get("summary"),
        "status": _name(fields.get("status")),
        "priority": _name(fields.get("priority")),
        "issueType": _name(fields.get("issuetype")),
        "assignee": _name(fields.get("assignee"), "displayName"),
        "reporter": _name(fields.get("reporter"), "displayName"),
        "project": _name(fields.get("project"), "key"),
        "created": fields.get("created"),
        "updated": fields.get("updated"),
        "webUrl": _browse_url(client, issue.get("key", "")),
    }


def _user_profile(client: httpx.AsyncClient, user: dict) -> dict:
    return {
        "accountId": user.get("accountId"),
        "displayName": user.get("displayName"),
        "emailAddress": user.get("emailAddress"),
        "active": user.get("active"),
        "timeZone": user.get("timeZone"),
        "accountType": user.get("accountType"),
        "avatarUrls": user.get("avatarUrls"),
        "profileUrl": web_url(client, f"/jira/people/{user.get('accountId')}"),
    }


def _sprint(sprint: dict) -> dict:
    return {
        "id": sprint.get("id"),
        "name": sprint.get("name"),
        "state": sprint.get("state"),
        "startDate": sprint.get("startDate"),
        "endDate": sprint.get("endDate"),
        "completeDate": sprint.get("completeDate"),
        "goal": sprint.get("goal"),
        "originBoardId": sprint.get("originBoardId"),
    }


def _sprint_name(value) -> str | None:
    # The sprint field is a list of sprints on some sites.
    if isinstance(value, list):
        value = value[-1] if value else None
    return _name(value) if isinstance(value, dict) else None


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse a Jira timestamp such as ``2024-05-01T10:00:00.000+0000``."""
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _since(value: str | None, start: datetime) -> bool:
    stamp = _parse_timestamp(value)
    return stamp is not None and stamp >= start


def _in_range(started: str | None, start_date: str | None, end_date: str | None) -> bool:
    if not started:
        return not (start_date or end_date)
    day = started[:10]
    if start_date and day < start_date:
        return False
    if end_date and day > end_date:
        return False
    return True


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class JiraHandlers:
    def __init__(
        self,
        client: httpx.AsyncClient,
        user_cache: UserCache,
        policy: UserLookupPolicy = UserLookupPolicy(),
        work_hours: WorkHoursConfig = WorkHoursConfig(),
    ):
        self.client = client
        self.user_cache = user_cache
        self.policy = policy
        self.work_hours = work_hours

    def handlers(self) -> dict:
        return {
            "get_jira_current_user": self.get_current_user,
            "get_jira_user": self.get_user,
            "read_jira_issue": self.read_issue,
            "search_jira_issues": self.search_issues,
            "list_jira_projects": self.list_projects,
            "create_jira_issue": self.create_issue,
            "add_jira_comment": self.add_comment,
            "list_agile_boards": self.list_boards,
            "list_sprints_for_board": self.list_sprints,
            "get_sprint_details": self.get_sprint,
            "get_my_current_sprint_issues": self.get_my_current_sprint_issues,
            "get_my_unresolved_issues": self.get_my_unresolved_issues,
            "search_issues_by_user_involvement": self.search_issues_by_user_involvement,
            "list_issues_by_user_role": self.list_issues_by_user_role,
            "get_user_activity_history": self.get_user_activity_history,
            "get_user_time_tracking": self.get_user_time_tracking,
        }

    async def _get(self, path: str, **params):
        resp = await self.client.get(path, params={k: v for k, v in params.items() if v is not None})
        resp.raise_for_status()
        return resp.json()

    async def _post(self, path: str, body: dict) -> dict:
        resp = await self.client.post(path, json=body)
        resp.raise_for_status()
        return resp.json()

    async def _search(self, jql: JqlBuilder, order_by: str, **params) -> dict:
        if not len(jql):
            raise ValidationError("Invalid search criteria provided: no search conditions")
        params["maxResults"] = min(params.get("maxResults") or 50, 100)
        return await self._get(API + "/search", jql=f"{jql.build()} ORDER BY {order_by}", **params)

    async def _current_user(self) -> dict:
        user = await self._get(API + "/myself")
        self.user_cache.set(user)
        return user

    async def _account_id_for(self, args: dict) -> str | CallToolResult:
        """Resolve the accountId for a tool's user arguments.

        Returns an error result when the user cannot be found.
        """
        ident = _checked(validate_user_identification(
            args.get("username"), args.get("accountId"), args.get("email")
        ))
        if ident.account_id:
            return validate_account_id(ident.account_id)
        resolved = await resolve_jira_user(
            self.client, self.user_cache, username=ident.username, policy=self.policy
        )
        if resolved is None:
            return create_user_not_found_error(ident.username, COMPONENT)
        return validate_account_id(resolved.user.get("accountId"))

    # -- users ---------------------------------------------------------------

    @handle_tool_errors("get_jira_current_user", COMPONENT)
    async def get_current_user(self, args: dict) -> CallToolResult:
        return json_result(_user_profile(self.client, await self._current_user()))

    @handle_tool_errors("get_jira_user", COMPONENT, enhanced=True)
    async def get_user(self, args: dict) -> CallToolResult:
        ident = _checked(validate_user_identification(
            args.get("username"), args.get("accountId"), args.get("email")
        ))
        resolved = await resolve_jira_user(
            self.client, self.user_cache,
            account_id=ident.account_id, username=ident.username, policy=self.policy,
        )
        if resolved is None:
            return create_user_not_found_error(ident.account_id or ident.username, COMPONENT)
        return json_result({**_user_profile(self.client, resolved.user), "source": resolved.source})

    # -- issues --------------------------------------------------------------

    @handle_tool_errors("read_jira_issue", COMPONENT)
    async def read_issue(self, args: dict) -> CallToolResult:
        key = _issue_key(args["issueKey"])
        issue = await self._get(API + f"/issue/{key}", expand=args["expand"])
        fields = issue.get("fields") or {}
        return json_result({
            "id": issue.get("id"),
            "key": issue.get("key"),
            "webUrl": _browse_url(self.client, issue.get("key", key)),
            "fields": {
                "summary": fields.get("summary"),
                "description": fields.get("description"),
                "status": _name(fields.get("status")),
                "priority": _name(fields.get("priority")),
                "issueType": _name(fields.get("issuetype")),
                "assignee": _name(fields.get("assignee"), "displayName"),
                "reporter": _name(fields.get("reporter"), "displayName"),
                "created": fields.get("created"),
                "updated": fields.get("updated"),
                "resolved": fields.get("resolutiondate"),
                "labels": fields.get("labels"),
                "components": [c.get("name") for c in fields.get("components") or []],
            },
            "transitions": [
                {"id": t.get("id"), "name": t.get("name"), "to": _name(t.get("to"))}
                for t in issue.get("transitions") or []
            ],
        })

    @handle_tool_errors("search_jira_issues", COMPONENT)
    async def search_issues(self, args: dict) -> CallToolResult:
        data = await self._get(
            API + "/search",
            jql=args["jql"],
            maxResults=min(args["maxResults"], 100),
            startAt=args["startAt"],
            fields=args["fields"],
        )
        issues = [_issue_summary(self.client, i) for i in data.get("issues", [])]
        return json_result({
            "totalIssues": data.get("total", len(issues)),
            "startAt": data.get("startAt"),
            "maxResults": data.get("maxResults"),
            "issues": issues,
        })

    @handle_tool_errors("create_jira_issue", COMPONENT)
    async def create_issue(self, args: dict) -> CallToolResult:
        project_key = _checked(validate_string(
            args["projectKey"], "projectKey", StringOptions(required=True, pattern=PROJECT_KEY_RE)
        ))
        fields = {
            "project": {"key": project_key},
            "issuetype": {"name": args["issueType"]},
            "summary": args["summary"],
        }
        if args.get("description"):
            fields["description"] = adf_document(args["description"])
        if args.get("priority"):
            fields["priority"] = {"name": args["priority"]}
        if args.get("assignee"):
            fields["assignee"] = {"accountId": validate_account_id(args["assignee"])}
        if args.get("labels"):
            if any(" " in label for label in args["labels"]):
                raise ValidationError("labels cannot contain spaces")
            fields["labels"] = args["labels"]
        if args.get("components"):
            fields["components"] = [{"name": name} for name in args["components"]]
        for field_id, value in (args.get("customFields") or {}).items():
            if not CUSTOM_FIELD_RE.match(field_id):
                raise ValidationError(f"Invalid custom field ID: {field_id}")
            fields[field_id] = value

        created = await self._post(API + "/issue", {"fields": fields})
        return json_result({
            "id": created.get("id"),
            "key": created.get("key"),
            "self": created.get("self"),
            "webUrl": _browse_url(self.client, created.get("key", "")),
            "message": "Issue created successfully",
        })

    @handle_tool_errors("add_jira_comment", COMPONENT)
    async def add_comment(self, args: dict) -> CallToolResult:
        key = _issue_key(args["issueKey"])
        body = {"body": adf_document(args["body"])}
        visibility = args.get("visibility")
        if visibility:
            kind = _checked(validate_enum(visibility.get("type"), "visibility.type", ["group", "role"], True))
            value = _checked(validate_string(
                visibility.get("value"), "visibility.value", StringOptions(required=True, max_length=255)
            ))
            body["visibility"] = {"type": kind, "value": value}

        comment = await self._post(API + f"/issue/{key}/comment", body)
        return json_result({
            "id": comment.get("id"),
            "issueKey": key,
            "created": comment.get("created"),
            "author": _name(comment.get("author"), "displayName"),
            "body": args["body"],
            "visibility": body.get("visibility"),
        })

    # -- projects and boards -------------------------------------------------

    @handle_tool_errors("list_jira_projects", COMPONENT)
    async def list_projects(self, args: dict) -> CallToolResult:
        data = await self._get(API + "/project", expand=args["expand"])
        projects = [
            {
                "id": p.get("id"),
                "key": p.get("key"),
                "name": p.get("name"),
                "description": p.get("description"),
                "projectType": p.get("projectTypeKey"),
                "lead": _name(p.get("lead"), "displayName"),
                "webUrl": web_url(self.client, f"/browse/{p.get('key')}"),
                "issueTypes": [
                    {"name": it.get("name"), "description": it.get("description")}
                    for it in p.get("issueTypes") or []
                ],
            }
            for p in data
        ]
        return json_result({"totalProjects": len(projects), "projects": projects})

    @handle_tool_errors("list_agile_boards", COMPONENT)
    async def list_boards(self, args: dict) -> CallToolResult:
        data = await self._get(
            AGILE_API + "/board",
            projectKeyOrId=args.get("projectKeyOrId") or None,
            type=args.get("type"),
            startAt=args["startAt"],
            maxResults=min(args["maxResults"], 100),
        )
        boards = [
            {
                "id": b.get("id"),
                "name": b.get("name"),
                "type": b.get("type"),
                "projectKey": _name(b.get("location"), "projectKey"),
                "projectName": _name(b.get("location"), "projectName"),
                "webUrl": web_url(self.client, f"/secure/RapidBoard.jspa?rapidView={b.get('id')}"),
            }
            for b in data.get("values", [])
        ]
        return json_result({
            "totalBoards": data.get("total", len(boards)),
            "startAt": data.get("startAt"),
            "maxResults": data.get("maxResults"),
            "boards": boards,
        })

    @handle_tool_errors("list_sprints_for_board", COMPONENT)
    async def list_sprints(self, args: dict) -> CallToolResult:
        board_id = args["boardId"]
        data = await self._get(
            AGILE_API + f"/board/{board_id}/sprint",
            state=args.get("state"),
            startAt=args["startAt"],
            maxResults=min(args["maxResults"], 100),
        )
        sprints = [_sprint(s) for s in data.get("values", [])]
        return json_result({
            "boardId": board_id,
            "totalSprints": data.get("total", len(sprints)),
            "startAt": data.get("startAt"),
            "maxResults": data.get("maxResults"),
            "sprints": sprints,
        })

    @handle_tool_errors("get_sprint_details", COMPONENT)
    async def get_sprint(self, args: dict) -> CallToolResult:
        sprint_id = args["sprintId"]
        sprint = await self._get(AGILE_API + f"/sprint/{sprint_id}")
        result = _sprint(sprint)
        board_id = sprint.get("originBoardId")
        if board_id:
            result["webUrl"] = web_url(
                self.client,
                f"/secure/RapidBoard.jspa?rapidView={board_id}&view=planning&sprint={sprint_id}",
            )

        # The issue list is extra detail; the sprint is still returned without it.
        try:
            issues = await self._get(AGILE_API + f"/sprint/{sprint_id}/issue", maxResults=100)
        except httpx.HTTPError as e:
            logger.warning("Could not list issues of sprint %s: %s", sprint_id, e)
            result["issuesError"] = str(e) or type(e).__name__
        else:
            result["issueCount"] = issues.get("total")
            result["issues"] = [
                {
                    "key": i.get("key"),
                    "summary": (i.get("fields") or {}).get("summary"),
                    "status": _name((i.get("fields") or {}).get("status")),
                    "assignee": _name((i.get("fields") or {}).get("assignee"), "displayName"),
                }
                for i in issues.get("issues", [])
            ]
        return json_result(result)

    # -- user centric searches -----------------------------------------------

    @handle_tool_errors("get_my_current_sprint_issues", COMPONENT)
    async def get_my_current_sprint_issues(self, args: dict) -> CallToolResult:
        project_key = None
        if args.get("projectKey"):
            project_key = _checked(validate_string(
                args["projectKey"], "projectKey", StringOptions(pattern=PROJECT_KEY_RE)
            ))
        me = await self._current_user()

        active_sprint = None
        board_id = args.get("boardId")
        if board_id:
            # Sprint info is extra detail; the issues are still returned without it.
            try:
                sprints = await self._get(AGILE_API + f"/board/{board_id}/sprint", state="active")
            except httpx.HTTPError as e:
                logger.warning("Could not read the active sprint of board %s: %s", board_id, e)
            else:
                values = sprints.get("values") or []
                if values:
                    active_sprint = _sprint(values[0])

        jql = JqlBuilder()
        if project_key:
            jql.equals("project", project_key)
        jql.equals("assignee", validate_account_id(me.get("accountId")))
        jql.raw("sprint in openSprints()")
        data = await self._search(
            jql, "priority DESC, updated DESC",
            maxResults=100,
            fields="summary,status,priority,issuetype,created,updated,labels,components,sprint",
        )
        issues = [
            {
                **_issue_summary(self.client, i),
                "sprint": _sprint_name((i.get("fields") or {}).get("sprint")),
            }
            for i in data.get("issues", [])
        ]
        return json_result({
            "currentUser": me.get("displayName"),
            "activeSprint": active_sprint,
            "totalIssues": data.get("total", len(issues)),
            "issues": issues,
        })

    @handle_tool_errors("get_my_unresolved_issues", COMPONENT)
    async def get_my_unresolved_issues(self, args: dict) -> CallToolResult:
        project_keys = _project_keys(args.get("projectKeys"))
        me = await self._current_user()

        jql = JqlBuilder()
        if project_keys:
            jql.in_("project", project_keys)
        jql.equals("assignee", validate_account_id(me.get("accountId")))
        jql.raw("resolution = Unresolved")
        data = await self._search(
            jql, "priority DESC, updated DESC",
            maxResults=args["maxResults"],
            fields=ISSUE_LIST_FIELDS + ",duedate,labels,components",
        )

        issues = []
        by_status: dict[str, list] = {}
        for raw in data.get("issues", []):
            fields = raw.get("fields") or {}
            issue = {
                **_issue_summary(self.client, raw),
                "dueDate": fields.get("duedate"),
                "labels": fields.get("labels"),
                "components": [c.get("name") for c in fields.get("components") or []],
            }
            issues.append(issue)
            by_status.setdefault(issue["status"] or "Unknown", []).append(issue)

        return json_result({
            "currentUser": me.get("displayName"),
            "totalUnresolvedIssues": data.get("total", len(issues)),
            "issuesByStatus": by_status,
            "issues": issues,
        })

    @handle_tool_errors("search_issues_by_user_involvement", COMPONENT, enhanced=True)
    async def search_issues_by_user_involvement(self, args: dict) -> CallToolResult:
        project_keys = _project_keys(args.get("projectKeys"))
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        search_type = args["searchType"]
        jql = JqlBuilder()
        if search_type == "all":
            jql.or_equals(INVOLVEMENT_FIELDS, account_id)
        else:
            jql.equals(search_type, account_id)
        if project_keys:
            jql.in_("project", project_keys)
        if args.get("status"):
            jql.equals("status", args["status"])
        if args.get("issueType"):
            jql.equals("issuetype", args["issueType"])

        data = await self._search(
            jql, "updated DESC",
            maxResults=args["maxResults"], startAt=args["startAt"], fields=ISSUE_LIST_FIELDS,
        )
        issues = [_issue_summary(self.client, i) for i in data.get("issues", [])]
        return json_result({
            "searchType": search_type,
            "user": account_id,
            "totalIssues": data.get("total", len(issues)),
            "startAt": data.get("startAt"),
            "maxResults": data.get("maxResults"),
            "issues": issues,
        })

    @handle_tool_errors("list_issues_by_user_role", COMPONENT, enhanced=True)
    async def list_issues_by_user_role(self, args: dict) -> CallToolResult:
        dates = _checked(validate_date_range(args.get("startDate"), args.get("endDate")))
        project_keys = _project_keys(args.get("projectKeys"))
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        role = args["role"]
        jql = JqlBuilder().equals(role, account_id)
        if project_keys:
            jql.in_("project", project_keys)
        jql.date_range("created", dates.start_date, dates.end_date)

        data = await self._search(
            jql, "created DESC",
            maxResults=args["maxResults"],
            startAt=args["startAt"],
            fields=ISSUE_LIST_FIELDS + ",resolution",
        )
        issues = [
            {
                **_issue_summary(self.client, i),
                "resolution": _name((i.get("fields") or {}).get("resolution")),
            }
            for i in data.get("issues", [])
        ]
        return json_result({
            "role": role,
            "user": account_id,
            "dateRange": {
                "start": dates.start_date or "unlimited",
                "end": dates.end_date or "unlimited",
            },
            "totalIssues": data.get("total", len(issues)),
            "startAt": data.get("startAt"),
            "maxResults": data.get("maxResults"),
            "issues": issues,
        })

    @handle_tool_errors("get_user_activity_history", COMPONENT, enhanced=True)
    async def get_user_activity_history(self, args: dict) -> CallToolResult:
        project_keys = _project_keys(args.get("projectKeys"))
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        activity_type = args["activityType"]
        days = args["days"]
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)

        jql = JqlBuilder().or_equals(["assignee", "reporter", "creator"], account_id)
        if project_keys:
            jql.in_("project", project_keys)
        # days is a schema-checked integer.
        jql.raw(f"updated >= -{days}d")
        data = await self._search(
            jql, "updated DESC",
            maxResults=args["maxResults"],
            startAt=args["startAt"],
            fields="summary,updated,project,comment",
            expand="changelog",
        )

        activities = []
        for issue in data.get("issues", []):
            key = issue.get("key")
            fields = issue.get("fields") or {}
            if _since(fields.get("updated"), start):
                activities.append({
                    "type": "issue_updated",
                    "issueKey": key,
                    "summary": fields.get("summary"),
                    "date": fields.get("updated"),
                    "project": _name(fields.get("project"), "key"),
                })
            if activity_type in ("comments", "all"):
                for comment in (fields.get("comment") or {}).get("comments") or []:
                    if _name(comment.get("author"), "accountId") != account_id:
                        continue
                    if _since(comment.get("created"), start):
                        activities.append({
                            "type": "comment",
                            "issueKey": key,
                            "date": comment.get("created"),
                            "body": adf_to_text(comment.get("body")),
                        })
            if activity_type in ("transitions", "all"):
                for history in (issue.get("changelog") or {}).get("histories") or []:
                    if _name(history.get("author"), "accountId") != account_id:
                        continue
                    if not _since(history.get("created"), start):
                        continue
                    for item in history.get("items") or []:
                        if item.get("field") == "status":
                            activities.append({
                                "type": "status_change",
                                "issueKey": key,
                                "date": history.get("created"),
                                "from": item.get("fromString"),
                                "to": item.get("toString"),
                            })
        activities.sort(key=lambda a: _parse_timestamp(a["date"]), reverse=True)

        return json_result({
            "user": account_id,
            "activityType": activity_type,
            "dateRange": {"start": start.isoformat(), "end": end.isoformat(), "days": days},
            "totalActivities": len(activities),
            "activities": activities[:args["maxResults"]],
        })

    @handle_tool_errors("get_user_time_tracking", COMPONENT, enhanced=True)
    async def get_user_time_tracking(self, args: dict) -> CallToolResult:
        dates = _checked(validate_date_range(args.get("startDate"), args.get("endDate")))
        project_keys = _project_keys(args.get("projectKeys"))
        account_id = await self._account_id_for(args)
        if isinstance(account_id, CallToolResult):
            return account_id

        jql = JqlBuilder().equals("worklogAuthor", account_id)
        if project_keys:
            jql.in_("project", project_keys)
        # Dates are calendar-checked above, so they are safe to inline.
        for op, value in ((">=", dates.start_date), ("<=", dates.end_date)):
            if value:
                jql.raw(f'worklogDate {op} "{value}"')

        data = await self._search(
            jql, "updated DESC",
            maxResults=args["maxResults"],
            startAt=args["startAt"],
            fields="summary,project,worklog",
        )

        worklogs = []
        for issue in data.get("issues", []):
            fields = issue.get("fields") or {}
            for wl in (fields.get("worklog") or {}).get("worklogs") or []:
                if _name(wl.get("author"), "accountId") != account_id:
                    continue
                if not _in_range(wl.get("started"), dates.start_date, dates.end_date):
                    continue
                seconds = wl.get("timeSpentSeconds") or 0
                worklogs.append({
                    "issueKey": issue.get("key"),
                    "summary": fields.get("summary") or "No summary",
                    "project": _name(fields.get("project"), "key") or "Unknown",
                    "started": wl.get("started"),
                    "timeSpent": wl.get("timeSpent"),
                    "timeSpentSeconds": seconds,
                    "timeSpentFormatted": format_seconds(seconds, self.work_hours),
                    "comment": adf_to_text(wl.get("comment")),
                })
        worklogs.sort(key=lambda w: w["started"] or "", reverse=True)
        total = sum(w["timeSpentSeconds"] for w in worklogs)

        return json_result({
            "user": account_id,
            "dateRange": {
                "start": dates.start_date or "unlimited",
                "end": dates.end_date or "unlimited",
            },
            "totalWorklogs": len(worklogs),
            "totalTimeSpentSeconds": total,
            "totalTimeSpentFormatted": format_seconds(total, self.work_hours),
            "hoursPerDay": self.work_hours.hours_per_day,
            "worklogs": worklogs,
        })


def register_tools(registry: ToolRegistry, handlers: JiraHandlers) -> None:
    bound = handlers.handlers()
    for tool in TOOLS:
        registry.register(ToolDefinition(
            name=tool["name"],
            handler=bound[tool["name"]],
            description=tool["description"],
            input_schema=tool["inputSchema"],
            validator=schema_validator(tool["inputSchema"]),
        ))
