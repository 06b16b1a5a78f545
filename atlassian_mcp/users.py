"""User identity resolution.

Which identifiers may be used is an explicit :class:`UserLookupPolicy`
rather than an implicit fallback order:

* ``accountId`` is stable and preferred.
* ``username`` is deprecated. It runs a user search and only accepts a
  result whose ``displayName`` (or ``accountId``) equals the query exactly,
  which is not guaranteed to be unique.
* ``email`` lookup is disabled for privacy and never reaches the API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from atlassian_mcp.jql import escape_jql_string
from atlassian_mcp.user_cache import UserCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserLookupPolicy:
    allow_account_id: bool = True
    allow_username: bool = True


@dataclass
class ResolvedUser:
    user: dict
    source: str  # "cache" or "api"


def _exact_match(candidates: list[dict], username: str) -> dict | None:
    for c in candidates:
        if c.get("displayName") == username or c.get("accountId") == username:
            return c
    return None


async def _get_or_none(client: httpx.AsyncClient, url: str, params: dict) -> httpx.Response | None:
    resp = await client.get(url, params=params)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    return resp


async def _resolve(
    cache: UserCache,
    policy: UserLookupPolicy,
    account_id: str | None,
    username: str | None,
    by_account_id,
    by_username,
) -> ResolvedUser | None:
    # The cache also indexes email addresses; only identifiers the API
    # path would accept count as a hit.
    if account_id:
        hit = cache.get(account_id)
        if hit is not None and hit.get("accountId") == account_id:
            return ResolvedUser(hit, "cache")
    if username:
        hit = cache.get(username)
        if hit is not None and _exact_match([hit], username):
            return ResolvedUser(hit, "cache")

    user = None
    if account_id and policy.allow_account_id:
        user = await by_account_id(account_id)
    if user is None and username and policy.allow_username:
        logger.warning("Username lookup is deprecated; prefer accountId (username=%s)", username)
        user = await by_username(username)

    if user is None:
        return None
    cache.set(user)
    return ResolvedUser(user, "api")


async def resolve_jira_user(
    client: httpx.AsyncClient,
    cache: UserCache,
    account_id: str | None = None,
    username: str | None = None,
    policy: UserLookupPolicy = UserLookupPolicy(),
) -> ResolvedUser | None:
    async def by_account_id(aid):
        resp = await _get_or_none(client, "/rest/api/3/user", {"accountId": aid})
        return resp.json() if resp else None

    async def by_username(name):
        resp = await _get_or_none(
            client, "/rest/api/3/user/search", {"query": name, "maxResults": 50}
        )
        return _exact_match(resp.json(), name) if resp else None

    return await _resolve(cache, policy, account_id, username, by_account_id, by_username)


async def resolve_confluence_user(
    client: httpx.AsyncClient,
    cache: UserCache,
    account_id: str | None = None,
    username: str | None = None,
    policy: UserLookupPolicy = UserLookupPolicy(),
) -> ResolvedUser | None:
    async def by_account_id(aid):
        resp = await _get_or_none(client, "/wiki/rest/api/user", {"accountId": aid})
        return resp.json() if resp else None

    async def by_username(name):
        resp = await _get_or_none(
            client,
            "/wiki/rest/api/search/user",
            {"cql": f'user.fullname~"{escape_jql_string(name)}"', "limit": 50},
        )
        if resp is None:
            return None
        candidates = [r.get("user", {}) for r in resp.json().get("results", [])]
        return _exact_match(candidates, name)

    return await _resolve(cache, policy, account_id, username, by_account_id, by_username)
