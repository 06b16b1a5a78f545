"""Tests for user resolution and the lookup policy."""

import httpx
import pytest
import respx

from atlassian_mcp.users import UserLookupPolicy, resolve_confluence_user, resolve_jira_user
from tests.conftest import BASE
from tests.factories import ACCOUNT_ID, make_user


class TestJiraResolution:
    @respx.mock
    async def test_account_id_lookup_is_cached(self, client, user_cache):
        route = respx.get(f"{BASE}/rest/api/3/user").mock(
            return_value=httpx.Response(200, json=make_user())
        )
        first = await resolve_jira_user(client, user_cache, account_id=ACCOUNT_ID)
        second = await resolve_jira_user(client, user_cache, account_id=ACCOUNT_ID)
        assert first.source == "api"
        assert second.source == "cache"
        assert second.user["displayName"] == "Jane Doe"
        assert route.call_count == 1
        assert route.calls[0].request.url.params["accountId"] == ACCOUNT_ID

    @respx.mock
    async def test_username_exact_match_only(self, client, user_cache):
        respx.get(f"{BASE}/rest/api/3/user/search").mock(
            return_value=httpx.Response(200, json=[
                make_user("5b10ac8d82e05b22cc7d4ef5", "jdoe2"),
                make_user(display_name="jdoe"),
            ])
        )
        resolved = await resolve_jira_user(client, user_cache, username="jdoe")
        assert resolved.user["accountId"] == ACCOUNT_ID
        assert user_cache.get("jdoe") is not None

    @respx.mock
    async def test_username_partial_match_is_not_found(self, client, user_cache):
        respx.get(f"{BASE}/rest/api/3/user/search").mock(
            return_value=httpx.Response(200, json=[make_user(display_name="jdoe.senior")])
        )
        assert await resolve_jira_user(client, user_cache, username="jdoe") is None

    @respx.mock
    async def test_unknown_account_id_falls_back_to_username(self, client, user_cache):
        respx.get(f"{BASE}/rest/api/3/user").mock(return_value=httpx.Response(404))
        respx.get(f"{BASE}/rest/api/3/user/search").mock(
            return_value=httpx.Response(200, json=[make_user(display_name="jdoe")])
        )
        resolved = await resolve_jira_user(
            client, user_cache, account_id="5b10ac8d82e05b22cc7d4ef5", username="jdoe"
        )
        assert resolved.user["displayName"] == "jdoe"

    @respx.mock
    async def test_username_disabled_by_policy(self, client, user_cache):
        policy = UserLookupPolicy(allow_username=False)
        assert await resolve_jira_user(client, user_cache, username="jdoe", policy=policy) is None
        assert len(respx.calls) == 0

    @respx.mock
    async def test_cache_hit_by_email_is_ignored(self, client, user_cache):
        user_cache.set(make_user())
        respx.get(f"{BASE}/rest/api/3/user/search").mock(
            return_value=httpx.Response(200, json=[make_user()])
        )
        assert await resolve_jira_user(client, user_cache, username="jane@example.com") is None

    async def test_cache_hit_by_display_name(self, client, user_cache):
        user_cache.set(make_user())
        resolved = await resolve_jira_user(client, user_cache, username="Jane Doe")
        assert resolved.source == "cache"

    @respx.mock
    async def test_server_errors_propagate(self, client, user_cache):
        respx.get(f"{BASE}/rest/api/3/user").mock(return_value=httpx.Response(500))
        with pytest.raises(httpx.HTTPStatusError):
            await resolve_jira_user(client, user_cache, account_id=ACCOUNT_ID)


class TestConfluenceResolution:
    @respx.mock
    async def test_account_id(self, client, user_cache):
        respx.get(f"{BASE}/wiki/rest/api/user").mock(
            return_value=httpx.Response(200, json=make_user())
        )
        resolved = await resolve_confluence_user(client, user_cache, account_id=ACCOUNT_ID)
        assert resolved.source == "api"
        assert resolved.user["accountId"] == ACCOUNT_ID

    @respx.mock
    async def test_username_search_escapes_cql(self, client, user_cache):
        route = respx.get(f"{BASE}/wiki/rest/api/search/user").mock(
            return_value=httpx.Response(200, json={"results": [{"user": make_user(display_name="jdoe")}]})
        )
        resolved = await resolve_confluence_user(client, user_cache, username="jdoe")
        assert resolved.user["displayName"] == "jdoe"
        assert route.calls[0].request.url.params["cql"] == 'user.fullname~"jdoe"'

    @respx.mock
    async def test_shared_cache_across_products(self, client, user_cache):
        user_cache.set(make_user())
        resolved = await resolve_confluence_user(client, user_cache, account_id=ACCOUNT_ID)
        assert resolved.source == "cache"
        assert len(respx.calls) == 0
