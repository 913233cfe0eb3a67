"""Tests for the tenant-bound Jira client."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from jiragate.client import JiraClient
from jiragate.config import TenantConfig
from jiragate.errors import UpstreamUnavailable
from jiragate.fields import get_field_catalog
from jiragate.session import SessionState
from tests._factories import TOKEN, FakeJira, make_registry


@pytest.fixture
def tenant() -> TenantConfig:
    return make_registry().tenants["b"]


class TestRequests:
    async def test_basic_auth_and_base_url(self, tenant: TenantConfig) -> None:
        fake = FakeJira()
        async with JiraClient(tenant, transport=fake.transport) as client:
            await client.get_fields()
        request = fake.requests[0]
        assert str(request.url) == "https://beta.atlassian.net/rest/api/2/field"
        expected = base64.b64encode(f"bot@beta.example.com:{TOKEN}".encode()).decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.headers["Accept"] == "application/json"

    async def test_agile_api_prefix(self, tenant: TenantConfig) -> None:
        fake = FakeJira({"/rest/agile/1.0/board": {"values": []}})
        async with JiraClient(tenant, transport=fake.transport) as client:
            data = await client.get("/board", api="agile")
        assert data == {"values": []}

    async def test_params_and_json_body(self, tenant: TenantConfig) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with JiraClient(tenant, transport=httpx.MockTransport(handler)) as client:
            assert await client.put("/issue/JOB-1", {"fields": {"summary": "x"}}) is None
            await client.get("/search", params={"jql": "project = JOB"})
        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"fields": {"summary": "x"}}
        assert seen[1].url.params["jql"] == "project = JOB"

    async def test_editable_field_ids(self, tenant: TenantConfig) -> None:
        fake = FakeJira({"/rest/api/2/issue/JOB-1/editmeta": {"fields": {"summary": {}, "customfield_10016": {}}}})
        async with JiraClient(tenant, transport=fake.transport) as client:
            assert await client.get_editable_field_ids("JOB-1") == {"summary", "customfield_10016"}

    async def test_client_reopens_after_close(self, tenant: TenantConfig) -> None:
        fake = FakeJira()
        client = JiraClient(tenant, transport=fake.transport)
        await client.get_fields()
        await client.close()
        await client.get_fields()
        await client.close()
        assert fake.calls == 2


class TestErrors:
    async def test_http_error_status(self, tenant: TenantConfig) -> None:
        fake = FakeJira(fail_with=401)
        async with JiraClient(tenant, transport=fake.transport) as client:
            with pytest.raises(UpstreamUnavailable) as exc_info:
                await client.get_fields()
        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "upstream_unavailable"
        assert "HTTP 401" in str(exc_info.value)

    async def test_connection_error(self, tenant: TenantConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with JiraClient(tenant, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UpstreamUnavailable) as exc_info:
                await client.get_fields()
        assert exc_info.value.status_code == 0
        assert "Cannot reach" in str(exc_info.value)

    async def test_html_body_on_success_status(self, tenant: TenantConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>login</html>")

        async with JiraClient(tenant, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UpstreamUnavailable) as exc_info:
                await client.get_fields()
        assert exc_info.value.status_code == 200
        assert "non-JSON" in str(exc_info.value)

    async def test_html_catalog_is_not_cached(self, tenant: TenantConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>login</html>")

        session = SessionState(session_id="s1")
        client = JiraClient(tenant, transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamUnavailable):
            await get_field_catalog(tenant, session, client=client)
        await client.close()
        assert len(session.field_catalog_cache) == 0

    @pytest.mark.parametrize("body", [[], {"unexpected": True}, {"fields": ["summary"]}])
    async def test_malformed_editmeta(self, tenant: TenantConfig, body: object) -> None:
        fake = FakeJira({"/rest/api/2/issue/JOB-1/editmeta": body})
        async with JiraClient(tenant, transport=fake.transport) as client:
            with pytest.raises(UpstreamUnavailable) as exc_info:
                await client.get_editable_field_ids("JOB-1")
        assert "editmeta" in exc_info.value.endpoint

    async def test_non_list_catalog(self, tenant: TenantConfig) -> None:
        fake = FakeJira({"/rest/api/2/field": {"unexpected": True}})
        async with JiraClient(tenant, transport=fake.transport) as client:
            with pytest.raises(UpstreamUnavailable):
                await client.get_fields()
