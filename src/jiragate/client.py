"""Tenant-bound async client for the Jira REST and Agile APIs.

One client per tenant, lazily opened, reused for the life of a request or
session. No retries here: a failed call surfaces as UpstreamUnavailable and
the caller (or the agent) decides whether to try again.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx

from jiragate.config import AGILE_API_PATH, REST_API_PATH, TenantConfig
from jiragate.errors import UpstreamUnavailable
from jiragate.types.core import RawField

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)

ApiFamily = Literal["rest", "agile"]
_API_PREFIX: dict[str, str] = {"rest": REST_API_PATH, "agile": AGILE_API_PATH}


class JiraClient:
    """Pooled HTTP client for one tenant.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        tenant: TenantConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.tenant = tenant
        self._transport = transport
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> JiraClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.tenant.base_endpoint,
                auth=self.tenant.credential.as_auth(),
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        api: ApiFamily = "rest",
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> Any:
        """Send one request and decode the JSON body (None for empty bodies)."""
        url = _API_PREFIX[api] + path
        endpoint = f"{method} {url}"
        try:
            resp = await self._get_client().request(method, url, params=params, json=json_data)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("%s on instance %s failed with %d", endpoint, self.tenant.id, status)
            raise UpstreamUnavailable(
                f"{endpoint} on instance '{self.tenant.id}' failed with HTTP {status}",
                endpoint=endpoint,
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s on instance %s failed: %s", endpoint, self.tenant.id, exc)
            raise UpstreamUnavailable(
                f"Cannot reach Jira instance '{self.tenant.id}' at {self.tenant.base_endpoint}: {exc}",
                endpoint=endpoint,
            ) from exc
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("%s on instance %s returned a non-JSON body", endpoint, self.tenant.id)
            raise UpstreamUnavailable(
                f"{endpoint} on instance '{self.tenant.id}' returned a non-JSON response "
                f"(HTTP {resp.status_code}); check the instance URL and credentials",
                endpoint=endpoint,
                status_code=resp.status_code,
            ) from exc

    async def get(self, path: str, *, api: ApiFamily = "rest", params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, api=api, params=params)

    async def put(self, path: str, data: Any, *, api: ApiFamily = "rest") -> Any:
        return await self.request("PUT", path, api=api, json_data=data)

    async def get_fields(self) -> list[RawField]:
        data = await self.get("/field")
        if not isinstance(data, list):
            msg = f"GET /field on instance '{self.tenant.id}' returned {type(data).__name__}, expected a list"
            raise UpstreamUnavailable(msg, endpoint=f"GET {REST_API_PATH}/field")
        return data

    async def get_editable_field_ids(self, issue_key: str) -> set[str]:
        """Field ids on the issue's edit screen."""
        path = f"/issue/{issue_key}/editmeta"
        data = await self.get(path)
        fields = data.get("fields") if isinstance(data, dict) else None
        if not isinstance(fields, dict):
            msg = f"GET {path} on instance '{self.tenant.id}' returned no field map"
            raise UpstreamUnavailable(msg, endpoint=f"GET {REST_API_PATH}{path}")
        return set(fields)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
