"""Compose registry, tenant selection, and defaults into one request context.

``build_context`` is the only entry point tool handlers use. Handlers get a
frozen ``ResolvedContext`` and never touch raw configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from jiragate import config
from jiragate.client import JiraClient
from jiragate.config import CONFIG_FILENAME, Credential, FieldIdDefaults, ProjectMapping, RegistryState, TenantConfig
from jiragate.errors import ProjectKeyRequired
from jiragate.session import SessionState
from jiragate.tenants import SelectionRule, resolve_tenant

logger = logging.getLogger(__name__)

ISSUE_KEY_SEPARATOR = "-"
DEFAULT_SOURCE_KEY = "<default>"


@dataclass(frozen=True)
class ToolOptions:
    requires_project: bool = False
    extract_project_from_issue_key: bool = True
    default_project_key: str | None = None


@dataclass(frozen=True)
class Endpoints:
    base: str
    rest: str
    agile: str

    @classmethod
    def for_tenant(cls, tenant: TenantConfig) -> Endpoints:
        return cls(base=tenant.base_endpoint, rest=tenant.rest_endpoint, agile=tenant.agile_endpoint)


@dataclass(frozen=True)
class ResolvedContext:
    tenant_id: str
    endpoints: Endpoints
    credential: Credential
    project_key: str | None
    field_defaults: Mapping[str, Any]
    field_ids: FieldIdDefaults
    tenant: TenantConfig = field(repr=False, compare=False)
    allowed_projects: tuple[str, ...] = ()
    rule: SelectionRule = "explicit"
    config_source: str = ""
    config_guidance: str | None = None

    @property
    def story_points_field(self) -> str | None:
        return self.field_ids.story_points_field

    @property
    def sprint_field(self) -> str | None:
        return self.field_ids.sprint_field

    @property
    def epic_link_field(self) -> str | None:
        return self.field_ids.epic_link_field

    @property
    def rank_field(self) -> str | None:
        return self.field_ids.rank_field

    def client(self, **kwargs: Any) -> JiraClient:
        """Open a REST client bound to this context's tenant."""
        return JiraClient(self.tenant, **kwargs)


def _arg(raw_args: Mapping[str, Any], *names: str) -> str | None:
    for name in names:
        value = raw_args.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_project_key(raw_args: Mapping[str, Any], options: ToolOptions = ToolOptions()) -> str | None:
    """Explicit key, then the prefix of an issue or epic key, then the default."""
    explicit = _arg(raw_args, "projectKey", "project_key")
    if explicit:
        return explicit

    if options.extract_project_from_issue_key:
        for names in (("issue_key", "issueKey"), ("epicKey", "epic_key")):
            key = _arg(raw_args, *names)
            if key and ISSUE_KEY_SEPARATOR in key:
                return key.split(ISSUE_KEY_SEPARATOR, 1)[0]

    if options.default_project_key:
        return options.default_project_key
    if options.requires_project:
        raise ProjectKeyRequired()
    return None


def resolve_field_ids(tenant: TenantConfig, mapping: ProjectMapping | None) -> FieldIdDefaults:
    """Project entry, then project ``defaultFields``, then tenant ``defaultFields``."""
    if mapping is None:
        return tenant.default_fields
    return mapping.field_overrides.or_else(mapping.default_fields).or_else(tenant.default_fields)


def layer_field_defaults(tenant: TenantConfig, mapping: ProjectMapping | None) -> Mapping[str, Any]:
    merged = dict(tenant.field_defaults)
    if mapping is not None:
        merged.update(mapping.field_defaults)
    return MappingProxyType(merged)


# ---------------------------------------------------------------------------
# Config guidance
# ---------------------------------------------------------------------------


def check_required_fields(field_ids: FieldIdDefaults) -> list[str]:
    return field_ids.missing()


_IMPACT = {
    "storyPointsField": "Story points operations will not work",
    "sprintField": "Sprint-related operations may fail",
    "epicLinkField": "Epic linking operations will not work",
}


def guidance_for(tenant_id: str, project_key: str, missing: list[str]) -> str:
    """Markdown telling the agent how to pin the missing field ids."""
    entries = ",\n".join(f'      "{name}": "customfield_XXXXX"' for name in missing)
    lines = [
        f'**Missing field configuration** for project "{project_key}" in instance "{tenant_id}".',
        "",
        f"Missing fields: {', '.join(missing)}",
        "",
        "Run `list_custom_fields` to find the field ids, then add them to your "
        f"{CONFIG_FILENAME}:",
        "",
        "```json",
        "{",
        '  "projects": {',
        f'    "{project_key}": {{',
        f'      "instance": "{tenant_id}",',
        entries,
        "    }",
        "  }",
        "}",
        "```",
        "",
        "Impact:",
    ]
    lines.extend(f"- {_IMPACT[name]}" for name in missing if name in _IMPACT)
    return "\n".join(lines) + "\n"


def _first_access_guidance(
    session: SessionState, tenant_id: str, project_key: str, field_ids: FieldIdDefaults
) -> str | None:
    try:
        if not session.track_project_access(tenant_id, project_key):
            return None
        missing = check_required_fields(field_ids)
        return guidance_for(tenant_id, project_key, missing) if missing else None
    except Exception:
        # Guidance is advisory; the request goes ahead without it.
        logger.warning("Config guidance check failed for %s/%s", tenant_id, project_key, exc_info=True)
        return None


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


async def get_registry(
    hint: str | None = None,
    session: SessionState | None = None,
    env: Mapping[str, str] | None = None,
) -> RegistryState:
    """Session-cached registry for *hint*, or the process-global one without a session."""
    if session is None:
        return await config.global_registry.get(hint, env)

    async def _load() -> RegistryState:
        return await config.load_registry(hint, env)

    key = str(Path(hint).expanduser()) if hint else DEFAULT_SOURCE_KEY
    return await session.registry_cache.get_or_load(key, _load)


async def build_context(
    raw_args: Mapping[str, Any] | None = None,
    *,
    session: SessionState | None = None,
    options: ToolOptions = ToolOptions(),
    env: Mapping[str, str] | None = None,
) -> ResolvedContext:
    """Resolve project, registry, and tenant for one tool call.

    Config and tenant errors propagate; no partial context is returned.
    """
    args = raw_args or {}
    project_key = extract_project_key(args, options)
    registry = await get_registry(_arg(args, "working_dir"), session, env)
    selection = resolve_tenant(registry, project_key, _arg(args, "instance", "tenant"))
    tenant = selection.tenant
    mapping = selection.project_defaults
    field_ids = resolve_field_ids(tenant, mapping)

    guidance = None
    if session is not None and project_key:
        guidance = _first_access_guidance(session, tenant.id, project_key, field_ids)

    logger.debug("Resolved project %s to instance %s via %s", project_key, tenant.id, selection.rule)
    return ResolvedContext(
        tenant_id=tenant.id,
        endpoints=Endpoints.for_tenant(tenant),
        credential=tenant.credential,
        project_key=project_key,
        field_defaults=layer_field_defaults(tenant, mapping),
        field_ids=field_ids,
        allowed_projects=tenant.projects,
        rule=selection.rule,
        config_source=registry.source,
        config_guidance=guidance,
        tenant=tenant,
    )
