"""MCP tools for the field catalog and free-form field resolution."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from mcp.types import TextContent, Tool

from jiragate.context import ResolvedContext, build_context
from jiragate.fields import FieldCatalog, FieldDescriptor, get_field_catalog, resolve_fields
from jiragate.mcp_tools.common import _schema, _text, _validation_error
from jiragate.types.api import ResolveFieldsResponse


def register() -> tuple[list[Tool], dict[str, Callable[..., Any]]]:
    """Return (tool_definitions, handler_map) for field tools."""
    tools = [
        Tool(
            name="list_custom_fields",
            description="List the fields of a Jira instance grouped by type, with their ids",
            inputSchema=_schema(
                {
                    "projectKey": {"type": "string", "description": "Project key used to pick the instance"},
                    "showSystemFields": {
                        "type": "boolean",
                        "description": "Include system fields as well as custom fields (default false)",
                    },
                }
            ),
        ),
        Tool(
            name="resolve_fields",
            description=(
                "Resolve field names (e.g. 'Story Points', 'story-points') to field ids and "
                "coerce their values. Unresolved fields are reported with suggestions."
            ),
            inputSchema=_schema(
                {
                    "fields": {
                        "type": "object",
                        "description": "Map of field name or id to value",
                        "additionalProperties": True,
                    },
                    "projectKey": {"type": "string", "description": "Project key used to pick the instance"},
                    "issue_key": {
                        "type": "string",
                        "description": "Issue the fields are for; also checks they are editable on it",
                    },
                },
                required=["fields"],
            ),
        ),
    ]
    handlers: dict[str, Callable[..., Any]] = {
        "list_custom_fields": _handle_list_custom_fields,
        "resolve_fields": _handle_resolve_fields,
    }
    return tools, handlers


def _configured_roles(ctx: ResolvedContext) -> dict[str, str]:
    roles = {
        ctx.story_points_field: "story points",
        ctx.sprint_field: "sprint",
        ctx.epic_link_field: "epic link",
        ctx.rank_field: "rank",
    }
    return {field_id: role for field_id, role in roles.items() if field_id}


def _format_catalog(ctx: ResolvedContext, catalog: FieldCatalog, *, show_system: bool) -> str:
    shown = [fd for fd in catalog if show_system or fd.is_custom]
    roles = _configured_roles(ctx)
    grouped: dict[str, list[FieldDescriptor]] = {}
    for fd in shown:
        grouped.setdefault(fd.schema_type, []).append(fd)

    title = "Fields" if show_system else "Custom Fields"
    lines = [f"# {title} for instance {ctx.tenant_id}", ""]
    if ctx.config_guidance:
        lines += [ctx.config_guidance, ""]
    lines += [f"{len(shown)} of {len(catalog)} fields shown.", ""]
    for schema_type in sorted(grouped):
        lines.append(f"## {schema_type}")
        for fd in sorted(grouped[schema_type], key=lambda f: f.display_name.lower()):
            role = f" (configured as {roles[fd.id]})" if fd.id in roles else ""
            lines.append(f"- **{fd.display_name}**: `{fd.id}`{role}")
        lines.append("")
    return "\n".join(lines)


async def _handle_list_custom_fields(arguments: dict[str, Any]) -> list[TextContent]:
    from jiragate.mcp_server import _get_session

    session = _get_session()
    ctx = await build_context(arguments, session=session)
    catalog = await get_field_catalog(ctx.tenant, session)
    return _text(_format_catalog(ctx, catalog, show_system=bool(arguments.get("showSystemFields"))))


async def _handle_resolve_fields(arguments: dict[str, Any]) -> list[TextContent]:
    from jiragate.mcp_server import _get_session

    values = arguments.get("fields")
    if not isinstance(values, dict):
        return _validation_error("fields must be an object mapping field names to values")

    session = _get_session()
    ctx = await build_context(arguments, session=session)
    catalog = await get_field_catalog(ctx.tenant, session)

    editable = None
    issue_key = arguments.get("issue_key")
    if issue_key:
        async with ctx.client() as client:
            editable = await client.get_editable_field_ids(issue_key)

    batch = resolve_fields(values, catalog, editable=editable)
    response = ResolveFieldsResponse(
        tenant=ctx.tenant_id,
        project=ctx.project_key,
        fields=batch.fields,
        resolutions=[r.to_dict() for r in batch.resolutions],
        failures=batch.failure_dicts(),
    )
    return _text(response)
