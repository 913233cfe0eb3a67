"""MCP tools for inspecting the instance registry."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from mcp.types import TextContent, Tool

from jiragate.config import (
    ENV_SOURCE,
    candidate_paths,
    describe_registry,
    find_config_source,
    format_validation,
    registry_from_env,
    validate_source,
)
from jiragate.context import get_registry
from jiragate.errors import ConfigNotFound
from jiragate.mcp_tools.common import _schema, _text


def register() -> tuple[list[Tool], dict[str, Callable[..., Any]]]:
    """Return (tool_definitions, handler_map) for registry tools."""
    tools = [
        Tool(
            name="list_instances",
            description="List configured Jira instances and which projects map to each",
            inputSchema=_schema({}),
        ),
        Tool(
            name="validate_config",
            description="Validate .jira-config.json and report errors, warnings and how to fix them",
            inputSchema=_schema({}),
        ),
    ]
    handlers: dict[str, Callable[..., Any]] = {
        "list_instances": _handle_list_instances,
        "validate_config": _handle_validate_config,
    }
    return tools, handlers


async def _handle_list_instances(arguments: dict[str, Any]) -> list[TextContent]:
    from jiragate.mcp_server import _get_session

    registry = await get_registry(arguments.get("working_dir"), _get_session())
    described = describe_registry(registry)

    lines = ["# Jira Instances", "", f"Config source: `{registry.source}`", ""]
    for inst in described["instances"]:
        marker = " (default)" if inst["is_default"] else ""
        lines.append(f"## {inst['name']}{marker}")
        lines.append(f"- **URL**: {inst['endpoint']}")
        lines.append(f"- **Email**: {inst['email']}")
        if inst["configured_projects"]:
            lines.append(f"- **Projects**: {', '.join(inst['configured_projects'])}")
        lines.append("")

    if described["projects"]:
        lines += ["## Project Mappings", ""]
        lines.extend(f"- **{p['project_key']}** -> {p['instance']}" for p in described["projects"])
        lines.append("")

    if registry.warnings:
        lines += ["## Warnings", ""]
        lines.extend(f"- {w}" for w in registry.warnings)
        lines.append("")
    return _text("\n".join(lines))


async def _handle_validate_config(arguments: dict[str, Any]) -> list[TextContent]:
    hint = arguments.get("working_dir")
    found = await find_config_source(hint)
    if found is None:
        if registry_from_env() is not None:
            return _text(f"# Jira Configuration Validation\n\nNo config file found; using {ENV_SOURCE}.\n")
        raise ConfigNotFound([str(p) for p in candidate_paths(hint)])

    path, raw = found
    result = validate_source(raw, str(path))
    return _text(format_validation(result, f"Jira Configuration ({path})"))
