"""Pure helpers shared across MCP tool modules.

This module has NO dependency on ``mcp_server`` module globals, so it can
be imported freely without triggering circular-import issues.
"""

from __future__ import annotations

import json
from typing import Any

from mcp.types import TextContent

# Every tool accepts these two so agents can steer config discovery and tenant choice.
COMMON_PROPERTIES: dict[str, Any] = {
    "working_dir": {
        "type": "string",
        "description": "Directory (or file) to look for .jira-config.json in",
    },
    "instance": {
        "type": "string",
        "description": "Jira instance to use; overrides project mapping and defaults",
    },
}


def _text(content: object) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    """Object input schema with the common properties merged in."""
    schema: dict[str, Any] = {"type": "object", "properties": {**COMMON_PROPERTIES, **properties}}
    if required:
        schema["required"] = required
    return schema


def _validation_error(message: str) -> list[TextContent]:
    return _text({"error": message, "code": "validation_error"})
