"""TypedDicts for MCP tool responses."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict


class ErrorResponse(TypedDict):
    """Standard error envelope returned by MCP error paths."""

    error: str
    code: str


class FieldResolutionDict(TypedDict):
    input: str
    resolved: str
    match_kind: str
    field_name: str


class FieldFailureDict(TypedDict):
    input: str
    error: str
    suggestions: NotRequired[list[str]]


class ResolveFieldsResponse(TypedDict):
    tenant: str
    project: str | None
    fields: dict[str, Any]
    resolutions: list[FieldResolutionDict]
    failures: list[FieldFailureDict]
