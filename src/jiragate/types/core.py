"""Shapes of .jira-config.json and of the backend's field catalog payload."""

from __future__ import annotations

from typing import Any, TypedDict


class DefaultFieldIds(TypedDict, total=False):
    storyPointsField: str
    sprintField: str
    epicLinkField: str
    rankField: str


class TenantEntryDict(TypedDict, total=False):
    """One entry under ``instances`` (or ``tenants``)."""

    email: str
    apiToken: str
    domain: str
    baseUrl: str
    projects: list[str]
    fieldDefaults: dict[str, Any]
    defaultFields: DefaultFieldIds


class ProjectEntryDict(TypedDict, total=False):
    """One entry under ``projects``."""

    instance: str
    tenant: str
    storyPointsField: str
    sprintField: str
    epicLinkField: str
    rankField: str
    fieldDefaults: dict[str, Any]
    defaultFields: DefaultFieldIds


class MultiTenantConfigFile(TypedDict, total=False):
    instances: dict[str, TenantEntryDict]
    tenants: dict[str, TenantEntryDict]
    projects: dict[str, ProjectEntryDict]
    defaultInstance: str
    defaultTenant: str
    defaultTenantId: str


class LegacyConfigFile(TypedDict, total=False):
    """Pre-multi-tenant shape: one project, credentials from the environment."""

    projectKey: str
    storyPointsField: str
    sprintField: str
    epicLinkField: str
    email: str
    apiToken: str
    domain: str


class RawFieldSchema(TypedDict, total=False):
    type: str
    items: str
    system: str
    custom: str


class RawField(TypedDict, total=False):
    """One element of ``GET /rest/api/2/field``."""

    id: str
    name: str
    custom: bool
    schema: RawFieldSchema
