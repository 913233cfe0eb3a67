# IMPORT CONSTRAINT: types/ modules only import from typing, stdlib, and each other.
# Never import config.py, fields.py, or anything above them.
"""Typed shapes for raw config files and tool responses."""

from __future__ import annotations

from jiragate.types.api import (
    ErrorResponse,
    FieldFailureDict,
    FieldResolutionDict,
    ResolveFieldsResponse,
)
from jiragate.types.core import (
    DefaultFieldIds,
    LegacyConfigFile,
    MultiTenantConfigFile,
    ProjectEntryDict,
    RawField,
    TenantEntryDict,
)

__all__ = [
    "DefaultFieldIds",
    "ErrorResponse",
    "FieldFailureDict",
    "FieldResolutionDict",
    "LegacyConfigFile",
    "MultiTenantConfigFile",
    "ProjectEntryDict",
    "RawField",
    "ResolveFieldsResponse",
    "TenantEntryDict",
]
