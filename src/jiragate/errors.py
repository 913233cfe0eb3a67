"""Error kinds raised by the resolution layer.

Every error carries a machine-readable ``code`` so the MCP surface can turn
it into an ``{"error": ..., "code": ...}`` response without string matching.
"""

from __future__ import annotations

from collections.abc import Sequence

from jiragate.types.api import ErrorResponse


class GatewayError(Exception):
    """Base class for all jiragate resolution errors."""

    code = "gateway_error"

    def to_dict(self) -> ErrorResponse:
        return ErrorResponse(error=str(self), code=self.code)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigNotFound(GatewayError):
    """No config source resolved and no environment fallback available."""

    code = "config_not_found"

    def __init__(self, attempted: Sequence[str]) -> None:
        self.attempted = list(attempted)
        tried = ", ".join(self.attempted) if self.attempted else "(none)"
        super().__init__(
            f"Failed to load Jira configuration. Tried locations: {tried}. "
            "Either provide a .jira-config.json file or set JIRA_EMAIL, JIRA_API_TOKEN, "
            "and JIRA_DOMAIN environment variables."
        )


class ConfigInvalid(GatewayError):
    """A config source parsed but violates a structural invariant."""

    code = "config_invalid"

    def __init__(self, source: str, errors: Sequence[str]) -> None:
        self.source = source
        self.errors = list(errors)
        super().__init__(f"Invalid Jira configuration in {source}: {'; '.join(self.errors)}")


class ConfigIncomplete(GatewayError):
    """A legacy single-project config without the credentials to upgrade it."""

    code = "config_incomplete"

    def __init__(self, source: str, missing: Sequence[str]) -> None:
        self.source = source
        self.missing = list(missing)
        super().__init__(
            f"Legacy config {source} is missing credentials ({', '.join(self.missing)}). "
            "Set JIRA_EMAIL, JIRA_API_TOKEN, and JIRA_DOMAIN or add them to the file."
        )


# ---------------------------------------------------------------------------
# Tenant selection
# ---------------------------------------------------------------------------


class TenantNotFound(GatewayError):
    code = "tenant_not_found"

    def __init__(self, tenant_id: str, available: Sequence[str]) -> None:
        self.tenant_id = tenant_id
        self.available = list(available)
        super().__init__(f"Instance '{tenant_id}' not found. Available instances: {', '.join(self.available)}")


class TenantAmbiguous(GatewayError):
    code = "tenant_ambiguous"

    def __init__(self, project_key: str | None, available: Sequence[str]) -> None:
        self.project_key = project_key
        self.available = list(available)
        super().__init__(
            f"Unable to determine Jira instance for project '{project_key or ''}'. "
            f"Available instances: {', '.join(self.available)}. "
            "Configure the project in .jira-config.json or pass an instance parameter."
        )


class ProjectKeyRequired(GatewayError):
    code = "project_key_required"

    def __init__(self) -> None:
        super().__init__(
            "Project key is required. Either provide 'projectKey' or pass an issue key it can be derived from."
        )


# ---------------------------------------------------------------------------
# Fields and upstream
# ---------------------------------------------------------------------------


class FieldNotFound(GatewayError):
    """A field reference matched nothing in the tenant's catalog.

    Batch resolution records these alongside successes instead of raising.
    """

    code = "field_not_found"

    def __init__(self, reference: str, suggestions: Sequence[str] = (), reason: str | None = None) -> None:
        self.reference = reference
        self.suggestions = list(suggestions)
        if reason is not None:
            message = reason
        elif self.suggestions:
            message = f'Field "{reference}" not found. Similar fields: {", ".join(self.suggestions)}'
        else:
            message = f'Field "{reference}" not found in Jira instance'
        super().__init__(message)


class UpstreamUnavailable(GatewayError):
    """The backend could not be reached or answered with an error status."""

    code = "upstream_unavailable"

    def __init__(self, message: str, *, endpoint: str = "", status_code: int = 0) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class FieldNotEditable(FieldNotFound):
    """The field exists but is not on the issue's edit screen."""

    code = "field_not_editable"
