"""Instance registry: configured Jira tenants and project-to-tenant mappings.

Config lives in ``.jira-config.json``. The loader walks an ordered list of
candidate locations and takes the first file that parses into a known shape;
order encodes precedence. Legacy single-project files are upgraded into the
multi-tenant shape, and bare ``JIRA_*`` environment credentials are the last
resort.

Structural problems (a project pointing at an unknown tenant) are fatal.
Credential oddities are only warnings: the backend is the authority on
whether a token works.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from jiragate.errors import ConfigIncomplete, ConfigInvalid, ConfigNotFound
from jiragate.types.core import (
    DefaultFieldIds,
    LegacyConfigFile,
    MultiTenantConfigFile,
    ProjectEntryDict,
    TenantEntryDict,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".jira-config.json"
CONFIG_ENV_VAR = "JIRAGATE_CONFIG"
USER_CONFIG_DIR = Path.home() / ".jiragate"
DEFAULT_TENANT_ID = "default"
ENV_SOURCE = "environment variables"

ENV_EMAIL = "JIRA_EMAIL"
ENV_API_TOKEN = "JIRA_API_TOKEN"
ENV_DOMAIN = "JIRA_DOMAIN"

REST_API_PATH = "/rest/api/2"
AGILE_API_PATH = "/rest/agile/1.0"

_PLACEHOLDER_TOKENS = frozenset({"TEST_TOKEN", "YOUR_API_TOKEN"})
_MIN_TOKEN_LENGTH = 20

_EMPTY: Mapping[str, Any] = MappingProxyType({})


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """Static basic-auth credential for one tenant. The token never reprs."""

    email: str
    api_token: str = field(repr=False)

    def as_auth(self) -> tuple[str, str]:
        return (self.email, self.api_token)


@dataclass(frozen=True)
class FieldIdDefaults:
    """Well-known custom field ids a tenant or project pins explicitly."""

    story_points_field: str | None = None
    sprint_field: str | None = None
    epic_link_field: str | None = None
    rank_field: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | DefaultFieldIds | None) -> FieldIdDefaults:
        data = data or {}
        return cls(
            story_points_field=data.get("storyPointsField") or None,
            sprint_field=data.get("sprintField") or None,
            epic_link_field=data.get("epicLinkField") or None,
            rank_field=data.get("rankField") or None,
        )

    def or_else(self, fallback: FieldIdDefaults) -> FieldIdDefaults:
        """Fill unset ids from *fallback*; ids set here win."""
        return FieldIdDefaults(
            story_points_field=self.story_points_field or fallback.story_points_field,
            sprint_field=self.sprint_field or fallback.sprint_field,
            epic_link_field=self.epic_link_field or fallback.epic_link_field,
            rank_field=self.rank_field or fallback.rank_field,
        )

    def missing(self) -> list[str]:
        """Config keys of the ids every project is expected to pin."""
        wanted = (
            ("storyPointsField", self.story_points_field),
            ("sprintField", self.sprint_field),
            ("epicLinkField", self.epic_link_field),
        )
        return [name for name, value in wanted if not value]


@dataclass(frozen=True)
class TenantConfig:
    id: str
    base_endpoint: str
    credential: Credential
    domain: str = ""
    projects: tuple[str, ...] = ()
    field_defaults: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    default_fields: FieldIdDefaults = FieldIdDefaults()

    @property
    def rest_endpoint(self) -> str:
        return self.base_endpoint + REST_API_PATH

    @property
    def agile_endpoint(self) -> str:
        return self.base_endpoint + AGILE_API_PATH


@dataclass(frozen=True)
class ProjectMapping:
    project_key: str
    tenant_id: str
    field_overrides: FieldIdDefaults = FieldIdDefaults()
    field_defaults: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    default_fields: FieldIdDefaults = FieldIdDefaults()


@dataclass(frozen=True)
class RegistryState:
    """All tenants and mappings from one config source.

    Construction enforces that every mapping (and the default) names a
    configured tenant.
    """

    tenants: Mapping[str, TenantConfig]
    projects: Mapping[str, ProjectMapping]
    default_tenant_id: str | None = None
    source: str = ""
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        errors = [
            f"Project '{key}' references undefined instance '{mapping.tenant_id}'"
            for key, mapping in self.projects.items()
            if mapping.tenant_id not in self.tenants
        ]
        if self.default_tenant_id is not None and self.default_tenant_id not in self.tenants:
            errors.append(f"Default instance '{self.default_tenant_id}' is not defined in instances")
        if errors:
            raise ConfigInvalid(self.source or "(in-memory registry)", errors)
        object.__setattr__(self, "tenants", MappingProxyType(dict(self.tenants)))
        object.__setattr__(self, "projects", MappingProxyType(dict(self.projects)))

    def tenant_ids(self) -> list[str]:
        return list(self.tenants)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _tenant_section(raw: Mapping[str, Any]) -> Any:
    return raw["instances"] if "instances" in raw else raw.get("tenants")


def _default_tenant_key(raw: Mapping[str, Any]) -> str | None:
    for key in ("defaultInstance", "defaultTenant", "defaultTenantId"):
        value = raw.get(key)
        if value:
            return str(value)
    return None


def _project_tenant_ref(entry: Mapping[str, Any]) -> str | None:
    value = entry.get("instance") or entry.get("tenant")
    return str(value) if value else None


def _validate_tenant_entry(tenant_id: str, entry: Mapping[str, Any], result: ValidationResult) -> None:
    email = str(entry.get("email") or "").strip()
    if not email:
        result.warnings.append(f"Instance '{tenant_id}': email is missing")
    elif "@" not in email:
        result.warnings.append(f"Instance '{tenant_id}': email format may be invalid")

    token = str(entry.get("apiToken") or "").strip()
    if not token:
        result.warnings.append(f"Instance '{tenant_id}': apiToken is missing")
    elif token in _PLACEHOLDER_TOKENS or "YOUR_" in token:
        result.warnings.append(f"Instance '{tenant_id}': apiToken appears to be a placeholder")
    elif len(token) < _MIN_TOKEN_LENGTH:
        result.warnings.append(f"Instance '{tenant_id}': apiToken appears too short to be valid")

    domain = str(entry.get("domain") or "").strip()
    if not domain and not entry.get("baseUrl"):
        result.warnings.append(f"Instance '{tenant_id}': domain or baseUrl is missing")
    elif domain.rstrip("/").lower().endswith("atlassian.net"):
        result.warnings.append(f"Instance '{tenant_id}': domain should not include '.atlassian.net', use just the subdomain")

    allow_list = entry.get("projects")
    if allow_list is not None and (
        not isinstance(allow_list, list) or not all(isinstance(k, str) for k in allow_list)
    ):
        result.errors.append(f"Instance '{tenant_id}': projects must be a list of project keys")


def validate_registry(raw: Mapping[str, Any]) -> ValidationResult:
    """Check a multi-tenant config payload. Pure: no I/O, never raises."""
    result = ValidationResult()
    tenants = _tenant_section(raw)
    if not isinstance(tenants, Mapping) or not tenants:
        result.errors.append("No instances defined in configuration")
        return result

    owners: dict[str, list[str]] = {}
    for tenant_id, entry in tenants.items():
        if not isinstance(entry, Mapping):
            result.errors.append(f"Instance '{tenant_id}': entry must be an object")
            continue
        _validate_tenant_entry(tenant_id, entry, result)
        allow_list = entry.get("projects")
        if isinstance(allow_list, list):
            for key in allow_list:
                owners.setdefault(str(key), []).append(tenant_id)

    for key, listed_in in owners.items():
        if len(listed_in) > 1:
            result.warnings.append(
                f"Project '{key}' is listed by several instances ({', '.join(listed_in)}); '{listed_in[0]}' wins"
            )

    default = _default_tenant_key(raw)
    if default is not None and default not in tenants:
        result.errors.append(f"Default instance '{default}' is not defined in instances")

    projects = raw.get("projects") or {}
    if not isinstance(projects, Mapping):
        result.errors.append("projects must be an object mapping project keys to settings")
        return result
    for key, entry in projects.items():
        if not isinstance(entry, Mapping):
            result.errors.append(f"Project '{key}': entry must be an object")
            continue
        ref = _project_tenant_ref(entry)
        if ref is None:
            result.errors.append(f"Project '{key}' does not name an instance")
        elif ref not in tenants:
            result.errors.append(f"Project '{key}' references undefined instance '{ref}'")
    return result


def format_validation(result: ValidationResult, context: str = "Jira Configuration") -> str:
    """Render a validation result as markdown."""
    lines = [f"# {context} Validation", ""]
    if result.is_valid:
        lines.append("Configuration is valid.")
    else:
        lines.append("Configuration has errors:")
        lines.append("")
        lines.extend(f"{i}. {error}" for i, error in enumerate(result.errors, 1))

    if result.warnings:
        lines += ["", "## Warnings", ""]
        lines.extend(f"{i}. {warning}" for i, warning in enumerate(result.warnings, 1))

    if not result.is_valid:
        lines += [
            "",
            "## How to fix",
            "",
            f"1. Update your {CONFIG_FILENAME} so every project names a configured instance",
            "2. Get API tokens from https://id.atlassian.com/manage-profile/security/api-tokens",
            '3. Use just the subdomain for "domain" (e.g. "mycompany" for mycompany.atlassian.net)',
        ]
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def base_endpoint_for(domain: str = "", base_url: str = "") -> str:
    """Derive the site root: ``acme`` -> ``https://acme.atlassian.net``."""
    if base_url:
        return base_url.rstrip("/")
    domain = domain.strip().rstrip("/")
    if not domain:
        return ""
    if re.match(r"^https?://", domain):
        return domain
    if "." in domain:
        return f"https://{domain}"
    return f"https://{domain}.atlassian.net"


def _frozen_mapping(value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping) and value:
        return MappingProxyType(dict(value))
    return _EMPTY


def tenant_from_dict(tenant_id: str, entry: TenantEntryDict | Mapping[str, Any]) -> TenantConfig:
    domain = str(entry.get("domain") or "")
    return TenantConfig(
        id=tenant_id,
        base_endpoint=base_endpoint_for(domain, str(entry.get("baseUrl") or "")),
        credential=Credential(email=str(entry.get("email") or ""), api_token=str(entry.get("apiToken") or "")),
        domain=domain,
        projects=tuple(entry.get("projects") or ()),
        field_defaults=_frozen_mapping(entry.get("fieldDefaults")),
        default_fields=FieldIdDefaults.from_dict(entry.get("defaultFields")),
    )


def project_from_dict(project_key: str, entry: ProjectEntryDict | Mapping[str, Any]) -> ProjectMapping:
    return ProjectMapping(
        project_key=project_key,
        tenant_id=_project_tenant_ref(entry) or "",
        field_overrides=FieldIdDefaults.from_dict(entry),
        field_defaults=_frozen_mapping(entry.get("fieldDefaults")),
        default_fields=FieldIdDefaults.from_dict(entry.get("defaultFields")),
    )


def _registry_from_multi(raw: MultiTenantConfigFile | Mapping[str, Any], source: str) -> RegistryState:
    validation = validate_registry(raw)
    if not validation.is_valid:
        raise ConfigInvalid(source, validation.errors)
    for warning in validation.warnings:
        logger.warning("Config warning in %s: %s", source, warning)

    tenants = {tid: tenant_from_dict(tid, entry) for tid, entry in _tenant_section(raw).items()}
    projects = {key: project_from_dict(key, entry) for key, entry in (raw.get("projects") or {}).items()}
    return RegistryState(
        tenants=tenants,
        projects=projects,
        default_tenant_id=_default_tenant_key(raw),
        source=source,
        warnings=tuple(validation.warnings),
    )


def _env_credentials(env: Mapping[str, str]) -> tuple[str, str, str]:
    return (env.get(ENV_EMAIL, ""), env.get(ENV_API_TOKEN, ""), env.get(ENV_DOMAIN, ""))


def _upgrade_legacy(raw: LegacyConfigFile | Mapping[str, Any], source: str, env: Mapping[str, str]) -> RegistryState:
    env_email, env_token, env_domain = _env_credentials(env)
    email = str(raw.get("email") or env_email)
    token = str(raw.get("apiToken") or env_token)
    domain = str(raw.get("domain") or env_domain)
    missing = [name for name, value in ((ENV_EMAIL, email), (ENV_API_TOKEN, token), (ENV_DOMAIN, domain)) if not value]
    if missing:
        raise ConfigIncomplete(source, missing)

    project_key = str(raw["projectKey"])
    tenant = tenant_from_dict(DEFAULT_TENANT_ID, {"email": email, "apiToken": token, "domain": domain})
    mapping = ProjectMapping(
        project_key=project_key,
        tenant_id=DEFAULT_TENANT_ID,
        field_overrides=FieldIdDefaults.from_dict(raw),
    )
    logger.info("Converted legacy config %s into default instance for project %s", source, project_key)
    return RegistryState(
        tenants={DEFAULT_TENANT_ID: tenant},
        projects={project_key: mapping},
        default_tenant_id=DEFAULT_TENANT_ID,
        source=source,
    )


def parse_registry(raw: Any, source: str, env: Mapping[str, str] | None = None) -> RegistryState | None:
    """Build a registry from a decoded config payload.

    Returns None when the payload has neither the multi-tenant nor the legacy
    shape, so the caller can move on to the next candidate.
    """
    env = os.environ if env is None else env
    if not isinstance(raw, Mapping):
        return None
    if "instances" in raw or "tenants" in raw:
        return _registry_from_multi(raw, source)
    if raw.get("projectKey"):
        return _upgrade_legacy(raw, source, env)
    return None


def registry_from_env(env: Mapping[str, str] | None = None) -> RegistryState | None:
    """Synthesize a single-tenant registry from ``JIRA_*`` variables, if all are set."""
    env = os.environ if env is None else env
    email, token, domain = _env_credentials(env)
    if not (email and token and domain):
        return None
    tenant = tenant_from_dict(DEFAULT_TENANT_ID, {"email": email, "apiToken": token, "domain": domain})
    return RegistryState(
        tenants={DEFAULT_TENANT_ID: tenant},
        projects={},
        default_tenant_id=DEFAULT_TENANT_ID,
        source=ENV_SOURCE,
    )


def validate_source(raw: Any, source: str, env: Mapping[str, str] | None = None) -> ValidationResult:
    """Validate any accepted config shape. Load failures come back as errors."""
    if isinstance(raw, Mapping) and ("instances" in raw or "tenants" in raw):
        return validate_registry(raw)
    result = ValidationResult()
    try:
        registry = parse_registry(raw, source, env)
    except (ConfigInvalid, ConfigIncomplete) as exc:
        result.errors.append(str(exc))
        return result
    if registry is None:
        result.errors.append(f"{source} has neither 'instances' nor 'projectKey'")
    return result


# ---------------------------------------------------------------------------
# Discovery and loading
# ---------------------------------------------------------------------------


def _as_config_file(path: Path) -> Path:
    """A ``.json`` path names the file itself; anything else is a directory."""
    path = path.expanduser()
    if path.suffix == ".json":
        return path
    return path / CONFIG_FILENAME


def candidate_paths(hint: str | Path | None = None, env: Mapping[str, str] | None = None) -> list[Path]:
    """Ordered, deduplicated config locations. Earlier entries take precedence."""
    env = os.environ if env is None else env
    raw: list[Path] = []
    if hint:
        raw.append(_as_config_file(Path(hint)))
    if env.get(CONFIG_ENV_VAR):
        raw.append(_as_config_file(Path(env[CONFIG_ENV_VAR])))
    cwd = Path.cwd()
    raw += [cwd / CONFIG_FILENAME, cwd.parent / CONFIG_FILENAME, USER_CONFIG_DIR / CONFIG_FILENAME]

    seen: set[str] = set()
    result: list[Path] = []
    for path in raw:
        key = os.path.abspath(str(path))
        if key in seen:
            continue
        seen.add(key)
        result.append(Path(key))
    return result


async def _read_json(path: Path) -> Any | None:
    """Decoded JSON at *path*, or None when missing, unreadable or corrupt."""
    try:
        text = await asyncio.to_thread(path.read_text)
    except FileNotFoundError:
        logger.debug("No config at %s", path)
        return None
    except OSError as exc:
        logger.warning("Cannot read config %s: %s", path, exc)
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Corrupt config file %s, skipping: %s", path, exc)
        return None


async def find_config_source(
    hint: str | Path | None = None, env: Mapping[str, str] | None = None
) -> tuple[Path, Any] | None:
    """First candidate that exists and decodes, with its payload."""
    for path in candidate_paths(hint, env):
        raw = await _read_json(path)
        if raw is not None:
            return path, raw
    return None


async def load_registry(hint: str | Path | None = None, env: Mapping[str, str] | None = None) -> RegistryState:
    """Load the first config source that parses, else fall back to the environment.

    Raises ConfigInvalid / ConfigIncomplete as soon as a recognized source is
    broken, and ConfigNotFound (listing every attempt) when nothing resolves.
    """
    env = os.environ if env is None else env
    attempted: list[str] = []
    for path in candidate_paths(hint, env):
        attempted.append(str(path))
        raw = await _read_json(path)
        if raw is None:
            continue

        registry = parse_registry(raw, str(path), env)
        if registry is None:
            logger.warning("Config %s has neither instances nor projectKey, skipping", path)
            continue
        logger.info(
            "Loaded config from %s (instances: %s; projects: %s)",
            path,
            ", ".join(registry.tenants),
            ", ".join(registry.projects) or "none",
        )
        return registry

    fallback = registry_from_env(env)
    if fallback is not None:
        logger.info("No config file found, using %s", ENV_SOURCE)
        return fallback

    logger.error("Failed to load config from any location: %s", attempted)
    raise ConfigNotFound(attempted)


class GlobalRegistry:
    """Write-once registry shared by every request that has no session.

    The first successful load wins for the life of the process, whatever
    hints later callers pass. Concurrent first loads may both read the
    config; only the first to finish is kept.
    """

    def __init__(self) -> None:
        self._state: RegistryState | None = None

    @property
    def state(self) -> RegistryState | None:
        return self._state

    def set(self, state: RegistryState) -> None:
        if self._state is not None:
            msg = f"Global registry already loaded from {self._state.source}"
            raise RuntimeError(msg)
        self._state = state

    async def get(self, hint: str | Path | None = None, env: Mapping[str, str] | None = None) -> RegistryState:
        if self._state is not None:
            logger.debug("Using cached global config from %s", self._state.source)
            return self._state
        state = await load_registry(hint, env)
        if self._state is None:
            self.set(state)
        return self._state or state


global_registry = GlobalRegistry()


def describe_registry(registry: RegistryState) -> dict[str, list[dict[str, Any]]]:
    """Tenants and mappings as plain dicts, tokens omitted."""
    return {
        "instances": [
            {
                "name": tenant.id,
                "endpoint": tenant.base_endpoint,
                "email": tenant.credential.email,
                "configured_projects": list(tenant.projects),
                "is_default": tenant.id == registry.default_tenant_id,
            }
            for tenant in registry.tenants.values()
        ],
        "projects": [
            {"project_key": mapping.project_key, "instance": mapping.tenant_id}
            for mapping in registry.projects.values()
        ],
    }
