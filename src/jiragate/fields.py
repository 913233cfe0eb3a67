"""Field catalog, field-name resolution, and schema-driven value coercion.

Agents name fields loosely ("story points", "Story-Points", "customfield_10016").
``resolve_field`` maps such a reference onto a tenant's live catalog in tiers:

1. exact id, when the reference looks like a raw id and exists verbatim;
2. exact display name, case-insensitive;
3. fuzzy: lower-cased, non-alphanumerics stripped, then equal;
4. partial: either string contains the other, case-insensitive.

Ties inside a tier go to the first field in catalog order.

``coerce_value`` then shapes the value for the field's schema kind. It never
raises; anything it cannot coerce passes through for the backend to judge.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, Literal

from jiragate.client import JiraClient
from jiragate.errors import FieldNotEditable, FieldNotFound
from jiragate.types.api import FieldFailureDict, FieldResolutionDict
from jiragate.types.core import RawField

if TYPE_CHECKING:
    from jiragate.config import TenantConfig
    from jiragate.session import SessionState

logger = logging.getLogger(__name__)

SchemaKind = Literal[
    "number",
    "string",
    "array",
    "date",
    "datetime",
    "option",
    "user",
    "team",
    "option-with-child",
    "any",
    "unknown",
]
SCHEMA_KINDS: frozenset[str] = frozenset(
    {"number", "string", "array", "date", "datetime", "option", "user", "team", "option-with-child", "any"}
)

MatchKind = Literal["exact-id", "exact-name", "fuzzy", "partial"]

ID_PREFIXES = ("customfield_",)
MAX_SUGGESTIONS = 3

_RAW_ID_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_DURATION_RE = re.compile(r"\d+[wdhm]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_TRACKING_IDS = frozenset({"timeoriginalestimate", "timeestimate"})

SYSTEM_FIELD_NAMES = frozenset(
    {
        "summary",
        "description",
        "issuetype",
        "priority",
        "labels",
        "components",
        "versions",
        "fixversions",
        "duedate",
        "assignee",
        "reporter",
        "parent",
        "project",
    }
)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDescriptor:
    id: str
    display_name: str
    schema_type: str = "unknown"
    is_custom: bool = False
    items: str | None = None
    system: str | None = None

    @property
    def kind(self) -> SchemaKind:
        """Schema type folded onto the closed set coercion dispatches on."""
        return self.schema_type if self.schema_type in SCHEMA_KINDS else "unknown"  # type: ignore[return-value]

    @classmethod
    def from_api(cls, raw: RawField | Mapping[str, Any]) -> FieldDescriptor:
        schema = raw.get("schema") or {}
        return cls(
            id=str(raw["id"]),
            display_name=str(raw.get("name") or raw["id"]),
            schema_type=str(schema.get("type") or "unknown"),
            is_custom=bool(raw.get("custom", False)),
            items=schema.get("items"),
            system=schema.get("system"),
        )


FieldCatalog = tuple[FieldDescriptor, ...]


def parse_catalog(raw_fields: Iterable[RawField | Mapping[str, Any]]) -> FieldCatalog:
    catalog = []
    for raw in raw_fields:
        if not isinstance(raw, Mapping) or not raw.get("id"):
            logger.debug("Skipping malformed field catalog entry: %r", raw)
            continue
        catalog.append(FieldDescriptor.from_api(raw))
    return tuple(catalog)


async def get_field_catalog(
    tenant: TenantConfig,
    session: SessionState | None = None,
    *,
    client: JiraClient | None = None,
) -> FieldCatalog:
    """Fetch the tenant's field catalog, once per session.

    Without a session every call goes to the network. Failures raise
    UpstreamUnavailable and leave the session cache untouched.
    """

    async def _fetch() -> FieldCatalog:
        jira = client or JiraClient(tenant)
        try:
            raw = await jira.get_fields()
        finally:
            if client is None:
                await jira.close()
        catalog = parse_catalog(raw)
        logger.debug("Fetched %d fields for instance %s", len(catalog), tenant.id)
        return catalog

    if session is None:
        return await _fetch()
    return await session.field_catalog_cache.get_or_load(tenant.id, _fetch)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMatch:
    field_id: str
    match_kind: MatchKind
    descriptor: FieldDescriptor


def looks_like_field_id(reference: str) -> bool:
    return reference.startswith(ID_PREFIXES) or bool(_RAW_ID_RE.match(reference))


def _fuzzy(text: str) -> str:
    return _NON_ALNUM_RE.sub("", text.lower())


def resolve_field(reference: str, catalog: Iterable[FieldDescriptor]) -> FieldMatch | None:
    """Match *reference* against the catalog; None when no tier matches."""
    fields = tuple(catalog)
    needle = reference.strip().lower()
    if not needle:
        return None

    if looks_like_field_id(reference):
        for fd in fields:
            if fd.id == reference:
                return FieldMatch(fd.id, "exact-id", fd)

    for fd in fields:
        if fd.display_name.lower() == needle:
            return FieldMatch(fd.id, "exact-name", fd)

    fuzzy_needle = _fuzzy(reference)
    if fuzzy_needle:
        for fd in fields:
            if _fuzzy(fd.display_name) == fuzzy_needle:
                return FieldMatch(fd.id, "fuzzy", fd)

    for fd in fields:
        name = fd.display_name.lower()
        if name and (needle in name or name in needle):
            return FieldMatch(fd.id, "partial", fd)

    return None


def suggest_fields(reference: str, catalog: Iterable[FieldDescriptor], limit: int = MAX_SUGGESTIONS) -> list[str]:
    """Display names containing the reference's first three characters."""
    prefix = reference.strip().lower()[:3]
    if not prefix:
        return []
    suggestions: list[str] = []
    for fd in catalog:
        if prefix in fd.display_name.lower() and fd.display_name not in suggestions:
            suggestions.append(fd.display_name)
            if len(suggestions) == limit:
                break
    return suggestions


def require_field(reference: str, catalog: Iterable[FieldDescriptor]) -> FieldMatch:
    """Like resolve_field but raises FieldNotFound (with suggestions) on a miss."""
    fields = tuple(catalog)
    match = resolve_field(reference, fields)
    if match is None:
        raise FieldNotFound(reference, suggest_fields(reference, fields))
    return match


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def _is_time_tracking(descriptor: FieldDescriptor) -> bool:
    return descriptor.id in _TIME_TRACKING_IDS or "time" in (descriptor.system or "")


def _coerce_number(value: Any, descriptor: FieldDescriptor) -> Any:
    if _is_time_tracking(descriptor) or isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        if _DURATION_RE.search(value):
            return value
        try:
            return float(value.strip())
        except ValueError:
            return value
    return value


def _coerce_array(value: Any, descriptor: FieldDescriptor) -> Any:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",")]
    return [value]


def _parse_date_like(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        if _DATE_ONLY_RE.match(text):
            return date.fromisoformat(text)
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _coerce_date(value: Any, descriptor: FieldDescriptor) -> Any:
    parsed = _parse_date_like(value)
    if parsed is None:
        return value
    if isinstance(parsed, datetime):
        return parsed.date().isoformat()
    return parsed.isoformat()


def _coerce_datetime(value: Any, descriptor: FieldDescriptor) -> Any:
    parsed = _parse_date_like(value)
    if parsed is None:
        return value
    if not isinstance(parsed, datetime):
        parsed = datetime(parsed.year, parsed.month, parsed.day, tzinfo=UTC)
    elif parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.isoformat()


_COERCERS: dict[str, Callable[[Any, FieldDescriptor], Any]] = {
    "number": _coerce_number,
    "array": _coerce_array,
    "date": _coerce_date,
    "datetime": _coerce_datetime,
}


def coerce_value(value: Any, descriptor: FieldDescriptor) -> Any:
    """Shape *value* for the descriptor's schema kind. Never raises."""
    coercer = _COERCERS.get(descriptor.kind)
    if coercer is None:
        return value
    return coercer(value, descriptor)


# ---------------------------------------------------------------------------
# Batch resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldResolution:
    input: str
    field_id: str
    match_kind: str
    field_name: str

    def to_dict(self) -> FieldResolutionDict:
        return FieldResolutionDict(
            input=self.input,
            resolved=self.field_id,
            match_kind=self.match_kind,
            field_name=self.field_name,
        )


@dataclass
class FieldBatch:
    """Partial result of resolving a free-form field map.

    ``fields`` is ready to send as the ``fields`` body of an issue update.
    Failures never abort the batch.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    resolutions: list[FieldResolution] = field(default_factory=list)
    failures: list[FieldNotFound] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def failure_dicts(self) -> list[FieldFailureDict]:
        result: list[FieldFailureDict] = []
        for failure in self.failures:
            entry = FieldFailureDict(input=failure.reference, error=str(failure))
            if failure.suggestions:
                entry["suggestions"] = list(failure.suggestions)
            result.append(entry)
        return result


def _find(catalog: FieldCatalog, field_id: str, name: str) -> FieldDescriptor | None:
    for fd in catalog:
        if fd.id == field_id or fd.display_name.lower() == name:
            return fd
    return None


def _resolve_special(key: str, value: Any, catalog: FieldCatalog, batch: FieldBatch) -> bool:
    """Handle fields the backend models as composites. True when consumed."""
    lowered = key.strip().lower()

    if lowered in ("component", "components"):
        items = value if isinstance(value, list | tuple) else [value]
        batch.fields["components"] = [{"name": v} if isinstance(v, str) else v for v in items]
        batch.resolutions.append(FieldResolution(key, "components", "system-field", "Component/s"))
        return True

    if lowered in ("time tracking", "timetracking") and _find(catalog, "timetracking", "time tracking"):
        batch.fields.setdefault("timetracking", {})["originalEstimate"] = value
        batch.resolutions.append(FieldResolution(key, "timetracking", "composite", "Time tracking"))
        return True

    estimates = {
        "original estimate": ("timeoriginalestimate", "originalEstimate", "Original estimate"),
        "originalestimate": ("timeoriginalestimate", "originalEstimate", "Original estimate"),
        "remaining estimate": ("timeestimate", "remainingEstimate", "Remaining estimate"),
        "remainingestimate": ("timeestimate", "remainingEstimate", "Remaining estimate"),
    }
    if lowered in estimates:
        field_id, part, label = estimates[lowered]
        if _find(catalog, field_id, label.lower()):
            batch.fields.setdefault("timetracking", {})[part] = value
            batch.resolutions.append(
                FieldResolution(key, "timetracking", "timetracking-component", f"{label} (via timetracking)")
            )
            return True
    return False


def resolve_fields(
    values: Mapping[str, Any],
    catalog: Iterable[FieldDescriptor],
    *,
    editable: Collection[str] | None = None,
) -> FieldBatch:
    """Resolve and coerce every entry of *values*, collecting failures.

    ``editable`` is the set of field ids on the target issue's edit screen;
    when given, resolved fields outside it are reported instead of sent.
    """
    fields = tuple(catalog)
    batch = FieldBatch()
    for key, value in values.items():
        if value is None:
            batch.failures.append(FieldNotFound(key, reason=f'Value for field "{key}" is null'))
            continue
        if _resolve_special(key, value, fields, batch):
            continue

        match = resolve_field(key, fields)
        if match is None:
            failure = FieldNotFound(key, suggest_fields(key, fields))
            logger.info("Field not resolved: %s", failure)
            batch.failures.append(failure)
            continue

        name = match.descriptor.display_name
        if editable is not None and match.field_id not in editable:
            batch.failures.append(
                FieldNotEditable(
                    key,
                    reason=f'Field "{name}" is not editable on this issue (not on the edit screen or restricted by workflow)',
                )
            )
            continue

        batch.fields[match.field_id] = coerce_value(value, match.descriptor)
        batch.resolutions.append(FieldResolution(key, match.field_id, match.match_kind, name))
        logger.debug("Field resolved: %r -> %s (%s) [%s]", key, name, match.field_id, match.match_kind)
    return batch


def split_system_fields(values: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a field map into (system, custom). System keys come back lower-cased."""
    system: dict[str, Any] = {}
    custom: dict[str, Any] = {}
    for key, value in values.items():
        if key.lower() in SYSTEM_FIELD_NAMES:
            system[key.lower()] = value
        else:
            custom[key] = value
    return system, custom
