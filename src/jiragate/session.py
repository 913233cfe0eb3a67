"""Per-connection session state and the caches it owns.

A session memoizes the registry (keyed by config source) and field catalogs
(keyed by tenant id) for the life of one client connection. Nothing is
shared between sessions: two sessions resolving the same tenant each pay for
their own fetch and hold their own objects.

Caches have no TTL and no single-flight guard. Two concurrent misses on the
same key both run the loader and the last write wins; loads are idempotent
reads, so the only cost is a duplicate fetch. A loader that raises stores
nothing.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from jiragate.config import RegistryState
    from jiragate.fields import FieldCatalog

logger = logging.getLogger(__name__)

SESSION_TIMEOUT = timedelta(minutes=30)
ACTIVE_WINDOW = timedelta(minutes=5)

_V = TypeVar("_V")


class SessionCache(Generic[_V]):
    """Get-or-load memo table. Entries live until the session is torn down."""

    def __init__(self) -> None:
        self._entries: dict[str, _V] = {}

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[_V]]) -> _V:
        if key in self._entries:
            return self._entries[key]
        value = await loader()
        self._entries[key] = value
        return value

    def get(self, key: str) -> _V | None:
        return self._entries.get(key)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False)
class SessionState:
    session_id: str
    registry_cache: SessionCache[RegistryState] = field(default_factory=SessionCache)
    field_catalog_cache: SessionCache[FieldCatalog] = field(default_factory=SessionCache)
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)
    accessed_projects: dict[str, set[str]] = field(default_factory=dict)

    def touch(self) -> None:
        self.last_activity = _now()

    def track_project_access(self, tenant_id: str, project_key: str) -> bool:
        """Record a (tenant, project) access. True the first time only."""
        self.touch()
        seen = self.accessed_projects.setdefault(tenant_id, set())
        if project_key in seen:
            return False
        seen.add(project_key)
        logger.info(
            "First project access in session %s: %s/%s (%d projects on instance)",
            self.session_id,
            tenant_id,
            project_key,
            len(seen),
        )
        return True

    def has_accessed_project(self, tenant_id: str, project_key: str) -> bool:
        return project_key in self.accessed_projects.get(tenant_id, set())

    def teardown(self) -> None:
        """Drop every cached entry. The session must not be reused afterwards."""
        self.registry_cache.clear()
        self.field_catalog_cache.clear()
        self.accessed_projects.clear()


class SessionManager:
    """Owns the live sessions of one gateway process.

    Inactive sessions are pruned lazily whenever a new session is created
    rather than on a background timer.
    """

    def __init__(self, timeout: timedelta = SESSION_TIMEOUT) -> None:
        self._sessions: dict[str, SessionState] = {}
        self._timeout = timeout

    def create_session(self, session_id: str | None = None) -> SessionState:
        self.prune_inactive()
        sid = session_id or str(uuid.uuid4())
        session = SessionState(session_id=sid)
        previous = self._sessions.get(sid)
        if previous is not None:
            previous.teardown()
        self._sessions[sid] = session
        logger.info("Session created: %s (total %d)", sid, len(self._sessions))
        return session

    def get_or_create_session(self, session_id: str | None = None) -> SessionState:
        if session_id:
            existing = self.get_session(session_id)
            if existing is not None:
                return existing
        return self.create_session(session_id)

    def get_session(self, session_id: str) -> SessionState | None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def remove_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.teardown()
        logger.info("Session removed: %s (total %d)", session_id, len(self._sessions))
        return True

    def prune_inactive(self, now: datetime | None = None) -> list[str]:
        now = now or _now()
        stale = [sid for sid, s in self._sessions.items() if now - s.last_activity > self._timeout]
        for sid in stale:
            self._sessions.pop(sid).teardown()
        if stale:
            logger.info("Cleaned up inactive sessions: %s (remaining %d)", stale, len(self._sessions))
        return stale

    def track_project_access(self, session_id: str, tenant_id: str, project_key: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.track_project_access(tenant_id, project_key)

    def has_accessed_project(self, session_id: str, tenant_id: str, project_key: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.has_accessed_project(tenant_id, project_key)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def metrics(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or _now()
        sessions = list(self._sessions.values())
        ages = [(now - s.created_at).total_seconds() for s in sessions]
        return {
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if now - s.last_activity < ACTIVE_WINDOW),
            "oldest_session": min((s.created_at for s in sessions), default=None),
            "average_age_seconds": sum(ages) / len(ages) if ages else 0.0,
        }

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.teardown()
        self._sessions.clear()


session_manager = SessionManager()
