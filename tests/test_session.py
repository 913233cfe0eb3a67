"""Tests for session caches and the session manager."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from jiragate.session import SESSION_TIMEOUT, SessionCache, SessionManager, SessionState


class TestSessionCache:
    async def test_loader_runs_once_per_key(self) -> None:
        cache: SessionCache[list[int]] = SessionCache()
        calls: list[str] = []

        async def loader() -> list[int]:
            calls.append("x")
            return [1, 2]

        first = await cache.get_or_load("k", loader)
        second = await cache.get_or_load("k", loader)
        assert first is second
        assert calls == ["x"]
        assert "k" in cache
        assert len(cache) == 1

    async def test_failed_load_stores_nothing(self) -> None:
        cache: SessionCache[int] = SessionCache()

        async def boom() -> int:
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", boom)
        assert "k" not in cache

        async def ok() -> int:
            return 7

        assert await cache.get_or_load("k", ok) == 7

    async def test_concurrent_misses_both_load(self) -> None:
        cache: SessionCache[int] = SessionCache()
        calls = 0

        async def slow() -> int:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return calls

        results = await asyncio.gather(cache.get_or_load("k", slow), cache.get_or_load("k", slow))
        assert calls == 2
        assert cache.get("k") in results

    def test_clear(self) -> None:
        cache: SessionCache[int] = SessionCache()
        cache._entries["k"] = 1
        cache.clear()
        assert len(cache) == 0
        assert cache.get("k") is None


class TestSessionState:
    def test_track_project_access_first_only(self) -> None:
        s = SessionState(session_id="s1")
        assert s.track_project_access("a", "JOB") is True
        assert s.track_project_access("a", "JOB") is False
        assert s.track_project_access("b", "JOB") is True
        assert s.has_accessed_project("a", "JOB")
        assert not s.has_accessed_project("a", "OTHER")

    async def test_teardown_drops_caches(self) -> None:
        s = SessionState(session_id="s1")

        async def load() -> tuple[()]:
            return ()

        await s.field_catalog_cache.get_or_load("a", load)
        s.track_project_access("a", "JOB")
        s.teardown()
        assert len(s.field_catalog_cache) == 0
        assert s.accessed_projects == {}

    def test_sessions_own_distinct_caches(self) -> None:
        s1, s2 = SessionState(session_id="1"), SessionState(session_id="2")
        assert s1.registry_cache is not s2.registry_cache
        assert s1.field_catalog_cache is not s2.field_catalog_cache


class TestSessionManager:
    def test_create_and_get(self) -> None:
        manager = SessionManager()
        s = manager.create_session("abc")
        assert manager.get_session("abc") is s
        assert manager.session_ids() == ["abc"]
        assert len(manager) == 1

    def test_generated_ids_are_unique(self) -> None:
        manager = SessionManager()
        ids = {manager.create_session().session_id for _ in range(5)}
        assert len(ids) == 5

    def test_get_or_create(self) -> None:
        manager = SessionManager()
        s = manager.get_or_create_session("abc")
        assert manager.get_or_create_session("abc") is s
        assert manager.get_or_create_session() is not s

    def test_remove_session_tears_down(self) -> None:
        manager = SessionManager()
        s = manager.create_session("abc")
        s.track_project_access("a", "JOB")
        assert manager.remove_session("abc") is True
        assert manager.get_session("abc") is None
        assert s.accessed_projects == {}
        assert manager.remove_session("abc") is False

    def test_prune_inactive(self) -> None:
        manager = SessionManager()
        old = manager.create_session("old")
        fresh = manager.create_session("fresh")
        now = fresh.last_activity
        old.last_activity = now - SESSION_TIMEOUT - timedelta(seconds=1)
        assert manager.prune_inactive(now) == ["old"]
        assert manager.session_ids() == ["fresh"]

    def test_create_prunes_lazily(self) -> None:
        manager = SessionManager(timeout=timedelta(minutes=30))
        old = manager.create_session("old")
        old.last_activity -= timedelta(hours=1)
        manager.create_session("new")
        assert manager.session_ids() == ["new"]

    def test_track_project_access_by_id(self) -> None:
        manager = SessionManager()
        manager.create_session("abc")
        assert manager.track_project_access("abc", "a", "JOB") is True
        assert manager.track_project_access("abc", "a", "JOB") is False
        assert manager.has_accessed_project("abc", "a", "JOB")
        assert manager.track_project_access("missing", "a", "JOB") is False
        assert not manager.has_accessed_project("missing", "a", "JOB")

    def test_metrics(self) -> None:
        manager = SessionManager()
        s = manager.create_session("abc")
        metrics = manager.metrics(s.created_at + timedelta(minutes=10))
        assert metrics["total_sessions"] == 1
        assert metrics["active_sessions"] == 0
        assert metrics["oldest_session"] == s.created_at
        assert metrics["average_age_seconds"] == pytest.approx(600.0)

    def test_close_all(self) -> None:
        manager = SessionManager()
        manager.create_session()
        manager.create_session()
        manager.close_all()
        assert len(manager) == 0
