"""Fixtures for MCP server tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from jiragate.session import SessionState
from tests._factories import MULTI_CONFIG, write_config


@pytest.fixture
def mcp_session(isolated_env: Path) -> Generator[SessionState, None, None]:
    """Write a multi-instance config and patch the MCP module globals with a fresh session."""
    write_config(isolated_env, MULTI_CONFIG)

    import jiragate.mcp_server as mcp_mod

    original_session = mcp_mod._session
    original_hint = mcp_mod._config_hint
    s = SessionState(session_id="mcp-test")
    mcp_mod._session = s
    mcp_mod._config_hint = None

    yield s

    mcp_mod._session = original_session
    mcp_mod._config_hint = original_hint
    s.teardown()
