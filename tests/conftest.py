"""Shared pytest fixtures for jiragate tests."""

from __future__ import annotations

from collections.abc import Generator
from functools import partial
from pathlib import Path

import pytest
from click.testing import CliRunner

from jiragate.client import JiraClient
from jiragate.config import CONFIG_ENV_VAR, ENV_API_TOKEN, ENV_DOMAIN, ENV_EMAIL, GlobalRegistry
from jiragate.session import SessionManager, SessionState
from tests._factories import FakeJira


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run every test from an empty directory with no ambient Jira config.

    Returns the working directory (``<tmp>/work/repo``); its parent
    ``<tmp>/work`` is the second place config discovery looks.
    """
    for var in (ENV_EMAIL, ENV_API_TOKEN, ENV_DOMAIN, CONFIG_ENV_VAR):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("jiragate.config.USER_CONFIG_DIR", tmp_path / "home" / ".jiragate")
    monkeypatch.setattr("jiragate.config.global_registry", GlobalRegistry())
    workdir = tmp_path / "work" / "repo"
    workdir.mkdir(parents=True)
    monkeypatch.chdir(workdir)
    return workdir


@pytest.fixture
def session() -> Generator[SessionState, None, None]:
    manager = SessionManager()
    s = manager.create_session()
    yield s
    manager.close_all()


@pytest.fixture
def fake_jira(monkeypatch: pytest.MonkeyPatch) -> FakeJira:
    """Route every JiraClient created by the core through a counting mock transport."""
    fake = FakeJira()
    patched = partial(JiraClient, transport=fake.transport)
    monkeypatch.setattr("jiragate.fields.JiraClient", patched)
    monkeypatch.setattr("jiragate.context.JiraClient", patched)
    return fake


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
