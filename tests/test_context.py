"""Tests for the context builder."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest

from jiragate import config
from jiragate.context import (
    ToolOptions,
    build_context,
    check_required_fields,
    extract_project_key,
    guidance_for,
    resolve_field_ids,
)
from jiragate.errors import ConfigNotFound, ProjectKeyRequired, TenantAmbiguous, TenantNotFound
from jiragate.session import SessionState
from tests._factories import MULTI_CONFIG, TOKEN, FakeJira, make_registry, tenant_entry, write_config


@pytest.fixture
def multi_config(isolated_env: Path) -> Path:
    return write_config(isolated_env, MULTI_CONFIG)


class TestExtractProjectKey:
    def test_explicit_wins(self) -> None:
        assert extract_project_key({"projectKey": "ABC", "issue_key": "JOB-1"}) == "ABC"
        assert extract_project_key({"project_key": "ABC"}) == "ABC"

    def test_from_issue_key(self) -> None:
        assert extract_project_key({"issue_key": "JOB-42"}) == "JOB"

    def test_from_epic_key(self) -> None:
        assert extract_project_key({"epicKey": "EPC-7"}) == "EPC"

    def test_issue_key_before_epic_key(self) -> None:
        assert extract_project_key({"epic_key": "EPC-7", "issue_key": "JOB-1"}) == "JOB"

    def test_extraction_can_be_disabled(self) -> None:
        options = ToolOptions(extract_project_from_issue_key=False)
        assert extract_project_key({"issue_key": "JOB-42"}, options) is None

    def test_default_project(self) -> None:
        assert extract_project_key({}, ToolOptions(default_project_key="DEF")) == "DEF"

    def test_required(self) -> None:
        with pytest.raises(ProjectKeyRequired) as exc_info:
            extract_project_key({"issue_key": "nodash"}, ToolOptions(requires_project=True))
        assert exc_info.value.code == "project_key_required"

    def test_optional(self) -> None:
        assert extract_project_key({}) is None


class TestBuildContext:
    async def test_issue_key_routes_to_mapped_tenant(self, multi_config: Path) -> None:
        ctx = await build_context({"issue_key": "JOB-42"})
        assert ctx.project_key == "JOB"
        assert ctx.tenant_id == "b"
        assert ctx.rule == "project-mapping"
        assert ctx.endpoints.rest == "https://beta.atlassian.net/rest/api/2"
        assert ctx.endpoints.agile == "https://beta.atlassian.net/rest/agile/1.0"
        assert ctx.credential.email == "bot@beta.example.com"
        assert ctx.config_source == str(multi_config)

    async def test_explicit_instance(self, multi_config: Path) -> None:
        ctx = await build_context({"issue_key": "JOB-42", "instance": "a"})
        assert ctx.tenant_id == "a"
        assert ctx.rule == "explicit"

    async def test_explicit_instance_keeps_project_settings(self, multi_config: Path) -> None:
        ctx = await build_context({"issue_key": "JOB-1", "instance": "a"})
        assert dict(ctx.field_defaults) == {"priority": "High", "labels": ["from-a"]}
        assert ctx.story_points_field == "customfield_10016"
        assert ctx.rank_field == "customfield_rank"

    async def test_tenant_alias_argument(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "JOB", "tenant": "a"})
        assert ctx.tenant_id == "a"

    async def test_default_tenant(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "NEW"})
        assert ctx.tenant_id == "a"
        assert ctx.allowed_projects == ("ALP",)

    async def test_field_defaults_project_wins(self, multi_config: Path) -> None:
        data = copy.deepcopy(MULTI_CONFIG)
        data["projects"]["ALP"] = {"instance": "a", "fieldDefaults": {"priority": "High"}}
        write_config(Path.cwd(), data)
        ctx = await build_context({"projectKey": "ALP"})
        assert dict(ctx.field_defaults) == {"priority": "High", "labels": ["from-a"]}
        with pytest.raises(TypeError):
            ctx.field_defaults["priority"] = "Low"  # type: ignore[index]

    async def test_tenant_field_defaults_without_mapping(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "NEW"})
        assert dict(ctx.field_defaults) == {"priority": "Low", "labels": ["from-a"]}

    async def test_field_ids(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "JOB"})
        assert ctx.story_points_field == "customfield_10016"
        assert ctx.sprint_field == "customfield_10020"
        assert ctx.epic_link_field == "customfield_10014"

    async def test_field_ids_fall_back_to_tenant(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "NEW"})
        assert ctx.story_points_field == "customfield_a1"
        assert ctx.rank_field == "customfield_rank"
        assert ctx.sprint_field is None

    async def test_working_dir_hint(self, tmp_path: Path) -> None:
        write_config(tmp_path / "proj", {"instances": {"only": tenant_entry("only")}})
        ctx = await build_context({"working_dir": str(tmp_path / "proj"), "projectKey": "X"})
        assert ctx.tenant_id == "only"
        assert ctx.rule == "sole-tenant"

    async def test_project_required(self, multi_config: Path) -> None:
        with pytest.raises(ProjectKeyRequired):
            await build_context({}, options=ToolOptions(requires_project=True))

    async def test_unknown_instance(self, multi_config: Path) -> None:
        with pytest.raises(TenantNotFound):
            await build_context({"projectKey": "JOB", "instance": "nope"})

    async def test_ambiguous(self, isolated_env: Path) -> None:
        write_config(isolated_env, {"instances": {"a": tenant_entry("alpha"), "b": tenant_entry("beta")}})
        with pytest.raises(TenantAmbiguous):
            await build_context({"projectKey": "X"})

    async def test_no_config(self) -> None:
        with pytest.raises(ConfigNotFound):
            await build_context({"projectKey": "X"})

    async def test_repr_hides_token(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "JOB"})
        assert TOKEN not in repr(ctx)

    async def test_client_is_bound_to_tenant(self, multi_config: Path, fake_jira: FakeJira) -> None:
        ctx = await build_context({"projectKey": "JOB"})
        async with ctx.client() as client:
            await client.get_fields()
        assert fake_jira.requests[0].url.host == "beta.atlassian.net"


class TestRegistryCaching:
    async def test_global_registry_loaded_once(self, multi_config: Path) -> None:
        await build_context({"projectKey": "JOB"})
        multi_config.unlink()
        ctx = await build_context({"projectKey": "JOB"})
        assert ctx.tenant_id == "b"
        assert config.global_registry.state is not None

    async def test_session_registry_is_cached_per_source(self, multi_config: Path, session: SessionState) -> None:
        await build_context({"projectKey": "JOB"}, session=session)
        multi_config.unlink()
        ctx = await build_context({"projectKey": "JOB"}, session=session)
        assert ctx.tenant_id == "b"
        assert len(session.registry_cache) == 1
        assert config.global_registry.state is None

    async def test_session_keys_by_hint(self, multi_config: Path, tmp_path: Path, session: SessionState) -> None:
        write_config(tmp_path / "other", {"instances": {"o": tenant_entry("other")}})
        a = await build_context({"projectKey": "JOB"}, session=session)
        b = await build_context({"projectKey": "JOB", "working_dir": str(tmp_path / "other")}, session=session)
        assert (a.tenant_id, b.tenant_id) == ("b", "o")
        assert len(session.registry_cache) == 2

    async def test_sessions_do_not_share_registries(self, multi_config: Path) -> None:
        s1, s2 = SessionState(session_id="1"), SessionState(session_id="2")
        await build_context({"projectKey": "JOB"}, session=s1)
        await build_context({"projectKey": "JOB"}, session=s2)
        (key,) = list(s1.registry_cache)
        assert s1.registry_cache.get(key) is not s2.registry_cache.get(key)


class TestConfigGuidance:
    def test_check_required_fields(self) -> None:
        registry = make_registry()
        job = resolve_field_ids(registry.tenants["b"], registry.projects["JOB"])
        assert check_required_fields(job) == []
        alp = resolve_field_ids(registry.tenants["a"], None)
        assert check_required_fields(alp) == ["sprintField", "epicLinkField"]

    def test_guidance_markdown(self) -> None:
        text = guidance_for("a", "ALP", ["sprintField"])
        assert '"ALP"' in text
        assert '"sprintField": "customfield_XXXXX"' in text
        assert "Sprint-related operations may fail" in text

    async def test_first_access_only(self, multi_config: Path, session: SessionState) -> None:
        first = await build_context({"projectKey": "NEW"}, session=session)
        second = await build_context({"projectKey": "NEW"}, session=session)
        assert first.config_guidance is not None
        assert "sprintField" in first.config_guidance
        assert second.config_guidance is None
        assert session.has_accessed_project("a", "NEW")

    async def test_fully_configured_project_gets_none(self, multi_config: Path, session: SessionState) -> None:
        ctx = await build_context({"projectKey": "JOB"}, session=session)
        assert ctx.config_guidance is None

    async def test_no_session_no_guidance(self, multi_config: Path) -> None:
        ctx = await build_context({"projectKey": "NEW"})
        assert ctx.config_guidance is None

    async def test_guidance_failure_does_not_fail_request(
        self, multi_config: Path, session: SessionState, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def boom(*args: object) -> list[str]:
            raise RuntimeError("broken")

        monkeypatch.setattr("jiragate.context.check_required_fields", boom)
        ctx = await build_context({"projectKey": "NEW"}, session=session)
        assert ctx.tenant_id == "a"
        assert ctx.config_guidance is None
