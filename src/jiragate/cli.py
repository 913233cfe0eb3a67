"""CLI for the jiragate gateway.

Inspect what the MCP server would resolve, without an agent in the loop.

Usage:
    jiragate instances                          # Configured instances and mappings
    jiragate validate                           # Validate .jira-config.json
    jiragate resolve PROJ                       # Which instance serves PROJ, and why
    jiragate fields --project PROJ --all        # Live field catalog
    jiragate --config ~/work/jira instances     # Explicit config file or directory
"""

from __future__ import annotations

import asyncio
import json as json_mod
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import click

from jiragate import __version__
from jiragate.config import (
    ENV_SOURCE,
    candidate_paths,
    describe_registry,
    find_config_source,
    format_validation,
    registry_from_env,
    validate_source,
)
from jiragate.context import build_context, get_registry
from jiragate.errors import ConfigNotFound, GatewayError
from jiragate.fields import get_field_catalog
from jiragate.tenants import resolve_tenant

_T = TypeVar("_T")


def _run(coro: Coroutine[Any, Any, _T]) -> _T:
    """Run a core coroutine, turning gateway errors into ``Error: ...`` and exit 1."""
    try:
        return asyncio.run(coro)
    except GatewayError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="jiragate")
@click.option("--config", "config_path", default=None, help="Config file or directory to use first")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """jiragate: multi-tenant Jira gateway for agents."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def instances(ctx: click.Context, as_json: bool) -> None:
    """List configured instances and project mappings."""
    registry = _run(get_registry(ctx.obj["config"]))
    described = describe_registry(registry)
    if as_json:
        click.echo(json_mod.dumps({"source": registry.source, **described}, indent=2))
        return

    click.echo(f"Config: {registry.source}")
    for inst in described["instances"]:
        marker = " (default)" if inst["is_default"] else ""
        click.echo(f"  {inst['name']}{marker}  {inst['endpoint']}  {inst['email']}")
        if inst["configured_projects"]:
            click.echo(f"      projects: {', '.join(inst['configured_projects'])}")
    if described["projects"]:
        click.echo("Project mappings:")
        for p in described["projects"]:
            click.echo(f"  {p['project_key']} -> {p['instance']}")


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the config file; exit 1 when it has errors."""
    hint = ctx.obj["config"]
    found = asyncio.run(find_config_source(hint))
    if found is None:
        if registry_from_env() is not None:
            click.echo(f"No config file found; using {ENV_SOURCE}.")
            return
        click.echo(f"Error: {ConfigNotFound([str(p) for p in candidate_paths(hint)])}", err=True)
        sys.exit(1)

    path, raw = found
    result = validate_source(raw, str(path))
    click.echo(format_validation(result, f"Jira Configuration ({path})"), nl=False)
    if not result.is_valid:
        sys.exit(1)


@cli.command()
@click.argument("project_key")
@click.option("--instance", default=None, help="Explicit instance override")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def resolve(ctx: click.Context, project_key: str, instance: str | None, as_json: bool) -> None:
    """Show which instance serves PROJECT_KEY and which rule picked it."""
    registry = _run(get_registry(ctx.obj["config"]))
    try:
        selection = resolve_tenant(registry, project_key, instance)
    except GatewayError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    tenant = selection.tenant
    if as_json:
        data = {"project": project_key, "instance": tenant.id, "endpoint": tenant.base_endpoint, "rule": selection.rule}
        click.echo(json_mod.dumps(data, indent=2))
        return
    click.echo(f"{project_key} -> {tenant.id} ({tenant.base_endpoint})")
    click.echo(f"  rule: {selection.rule}")


@cli.command()
@click.option("--project", "project_key", default=None, help="Project key used to pick the instance")
@click.option("--instance", default=None, help="Explicit instance override")
@click.option("--all", "show_all", is_flag=True, help="Include system fields")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fields(ctx: click.Context, project_key: str | None, instance: str | None, show_all: bool, as_json: bool) -> None:
    """List the live field catalog (custom fields unless --all)."""
    args = {"working_dir": ctx.obj["config"], "projectKey": project_key, "instance": instance}

    async def _fetch() -> tuple[str, Any]:
        resolved = await build_context(args)
        return resolved.tenant_id, await get_field_catalog(resolved.tenant)

    tenant_id, catalog = _run(_fetch())
    shown = [fd for fd in catalog if show_all or fd.is_custom]
    if as_json:
        data = [{"id": fd.id, "name": fd.display_name, "type": fd.schema_type, "custom": fd.is_custom} for fd in shown]
        click.echo(json_mod.dumps(data, indent=2))
        return
    click.echo(f"{len(shown)} fields on {tenant_id}:")
    for fd in sorted(shown, key=lambda f: f.display_name.lower()):
        click.echo(f"  {fd.id:<24} {fd.schema_type:<10} {fd.display_name}")


def main() -> None:
    cli()
