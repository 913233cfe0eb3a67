"""MCP server for the jiragate gateway.

Primary interface for agents. Each stdio connection gets its own session,
so registry and field catalogs are cached per connection and dropped when
it closes.

Usage:
    jiragate-mcp                               # Discover .jira-config.json from cwd
    jiragate-mcp --config /path/to/project     # Explicit config file or directory
    jiragate-mcp --log-dir /tmp/jiragate-logs  # Where jiragate.log goes
"""

from __future__ import annotations

import argparse
import logging
import time
from collections.abc import Callable
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from jiragate import config
from jiragate.errors import GatewayError
from jiragate.mcp_tools import fields as fields_tools
from jiragate.mcp_tools import instances as instances_tools
from jiragate.mcp_tools.common import _text
from jiragate.session import SessionState, session_manager

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

server = Server("jiragate")
_session: SessionState | None = None
_config_hint: str | None = None
_logger: logging.Logger | None = None
_request_session: ContextVar[SessionState | None] = ContextVar("jiragate_request_session", default=None)


def _collect_tools() -> tuple[list[Tool], dict[str, Callable[..., Any]]]:
    tools: list[Tool] = []
    handlers: dict[str, Callable[..., Any]] = {}
    for module in (instances_tools, fields_tools):
        module_tools, module_handlers = module.register()
        tools.extend(module_tools)
        handlers.update(module_handlers)
    return tools, handlers


_all_tools, _all_handlers = _collect_tools()


def _get_session() -> SessionState | None:
    """The session for the current connection; None outside a connection."""
    return _request_session.get() or _session


def _with_config_hint(arguments: dict[str, Any]) -> dict[str, Any]:
    if _config_hint and not arguments.get("working_dir"):
        return {**arguments, "working_dir": _config_hint}
    return arguments


def _log_extra(name: str, arguments: dict[str, Any], **extra: Any) -> dict[str, Any]:
    session = _get_session()
    data: dict[str, Any] = {"tool": name, "args_data": arguments, **extra}
    if session is not None:
        data["session_id"] = session.session_id
    if arguments.get("instance"):
        data["tenant"] = arguments["instance"]
    return data


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    return list(_all_tools)


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    handler = _all_handlers.get(name)
    if handler is None:
        return _text({"error": f"Unknown tool: {name}", "code": "unknown_tool"})

    arguments = _with_config_hint(arguments or {})
    t0 = time.monotonic()
    try:
        result: list[TextContent] = await handler(arguments)
    except GatewayError as exc:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.warning(
                "tool_error", extra=_log_extra(name, arguments, error=exc.code, duration_ms=duration_ms)
            )
        return _text(exc.to_dict())
    except Exception:
        if _logger:
            _logger.error("tool_error", extra=_log_extra(name, arguments), exc_info=True)
        raise
    else:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.info("tool_call", extra=_log_extra(name, arguments, duration_ms=duration_ms))
        return result


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def _run(config_path: Path | None, log_dir: Path) -> None:
    global _session, _config_hint, _logger

    from jiragate.logging import setup_logging

    _logger = setup_logging(log_dir)
    _config_hint = str(config_path) if config_path else None
    _session = session_manager.create_session()
    token = _request_session.set(_session)
    _logger.info(
        "mcp_server_start",
        extra={"tool": "server", "session_id": _session.session_id, "args_data": {"config": _config_hint}},
    )

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        _request_session.reset(token)
        session_manager.remove_session(_session.session_id)
        _logger.info("mcp_server_stop", extra={"tool": "server", "session_id": _session.session_id})
        _session = None


def main() -> None:
    import asyncio

    parser = argparse.ArgumentParser(description="jiragate MCP server")
    parser.add_argument(
        "--config", type=Path, default=None, help="Config file or directory (searches cwd, parent, ~/.jiragate if omitted)"
    )
    parser.add_argument(
        "--log-dir", type=Path, default=None, help="Directory for jiragate.log (default ~/.jiragate/logs)"
    )
    args = parser.parse_args()

    asyncio.run(_run(args.config, args.log_dir or config.USER_CONFIG_DIR / "logs"))


if __name__ == "__main__":
    main()
