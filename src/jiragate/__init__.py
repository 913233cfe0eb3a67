"""jiragate: multi-tenant Jira gateway for agents, with tenant and field resolution."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jiragate")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from jiragate.context import ResolvedContext, ToolOptions, build_context
from jiragate.session import SessionManager, SessionState

__all__ = [
    "ResolvedContext",
    "SessionManager",
    "SessionState",
    "ToolOptions",
    "__version__",
    "build_context",
]
