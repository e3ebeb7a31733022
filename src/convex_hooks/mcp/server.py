"""FastMCP server exposing advisory convex-hooks lookups."""

from __future__ import annotations

from typing import Any

from fastmcp import FastMCP

from convex_hooks.core.dispatch import HookDispatcher, saved_event
from convex_hooks.errors import ConfigurationMissing, DeploymentUnavailable


def create_mcp_server(dispatcher: HookDispatcher) -> FastMCP:
    """Create a FastMCP server wired to the given dispatcher."""

    mcp = FastMCP("convex-hooks", instructions="Run Convex checks and look up deployment metadata.")

    @mcp.tool()
    async def list_checks() -> list[dict[str, str]]:
        """List the active checks with their trigger categories and severity."""
        return [check.describe() for check in dispatcher.runner.registry]

    @mcp.tool()
    async def check_file(path: str) -> list[str]:
        """Run the save-time checks on a project file and return one line per finding."""
        report = await dispatcher.on_saved(saved_event(dispatcher.root / path))
        return report.format_lines()

    @mcp.tool()
    async def deployment_snapshot(refresh: bool = False) -> dict[str, Any]:
        """Return the deployment's tables, functions and environment variable names."""
        if dispatcher.snapshots is None:
            return {"error": "Deployment lookups are disabled."}
        try:
            result = await dispatcher.snapshots.get_snapshot(force_refresh=refresh)
        except (ConfigurationMissing, DeploymentUnavailable) as exc:
            return {"error": str(exc)}
        return result.summary()

    return mcp
