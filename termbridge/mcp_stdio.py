"""Stdio-transport process: agent-facing tools forwarded over the bridge.

This process has no git access of its own. Every tool call becomes a
BridgeRequest to the IDE process, which runs the one approval machine.
"""

from __future__ import annotations

import structlog
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from termbridge.bridge.client import BridgeClient
from termbridge.exceptions import BridgeError

logger = structlog.get_logger()

DEFAULT_SERVER_NAME = "termbridge-mcp"


async def forward(client: BridgeClient, tool_name: str, arguments: dict) -> str:
    """Forward one call; bridge failures surface as tool errors, never as ''."""
    try:
        return await client.call_tool(tool_name, arguments)
    except BridgeError as e:
        logger.error("bridge_forward_failed", tool=tool_name, error=str(e))
        raise ToolError(f"Failed to forward to IDE server: {e}") from e


def create_stdio_server(client: BridgeClient, *, name: str = DEFAULT_SERVER_NAME) -> FastMCP:
    mcp = FastMCP(name)

    @mcp.tool()
    async def review_push(branch: str | None = None) -> str:
        """Review unpushed commits and push to the remote after approval.

        The user sees the review in their terminal and answers y/n there.
        `branch` defaults to the current branch.
        """
        arguments = {"branch": branch} if branch else {}
        return await forward(client, "review_push", arguments)

    @mcp.tool()
    async def git_status() -> str:
        """Get current git status and the number of unpushed commits."""
        return await forward(client, "git_status", {})

    return mcp
