"""The tool surface served to the agent over WebSocket and the bridge."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from termbridge.git import formatter
from termbridge.protocol.tools import EMPTY_SCHEMA, ToolRegistry, ToolSpec

if TYPE_CHECKING:
    from termbridge.core.approval import ApprovalOutcome
    from termbridge.git.service import GitService
    from termbridge.protocol.workspace import Workspace

REVIEW_PUSH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "branch": {
            "type": "string",
            "description": "Target branch to push to (optional, defaults to current branch)",
        },
    },
    "required": [],
}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def build_tool_registry(
    workspace: Workspace,
    service: GitService,
    run_review: Callable[[str | None], Awaitable[ApprovalOutcome]],
    *,
    echo: Callable[[str], None],
) -> ToolRegistry:
    registry = ToolRegistry()

    async def read_file(args: dict[str, Any]) -> str:
        return workspace.read_file(_require(args, "path"))

    async def write_file(args: dict[str, Any]) -> str:
        path = _require(args, "path")
        return workspace.write_file(path, str(args.get("content", "")))

    async def list_files(args: dict[str, Any]) -> str:
        return workspace.list_files(str(args.get("path") or "."))

    async def open_diff(args: dict[str, Any]) -> str:
        path = args.get("new_file_path") or args.get("old_file_path") or "<unknown>"
        echo(f"\n\U0001f4dd File modified: {path}\n")
        echo("\U0001f4a1 Use /review-push (/rp) to review all changes before pushing\n")
        return f"File modification noted for {path}"

    async def close_all_diff_tabs(args: dict[str, Any]) -> str:
        return "No diff tabs open"

    async def review_push(args: dict[str, Any]) -> str:
        branch = args.get("branch") or None
        echo("\n\U0001f50d Agent requested commit review...\n")
        outcome = await run_review(branch)
        return outcome.message

    async def git_status(args: dict[str, Any]) -> str:
        branch = await service.current_branch()
        unpushed = await service.unpushed_commit_count()
        porcelain = await service.porcelain_status()
        return formatter.format_status_report(branch, unpushed, porcelain)

    registry.register(
        ToolSpec(
            name="read_file",
            description="Read file contents",
            input_schema=_schema(
                {"path": {"type": "string", "description": "File path to read"}},
                ["path"],
            ),
            handler=read_file,
        )
    )
    registry.register(
        ToolSpec(
            name="write_file",
            description="Write file contents",
            input_schema=_schema(
                {
                    "path": {"type": "string", "description": "File path to write"},
                    "content": {"type": "string", "description": "Content to write"},
                },
                ["path", "content"],
            ),
            handler=write_file,
        )
    )
    registry.register(
        ToolSpec(
            name="list_files",
            description="List files in directory",
            input_schema=_schema(
                {"path": {"type": "string", "description": "Directory path", "default": "."}},
                [],
            ),
            handler=list_files,
        )
    )
    registry.register(
        ToolSpec(
            name="open_diff",
            description="Open diff view",
            input_schema=_schema(
                {
                    "old_file_path": {"type": "string"},
                    "new_file_path": {"type": "string"},
                    "new_file_contents": {"type": "string"},
                },
                ["old_file_path", "new_file_path", "new_file_contents"],
            ),
            handler=open_diff,
        )
    )
    registry.register(
        ToolSpec(
            name="close_all_diff_tabs",
            description="Close all diff tabs",
            handler=close_all_diff_tabs,
        )
    )
    registry.register(
        ToolSpec(
            name="review_push",
            description="Review unpushed commits and push to remote after approval",
            input_schema=REVIEW_PUSH_SCHEMA,
            handler=review_push,
            bridged=True,
            aliases=("review_push_internal",),
        )
    )
    registry.register(
        ToolSpec(
            name="git_status",
            description="Get current git status and unpushed commits",
            input_schema=dict(EMPTY_SCHEMA),
            handler=git_status,
            bridged=True,
            aliases=("git_status_internal",),
        )
    )
    return registry


def _require(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Missing required argument: {key}")
    return value
