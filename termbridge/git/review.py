"""Compose the human-readable review of unpushed commits."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from termbridge.git.service import GitService
    from termbridge.terminal.pager import DiffRenderer

logger = structlog.get_logger()

NO_UNPUSHED_COMMITS = "✅ No unpushed commits to review."

_HEAVY_RULE = "═" * 50
_LIGHT_RULE = "─" * 50


def is_nothing_to_review(content: str) -> bool:
    return content == NO_UNPUSHED_COMMITS


class CommitReviewBuilder:
    def __init__(self, service: GitService, renderer: DiffRenderer) -> None:
        self._service = service
        self._renderer = renderer

    async def generate_commit_review_content(self) -> str:
        """Render the commit list and highlighted per-file diffs.

        Returns NO_UNPUSHED_COMMITS when there is nothing to push; that is a
        successful review, not an empty one.
        """
        count = await self._service.unpushed_commit_count()
        if count == 0:
            return NO_UNPUSHED_COMMITS

        commit_range = await self._service.review_range()
        file_diffs = await self._service.file_diffs(commit_range)
        commits = await self._service.oneline_log(commit_range)
        logger.info(
            "review_content_built",
            range=commit_range,
            commits=count,
            files=len(file_diffs),
        )

        plural = "s" if count > 1 else ""
        lines = [
            "\U0001f50d Reviewing unpushed commits for push...",
            _HEAVY_RULE,
            "",
            f"\U0001f4dd Commit Review ({count} unpushed commit{plural})",
            "",
        ]
        if commits:
            lines.append("\U0001f4cb Commits to push:")
            lines.extend(f"  {commit}" for commit in commits)

        lines.append("")
        lines.append("\U0001f4ca Changes:")
        lines.append("")
        for file_diff in file_diffs:
            lines.append(f"\U0001f4c1 {file_diff.path}")
            lines.append(_LIGHT_RULE)
            if file_diff.diff:
                lines.append(await self._renderer.format_diff(file_diff.diff))
            lines.append(_LIGHT_RULE)
            lines.append("")

        return "\n".join(lines)
