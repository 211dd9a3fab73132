"""Diff highlighting and full-screen review display."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import structlog

from termbridge.exceptions import RendererUnavailableError

if TYPE_CHECKING:
    from termbridge.terminal.session import TerminalHandle

logger = structlog.get_logger()

_RULE = "═" * 80


class DiffRenderer:
    """Highlights diffs through an external formatter and pages review text.

    Both external tools are optional: a missing highlighter leaves the diff
    untouched and a missing pager prints the review inline.
    """

    def __init__(
        self,
        *,
        highlighter: str = "delta",
        highlighter_args: list[str] | None = None,
        highlighter_timeout: float = 10.0,
        pager: str = "less",
        pager_args: list[str] | None = None,
        output: TextIO | None = None,
    ) -> None:
        self.highlighter = highlighter
        self.highlighter_args = list(highlighter_args or [])
        self.highlighter_timeout = highlighter_timeout
        self.pager = pager
        self.pager_args = list(pager_args if pager_args is not None else ["-R"])
        self._output = output
        self._warned = False

    @property
    def output(self) -> TextIO:
        return self._output or sys.stdout

    async def format_diff(self, diff_text: str) -> str:
        """Highlight diff text, returning it unchanged if the highlighter fails."""
        if not diff_text:
            return ""
        try:
            return await self._highlight(diff_text)
        except RendererUnavailableError as e:
            if not self._warned:
                print(
                    f"⚠️  {self.highlighter} not available, "
                    "using plain diff format",
                    file=sys.stderr,
                )
                self._warned = True
            logger.warning("highlighter_unavailable", tool=self.highlighter, error=str(e))
            return diff_text

    async def _highlight(self, diff_text: str) -> str:
        cmd = (self.highlighter, *self.highlighter_args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RendererUnavailableError(f"cannot run {self.highlighter}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(diff_text.encode("utf-8")),
                timeout=self.highlighter_timeout,
            )
        except TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            raise RendererUnavailableError(
                f"{self.highlighter} timed out after {self.highlighter_timeout}s"
            ) from e

        if proc.returncode != 0:
            raise RendererUnavailableError(
                stderr.decode("utf-8", errors="replace").strip()
                or f"{self.highlighter} exited with {proc.returncode}"
            )
        return stdout.decode("utf-8", errors="replace")

    def pager_available(self) -> bool:
        return shutil.which(self.pager) is not None

    async def display_review(
        self, content: str, handle: TerminalHandle | None = None
    ) -> None:
        """Page `content` full-screen and wait for the pager to exit.

        The pager inherits stdio, so the caller must hold terminal ownership.
        The scratch file is removed on every exit path.
        """
        if not self.pager_available():
            logger.warning("pager_unavailable", pager=self.pager)
            self._print_inline(content)
            return

        fd, name = tempfile.mkstemp(prefix="termbridge-review-", suffix=".txt")
        scratch = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            try:
                proc = await asyncio.create_subprocess_exec(
                    self.pager, *self.pager_args, str(scratch)
                )
            except OSError as e:
                logger.warning("pager_spawn_failed", pager=self.pager, error=str(e))
                self._print_inline(content)
                return

            if handle is not None:
                handle.attach_child(proc)
            try:
                code = await proc.wait()
            except asyncio.CancelledError:
                await _stop_pager(proc)
                raise
            finally:
                if handle is not None:
                    handle.detach_child(proc)

            # Negative codes mean the user killed the pager; that only ends the display
            if code > 0:
                logger.warning("pager_exit_nonzero", pager=self.pager, code=code)
        finally:
            with contextlib.suppress(OSError):
                scratch.unlink()

    def _print_inline(self, content: str) -> None:
        out = self.output
        out.write(f"\n{_RULE}\n\U0001f50d COMMIT REVIEW\n{_RULE}\n")
        out.write(content)
        out.write(f"\n{_RULE}\n")
        out.flush()


async def _stop_pager(proc: asyncio.subprocess.Process) -> None:
    """Terminate a pager whose reader went away and wait until it has exited."""
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
    try:
        await asyncio.shield(proc.wait())
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    logger.info("pager_stopped", pid=proc.pid, code=proc.returncode)
