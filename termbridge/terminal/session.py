"""Terminal session controller: the single owner of the process stdin/stdout.

Line editing reads stdin through the event loop's reader registration. A
component that needs the terminal (the review pager, a raw yes/no question)
acquires a TerminalHandle, which unregisters the reader; releasing the
handle flushes pending keystrokes and re-registers it.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import os
import signal
import sys
import termios
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import TextIO

import structlog

from termbridge.exceptions import TerminalInterrupted, TerminalOwnershipError

logger = structlog.get_logger()

LineHandler = Callable[[str], Awaitable[None]]

_handle_ids = itertools.count(1)


class TerminalState(StrEnum):
    CLOSED = "closed"
    LINE_EDITING = "line_editing"
    SUSPENDED = "suspended"


class TerminalHandle:
    """Exclusive claim on the terminal, valid until released."""

    __slots__ = ("child", "handle_id", "owner", "released")

    def __init__(self, owner: str) -> None:
        self.handle_id = next(_handle_ids)
        self.owner = owner
        self.child: asyncio.subprocess.Process | None = None
        self.released = False

    def attach_child(self, proc: asyncio.subprocess.Process) -> None:
        self.child = proc

    def detach_child(self, proc: asyncio.subprocess.Process) -> None:
        if self.child is proc:
            self.child = None

    def __repr__(self) -> str:
        return f"TerminalHandle(id={self.handle_id}, owner={self.owner!r})"


class _LineBuffer:
    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, data: bytes) -> list[str]:
        self._pending += data
        *complete, self._pending = self._pending.split(b"\n")
        return [line.decode("utf-8", errors="replace").rstrip("\r") for line in complete]

    def clear(self) -> None:
        self._pending = b""


class TerminalSession:
    def __init__(
        self,
        on_line: LineHandler,
        *,
        on_shutdown: Callable[[], None],
        prompt: str = "> ",
        input_fd: int | None = None,
        output: TextIO | None = None,
    ) -> None:
        self._on_line = on_line
        self._on_shutdown = on_shutdown
        self.prompt = prompt
        self._input_fd = input_fd
        self._output = output
        self._state = TerminalState.CLOSED
        self._resume_state = TerminalState.CLOSED
        self._handle: TerminalHandle | None = None
        self._buffer = _LineBuffer()
        self._lines: asyncio.Queue[str] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._question: asyncio.Future[str] | None = None
        self._prompt_shown = False
        self._shutdown_pending = False
        self._signals_installed = False

    @property
    def state(self) -> TerminalState:
        return self._state

    @property
    def owner(self) -> TerminalHandle | None:
        return self._handle

    @property
    def fd(self) -> int:
        return self._input_fd if self._input_fd is not None else sys.stdin.fileno()

    @property
    def output(self) -> TextIO:
        return self._output or sys.stdout

    def write(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()
        self._prompt_shown = False

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Begin line editing and show the first prompt."""
        if self._state is not TerminalState.CLOSED:
            return
        self._attach_reader()
        self._state = TerminalState.LINE_EDITING
        if self._consumer is None:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())
        self.show_prompt()
        logger.debug("terminal_started")

    async def close(self) -> None:
        self._detach_reader()
        self._state = TerminalState.CLOSED
        self._resume_state = TerminalState.CLOSED
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        self.remove_signal_handlers()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, self.handle_sigint)
        self._signals_installed = True

    def remove_signal_handlers(self) -> None:
        if self._signals_installed:
            with contextlib.suppress(RuntimeError):
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            self._signals_installed = False

    def show_prompt(self) -> None:
        if self._state is TerminalState.LINE_EDITING and not self._prompt_shown:
            self.output.write(self.prompt)
            self.output.flush()
            self._prompt_shown = True

    # -- ownership -----------------------------------------------------------

    def acquire(self, owner: str) -> TerminalHandle:
        """Suspend line editing and hand the terminal to `owner`."""
        if self._handle is not None:
            raise TerminalOwnershipError(
                f"terminal already owned by {self._handle.owner!r}"
            )
        self._detach_reader()
        self._buffer.clear()
        self._resume_state = self._state
        self._state = TerminalState.SUSPENDED
        self._handle = TerminalHandle(owner)
        logger.debug("terminal_acquired", owner=owner)
        return self._handle

    def release(self, handle: TerminalHandle) -> None:
        """Return the terminal to line editing once `handle`'s owner is done."""
        if handle.released or handle is not self._handle:
            raise TerminalOwnershipError(f"{handle!r} does not own the terminal")
        if handle.child is not None and handle.child.returncode is None:
            raise TerminalOwnershipError(
                f"{handle!r} released while its child process is running"
            )
        handle.released = True
        self._handle = None
        self._state = self._resume_state
        if self._state is TerminalState.LINE_EDITING:
            self._drain_input()
            self._attach_reader()
            self._prompt_shown = False
            self.show_prompt()
        logger.debug("terminal_released", owner=handle.owner)

        if self._shutdown_pending:
            self._shutdown_pending = False
            self._on_shutdown()

    @contextlib.asynccontextmanager
    async def exclusive(self, owner: str) -> AsyncIterator[TerminalHandle]:
        handle = self.acquire(owner)
        try:
            yield handle
        finally:
            self.release(handle)

    async def ask(self, handle: TerminalHandle, question: str) -> str:
        """Ask a raw one-line question while holding the terminal."""
        if handle is not self._handle or handle.released:
            raise TerminalOwnershipError(f"{handle!r} does not own the terminal")

        loop = asyncio.get_running_loop()
        answer: asyncio.Future[str] = loop.create_future()
        buffer = _LineBuffer()

        def _on_readable() -> None:
            try:
                data = os.read(self.fd, 4096)
            except OSError as e:
                if not answer.done():
                    answer.set_exception(e)
                return
            if not data:
                if not answer.done():
                    answer.set_result("")
                return
            lines = buffer.feed(data)
            if lines and not answer.done():
                answer.set_result(lines[0])

        self.write(question)
        self._question = answer
        loop.add_reader(self.fd, _on_readable)
        try:
            return await answer
        finally:
            loop.remove_reader(self.fd)
            self._question = None

    # -- signals -------------------------------------------------------------

    def handle_sigint(self) -> None:
        """SIGINT: shut down from line editing, forward to the owner otherwise."""
        handle = self._handle
        if handle is None:
            logger.info("terminal_sigint_shutdown")
            self._on_shutdown()
            return

        if handle.child is not None and handle.child.returncode is None:
            logger.info("terminal_sigint_forwarded", owner=handle.owner)
            with contextlib.suppress(ProcessLookupError):
                handle.child.send_signal(signal.SIGINT)
            return

        # Shut down only after the owner has given the terminal back
        self._shutdown_pending = True
        if self._question is not None and not self._question.done():
            self._question.set_exception(TerminalInterrupted("interrupted"))
        logger.info("terminal_sigint_deferred", owner=handle.owner)

    # -- internals -----------------------------------------------------------

    def _attach_reader(self) -> None:
        try:
            asyncio.get_running_loop().add_reader(self.fd, self._on_readable)
        except (OSError, ValueError) as e:
            raise TerminalOwnershipError(f"cannot restore line editing: {e}") from e

    def _detach_reader(self) -> None:
        with contextlib.suppress(OSError, ValueError, RuntimeError):
            asyncio.get_running_loop().remove_reader(self.fd)

    def _drain_input(self) -> None:
        """Drop keystrokes typed while the terminal was suspended."""
        if os.isatty(self.fd):
            with contextlib.suppress(termios.error):
                termios.tcflush(self.fd, termios.TCIFLUSH)

    def _on_readable(self) -> None:
        try:
            data = os.read(self.fd, 4096)
        except OSError as e:
            logger.warning("terminal_read_failed", error=str(e))
            return
        if not data:
            self._detach_reader()
            logger.info("terminal_eof")
            self._on_shutdown()
            return
        for line in self._buffer.feed(data):
            self._prompt_shown = False
            self._lines.put_nowait(line)

    async def _consume(self) -> None:
        while True:
            line = await self._lines.get()
            if self._state is not TerminalState.LINE_EDITING:
                continue
            try:
                if line.strip():
                    await self._on_line(line.strip())
            except TerminalOwnershipError:
                logger.exception("terminal_ownership_lost")
                self._on_shutdown()
                return
            except Exception:
                logger.exception("terminal_command_failed", line=line)
            self.show_prompt()
