"""WebSocket-transport process: owns the terminal, the approval machine and the bridge."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import signal
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import structlog
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from termbridge.bridge.server import create_bridge_app
from termbridge.core.approval import ApprovalMachine, ApprovalOutcome
from termbridge.core.http import LoopbackServer
from termbridge.exceptions import (
    ConfigError,
    TerminalOwnershipError,
    WorkspaceAccessError,
)
from termbridge.git import formatter
from termbridge.git.push import PushManager
from termbridge.git.review import CommitReviewBuilder
from termbridge.protocol.catalog import build_tool_registry
from termbridge.protocol.dispatcher import MessageDispatcher
from termbridge.protocol.workspace import Workspace
from termbridge.terminal.session import TerminalSession

if TYPE_CHECKING:
    from termbridge.core.config import TermbridgeConfig
    from termbridge.core.events import EventBus
    from termbridge.git.service import GitService
    from termbridge.terminal.pager import DiffRenderer

logger = structlog.get_logger()

AUTH_HEADER = "x-claude-code-ide-authorization"
REVIEW_COMMANDS = ("/review-push", "/rp")

_PREVIEW_CHARS = 200


class ClientLink:
    """The currently connected agent WebSocket, if any."""

    def __init__(self) -> None:
        self._ws: WebSocket | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def attach(self, ws: WebSocket) -> None:
        self._ws = ws

    def detach(self, ws: WebSocket) -> None:
        if self._ws is ws:
            self._ws = None

    async def send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            return
        await self._ws.send_text(json.dumps(message))

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> bool:
        if self._ws is None:
            return False
        await self.send({"jsonrpc": "2.0", "method": method, "params": params or {}})
        return True


class LockFile:
    """Discovery record `<lock_dir>/<port>.lock` read by agent clients."""

    def __init__(self, lock_dir: Path) -> None:
        self.lock_dir = lock_dir
        self.path: Path | None = None

    def write(self, port: int, data: dict[str, Any]) -> Path:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.lock_dir / f"{port}.lock"
        self.path.write_text(json.dumps(data), encoding="utf-8")
        logger.info("lock_file_created", path=str(self.path))
        return self.path

    def remove(self) -> None:
        if self.path is None:
            return
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        logger.info("lock_file_removed", path=str(self.path))
        self.path = None


class IDEServer:
    def __init__(
        self,
        config: TermbridgeConfig,
        *,
        service: GitService,
        renderer: DiffRenderer,
        event_bus: EventBus | None = None,
        input_fd: int | None = None,
        output: TextIO | None = None,
    ) -> None:
        self.config = config
        self.service = service
        self.renderer = renderer
        self.event_bus = event_bus
        self.auth_token = str(uuid.uuid4())
        self.exit_code = 0

        self.terminal = TerminalSession(
            self.handle_line,
            on_shutdown=self.request_shutdown,
            input_fd=input_fd,
            output=output,
        )
        self.approval = ApprovalMachine(
            service,
            CommitReviewBuilder(service, renderer),
            PushManager(service),
            renderer,
            self.terminal,
            event_bus,
        )
        self.workspace = Workspace(config.workspace)
        self.link = ClientLink()
        self.tools = build_tool_registry(
            self.workspace,
            service,
            self.run_review,
            echo=self.terminal.write,
        )
        self.dispatcher = MessageDispatcher(
            self.tools,
            self.workspace,
            server_name=config.ide_name,
            on_initialized=self._on_client_initialized,
        )
        self.ws_server = LoopbackServer(
            self.create_ws_app(),
            name="websocket",
            host=config.bridge_host,
            port=config.ws_port,
        )
        self.bridge_server = LoopbackServer(
            create_bridge_app(
                self.tools, token=config.bridge_token, event_bus=event_bus
            ),
            name="bridge",
            host=config.bridge_host,
            port=config.bridge_port,
        )
        self.lock_file = LockFile(config.lock_dir)
        self._stopped = asyncio.Event()

    # -- lifecycle -----------------------------------------------------------

    async def start(self, *, interactive: bool = True) -> int:
        if not await self.service.is_repo():
            raise ConfigError(f"Not a git repository: {self.config.workspace}")

        bridge_port = self.bridge_server.bind()
        ws_port = self.ws_server.bind()
        await self.bridge_server.start()
        await self.ws_server.start()

        self.lock_file.write(
            ws_port,
            {
                "pid": os.getpid(),
                "workspaceFolders": [str(self.config.workspace)],
                "ideName": self.config.ide_name,
                "transport": "ws",
                "runningInWindows": False,
                "authToken": self.auth_token,
                "bridgePort": bridge_port,
            },
        )

        self.terminal.write(
            f"IDE server listening on port {ws_port}\n"
            f"Bridge listening on port {bridge_port}\n"
            "\U0001f4a1 Register the stdio tools with your agent:\n"
            f"   TERMBRIDGE_BRIDGE_PORT={bridge_port} termbridge-mcp\n"
        )

        if interactive:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGTERM, self.request_shutdown)
            self.terminal.install_signal_handlers()
            self.terminal.write(
                "\n\U0001f504 Interactive session started\n"
                "Type /help for available commands\n"
                "Waiting for agent requests...\n\n"
            )
            self.terminal.start()

        logger.info("ide_server_started", ws_port=ws_port, bridge_port=bridge_port)
        return ws_port

    def request_shutdown(self, exit_code: int | None = None) -> None:
        if exit_code is not None:
            self.exit_code = exit_code
        self._stopped.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def stop(self) -> None:
        logger.info("ide_server_stopping")
        await self.terminal.close()
        with contextlib.suppress(RuntimeError, ValueError):
            asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)
        # Either socket may be bound even when start() failed part way
        await self.ws_server.stop()
        await self.bridge_server.stop()
        self.lock_file.remove()

    # -- approval entry point shared by /rp and the review_push tool ---------

    async def run_review(self, branch: str | None, *, trigger: str = "tool") -> ApprovalOutcome:
        try:
            return await self.approval.run(trigger=trigger, branch=branch)
        except TerminalOwnershipError:
            logger.critical("terminal_ownership_lost", trigger=trigger)
            self.request_shutdown(exit_code=1)
            raise

    # -- interactive commands ------------------------------------------------

    async def handle_line(self, line: str) -> None:
        command, _, arg = line.strip().partition(" ")
        arg = arg.strip()
        write = self.terminal.write

        if command in REVIEW_COMMANDS:
            outcome = await self.run_review(None, trigger="command")
            if outcome.status == "busy":
                write(f"{outcome.message}\n")
        elif command == "/help":
            write(formatter.format_help() + "\n")
        elif command == "/quit":
            write("Stopping IDE server...\n")
            self.request_shutdown()
        elif command == "/status":
            write(formatter.format_status(await self.service.status()) + "\n")
        elif command == "/active":
            write(self._format_active_files())
        elif command == "/send":
            if not arg:
                write("Usage: /send <path>\n")
            else:
                await self.send_file(arg)
        elif command.startswith("/"):
            write(f"Unknown command: {command}\nType /help for available commands\n")

    async def send_file(self, path: str) -> None:
        write = self.terminal.write
        if not self.link.connected:
            write("No agent connected\n")
            return
        try:
            target = self.workspace.activate(path)
            content = target.read_text(encoding="utf-8")
        except (WorkspaceAccessError, OSError) as e:
            write(f"❌ {e}\n")
            return

        await self.link.notify("at_mentioned", {"filePath": str(target)})
        await self.link.notify("notifications/resources/list_changed")
        logger.info("file_sent", path=self.workspace.relative(target))

        preview = content[:_PREVIEW_CHARS]
        more = len(content) - _PREVIEW_CHARS
        write(
            f"\U0001f4e4 File sent to agent: {self.workspace.relative(target)}\n"
            f"\U0001f4cb Active files: {len(self.workspace.active_files)}\n"
            f"\nPreview (first {_PREVIEW_CHARS} chars):\n{preview}\n"
        )
        if more > 0:
            write(f"... ({more} more characters)\n")

    def _format_active_files(self) -> str:
        files = self.workspace.active_files
        lines = ["\n\U0001f4cb Active Files (Resources):"]
        if not files:
            lines.append("  No active files")
        for index, path in enumerate(files, start=1):
            lines.append(f"  {index}. {self.workspace.relative(path)}")
        lines.append(f"\nTotal: {len(files)} file(s)\n")
        return "\n".join(lines)

    # -- WebSocket transport -------------------------------------------------

    def create_ws_app(self) -> Starlette:
        return Starlette(routes=[WebSocketRoute("/{path:path}", self._ws_endpoint)])

    async def _ws_endpoint(self, websocket: WebSocket) -> None:
        auth = websocket.headers.get(AUTH_HEADER)
        if auth is None:
            logger.info("ws_auth_missing")
        elif auth != self.auth_token:
            logger.warning("ws_auth_mismatch")
        else:
            logger.info("ws_auth_valid")

        await websocket.accept()
        self.link.attach(websocket)
        self.terminal.write("\nAgent connected!\n")
        logger.info("ws_client_connected")

        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                raw = await websocket.receive_text()
                # Each message runs on its own task so a blocking review does not
                # stall the connection; the approval guard serializes reviews.
                task = asyncio.create_task(self._handle_ws_message(websocket, raw))
                pending.add(task)
                task.add_done_callback(pending.discard)
        except WebSocketDisconnect:
            logger.info("ws_client_disconnected")
            self.terminal.write("\n\U0001f44b Agent disconnected\n")
        finally:
            self.link.detach(websocket)
            for task in list(pending):
                task.cancel()

    async def _handle_ws_message(self, websocket: WebSocket, raw: str) -> None:
        try:
            response = await self.dispatcher.dispatch_raw(raw)
            if response is not None:
                await websocket.send_text(json.dumps(response))
        except WebSocketDisconnect:
            logger.info("ws_reply_dropped")
        except Exception:
            logger.exception("ws_message_failed")

    def _on_client_initialized(self) -> None:
        self.terminal.write("\n✅ Agent ready! Type /help for commands\n")
        self.terminal.show_prompt()
