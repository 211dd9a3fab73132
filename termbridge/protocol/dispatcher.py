"""Message dispatcher that routes inbound JSON-RPC envelopes by method name."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from termbridge.bridge.models import PARSE_ERROR_CODE, error_envelope, text_result

if TYPE_CHECKING:
    from termbridge.protocol.tools import ToolRegistry
    from termbridge.protocol.workspace import Workspace

logger = structlog.get_logger()

PROTOCOL_VERSION = "2025-06-18"
SERVER_VERSION = "0.1.0"

Message = dict[str, Any]
Route = Callable[[Message], Awaitable[Message | None]]


class MessageDispatcher:
    """Stateless routing from method names to tool, resource and lifecycle handlers.

    Unknown methods get a generic "not implemented" result instead of an error
    so newer clients keep working.
    """

    def __init__(
        self,
        tools: ToolRegistry,
        workspace: Workspace,
        *,
        server_name: str = "termbridge",
        on_initialized: Callable[[], None] | None = None,
    ) -> None:
        self._tools = tools
        self._workspace = workspace
        self._server_name = server_name
        self._on_initialized = on_initialized
        # Exact names first, then prefixes
        self._routes: list[tuple[str, bool, Route]] = [
            ("initialize", True, self._initialize),
            ("tools/list", True, self._tools_list),
            ("notifications/", False, self._notification),
            ("tools/", False, self._tool_call),
            ("resources/", False, self._resource_call),
        ]

    async def dispatch_raw(self, raw: str | bytes) -> Message | None:
        try:
            message = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning("dispatch_invalid_json")
            return error_envelope(None, "Parse error", PARSE_ERROR_CODE)
        if not isinstance(message, dict):
            return error_envelope(None, "Parse error", PARSE_ERROR_CODE)
        return await self.dispatch(message)

    async def dispatch(self, message: Message) -> Message | None:
        method = message.get("method")
        if not isinstance(method, str):
            # A response to something we sent; nothing to answer
            logger.debug("dispatch_ignored_response", id=message.get("id"))
            return None

        logger.debug("dispatch", method=method, id=message.get("id"))
        for name, exact, route in self._routes:
            if (exact and method == name) or (not exact and method.startswith(name)):
                return await route(message)

        return {
            "jsonrpc": "2.0",
            "id": message.get("id"),
            "result": {"status": "ok", "message": "Not implemented yet"},
        }

    async def _initialize(self, message: Message) -> Message:
        tools = {
            spec.name: {
                "description": spec.description,
                "inputSchema": spec.input_schema,
            }
            for spec in self._tools.specs()
        }
        return {
            "jsonrpc": "2.0",
            "id": message.get("id"),
            "result": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {
                    "tools": tools,
                    "resources": {"listChanged": True},
                },
                "serverInfo": {"name": self._server_name, "version": SERVER_VERSION},
            },
        }

    async def _tools_list(self, message: Message) -> Message:
        return {
            "jsonrpc": "2.0",
            "id": message.get("id"),
            "result": {"tools": [spec.describe() for spec in self._tools.specs()]},
        }

    async def _notification(self, message: Message) -> None:
        if message.get("method") == "notifications/initialized" and self._on_initialized:
            self._on_initialized()
        return None

    async def _tool_call(self, message: Message) -> Message:
        method: str = message["method"]
        params = _params(message)
        if method == "tools/call":
            name = params.get("name", "")
            arguments = params.get("arguments") or {}
        else:
            # Legacy form: tools/<name> with arguments directly in params
            name = method.removeprefix("tools/")
            arguments = params

        try:
            text = await self._tools.call(name, arguments)
        except Exception as e:
            logger.warning("tool_call_failed", tool=name, error=str(e))
            return error_envelope(message.get("id"), str(e) or type(e).__name__)
        return text_result(message.get("id"), text)

    async def _resource_call(self, message: Message) -> Message:
        method = message["method"]
        params = _params(message)
        try:
            if method == "resources/list":
                result = self._workspace.list_resources()
            elif method == "resources/read":
                result = self._workspace.read_resource(params.get("uri", ""))
            else:
                result = {"resources": []}
        except Exception as e:
            logger.warning("resource_call_failed", method=method, error=str(e))
            return error_envelope(message.get("id"), str(e) or type(e).__name__)
        return {"jsonrpc": "2.0", "id": message.get("id"), "result": result}


def _params(message: Message) -> dict[str, Any]:
    params = message.get("params")
    return params if isinstance(params, dict) else {}
