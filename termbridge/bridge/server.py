"""Server side of the loopback bridge, owned by the IDE process."""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING, Any

import structlog
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from termbridge.bridge.client import TOKEN_HEADER
from termbridge.bridge.models import (
    INVALID_REQUEST_CODE,
    METHOD_NOT_FOUND_CODE,
    PARSE_ERROR_CODE,
    error_envelope,
    text_result,
)
from termbridge.core.events import BRIDGE_REQUEST, Event

if TYPE_CHECKING:
    from termbridge.core.events import EventBus
    from termbridge.protocol.tools import ToolRegistry

logger = structlog.get_logger()


def create_bridge_app(
    tools: ToolRegistry,
    *,
    token: str | None = None,
    event_bus: EventBus | None = None,
) -> Starlette:
    """POST /mcp: tools/list and tools/call for the bridged tools only."""

    async def handle_mcp(request: Request) -> JSONResponse:
        if token and not hmac.compare_digest(
            request.headers.get(TOKEN_HEADER, ""), token
        ):
            logger.warning("bridge_unauthorized", client=str(request.client))
            return JSONResponse(
                error_envelope(None, "Unauthorized", INVALID_REQUEST_CODE),
                status_code=401,
            )

        try:
            message = await request.json()
        except ValueError:
            return JSONResponse(
                error_envelope(None, "Invalid JSON", PARSE_ERROR_CODE), status_code=400
            )
        if not isinstance(message, dict):
            return JSONResponse(
                error_envelope(None, "Invalid request", INVALID_REQUEST_CODE),
                status_code=400,
            )

        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params")
        if not isinstance(params, dict):
            params = {}

        if method == "tools/list":
            tool_list = [t.describe() for t in tools.specs(bridged_only=True)]
            return JSONResponse(
                {"jsonrpc": "2.0", "id": request_id, "result": {"tools": tool_list}}
            )

        if method != "tools/call":
            return JSONResponse(
                error_envelope(
                    request_id, f"Unsupported method: {method}", METHOD_NOT_FOUND_CODE
                )
            )

        name = params.get("name", "")
        arguments: dict[str, Any] = params.get("arguments") or {}
        logger.info("bridge_request", tool=name, request_id=request_id)
        if event_bus is not None:
            await event_bus.emit(
                Event(name=BRIDGE_REQUEST, data={"tool": name, "id": request_id})
            )
        try:
            text = await tools.call(name, arguments, bridged_only=True)
        except Exception as e:
            logger.exception("bridge_tool_failed", tool=name)
            return JSONResponse(error_envelope(request_id, str(e) or type(e).__name__))
        return JSONResponse(text_result(request_id, text))

    return Starlette(routes=[Route("/mcp", handle_mcp, methods=["POST"])])
