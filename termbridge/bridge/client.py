"""Client side of the loopback bridge, used by the stdio process."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from termbridge.bridge.models import BridgeRequest, BridgeResponse
from termbridge.exceptions import BridgeError

logger = structlog.get_logger()

TOKEN_HEADER = "X-Termbridge-Token"


class BridgeClient:
    """Forwards tool calls to the IDE process and unwraps the text result."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._token = token
        self._transport = transport

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None = None) -> str:
        request = BridgeRequest(tool_name=tool_name, arguments=arguments or {})
        logger.info("bridge_forward", tool=tool_name, request_id=request.id, url=self.url)
        response = await self.send(request)
        if not response.ok:
            raise BridgeError(response.error or "Unknown error")
        return response.text or ""

    async def send(self, request: BridgeRequest) -> BridgeResponse:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers[TOKEN_HEADER] = self._token

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport, trust_env=False
            ) as client:
                http_response = await client.post(
                    self.url, json=request.to_jsonrpc(), headers=headers
                )
        except httpx.TimeoutException as e:
            raise BridgeError(f"Bridge request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise BridgeError(f"Request failed: {e}") from e

        try:
            body = http_response.json()
        except ValueError as e:
            raise BridgeError(
                f"Failed to parse response (HTTP {http_response.status_code})"
            ) from e
        if not isinstance(body, dict):
            raise BridgeError("Failed to parse response: expected a JSON object")

        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("bridge_tool_error", tool=request.tool_name, error=message)
            return BridgeResponse(id=body.get("id"), error=message or "Unknown error")

        if not http_response.is_success:
            raise BridgeError(f"Bridge returned HTTP {http_response.status_code}")

        return BridgeResponse(id=body.get("id"), text=_extract_text(body))


def _extract_text(body: dict[str, Any]) -> str:
    result = body.get("result")
    if not isinstance(result, dict):
        raise BridgeError("Malformed bridge response: missing result")
    content = result.get("content")
    if not isinstance(content, list) or not content:
        raise BridgeError("Malformed bridge response: missing content")
    texts = [
        item.get("text", "")
        for item in content
        if isinstance(item, dict) and item.get("type") == "text"
    ]
    if not texts:
        raise BridgeError("Malformed bridge response: no text content")
    return "\n".join(texts)
