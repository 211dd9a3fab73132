"""Wire models for the loopback bridge (JSON-RPC 2.0 over POST /mcp)."""

from __future__ import annotations

import itertools
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TOOL_ERROR_CODE = -32000
PARSE_ERROR_CODE = -32700
INVALID_REQUEST_CODE = -32600
METHOD_NOT_FOUND_CODE = -32601

_ids = itertools.count(int(time.time() * 1000))


class BridgeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | str = Field(default_factory=lambda: next(_ids))
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    def to_jsonrpc(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": "tools/call",
            "params": {"name": self.tool_name, "arguments": self.arguments},
        }


class BridgeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | str | None = None
    text: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def text_result(request_id: Any, text: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": {"content": [{"type": "text", "text": text}]},
    }


def error_envelope(
    request_id: Any, message: str, code: int = TOOL_ERROR_CODE
) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
