"""Tool registry with explicit registration shared by both transports."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from termbridge.exceptions import TermbridgeError, UnknownToolError

logger = structlog.get_logger()

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


class ToolSpec(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=lambda: dict(EMPTY_SCHEMA))
    handler: ToolHandler
    bridged: bool = False
    aliases: tuple[str, ...] = ()

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._aliases: dict[str, str] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools or spec.name in self._aliases:
            raise TermbridgeError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec
        for alias in spec.aliases:
            self._aliases[alias] = spec.name
        logger.debug("tool_registered", name=spec.name, bridged=spec.bridged)

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(self._aliases.get(name, name))

    def specs(self, *, bridged_only: bool = False) -> list[ToolSpec]:
        return [t for t in self._tools.values() if t.bridged or not bridged_only]

    async def call(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        *,
        bridged_only: bool = False,
    ) -> str:
        spec = self.get(name)
        if spec is None or (bridged_only and not spec.bridged):
            raise UnknownToolError(f"Unknown tool: {name}")
        logger.info("tool_called", tool=spec.name, requested=name)
        return await spec.handler(arguments or {})
