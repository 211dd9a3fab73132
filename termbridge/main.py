"""CLI entry points for the IDE (WebSocket) process and the stdio process."""

import asyncio
import sys

import structlog
from pydantic import ValidationError

from termbridge.app import build_bridge_client, build_ide_server
from termbridge.core.config import TermbridgeConfig
from termbridge.exceptions import ConfigError
from termbridge.mcp_stdio import create_stdio_server

logger = structlog.get_logger()


def _load_config() -> TermbridgeConfig:
    try:
        return TermbridgeConfig()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("Set TERMBRIDGE_* variables or create a .env file.", file=sys.stderr)
        sys.exit(1)


async def _run_ide(config: TermbridgeConfig) -> int:
    server = build_ide_server(config)
    try:
        await server.start()
    except (ConfigError, OSError) as e:
        logger.error("ide_startup_failed", error=str(e))
        print(f"Failed to start IDE server: {e}", file=sys.stderr)
        await server.stop()
        return 1

    try:
        await server.wait_stopped()
    finally:
        await server.stop()
        print("\nShutdown complete.")
    return server.exit_code


def run() -> None:
    config = _load_config()
    sys.exit(asyncio.run(_run_ide(config)))


def run_mcp() -> None:
    config = _load_config()
    if not config.bridge_port:
        print(
            "TERMBRIDGE_BRIDGE_PORT is required: start `termbridge` first "
            "and use the bridge port it prints.",
            file=sys.stderr,
        )
        sys.exit(1)

    client = build_bridge_client(config)
    server = create_stdio_server(client)
    logger.info("stdio_server_starting", bridge=config.bridge_url)
    try:
        server.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("stdio_server_interrupted")
    sys.exit(0)
