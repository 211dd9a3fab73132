"""Bootstrap: logging setup and component wiring for both processes."""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from termbridge.bridge.client import BridgeClient
from termbridge.core.audit import AuditLog
from termbridge.core.events import EventBus
from termbridge.git.service import GitService
from termbridge.terminal.pager import DiffRenderer

if TYPE_CHECKING:
    from termbridge.core.config import TermbridgeConfig
    from termbridge.ide_server import IDEServer

logger = structlog.get_logger()


def _resolve_against(path: Path, base: Path) -> Path:
    """Return *path* unchanged if absolute, otherwise resolve it against *base*."""
    return path if path.is_absolute() else base / path


def configure_logging(config: TermbridgeConfig, *, log_dir: Path | None = None) -> None:
    """Set up structlog with stderr console output and optional rotating JSON file.

    stdout is never used: the stdio process speaks its protocol there and the
    IDE process uses it for the interactive prompt.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    root_logger = logging.getLogger()
    root_logger.setLevel(config.log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
        )
    )
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "termbridge.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
            )
        )
        root_logger.addHandler(file_handler)

    for noisy_logger in ("httpx", "httpcore", "uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _setup_logging(config: TermbridgeConfig) -> None:
    log_dir = (
        _resolve_against(config.log_dir, config.workspace)
        if config.log_dir is not None
        else None
    )
    configure_logging(config, log_dir=log_dir)


def build_git_service(config: TermbridgeConfig) -> GitService:
    return GitService(
        config.workspace,
        remote=config.remote,
        timeout=config.git_timeout_seconds,
    )


def build_renderer(config: TermbridgeConfig) -> DiffRenderer:
    return DiffRenderer(
        highlighter=config.highlighter,
        highlighter_args=config.highlighter_args,
        highlighter_timeout=config.highlighter_timeout_seconds,
        pager=config.pager,
        pager_args=config.pager_args,
    )


def build_ide_server(config: TermbridgeConfig) -> IDEServer:
    from termbridge.ide_server import IDEServer

    _setup_logging(config)
    logger.info(
        "ide_server_building",
        workspace=str(config.workspace),
        remote=config.remote,
        pager=config.pager,
        highlighter=config.highlighter,
    )
    event_bus = EventBus()
    build_audit_log(config).attach(event_bus)
    return IDEServer(
        config,
        service=build_git_service(config),
        renderer=build_renderer(config),
        event_bus=event_bus,
    )


def build_audit_log(config: TermbridgeConfig) -> AuditLog:
    if config.audit_log is None:
        return AuditLog()
    return AuditLog(_resolve_against(config.audit_log, config.workspace))


def build_bridge_client(config: TermbridgeConfig) -> BridgeClient:
    _setup_logging(config)
    logger.info("bridge_client_building", url=config.bridge_url)
    return BridgeClient(
        config.bridge_url,
        timeout=config.bridge_timeout_seconds,
        token=config.bridge_token,
    )
