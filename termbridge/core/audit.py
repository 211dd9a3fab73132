"""Append-only audit trail of push and rollback decisions, in JSON lines."""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from termbridge.core.events import (
    APPROVAL_RESOLVED,
    BRIDGE_REQUEST,
    PUSH_COMPLETED,
    ROLLBACK_COMPLETED,
    Event,
    EventBus,
)

logger = structlog.get_logger()

AUDITED_EVENTS = (APPROVAL_RESOLVED, PUSH_COMPLETED, ROLLBACK_COMPLETED, BRIDGE_REQUEST)


class AuditLog:
    """Records audited events to the structured log and, optionally, a file."""

    def __init__(self, log_path: Path | str | None = None) -> None:
        self._path = Path(log_path) if log_path is not None else None
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path | None:
        return self._path

    def attach(self, event_bus: EventBus) -> None:
        for name in AUDITED_EVENTS:
            event_bus.subscribe(name, self.record)

    async def record(self, event: Event) -> None:
        logger.info("audit", audit_event=event.name, **event.data)
        if self._path is not None:
            self._write(
                {
                    "event": event.name,
                    "timestamp": event.timestamp.isoformat(),
                    "recorded_at": datetime.now(UTC).isoformat(),
                    **event.data,
                }
            )

    def _write(self, entry: dict[str, Any]) -> None:
        try:
            with open(self._path, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            logger.error("audit_write_failed", error=str(e))
