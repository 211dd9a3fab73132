"""Workspace-bounded file access and the active-file resource set."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import structlog

from termbridge.exceptions import WorkspaceAccessError

logger = structlog.get_logger()


class Workspace:
    def __init__(self, root: Path) -> None:
        self.root = root.expanduser().resolve()
        self._active: dict[Path, None] = {}

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        try:
            resolved = candidate.resolve()
        except (ValueError, OSError) as e:
            raise WorkspaceAccessError(f"Invalid path: {e}") from e
        try:
            resolved.relative_to(self.root)
        except ValueError:
            logger.debug("workspace_path_denied", path=str(resolved))
            raise WorkspaceAccessError(
                f"Path {resolved} is outside the workspace {self.root}"
            ) from None
        return resolved

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def read_file(self, path: str) -> str:
        target = self.resolve(path)
        try:
            return target.read_text(encoding="utf-8")
        except OSError as e:
            raise WorkspaceAccessError(f"Failed to read {path}: {e.strerror}") from e

    def write_file(self, path: str, content: str) -> str:
        target = self.resolve(path)
        created = not target.exists()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise WorkspaceAccessError(f"Failed to write {path}: {e.strerror}") from e
        logger.info("workspace_file_written", path=self.relative(target), created=created)
        return f"File written successfully: {path}"

    def list_files(self, path: str = ".") -> str:
        target = self.resolve(path)
        try:
            return "\n".join(sorted(entry.name for entry in target.iterdir()))
        except OSError as e:
            raise WorkspaceAccessError(f"Failed to list {path}: {e.strerror}") from e

    # -- active files (protocol resources) ------------------------------------

    def activate(self, path: str) -> Path:
        target = self.resolve(path)
        if not target.is_file():
            raise WorkspaceAccessError(f"File not found: {path}")
        self._active[target] = None
        return target

    @property
    def active_files(self) -> list[Path]:
        return list(self._active)

    def list_resources(self) -> dict[str, Any]:
        return {
            "resources": [
                {
                    "uri": path.as_uri(),
                    "name": path.name,
                    "mimeType": "text/plain",
                    "description": f"Active file: {self.relative(path)}",
                }
                for path in self._active
            ]
        }

    def read_resource(self, uri: str) -> dict[str, Any]:
        parsed = urlparse(uri)
        raw = unquote(parsed.path) if parsed.scheme == "file" else uri
        try:
            text = self.resolve(raw).read_text(encoding="utf-8")
        except OSError as e:
            raise WorkspaceAccessError(f"Failed to read resource: {uri}") from e
        return {"contents": [{"uri": uri, "mimeType": "text/plain", "text": text}]}
