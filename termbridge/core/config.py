"""Unified configuration via pydantic-settings."""

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_HIGHLIGHTER_ARGS = [
    "--pager=never",
    "--syntax-theme=Dracula",
    "--no-gitconfig",
    "--file-style=omit",
    "--hunk-header-style=omit",
    "--keep-plus-minus-markers",
]


def _split_csv(v: list[str] | str) -> list[str]:
    if isinstance(v, str):
        return [part.strip() for part in v.split(",") if part.strip()]
    return v


class TermbridgeConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TERMBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    workspace: Path = Field(default_factory=Path.cwd)
    ide_name: str = "termbridge"

    # Transports
    ws_port: int = 0
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 0
    bridge_token: str | None = None
    bridge_timeout_seconds: float | None = 900.0

    # Git
    remote: str = "origin"
    git_timeout_seconds: float = 30.0

    # Rendering
    pager: str = "less"
    pager_args: Annotated[list[str], NoDecode] = ["-R"]
    highlighter: str = "delta"
    highlighter_args: Annotated[list[str], NoDecode] = DEFAULT_HIGHLIGHTER_ARGS
    highlighter_timeout_seconds: float = 10.0

    # Lock files for IDE discovery
    lock_dir: Path = Path.home() / ".claude" / "ide"

    # Logging
    log_level: str = "INFO"
    log_dir: Path | None = None
    log_max_bytes: int = 10_485_760
    log_backup_count: int = 5

    # Audit trail of approvals, pushes and rollbacks (JSON lines)
    audit_log: Path | None = None

    @field_validator("workspace")
    @classmethod
    def resolve_workspace(cls, v: Path) -> Path:
        resolved = v.expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"workspace does not exist: {resolved}")
        return resolved

    @field_validator("pager_args", "highlighter_args", mode="before")
    @classmethod
    def parse_arg_lists(cls, v: list[str] | str) -> list[str]:
        return _split_csv(v)

    @field_validator("ws_port", "bridge_port")
    @classmethod
    def check_port(cls, v: int) -> int:
        if not 0 <= v <= 65535:
            raise ValueError(f"port out of range: {v}")
        return v

    @field_validator("lock_dir", mode="after")
    @classmethod
    def expand_lock_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def bridge_url(self) -> str:
        return f"http://{self.bridge_host}:{self.bridge_port}/mcp"
