"""Shared fixtures: env isolation, throwaway git repositories and a pipe-backed stdin."""

from __future__ import annotations

import contextlib
import os
import subprocess
from pathlib import Path

import pytest

from termbridge.core.config import TermbridgeConfig
from termbridge.git.service import GitService
from termbridge.terminal.pager import DiffRenderer

MISSING_TOOL = "definitely-missing-termbridge-tool"


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Prevent .env file and shell env from leaking into tests.

    TermbridgeConfig.model_config has env_file=".env" which loads the
    project .env relative to cwd. Nullify it at the source.
    """
    monkeypatch.setitem(TermbridgeConfig.model_config, "env_file", None)
    for key in list(os.environ):
        if key.startswith("TERMBRIDGE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def git_env(monkeypatch):
    """Keep the user's global and system git config out of test repos."""
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@pytest.fixture
def git(git_env):
    """Run git synchronously in a directory and return stdout."""

    def _git(cwd: Path, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout

    return _git


@pytest.fixture
def commit(git):
    """Write a file, commit it, and return the new commit hash."""

    def _commit(repo: Path, name: str, content: str, message: str) -> str:
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        git(repo, "add", name)
        git(repo, "commit", "-q", "-m", message)
        return git(repo, "rev-parse", "HEAD").strip()

    return _commit


@pytest.fixture
def init_repo(git):
    def _init(path: Path) -> Path:
        git(path.parent, "init", "-q", "--initial-branch=main", str(path))
        git(path, "config", "user.name", "Test User")
        git(path, "config", "user.email", "test@example.com")
        git(path, "config", "commit.gpgsign", "false")
        return path

    return _init


@pytest.fixture
def upstream(tmp_path, git):
    path = tmp_path / "upstream.git"
    git(tmp_path, "init", "-q", "--bare", "--initial-branch=main", str(path))
    return path


@pytest.fixture
def repo(tmp_path, git, init_repo, commit, upstream):
    """Working tree on `main` with one commit pushed to a bare `origin`."""
    work = init_repo(tmp_path / "work")
    git(work, "remote", "add", "origin", str(upstream))
    commit(work, "README.md", "hello\n", "Initial commit")
    git(work, "push", "-q", "-u", "origin", "main")
    return work


@pytest.fixture
def lone_repo(tmp_path, init_repo):
    """Working tree with no remote and no commits."""
    return init_repo(tmp_path / "lone")


@pytest.fixture
def service(repo):
    return GitService(repo)


@pytest.fixture
def renderer():
    return DiffRenderer(highlighter=MISSING_TOOL, pager=MISSING_TOOL)


@pytest.fixture
def config(repo, tmp_path):
    return TermbridgeConfig(
        workspace=repo,
        lock_dir=tmp_path / "ide",
        pager=MISSING_TOOL,
        highlighter=MISSING_TOOL,
    )


class StdinPipe:
    """A pipe standing in for the process stdin."""

    def __init__(self) -> None:
        self.read_fd, self.write_fd = os.pipe()
        self._writer_open = True

    def type(self, text: str) -> None:
        os.write(self.write_fd, text.encode())

    def close_writer(self) -> None:
        if self._writer_open:
            self._writer_open = False
            os.close(self.write_fd)

    def close(self) -> None:
        self.close_writer()
        with contextlib.suppress(OSError):
            os.close(self.read_fd)


@pytest.fixture
def stdin_pipe():
    pipe = StdinPipe()
    yield pipe
    pipe.close()
