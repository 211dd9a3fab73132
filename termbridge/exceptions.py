"""Shared exception types for termbridge."""


class TermbridgeError(Exception):
    """Base exception for all termbridge errors."""


class ConfigError(TermbridgeError):
    """Configuration is invalid or missing."""


class GitCommandError(TermbridgeError):
    """A git subprocess exited non-zero or timed out."""

    def __init__(self, command: tuple[str, ...] | list[str], stderr: str) -> None:
        self.command = tuple(command)
        self.stderr = stderr.strip()
        detail = self.stderr or "no output"
        super().__init__(f"`{' '.join(self.command)}` failed: {detail}")


class RemoteValidationError(TermbridgeError):
    """The remote branch a push targets does not exist."""


class RendererUnavailableError(TermbridgeError):
    """The diff highlighter or pager could not be run."""


class BridgeError(TermbridgeError):
    """The loopback request between the two processes failed."""


class ConcurrentApprovalError(TermbridgeError):
    """An approval flow was triggered while another one is in progress."""


class TerminalOwnershipError(TermbridgeError):
    """Terminal ownership was violated or line editing could not be restored."""


class TerminalInterrupted(TermbridgeError):
    """SIGINT arrived while a raw question held the terminal."""


class UnknownToolError(TermbridgeError):
    """A tool call named a tool that is not registered."""


class WorkspaceAccessError(TermbridgeError):
    """A path resolved outside the workspace or could not be accessed."""
