"""Push safety checks and the validate → detect-force → confirm → push flow."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from termbridge.exceptions import GitCommandError, RemoteValidationError
from termbridge.git.models import PushResult

if TYPE_CHECKING:
    from termbridge.git.service import GitService

logger = structlog.get_logger()

# (branch, force) -> confirmed
PushConfirmer = Callable[[str, bool], Awaitable[bool]]


class PushManager:
    def __init__(
        self, service: GitService, *, confirm: PushConfirmer | None = None
    ) -> None:
        self._service = service
        self._confirm = confirm

    @property
    def remote(self) -> str:
        return self._service.remote

    async def ensure_remote_branch(self, branch: str) -> None:
        if not await self._service.validate_remote_branch(branch):
            raise RemoteValidationError(
                f"Remote branch {self.remote}/{branch} does not exist"
            )

    async def execute_push(self, branch: str, force: bool) -> str:
        return await self._service.push(branch, force=force)

    async def auto_push_flow(
        self, branch: str, *, skip_confirmation: bool = False
    ) -> PushResult:
        """Validate, detect force, confirm unless skipped, then push.

        A missing remote branch or a declined confirmation is a successful
        no-op; only an unexpected git failure yields success=False.
        """
        logger.info("push_flow_started", branch=branch, skip_confirmation=skip_confirmation)
        try:
            await self.ensure_remote_branch(branch)
        except RemoteValidationError as e:
            logger.info("push_remote_missing", branch=branch)
            return PushResult(success=True, pushed=False, message=str(e), branch=branch)
        except GitCommandError as e:
            return _failed(branch, e)

        try:
            force = await self._service.check_for_force_push()
        except GitCommandError as e:
            return _failed(branch, e)

        if not skip_confirmation:
            confirmed = await self._confirm(branch, force) if self._confirm else False
            if not confirmed:
                logger.info("push_declined", branch=branch)
                return PushResult(
                    success=True,
                    pushed=False,
                    message="Push declined by user",
                    branch=branch,
                    forced=force,
                )

        try:
            details = await self.execute_push(branch, force)
        except GitCommandError as e:
            return _failed(branch, e, forced=force)

        kind = "Force-pushed (with lease)" if force else "Successfully pushed"
        message = f"{kind} to {self.remote}/{branch}"
        logger.info("push_flow_completed", branch=branch, forced=force, details=details)
        return PushResult(
            success=True, pushed=True, message=message, branch=branch, forced=force
        )


def _failed(branch: str, error: GitCommandError, *, forced: bool = False) -> PushResult:
    logger.warning("push_flow_failed", branch=branch, error=str(error))
    return PushResult(
        success=False,
        pushed=False,
        message=f"Push failed: {error.stderr or error}",
        branch=branch,
        forced=forced,
    )
