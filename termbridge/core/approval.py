"""Approval state machine: review, ask, then push or roll back.

Both the local /review-push command and the bridged review_push tool run
through the single ApprovalMachine owned by the IDE process. The Idle guard
is checked and set without an intervening await, so at most one flow can be
past it at any time.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Literal

import structlog
from pydantic import BaseModel, ConfigDict

from termbridge.core.events import (
    APPROVAL_RESOLVED,
    APPROVAL_STARTED,
    PUSH_COMPLETED,
    ROLLBACK_COMPLETED,
    Event,
)
from termbridge.exceptions import (
    ConcurrentApprovalError,
    GitCommandError,
    RendererUnavailableError,
    TerminalInterrupted,
)
from termbridge.git import formatter
from termbridge.git.models import PushDecision, PushResult, RollbackResult
from termbridge.git.review import is_nothing_to_review

if TYPE_CHECKING:
    from termbridge.core.events import EventBus
    from termbridge.git.push import PushManager
    from termbridge.git.review import CommitReviewBuilder
    from termbridge.git.service import GitService
    from termbridge.terminal.pager import DiffRenderer
    from termbridge.terminal.session import TerminalHandle, TerminalSession

logger = structlog.get_logger()

ALREADY_IN_PROGRESS = "Approval already in progress"

OutcomeStatus = Literal[
    "pushed",
    "not_pushed",
    "push_failed",
    "rolled_back",
    "nothing_to_review",
    "cancelled",
    "busy",
    "failed",
]


class ApprovalState(StrEnum):
    IDLE = "idle"
    REVIEW_RENDERING = "review_rendering"
    AWAITING_ANSWER = "awaiting_answer"
    PUSHING = "pushing"
    ROLLING_BACK = "rolling_back"
    CANCELLED = "cancelled"


class ApprovalOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    message: str
    push_result: PushResult | None = None
    rollback: RollbackResult | None = None

    @property
    def success(self) -> bool:
        return self.status not in ("push_failed", "busy", "failed")


class ApprovalMachine:
    def __init__(
        self,
        service: GitService,
        review: CommitReviewBuilder,
        push: PushManager,
        renderer: DiffRenderer,
        terminal: TerminalSession,
        event_bus: EventBus | None = None,
    ) -> None:
        self._service = service
        self._review = review
        self._push = push
        self._renderer = renderer
        self._terminal = terminal
        self._event_bus = event_bus
        self._state = ApprovalState.IDLE
        self._trigger: str | None = None

    @property
    def state(self) -> ApprovalState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not ApprovalState.IDLE

    def _begin(self, trigger: str) -> None:
        if self._state is not ApprovalState.IDLE:
            raise ConcurrentApprovalError(
                f"{ALREADY_IN_PROGRESS} (started by {self._trigger}, "
                f"state {self._state.value})"
            )
        self._state = ApprovalState.REVIEW_RENDERING
        self._trigger = trigger

    def _finish(self) -> None:
        self._state = ApprovalState.IDLE
        self._trigger = None

    async def run(self, *, trigger: str, branch: str | None = None) -> ApprovalOutcome:
        """Run one full review-and-push flow; never interleaves with another."""
        try:
            self._begin(trigger)
        except ConcurrentApprovalError as e:
            logger.warning("approval_rejected_busy", trigger=trigger, state=self._state)
            return ApprovalOutcome(status="busy", message=f"⏳ {e}")

        logger.info("approval_started", trigger=trigger, branch=branch)
        await self._emit(APPROVAL_STARTED, trigger=trigger)
        try:
            try:
                async with self._terminal.exclusive(f"approval:{trigger}") as handle:
                    outcome = await self._run_owned(handle, branch)
            except TerminalInterrupted:
                outcome = ApprovalOutcome(
                    status="cancelled", message="\U0001f4cb Approval interrupted."
                )
            except GitCommandError as e:
                logger.warning("approval_git_failed", error=str(e))
                outcome = ApprovalOutcome(
                    status="failed", message=f"❌ Approval failed: {e}"
                )
        finally:
            self._finish()

        logger.info("approval_resolved", trigger=trigger, status=outcome.status)
        await self._emit(APPROVAL_RESOLVED, trigger=trigger, status=outcome.status)
        return outcome

    async def _run_owned(
        self, handle: TerminalHandle, branch: str | None
    ) -> ApprovalOutcome:
        content = await self._review.generate_commit_review_content()
        if is_nothing_to_review(content):
            self._terminal.write(f"\n{content}\n")
            return ApprovalOutcome(status="nothing_to_review", message=content)

        try:
            await self._renderer.display_review(content, handle)
        except (OSError, RendererUnavailableError) as e:
            # The review is best-effort; the question is still asked
            logger.warning("review_display_failed", error=str(e))

        self._state = ApprovalState.AWAITING_ANSWER
        target = branch or await self._service.current_branch()
        if not target:
            return ApprovalOutcome(
                status="failed", message="❌ Cannot push from a detached HEAD."
            )
        try:
            force = await self._service.check_for_force_push()
        except GitCommandError as e:
            logger.warning("force_check_failed", error=str(e))
            force = False

        question = formatter.format_push_question(self._push.remote, target, force=force)
        answer = await self._terminal.ask(handle, question)
        decision = PushDecision.parse(answer)
        logger.info("approval_answered", decision=decision.kind)

        if decision.approved:
            return await self._do_push(target)
        if decision.rejected:
            return await self._do_rollback()

        self._state = ApprovalState.CANCELLED
        message = (
            f"❌ {decision.reason}.\n"
            "\U0001f4cb Approval cancelled. Use /rp again to retry."
        )
        self._terminal.write(f"{message}\n")
        return ApprovalOutcome(status="cancelled", message=message)

    async def _do_push(self, branch: str) -> ApprovalOutcome:
        self._state = ApprovalState.PUSHING
        self._terminal.write("\n\U0001f680 Initiating push workflow...\n")
        result = await self._push.auto_push_flow(branch, skip_confirmation=True)
        message = formatter.format_push_result(result)
        self._terminal.write(f"{message}\n")
        await self._emit(PUSH_COMPLETED, branch=branch, pushed=result.pushed)

        if not result.success:
            status: OutcomeStatus = "push_failed"
        elif result.pushed:
            status = "pushed"
        else:
            status = "not_pushed"
        return ApprovalOutcome(status=status, message=message, push_result=result)

    async def _do_rollback(self) -> ApprovalOutcome:
        self._state = ApprovalState.ROLLING_BACK
        self._terminal.write("\n\U0001f504 Rejecting commits and undoing...\n")
        result = await self._service.rollback_unpushed()
        message = formatter.format_rollback_result(result)
        self._terminal.write(f"{message}\n")
        await self._emit(ROLLBACK_COMPLETED, undone=result.undone)
        return ApprovalOutcome(status="rolled_back", message=message, rollback=result)

    async def _emit(self, name: str, **data: object) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(Event(name=name, data=data))
