"""Async wrapper for the git CLI operations behind review and push."""

import asyncio
import contextlib
import re
from pathlib import Path

import structlog

from termbridge.exceptions import GitCommandError
from termbridge.git.models import (
    CommitMetadata,
    CommitReview,
    FileChange,
    FileDiff,
    GitStatus,
    RollbackResult,
    is_diff_range,
)

logger = structlog.get_logger()

_DEFAULT_TIMEOUT = 30.0
_LOG_DELIMITER = "\x1f"
_BEHIND_RE = re.compile(r"\[[^\]]*\b(behind|diverged)\b[^\]]*\]")


class GitService:
    """Stateless git operations bound to one working tree."""

    def __init__(
        self,
        cwd: Path,
        *,
        remote: str = "origin",
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.cwd = cwd
        self.remote = remote
        self.timeout = timeout

    async def is_repo(self) -> bool:
        """Check if cwd is inside a git repository."""
        code, _, _ = await self._run("rev-parse", "--is-inside-work-tree")
        return code == 0

    async def current_branch(self) -> str:
        """Current branch name, empty when HEAD is detached."""
        stdout = await self._check("branch", "--show-current")
        return stdout.strip()

    async def status(self) -> GitStatus:
        """Parse git status --porcelain=v2 --branch into GitStatus model."""
        stdout = await self._check("status", "--porcelain=v2", "--branch")

        branch = "HEAD"
        tracking = None
        ahead = 0
        behind = 0
        staged: list[FileChange] = []
        unstaged: list[FileChange] = []
        untracked: list[str] = []

        for line in stdout.splitlines():
            if line.startswith("# branch.head "):
                branch = line.split(" ", 2)[2]
            elif line.startswith("# branch.upstream "):
                tracking = line.split(" ", 2)[2]
            elif line.startswith("# branch.ab "):
                for part in line.split(" ")[2:]:
                    if part.startswith("+"):
                        ahead = int(part[1:])
                    elif part.startswith("-"):
                        behind = int(part[1:])
            elif line.startswith("1 ") or line.startswith("2 "):
                # Type 1: "1 XY sub mH mI mW hH hI path"
                # Type 2: "2 XY sub mH mI mW hH hI Xscore path\torigPath"
                max_split = 9 if line.startswith("2 ") else 8
                parts = line.split(" ", max_split)
                if len(parts) < max_split + 1:
                    continue
                xy = parts[1]
                path_part = parts[max_split].split("\t")[0]
                if xy[0] != ".":
                    staged.append(
                        FileChange(path=path_part, status=_porcelain_to_status(xy[0]))
                    )
                if len(xy) > 1 and xy[1] != ".":
                    unstaged.append(
                        FileChange(path=path_part, status=_porcelain_to_status(xy[1]))
                    )
            elif line.startswith("u "):
                parts = line.split(" ", 10)
                if len(parts) >= 11:
                    staged.append(FileChange(path=parts[10], status="conflicted"))
            elif line.startswith("? "):
                untracked.append(line[2:])

        return GitStatus(
            branch=branch,
            tracking=tracking,
            ahead=ahead,
            behind=behind,
            staged=staged,
            unstaged=unstaged,
            untracked=untracked,
        )

    async def porcelain_status(self) -> str:
        return await self._check("status", "--porcelain")

    async def has_remote_tracking(self, branch: str) -> bool:
        """True when <remote>/<branch> resolves locally."""
        if not branch:
            return False
        code, _, _ = await self._run(
            "rev-parse", "--verify", "--quiet", f"{self.remote}/{branch}"
        )
        return code == 0

    async def total_commit_count(self) -> int:
        code, stdout, stderr = await self._run("rev-list", "--count", "HEAD")
        if code != 0:
            # Unborn branch: nothing committed yet
            if "unknown revision" in stderr or "ambiguous argument" in stderr:
                return 0
            raise GitCommandError(("git", "rev-list", "--count", "HEAD"), stderr)
        return _parse_count(stdout)

    async def unpushed_commit_count(self) -> int:
        """Commits on HEAD missing from the remote-tracking branch.

        Without a remote-tracking branch every commit on HEAD counts.
        """
        branch = await self.current_branch()
        if not await self.has_remote_tracking(branch):
            return await self.total_commit_count()
        stdout = await self._check(
            "rev-list", "--count", f"{self.remote}/{branch}..HEAD"
        )
        return _parse_count(stdout)

    async def review_range(self) -> str:
        """`<remote>/<branch>..HEAD` when tracked, otherwise `HEAD`."""
        branch = await self.current_branch()
        if await self.has_remote_tracking(branch):
            return f"{self.remote}/{branch}..HEAD"
        return "HEAD"

    async def changed_files(self, commit_range: str = "HEAD") -> list[str]:
        """Files touched by a range, or by a single commit for a bare ref."""
        if is_diff_range(commit_range):
            stdout = await self._check("diff", "--name-only", commit_range)
        else:
            stdout = await self._check(
                "show", "--name-only", "--format=", commit_range
            )
        return [line for line in stdout.splitlines() if line.strip()]

    async def file_diffs(self, commit_range: str = "HEAD") -> list[FileDiff]:
        """Per-file diffs in the order git reports the changed files.

        A bare ref is diffed against its parent so `HEAD` covers only the
        tip commit. A root commit has no parent and is diffed with `git show`.
        """
        files = await self.changed_files(commit_range)
        diffs: list[FileDiff] = []
        for path in files:
            if is_diff_range(commit_range):
                args: tuple[str, ...] = ("diff", commit_range, "--", path)
            elif await self._has_parent(commit_range):
                args = ("diff", f"{commit_range}~1..{commit_range}", "--", path)
            else:
                args = ("show", "--format=", commit_range, "--", path)
            code, stdout, stderr = await self._run(*args)
            if code != 0:
                logger.warning("file_diff_failed", path=path, error=stderr.strip())
                stdout = ""
            diffs.append(FileDiff(path=path, diff=stdout))
        return diffs

    async def commit_review(self, ref: str = "HEAD") -> CommitReview:
        meta = await self.commit_metadata(ref)
        diff = await self._check("show", "--format=", ref)
        return CommitReview(
            commit_hash=meta.hash,
            author=meta.author,
            date=meta.date,
            subject=meta.subject,
            diff=diff,
        )

    async def commit_metadata(self, ref: str = "HEAD") -> CommitMetadata:
        d = _LOG_DELIMITER
        stdout = await self._check(
            "show", "--no-patch", f"--format=%H{d}%an{d}%ae{d}%ad{d}%s{d}%b", ref
        )
        parts = stdout.strip("\n").split(d, 5)
        parts += [""] * (6 - len(parts))
        return CommitMetadata(
            hash=parts[0],
            author=parts[1],
            author_email=parts[2],
            date=parts[3],
            subject=parts[4],
            body=parts[5].strip(),
        )

    async def oneline_log(self, commit_range: str = "HEAD") -> list[str]:
        stdout = await self._check("log", "--oneline", commit_range)
        return [line for line in stdout.splitlines() if line.strip()]

    async def rev_parse(self, ref: str = "HEAD") -> str:
        stdout = await self._check("rev-parse", ref)
        return stdout.strip()

    async def validate_remote_branch(self, branch: str) -> bool:
        """True iff the remote advertises refs/heads/<branch>."""
        stdout = await self._check("ls-remote", "--heads", self.remote, branch)
        return bool(stdout.strip())

    async def check_for_force_push(self) -> bool:
        """True when the branch is behind or diverged from its upstream."""
        stdout = await self._check("status", "-sb")
        first = stdout.splitlines()[0] if stdout else ""
        return bool(_BEHIND_RE.search(first))

    async def push(self, branch: str, *, force: bool = False) -> str:
        """Push to the remote; force uses --force-with-lease, never --force."""
        args = ["push"]
        if force:
            args.append("--force-with-lease")
        args.extend([self.remote, branch])
        code, stdout, stderr = await self._run(*args)
        if code != 0:
            raise GitCommandError(("git", *args), stderr or stdout)
        logger.info("git_pushed", branch=branch, force=force)
        return (stderr.strip() or stdout.strip())

    async def rollback_unpushed(self) -> RollbackResult:
        """Undo every commit not yet on the remote."""
        return await self.rollback_commits(await self.unpushed_commit_count())

    async def rollback_commits(self, count: int) -> RollbackResult:
        """Undo the last `count` commits, keeping their changes unstaged."""
        if count <= 0:
            return RollbackResult(undone=0, message="No unpushed commits to undo.")

        previous = await self.rev_parse("HEAD")
        total = await self.total_commit_count()
        if count >= total:
            # HEAD~count does not exist; the branch ref is never deleted
            logger.warning("git_rollback_refused", count=count, total=total)
            return RollbackResult(
                undone=0,
                previous_head=previous,
                message=(
                    f"Cannot undo {count} commit(s): HEAD~{count} does not exist. "
                    "Nothing was changed."
                ),
            )

        await self._check("reset", "--soft", f"HEAD~{count}")
        new_head = await self.rev_parse("HEAD")
        await self._check("reset", "--quiet")

        plural = "s" if count > 1 else ""
        logger.info(
            "git_rolled_back", count=count, previous=previous, new_head=new_head
        )
        return RollbackResult(
            undone=count,
            previous_head=previous,
            new_head=new_head,
            message=f"{count} commit{plural} undone, changes kept unstaged",
        )

    async def _has_parent(self, ref: str) -> bool:
        code, _, _ = await self._run("rev-parse", "--verify", "--quiet", f"{ref}~1")
        return code == 0

    async def _check(self, *args: str) -> str:
        """Run git and return stdout, raising GitCommandError on failure."""
        code, stdout, stderr = await self._run(*args)
        if code != 0:
            raise GitCommandError(("git", *args), stderr)
        return stdout

    async def _run(self, *args: str) -> tuple[int, str, str]:
        """Execute a git command via asyncio.create_subprocess_exec."""
        if not self.cwd.is_dir():
            return 1, "", f"Directory does not exist: {self.cwd}"

        cmd = ("git", *args)
        logger.debug("git_exec", command=cmd, cwd=str(self.cwd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return 1, "", "git is not installed or not in PATH"
        except OSError as e:
            logger.error("git_exec_error", command=cmd, error=str(e))
            return 1, "", str(e)

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except TimeoutError:
            logger.warning("git_exec_timeout", command=cmd, timeout=self.timeout)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            return 1, "", f"Command timed out after {self.timeout}s"

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return proc.returncode or 0, stdout, stderr


def _parse_count(text: str) -> int:
    try:
        return max(0, int(text.strip() or 0))
    except ValueError:
        return 0


def _porcelain_to_status(code: str) -> str:
    """Convert porcelain v2 status code to human-readable status."""
    return {
        "M": "modified",
        "T": "modified",
        "A": "added",
        "D": "deleted",
        "R": "renamed",
        "C": "copied",
        "U": "conflicted",
    }.get(code, "modified")
