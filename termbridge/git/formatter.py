"""Pure functions to format git data for the terminal and tool results."""

from termbridge.git.models import GitStatus, PushResult, RollbackResult

_STATUS_CODE = {
    "modified": "M",
    "added": "A",
    "deleted": "D",
    "renamed": "R",
    "copied": "C",
    "conflicted": "U",
    "untracked": "?",
}


def format_status_report(branch: str, unpushed: int, porcelain: str) -> str:
    """Text returned by the git_status tool."""
    lines = [
        f"Current branch: {branch or '(detached HEAD)'}",
        f"Unpushed commits: {unpushed}",
        "",
    ]
    if porcelain.strip():
        lines.append("Working directory changes:")
        lines.append(porcelain.rstrip("\n"))
    else:
        lines.append("Working directory clean")
    return "\n".join(lines)


def format_status(status: GitStatus) -> str:
    """Format GitStatus for the terminal."""
    branch_line = f"\U0001f4cb Branch: {status.branch}"
    if status.tracking:
        tracking_parts = [f"tracking {status.tracking}"]
        if status.ahead:
            tracking_parts.append(f"{status.ahead} ahead")
        if status.behind:
            tracking_parts.append(f"{status.behind} behind")
        branch_line += f" ({', '.join(tracking_parts)})"
    lines = [branch_line]

    for title, changes in (
        ("\U0001f7e2 Staged:", status.staged),
        ("\U0001f534 Unstaged:", status.unstaged),
    ):
        if changes:
            lines.append("")
            lines.append(title)
            for change in changes:
                lines.append(f"  {_STATUS_CODE.get(change.status, '?')} {change.path}")

    if status.untracked:
        lines.append("")
        lines.append("❓ Untracked:")
        lines.extend(f"  {path}" for path in status.untracked)

    if status.is_clean:
        lines.append("")
        lines.append("✨ Working tree clean")

    return "\n".join(lines)


def format_push_result(result: PushResult) -> str:
    if result.success and result.pushed:
        return f"\U0001f389 {result.message}"
    if result.success:
        return f"\U0001f4cb {result.message}"
    return f"❌ {result.message}"


def format_rollback_result(result: RollbackResult) -> str:
    if result.undone == 0:
        return f"⚠️  {result.message}"
    lines = [f"✅ {result.message}"]
    if result.previous_head:
        lines.append(f"\U0001f4cd Previous commit: {result.previous_head[:8]}")
    if result.new_head:
        lines.append(f"\U0001f4cd Current commit: {result.new_head[:8]}")
    lines.append("\U0001f4dd Changes remain in working directory (unstaged)")
    return "\n".join(lines)


def format_push_question(remote: str, branch: str, *, force: bool) -> str:
    lines = []
    if force:
        lines.append("")
        lines.append(
            "⚠️  WARNING: Force push required! "
            "This will overwrite remote history (--force-with-lease)."
        )
    push_type = "FORCE PUSH" if force else "push"
    lines.append("")
    lines.append(f"❓ {push_type} to {remote}/{branch}? (y/n): ")
    return "\n".join(lines)


def format_help() -> str:
    """Return help text listing the interactive commands."""
    return (
        "Available commands:\n"
        "  /review-push (/rp) — Review unpushed commits and approve/reject for push\n"
        "  /send <path> — Send a workspace file to the connected agent\n"
        "  /status — Show branch, tracking and working tree status\n"
        "  /active — Show active files (resources)\n"
        "  /help — Show this help message\n"
        "  /quit — Stop the server and exit"
    )
