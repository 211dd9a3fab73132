"""GitService against real throwaway repositories with a bare upstream."""

from __future__ import annotations

import pytest

from termbridge.exceptions import GitCommandError
from termbridge.git.service import GitService


class TestUnpushedCommits:
    async def test_nothing_unpushed_after_setup(self, service):
        assert await service.unpushed_commit_count() == 0
        assert await service.review_range() == "origin/main..HEAD"

    async def test_counts_commits_ahead_of_remote(self, service, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        commit(repo, "b.txt", "b\n", "Add b")
        assert await service.unpushed_commit_count() == 2
        log = await service.oneline_log("origin/main..HEAD")
        assert [line.split(" ", 1)[1] for line in log] == ["Add b", "Add a"]

    async def test_untracked_branch_counts_every_commit(self, service, repo, git, commit):
        git(repo, "checkout", "-q", "-b", "feature")
        commit(repo, "f.txt", "f\n", "Add f")
        assert await service.current_branch() == "feature"
        assert await service.has_remote_tracking("feature") is False
        assert await service.unpushed_commit_count() == 2
        assert await service.review_range() == "HEAD"

    async def test_unborn_branch(self, lone_repo):
        service = GitService(lone_repo)
        assert await service.total_commit_count() == 0
        assert await service.unpushed_commit_count() == 0


class TestFileDiffs:
    async def test_range_covers_every_unpushed_commit(self, service, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        commit(repo, "b.txt", "b\n", "Add b")
        diffs = await service.file_diffs("origin/main..HEAD")
        assert [d.path for d in diffs] == ["a.txt", "b.txt"]
        assert "+a" in diffs[0].diff

    async def test_bare_head_covers_only_the_tip_commit(self, service, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        commit(repo, "b.txt", "b\n", "Add b")
        assert await service.changed_files("HEAD") == ["b.txt"]
        diffs = await service.file_diffs("HEAD")
        assert [d.path for d in diffs] == ["b.txt"]
        assert "+b" in diffs[0].diff
        assert "a.txt" not in diffs[0].diff

    async def test_root_commit(self, lone_repo, commit):
        commit(lone_repo, "first.txt", "one\n", "Root")
        service = GitService(lone_repo)
        diffs = await service.file_diffs("HEAD")
        assert [d.path for d in diffs] == ["first.txt"]
        assert "+one" in diffs[0].diff


class TestCommitInfo:
    async def test_commit_metadata(self, service, repo, commit):
        sha = commit(repo, "a.txt", "a\n", "Add a")
        meta = await service.commit_metadata()
        assert meta.hash == sha
        assert meta.author == "Test User"
        assert meta.author_email == "test@example.com"
        assert meta.subject == "Add a"

    async def test_commit_review(self, service, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        review = await service.commit_review()
        assert review.subject == "Add a"
        assert "+a" in review.diff


class TestRemote:
    async def test_validate_remote_branch(self, service):
        assert await service.validate_remote_branch("main") is True
        assert await service.validate_remote_branch("no-such-branch") is False

    async def test_diverged_branch_needs_force(self, service, repo, git, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        git(repo, "push", "-q", "origin", "main")
        git(repo, "reset", "-q", "--hard", "HEAD~1")
        commit(repo, "b.txt", "b\n", "Add b")
        assert await service.check_for_force_push() is True

    async def test_ahead_only_is_not_force(self, service, repo, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        assert await service.check_for_force_push() is False

    async def test_push_updates_upstream(self, service, repo, git, upstream, commit):
        sha = commit(repo, "a.txt", "a\n", "Add a")
        await service.push("main")
        assert git(upstream, "rev-parse", "main").strip() == sha

    async def test_push_rejected_raises(self, service, repo, git, commit):
        commit(repo, "a.txt", "a\n", "Add a")
        git(repo, "push", "-q", "origin", "main")
        git(repo, "reset", "-q", "--hard", "HEAD~1")
        commit(repo, "b.txt", "b\n", "Add b")
        with pytest.raises(GitCommandError):
            await service.push("main")


class TestRollback:
    async def test_undo_keeps_changes_unstaged(self, service, repo, git, commit):
        base = git(repo, "rev-parse", "HEAD").strip()
        commit(repo, "a.txt", "a\n", "Add a")
        tip = commit(repo, "README.md", "changed\n", "Edit readme")

        result = await service.rollback_commits(2)

        assert result.undone == 2
        assert result.previous_head == tip
        assert result.new_head == base
        assert result.message == "2 commits undone, changes kept unstaged"
        assert git(repo, "rev-parse", "HEAD").strip() == base
        assert (repo / "a.txt").read_text() == "a\n"
        porcelain = git(repo, "status", "--porcelain")
        assert " M README.md" in porcelain
        assert "?? a.txt" in porcelain
        assert await service.unpushed_commit_count() == 0

    async def test_undo_every_commit_changes_nothing(self, lone_repo, git, commit):
        commit(lone_repo, "one.txt", "1\n", "One")
        tip = commit(lone_repo, "two.txt", "2\n", "Two")
        service = GitService(lone_repo)

        result = await service.rollback_commits(2)

        assert result.undone == 0
        assert "Nothing was changed" in result.message
        assert git(lone_repo, "rev-parse", "HEAD").strip() == tip
        assert await service.total_commit_count() == 2
        assert git(lone_repo, "status", "--porcelain") == ""

    async def test_feature_branch_without_upstream_keeps_its_ref(
        self, service, repo, git, commit
    ):
        git(repo, "checkout", "-q", "-b", "feature")
        tip = commit(repo, "f.txt", "f\n", "Add f")

        result = await service.rollback_unpushed()

        assert result.undone == 0
        assert git(repo, "rev-parse", "refs/heads/feature").strip() == tip
        assert git(repo, "rev-parse", "HEAD").strip() == tip
        assert git(repo, "status", "--porcelain") == ""

    async def test_rollback_unpushed_only_touches_local_commits(self, service, repo, git, commit):
        pushed = git(repo, "rev-parse", "HEAD").strip()
        commit(repo, "a.txt", "a\n", "Add a")

        result = await service.rollback_unpushed()

        assert result.undone == 1
        assert git(repo, "rev-parse", "HEAD").strip() == pushed
        assert "?? a.txt" in git(repo, "status", "--porcelain")

    async def test_rollback_unpushed_with_nothing_to_undo(self, service):
        result = await service.rollback_unpushed()
        assert result.undone == 0
