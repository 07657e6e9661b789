"""Tests for GitHub pull request helper functions."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from github import GithubException

from prwarden_core.errors import PreconditionError, TransientError
from prwarden_core.fingerprint import content_hash
from prwarden_core.gh.pull_request import (
    build_review_context,
    call_github,
    get_commentable_lines,
    get_file_diffs,
    get_last_reviewed_sha,
    sha_marker,
)
from prwarden_core.models import Side

SHA = "a" * 40
SHA2 = "b" * 40


def _review_with_body(body):
    r = MagicMock()
    r.body = body
    return r


def _commit(message):
    return SimpleNamespace(commit=SimpleNamespace(message=message))


def _pr(commits=2, base_sha=SHA, head_sha=SHA2, body="Adds a feature"):
    pr = MagicMock()
    pr.number = 7
    pr.title = "Add feature"
    pr.body = body
    pr.draft = False
    pr.commits = commits
    pr.base.sha = base_sha
    pr.head.sha = head_sha
    pr.get_commits.return_value = [_commit(f"commit {i}") for i in range(commits)]
    return pr


def _file(filename, patch="@@ -1 +1 @@\n+x\n", status="modified"):
    return SimpleNamespace(filename=filename, patch=patch, status=status)


class TestGetLastReviewedSha:
    def test_returns_none_when_no_reviews(self):
        pr = MagicMock()
        pr.get_reviews.return_value = []
        assert get_last_reviewed_sha(pr) is None

    def test_returns_none_when_no_marker_in_body(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body("LGTM!")]
        assert get_last_reviewed_sha(pr) is None

    def test_returns_sha_when_marker_present(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body(f"Good review\n{sha_marker(SHA)}")]
        assert get_last_reviewed_sha(pr) == SHA

    def test_returns_most_recent_sha_when_multiple_reviews(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [
            _review_with_body(sha_marker(SHA)),
            _review_with_body(sha_marker(SHA2)),
        ]
        assert get_last_reviewed_sha(pr) == SHA2

    def test_handles_none_body(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review_with_body(None)]
        assert get_last_reviewed_sha(pr) is None


class TestBuildReviewContext:
    def test_collects_pointers_and_metadata(self):
        context = build_review_context("owner/repo", _pr(commits=3))
        assert context.repo == "owner/repo"
        assert context.number == 7
        assert context.iteration == 3
        assert context.base_sha == SHA
        assert context.head_sha == SHA2
        assert context.metadata.title == "Add feature"
        assert context.metadata.description == "Adds a feature"
        assert context.metadata.commit_messages == ["commit 0", "commit 1", "commit 2"]

    def test_commit_messages_limited(self):
        context = build_review_context("owner/repo", _pr(commits=5), max_commit_messages=2)
        assert context.metadata.commit_messages == ["commit 0", "commit 1"]

    def test_none_body_becomes_empty_description(self):
        assert build_review_context("owner/repo", _pr(body=None)).metadata.description == ""

    def test_no_commits_is_a_precondition_failure(self):
        pr = _pr(commits=0)
        with pytest.raises(PreconditionError):
            build_review_context("owner/repo", pr)
        pr.get_commits.assert_not_called()

    @pytest.mark.parametrize("base_sha, head_sha", [(None, SHA2), (SHA, None), ("", SHA2)])
    def test_missing_revision_pointer_is_a_precondition_failure(self, base_sha, head_sha):
        pr = _pr(base_sha=base_sha, head_sha=head_sha)
        with pytest.raises(PreconditionError):
            build_review_context("owner/repo", pr)
        pr.get_commits.assert_not_called()


class TestGetFileDiffs:
    def test_sorted_and_hashed(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("src/z.py"), _file("src/a.py", patch="+y\n")]
        diffs, skipped = get_file_diffs(pr)
        assert [d.path for d in diffs] == ["src/a.py", "src/z.py"]
        assert diffs[0].content_hash == content_hash("+y\n")
        assert skipped == []

    def test_excluded_and_non_code_files_skipped(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("app/migrations/0001.py"), _file("logo.png"), _file("app/views.py")]
        diffs, skipped = get_file_diffs(pr, exclude=["migrations/"])
        assert [d.path for d in diffs] == ["app/views.py"]
        assert skipped == ["app/migrations/0001.py", "logo.png"]

    def test_missing_patch_marks_binary(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("data.py", patch=None)]
        diffs, _ = get_file_diffs(pr)
        assert diffs[0].is_binary is True
        assert diffs[0].text == ""

    def test_removed_file_marked_deleted(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("old.py", patch="-gone\n", status="removed")]
        diffs, _ = get_file_diffs(pr)
        assert diffs[0].is_deleted is True

    def test_commentable_lines_attached(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("a.py", patch="@@ -1,2 +1,3 @@\n line1\n+new line\n line2\n")]
        diffs, _ = get_file_diffs(pr)
        assert diffs[0].right_lines == frozenset({1, 2, 3})
        assert diffs[0].left_lines == frozenset({1, 2})
        assert not diffs[0].covers(40, 40)


class TestGetCommentableLines:
    PATCH = (
        "@@ -10,4 +10,5 @@ def f\n"
        " ctx\n"
        "-old\n"
        "+new1\n"
        "+new2\n"
        " ctx2\n"
        "\\ No newline at end of file\n"
        "@@ -40 +41 @@\n"
        "-a\n"
        "+b\n"
    )

    def test_right_side_has_added_and_context_lines(self):
        assert get_commentable_lines(self.PATCH)[Side.RIGHT] == frozenset({10, 11, 12, 13, 41})

    def test_left_side_has_removed_and_context_lines(self):
        assert get_commentable_lines(self.PATCH)[Side.LEFT] == frozenset({10, 11, 12, 40})

    def test_lines_between_hunks_excluded(self):
        right = get_commentable_lines(self.PATCH)[Side.RIGHT]
        assert not any(n in right for n in range(14, 41))

    def test_empty_patch(self):
        assert get_commentable_lines("") == {Side.LEFT: frozenset(), Side.RIGHT: frozenset()}


class TestCallGithub:
    def test_returns_result(self):
        assert asyncio.run(call_github(lambda x: x * 2, 21)) == 42

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_server_errors_are_transient(self, status):
        func = MagicMock(side_effect=GithubException(status, "unavailable"))
        with pytest.raises(TransientError):
            asyncio.run(call_github(func))

    def test_client_errors_propagate(self):
        func = MagicMock(side_effect=GithubException(404, "Not Found"))
        with pytest.raises(GithubException):
            asyncio.run(call_github(func))
