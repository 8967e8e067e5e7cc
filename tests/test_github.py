"""Tests for reviewtask.lib.github module."""

import json
import subprocess
from unittest.mock import patch, MagicMock

import pytest

from reviewtask.lib.github import (
    GH_TIMEOUT_SECONDS,
    GhCommentSource,
    GitHubError,
    check_gh_available,
)


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


def json_lines(*items):
    return "\n".join(json.dumps(i) for i in items) + "\n"


REVIEWS = json_lines(
    {"id": 1, "body": "Please address the following", "state": "CHANGES_REQUESTED",
     "submitted_at": "2025-01-15T10:00:00Z", "user": "alice"},
)

COMMENTS = json_lines(
    {"id": 11, "pull_request_review_id": 1, "in_reply_to_id": None, "body": "Handle None here",
     "path": "app.py", "line": 3, "original_line": 3, "diff_hunk": "@@ -1 +1 @@",
     "html_url": "https://example.test/c/11", "created_at": "t", "user": "alice"},
    {"id": 12, "pull_request_review_id": 1, "in_reply_to_id": None, "body": "Rename x",
     "path": "app.py", "line": None, "original_line": 9, "diff_hunk": None,
     "html_url": "", "created_at": "t", "user": "alice"},
    {"id": 13, "pull_request_review_id": 1, "in_reply_to_id": 11, "body": "Also the caller",
     "path": "app.py", "line": 3, "original_line": 3, "diff_hunk": None,
     "html_url": "", "created_at": "t", "user": "bob"},
)

THREADS = {
    "data": {"repository": {"pullRequest": {"reviewThreads": {
        "pageInfo": {"hasNextPage": False, "endCursor": None},
        "nodes": [
            {"id": "T11", "isResolved": False, "comments": {"nodes": [{"databaseId": 11}]}},
            {"id": "T12", "isResolved": True, "comments": {"nodes": [{"databaseId": 12}]}},
        ],
    }}}}
}


class FakeGh:
    """Dispatches gh invocations to canned responses and records them."""

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        joined = " ".join(cmd)
        if self.fail_on and self.fail_on in joined:
            return completed(returncode=1, stderr="HTTP 403: forbidden")
        if cmd[1:3] == ["repo", "view"]:
            return completed(json.dumps({"owner": {"login": "acme"}, "name": "widget"}))
        if "reviews" in joined:
            return completed(REVIEWS)
        if "/comments" in joined and "replies" not in joined:
            return completed(COMMENTS)
        if "resolveReviewThread" in joined:
            return completed(json.dumps({"data": {}}))
        if "graphql" in joined:
            return completed(json.dumps(THREADS))
        return completed("")


@pytest.fixture
def fake_gh():
    gh = FakeGh()
    with patch("reviewtask.lib.github.subprocess.run", side_effect=gh):
        yield gh


class TestCheckGhAvailable:
    """Tests for check_gh_available()."""

    def test_ok(self):
        with patch("reviewtask.lib.github.subprocess.run", return_value=completed()) as mock_run:
            assert check_gh_available() == (True, "")
        assert mock_run.call_args.kwargs["timeout"] == GH_TIMEOUT_SECONDS

    def test_not_installed(self):
        with patch("reviewtask.lib.github.subprocess.run", side_effect=FileNotFoundError()):
            ok, error = check_gh_available()
        assert not ok
        assert "not found" in error

    def test_not_authenticated(self):
        with patch("reviewtask.lib.github.subprocess.run", return_value=completed(returncode=1)):
            ok, error = check_gh_available()
        assert not ok
        assert "gh auth login" in error

    def test_timeout(self):
        with patch("reviewtask.lib.github.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=30)):
            assert check_gh_available() == (False, "GitHub CLI timed out")


class TestFetchReviews:
    """Tests for GhCommentSource.fetch_reviews()."""

    def test_reviews_comments_and_threads(self, fake_gh, tmp_path):
        reviews = GhCommentSource(tmp_path).fetch_reviews(42)

        assert len(reviews) == 1
        review = reviews[0]
        assert review.reviewer == "alice"
        assert review.state == "CHANGES_REQUESTED"
        assert [c.id for c in review.comments] == [11, 12]

        first, second = review.comments
        assert first.file == "app.py"
        assert first.line == 3
        assert first.diff_context == "@@ -1 +1 @@"
        assert first.replies == ("bob: Also the caller",)
        assert not first.resolved
        assert second.line == 9
        assert second.resolved

    def test_fetch_comments_flattens(self, fake_gh, tmp_path):
        comments = GhCommentSource(tmp_path).fetch_comments(42)
        assert [c.id for c in comments] == [1, 11, 12]
        assert comments[0].is_review_body

    def test_runs_in_repo(self, tmp_path):
        gh = FakeGh()
        with patch("reviewtask.lib.github.subprocess.run", side_effect=gh) as mock_run:
            GhCommentSource(tmp_path).fetch_reviews(42)
        assert all(c.kwargs["cwd"] == str(tmp_path) for c in mock_run.call_args_list)

    def test_gh_failure(self, tmp_path):
        gh = FakeGh(fail_on="reviews")
        with patch("reviewtask.lib.github.subprocess.run", side_effect=gh):
            with pytest.raises(GitHubError, match="forbidden"):
                GhCommentSource(tmp_path).fetch_reviews(42)

    def test_unparseable_lines_skipped(self, tmp_path, caplog):
        gh = FakeGh()

        def run(cmd, **kwargs):
            if "reviews" in " ".join(cmd):
                return completed(REVIEWS + "garbage\n")
            return gh(cmd, **kwargs)

        with patch("reviewtask.lib.github.subprocess.run", side_effect=run):
            assert len(GhCommentSource(tmp_path).fetch_reviews(42)) == 1
        assert "Skipping unparseable gh output line" in caplog.text

    def test_timeout(self, tmp_path):
        with patch("reviewtask.lib.github.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="gh", timeout=30)):
            with pytest.raises(GitHubError, match="timeout"):
                GhCommentSource(tmp_path).fetch_reviews(42)


class TestWrites:
    """Tests for replies and thread resolution."""

    def test_post_reply(self, fake_gh, tmp_path):
        GhCommentSource(tmp_path).post_reply(42, 11, "Cancelled")
        cmd = fake_gh.calls[-1]
        assert "repos/{owner}/{repo}/pulls/42/comments/11/replies" in cmd
        assert "body=Cancelled" in cmd

    def test_post_reply_embedded_comment(self, fake_gh, tmp_path):
        with pytest.raises(GitHubError):
            GhCommentSource(tmp_path).post_reply(42, 0, "Cancelled")
        assert fake_gh.calls == []

    def test_resolve_thread(self, fake_gh, tmp_path):
        source = GhCommentSource(tmp_path)
        source.resolve_thread(42, 11)
        assert "threadId=T11" in fake_gh.calls[-1]

        calls = len(fake_gh.calls)
        source.resolve_thread(42, 11)
        assert len(fake_gh.calls) == calls

    def test_resolve_already_resolved(self, fake_gh, tmp_path):
        GhCommentSource(tmp_path).resolve_thread(42, 12)
        assert not any("resolveReviewThread" in " ".join(c) for c in fake_gh.calls)

    def test_resolve_unknown_thread(self, fake_gh, tmp_path):
        with pytest.raises(GitHubError, match="No review thread"):
            GhCommentSource(tmp_path).resolve_thread(42, 99)

    def test_current_pr_number(self, tmp_path):
        with patch("reviewtask.lib.github.subprocess.run", return_value=completed('{"number": 7}')):
            assert GhCommentSource(tmp_path).current_pr_number() == 7
