"""Tests for reviewtask.runner.analysis module."""

import subprocess
import sys
from unittest.mock import patch, MagicMock

import pytest

from reviewtask.lib.config import ReviewTaskConfig, RunConfig
from reviewtask.lib.github import GitHubError
from reviewtask.lib.types import Review, ReviewComment
from reviewtask.runner.analysis import (
    RunAlreadyActive,
    background_log_path,
    generation_flow,
    launch_background,
    run_analysis,
)
from reviewtask.runner.locking import LockTimeout, review_unit_lock
from reviewtask.tasks.comments import CommentCache
from reviewtask.tasks.store import FileTaskStore


class EchoAnalyzer:
    def __init__(self):
        self.calls = []

    def analyze(self, comments, settings):
        self.calls.append([c.id for c in comments])
        return [{"source_comment_id": c.id, "description": f"Address: {c.body}"} for c in comments]


def fake_source(*comments, body=""):
    source = MagicMock()
    source.fetch_reviews.return_value = [
        Review(id=1, reviewer="alice", state="COMMENTED", body=body, comments=list(comments)),
    ]
    return source


def comment(cid, resolved=False):
    return ReviewComment(id=cid, review_id=1, body=f"comment {cid}", resolved=resolved)


class TestRunAnalysis:
    """Tests for run_analysis()."""

    def test_persists_tasks(self, tmp_path):
        analyzer = EchoAnalyzer()
        config = ReviewTaskConfig(run=RunConfig(max_batches=0))

        result = run_analysis(tmp_path, 42, config, source=fake_source(comment(11), comment(12, resolved=True)),
                              analyzer=analyzer)

        assert result.status == "complete"
        assert analyzer.calls == [[11]]
        tasks = FileTaskStore(tmp_path / ".pr-review", 42).load()
        assert [t.source_comment_id for t in tasks] == [11]
        assert not (tmp_path / ".pr-review" / "PR-42" / "checkpoint.json").exists()

    def test_caches_fetched_comments(self, tmp_path):
        config = ReviewTaskConfig(run=RunConfig(max_batches=0))
        run_analysis(tmp_path, 42, config, source=fake_source(comment(11), comment(12, resolved=True)),
                     analyzer=EchoAnalyzer())

        cached = CommentCache(tmp_path / ".pr-review", 42).load()
        assert [(c.id, c.resolved) for c in cached] == [(11, False), (12, True)]

    def test_partial_run_leaves_checkpoint(self, tmp_path):
        config = ReviewTaskConfig(run=RunConfig(batch_size=1, max_batches=1))
        result = run_analysis(tmp_path, 42, config, source=fake_source(comment(11), comment(12)),
                              analyzer=EchoAnalyzer())

        assert result.status == "partial"
        assert result.exit_code == 3
        assert (tmp_path / ".pr-review" / "PR-42" / "checkpoint.json").exists()

    def test_review_body_included(self, tmp_path):
        analyzer = EchoAnalyzer()
        config = ReviewTaskConfig(run=RunConfig(max_batches=0))
        run_analysis(tmp_path, 42, config, source=fake_source(comment(11), body="Overall: add tests"),
                     analyzer=analyzer)
        assert analyzer.calls == [[1, 11]]

    def test_locked_elsewhere(self, tmp_path):
        analyzer = EchoAnalyzer()
        with review_unit_lock(tmp_path / ".pr-review", 42, timeout=1):
            with pytest.raises(LockTimeout):
                run_analysis(tmp_path, 42, ReviewTaskConfig(), source=fake_source(comment(11)),
                             analyzer=analyzer)
        assert analyzer.calls == []

    def test_fetch_failure_propagates(self, tmp_path):
        source = MagicMock()
        source.fetch_reviews.side_effect = GitHubError("HTTP 404")
        with pytest.raises(GitHubError):
            run_analysis(tmp_path, 42, ReviewTaskConfig(), source=source, analyzer=EchoAnalyzer())


class TestGenerationFlow:
    """Tests for generation_flow(), called through its underlying function."""

    def test_runs_and_notifies(self, tmp_path):
        fake_analyzer = EchoAnalyzer()
        with patch("reviewtask.runner.analysis.task_fetch_comments", return_value=[comment(11)]) as mock_fetch, \
             patch("reviewtask.runner.analysis.ClaudeAnalyzer", return_value=fake_analyzer), \
             patch("reviewtask.runner.analysis.notify_run_finished") as mock_notify:
            exit_code = generation_flow.fn(str(tmp_path), 42, {"max_batches": 0})

        assert exit_code == 0
        mock_fetch.assert_called_once_with(str(tmp_path), 42, True)
        mock_notify.assert_called_once_with(42, "complete", 1, 1, 1)
        assert fake_analyzer.calls == [[11]]

    def test_fetch_error_notifies(self, tmp_path):
        with patch("reviewtask.runner.analysis.task_fetch_comments", side_effect=GitHubError("down")), \
             patch("reviewtask.runner.analysis.notify_run_error") as mock_error:
            with pytest.raises(GitHubError):
                generation_flow.fn(str(tmp_path), 42)
        mock_error.assert_called_once_with(42, "down")


class TestLaunchBackground:
    """Tests for launch_background()."""

    def test_spawns_detached_worker(self, tmp_path):
        with patch("reviewtask.runner.analysis.subprocess.Popen") as mock_popen:
            mock_popen.return_value.pid = 4242
            process = launch_background(tmp_path, 42, ["--batch-size", "3"])

        assert process.pid == 4242
        cmd = mock_popen.call_args.args[0]
        assert cmd[:3] == [sys.executable, "-m", "reviewtask.cli"]
        assert cmd[-4:] == ["42", "--worker", "--batch-size", "3"]
        kwargs = mock_popen.call_args.kwargs
        assert kwargs["start_new_session"] is True
        assert kwargs["stdin"] == subprocess.DEVNULL
        assert background_log_path(tmp_path / ".pr-review", 42).exists()

    def test_refuses_when_run_active(self, tmp_path):
        with patch("reviewtask.runner.analysis.is_review_unit_locked", return_value=True), \
             patch("reviewtask.runner.analysis.read_lock_owner", return_value=999), \
             patch("reviewtask.runner.analysis.subprocess.Popen") as mock_popen:
            with pytest.raises(RunAlreadyActive, match="pid 999"):
                launch_background(tmp_path, 42, [])
        mock_popen.assert_not_called()
