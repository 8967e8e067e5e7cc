"""Tests for reviewtask.workflow.engine module."""

import pytest

from reviewtask.lib.config import ConfigError, ReviewTaskConfig, RunConfig
from reviewtask.lib.types import ReviewComment
from reviewtask.runner.locking import LockTimeout
from reviewtask.tasks.checkpoint import Checkpoint, CheckpointStore
from reviewtask.tasks.store import MemoryTaskStore
from reviewtask.workflow.engine import (
    RUN_COMPLETE,
    RUN_FAILED,
    RUN_PARTIAL,
    RUN_TIMED_OUT,
    Orchestrator,
)
from reviewtask.workflow.generator import AnalysisError
from reviewtask.workflow.scheduler import RunObserver


class EchoAnalyzer:
    """One task per comment, described by the comment body."""

    def __init__(self, fail_on_call=None):
        self.calls = []
        self.fail_on_call = fail_on_call

    def analyze(self, comments, settings):
        self.calls.append([c.id for c in comments])
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise AnalysisError("analyzer down")
        return [{"source_comment_id": c.id, "description": f"Address: {c.body}"} for c in comments]


class FailingWriteStore(MemoryTaskStore):
    """Store whose nth write times out on the lock."""

    def __init__(self, pr_number, fail_on_write):
        super().__init__(pr_number)
        self.writes = 0
        self.fail_on_write = fail_on_write

    def _write(self, tasks):
        self.writes += 1
        if self.writes == self.fail_on_write:
            raise LockTimeout(f"Could not acquire task store for PR #{self.pr_number} within 30s")
        super()._write(tasks)


class RecordingObserver(RunObserver):
    def __init__(self):
        self.progress = []

    def on_progress(self, processed, total):
        self.progress.append((processed, total))


def review_comments(n, resolved=()):
    return [
        ReviewComment(id=100 + i, review_id=1, body=f"comment number {i}", resolved=(100 + i) in resolved)
        for i in range(n)
    ]


def config(**run):
    run.setdefault("max_retries", 0)
    return ReviewTaskConfig(run=RunConfig(**run))


def orchestrator(analyzer, store=None, checkpoints=None, observer=None, clock=None, **run):
    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    return Orchestrator(
        pr_number=42,
        store=store or MemoryTaskStore(42),
        analyzer=analyzer,
        config=config(**run),
        checkpoints=checkpoints,
        observer=observer,
        sleep=lambda s: None,
        **kwargs,
    )


class TestRun:
    """Tests for Orchestrator.run()."""

    def test_batch_limit_then_resume(self, tmp_path):
        """5 comments, batch size 2, max 2 batches: 4 done, then the last one next time."""
        store = MemoryTaskStore(42)
        checkpoints = CheckpointStore(tmp_path, 42)
        comments = review_comments(5)
        observer = RecordingObserver()

        first = orchestrator(EchoAnalyzer(), store, checkpoints, observer,
                             batch_size=2, max_batches=2).run(comments)

        assert first.status == RUN_PARTIAL
        assert first.processed == 4
        assert first.total == 5
        assert first.batches_run == 2
        assert first.more_remaining
        assert first.exit_code == 3
        assert len(store.load()) == 4
        assert observer.progress == [(1, 5), (2, 5), (3, 5), (4, 5)]
        assert checkpoints.load().processed_count == 4

        analyzer = EchoAnalyzer()
        second = orchestrator(analyzer, store, checkpoints, batch_size=2, max_batches=2).run(comments)

        assert second.status == RUN_COMPLETE
        assert second.processed == 5
        assert analyzer.calls == [[104]]
        assert len(store.load()) == 5
        assert checkpoints.load() is None
        assert second.exit_code == 0

    def test_resolved_comments_skipped(self):
        analyzer = EchoAnalyzer()
        result = orchestrator(analyzer, max_batches=0).run(review_comments(3, resolved={101}))

        assert result.status == RUN_COMPLETE
        assert result.skipped_resolved == 1
        assert result.total == 2
        assert analyzer.calls == [[100, 102]]

    def test_nothing_to_do(self, tmp_path):
        checkpoints = CheckpointStore(tmp_path, 42)
        result = orchestrator(EchoAnalyzer(), checkpoints=checkpoints).run([])
        assert result.status == RUN_COMPLETE
        assert result.batches_run == 0

    def test_failure_keeps_earlier_batches(self, tmp_path):
        store = MemoryTaskStore(42)
        checkpoints = CheckpointStore(tmp_path, 42)

        result = orchestrator(EchoAnalyzer(fail_on_call=2), store, checkpoints,
                              batch_size=2, max_batches=0).run(review_comments(5))

        assert result.status == RUN_FAILED
        assert result.exit_code == 1
        assert "analyzer down" in result.error
        assert result.batches_run == 1
        assert result.processed == 2
        assert len(store.load()) == 2
        assert checkpoints.load().processed_count == 2

    def test_store_failure_reports_progress(self, tmp_path):
        store = FailingWriteStore(42, fail_on_write=2)
        checkpoints = CheckpointStore(tmp_path, 42)

        result = orchestrator(EchoAnalyzer(), store, checkpoints,
                              batch_size=2, max_batches=0).run(review_comments(4))

        assert result.status == RUN_FAILED
        assert result.exit_code == 1
        assert "task store for PR #42" in result.error
        assert result.processed == 2
        assert result.batches_run == 1
        assert len(store.load()) == 2
        assert checkpoints.load().processed_count == 2

    def test_rerun_does_not_duplicate_tasks(self):
        store = MemoryTaskStore(42)
        comments = review_comments(2)
        orchestrator(EchoAnalyzer(), store, max_batches=0).run(comments)
        orchestrator(EchoAnalyzer(), store, max_batches=0).run(comments)
        assert len(store.load()) == 2

    def test_rerun_keeps_progress(self):
        store = MemoryTaskStore(42)
        comments = review_comments(1)
        orchestrator(EchoAnalyzer(), store).run(comments)
        task = store.load()[0]
        store.update_status(task.id, "doing")

        orchestrator(EchoAnalyzer(), store).run(comments)

        assert store.get(task.id).status == "doing"

    def test_fresh_run_ignores_checkpoint(self, tmp_path):
        checkpoints = CheckpointStore(tmp_path, 42)
        comments = review_comments(2)
        done = Checkpoint(pr_number=42)
        done.mark_processed(comments[:1])
        checkpoints.save(done)

        analyzer = EchoAnalyzer()
        orchestrator(analyzer, checkpoints=checkpoints, resume=False, max_batches=0).run(comments)

        assert analyzer.calls == [[100, 101]]

    def test_stale_checkpoint_discarded(self, tmp_path):
        checkpoints = CheckpointStore(tmp_path, 42)
        comments = review_comments(2)
        old = Checkpoint(pr_number=42, last_processed_at="2000-01-01T00:00:00+00:00")
        old.processed_comments = {c.key: c.content_hash() for c in comments[:1]}
        checkpoints.save(old)

        analyzer = EchoAnalyzer()
        orchestrator(analyzer, checkpoints=checkpoints, max_batches=0).run(comments)

        assert analyzer.calls == [[100, 101]]

    def test_edited_comment_reanalyzed_on_resume(self, tmp_path):
        checkpoints = CheckpointStore(tmp_path, 42)
        comments = review_comments(2)
        checkpoint = Checkpoint(pr_number=42)
        checkpoint.mark_processed(comments)
        checkpoints.save(checkpoint)

        edited = [comments[0], ReviewComment(id=101, review_id=1, body="comment number 1, edited")]
        analyzer = EchoAnalyzer()
        orchestrator(analyzer, checkpoints=checkpoints, max_batches=0).run(edited)

        assert analyzer.calls == [[101]]

    def test_timeout(self):
        ticks = iter(range(0, 1000, 10))
        result = orchestrator(
            EchoAnalyzer(), clock=lambda: float(next(ticks)),
            batch_size=1, max_batches=0, max_timeout=25,
        ).run(review_comments(5))

        assert result.status == RUN_TIMED_OUT
        assert result.exit_code == 3
        assert result.more_remaining

    def test_realtime_save(self):
        store = MemoryTaskStore(42)
        result = orchestrator(EchoAnalyzer(), store, realtime_save=True, max_batches=0).run(review_comments(2))
        assert result.status == RUN_COMPLETE
        assert len(store.load()) == 2

    def test_invalid_config_touches_nothing(self):
        analyzer = EchoAnalyzer()
        with pytest.raises(ConfigError):
            orchestrator(analyzer, batch_size=0).run(review_comments(2))
        assert analyzer.calls == []
