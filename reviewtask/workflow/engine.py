"""Analyze run orchestration.

Composes BatchScheduler, TaskGenerator, the merger and the task store into a
single resumable run:

1. Drop comments already resolved remotely.
2. With resume on, skip comments the checkpoint says were already processed
   with their current text.
3. Schedule the rest in batches. After each batch, persist its tasks (unless
   real-time saving already did) and then the checkpoint.
4. Report complete, partial (batch limit hit), timed_out or failed.

A failed or timed-out run keeps everything persisted so far, and the
checkpoint lets the next invocation pick up from there.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from reviewtask.lib.config import ReviewTaskConfig
from reviewtask.lib.types import ReviewComment
from reviewtask.lib.validate import ValidationError
from reviewtask.runner.locking import LockTimeout
from reviewtask.tasks.checkpoint import Checkpoint, CheckpointStore
from reviewtask.tasks.models import Task
from reviewtask.tasks.store import TaskStore
from reviewtask.workflow.generator import Analyzer, GenerationFailed, TaskGenerator
from reviewtask.workflow.merger import merge_into_store
from reviewtask.workflow.scheduler import BatchScheduler, RunObserver, SchedulerConfig

logger = logging.getLogger(__name__)

RUN_COMPLETE = "complete"
RUN_PARTIAL = "partial"
RUN_TIMED_OUT = "timed_out"
RUN_FAILED = "failed"

EXIT_CODES = {
    RUN_COMPLETE: 0,
    RUN_FAILED: 1,
    RUN_PARTIAL: 3,
    RUN_TIMED_OUT: 3,
}


@dataclass
class IncrementalRunState:
    """Progress of the current invocation. Owned by one Orchestrator.run call."""
    total_comments: int
    processed_before: int = 0
    processed: int = 0
    last_completed_batch: int = -1
    tasks: list[Task] = field(default_factory=list)
    started_at: float = 0.0
    elapsed_seconds: float = 0.0
    timed_out: bool = False

    @property
    def processed_total(self) -> int:
        return self.processed_before + self.processed


@dataclass
class RunResult:
    status: str
    processed: int  # comments processed, including earlier resumed invocations
    total: int  # comments needing analysis (unresolved)
    batches_run: int
    tasks: list[Task]  # accepted in this invocation
    duplicates_dropped: int = 0
    rejected: int = 0
    skipped_resolved: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None

    @property
    def more_remaining(self) -> bool:
        return self.processed < self.total

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]


class Orchestrator:
    def __init__(
        self,
        pr_number: int,
        store: TaskStore,
        analyzer: Analyzer,
        config: ReviewTaskConfig,
        checkpoints: CheckpointStore | None = None,
        observer: RunObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pr_number = pr_number
        self.store = store
        self.analyzer = analyzer
        self.config = config
        self.checkpoints = checkpoints
        self.observer = observer or RunObserver()
        self.clock = clock
        self.sleep = sleep

    def _scheduler_config(self) -> SchedulerConfig:
        run = self.config.run
        return SchedulerConfig(
            batch_size=run.batch_size,
            max_batches=run.max_batches,
            resume=run.resume,
            max_timeout=run.max_timeout,
        )

    def _load_checkpoint(self) -> Checkpoint | None:
        if self.checkpoints is None:
            return None
        checkpoint = self.checkpoints.load()
        if checkpoint is None:
            return None
        if not self.config.run.resume:
            logger.info("Resume disabled, discarding existing checkpoint")
            self.checkpoints.delete()
            return None
        if checkpoint.is_stale(self.config.run.checkpoint_max_age_hours):
            logger.info(f"Checkpoint from {checkpoint.last_processed_at} is stale, starting over")
            self.checkpoints.delete()
            return None
        return checkpoint

    def _save_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self.checkpoints is None:
            return
        try:
            self.checkpoints.save(checkpoint)
        except OSError as e:
            logger.warning(f"Could not save checkpoint for PR #{self.pr_number}: {e}")

    def run(self, comments: list[ReviewComment]) -> RunResult:
        """Run one analyze invocation over the review's comments.

        Raises:
            ConfigError: invalid configuration, before anything is touched

        Analyzer failures and task store failures end the run as failed,
        with everything saved before them kept.
        """
        self.config.validate()
        scheduler = BatchScheduler(self._scheduler_config(), clock=self.clock)

        pending = [c for c in comments if not c.resolved]
        skipped_resolved = len(comments) - len(pending)
        if skipped_resolved:
            logger.info(f"Skipping {skipped_resolved} resolved comments")

        checkpoint = self._load_checkpoint()
        if checkpoint is not None:
            remaining = [c for c in pending if not checkpoint.is_processed(c)]
            logger.info(f"Resuming: {len(pending) - len(remaining)} of {len(pending)} comments already processed")
        else:
            checkpoint = Checkpoint(pr_number=self.pr_number, batch_size=self.config.run.batch_size)
            remaining = pending
        checkpoint.total_comments = len(pending)

        state = IncrementalRunState(
            total_comments=len(pending),
            processed_before=len(pending) - len(remaining),
            started_at=self.clock(),
        )

        if not remaining:
            if self.checkpoints is not None:
                self.checkpoints.delete()
            return RunResult(
                status=RUN_COMPLETE,
                processed=state.processed_total,
                total=state.total_comments,
                batches_run=0,
                tasks=[],
                skipped_resolved=skipped_resolved,
            )

        run = self.config.run
        generator = TaskGenerator(
            analyzer=self.analyzer,
            pr_number=self.pr_number,
            settings=self.config.analysis,
            max_retries=run.max_retries,
            retry_delay=run.retry_delay,
            store=self.store,
            realtime=run.realtime_save,
            sleep=self.sleep,
        )
        threshold = self.config.analysis.similarity_threshold

        def handle(batch_index: int, batch: list[ReviewComment]) -> list[Task]:
            tasks = generator.generate(batch, batch_index)
            if not run.realtime_save and tasks:
                merge_into_store(self.store, tasks, threshold)
            checkpoint.mark_processed(batch)
            self._save_checkpoint(checkpoint)
            state.processed += len(batch)
            state.last_completed_batch = batch_index
            state.tasks.extend(tasks)
            return tasks

        error = None
        status = None
        batches_run = 0
        try:
            outcome = scheduler.run(
                remaining, handle, self.observer,
                processed_before=state.processed_before,
                total=state.total_comments,
            )
            batches_run = outcome.batches_run
            state.timed_out = outcome.timed_out
        except GenerationFailed as e:
            logger.error(f"PR #{self.pr_number}: {e}")
            status = RUN_FAILED
            error = str(e)
            batches_run = state.last_completed_batch + 1
        except (LockTimeout, ValidationError, OSError) as e:
            logger.error(f"PR #{self.pr_number}: could not save tasks: {e}")
            status = RUN_FAILED
            error = f"Could not save tasks: {e}"
            batches_run = state.last_completed_batch + 1

        state.elapsed_seconds = self.clock() - state.started_at

        if status is None:
            if state.timed_out:
                status = RUN_TIMED_OUT
            elif state.processed_total < state.total_comments:
                status = RUN_PARTIAL
            else:
                status = RUN_COMPLETE
                if self.checkpoints is not None:
                    self.checkpoints.delete()

        result = RunResult(
            status=status,
            processed=state.processed_total,
            total=state.total_comments,
            batches_run=batches_run,
            tasks=state.tasks,
            duplicates_dropped=generator.duplicates_dropped,
            rejected=generator.rejected,
            skipped_resolved=skipped_resolved,
            elapsed_seconds=state.elapsed_seconds,
            error=error,
        )
        logger.info(
            f"PR #{self.pr_number}: run {status}, {result.processed}/{result.total} comments, "
            f"{len(result.tasks)} new tasks in {batches_run} batches"
        )
        return result
