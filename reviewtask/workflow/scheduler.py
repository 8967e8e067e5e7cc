"""Batch scheduling for analyze runs.

Splits the ordered comment list into fixed-size batches and feeds them to a
handler one at a time, within two limits:
- max_batches per invocation (0 = no limit)
- max_timeout seconds of wall-clock time for the whole run

Running out of time is not an error: the scheduler stops before the next
batch and reports timed_out so the caller knows to resume later.

The budget is checked only between batches. A batch already started runs to
completion (the analyzer call has its own ANALYSIS_TIMEOUT), so a run can end
somewhat past max_timeout. If that batch was the last one, the outcome is
not timed_out.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from reviewtask.lib.config import ConfigError
from reviewtask.lib.types import ReviewComment
from reviewtask.tasks.models import Task

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    batch_size: int = 5
    max_batches: int = 1
    resume: bool = True
    max_timeout: float = 600.0

    def validate(self) -> None:
        if self.batch_size <= 0:
            raise ConfigError(f"batch size must be positive, got {self.batch_size}")
        if self.max_batches < 0:
            raise ConfigError(f"max batches must be >= 0, got {self.max_batches}")
        if self.max_timeout <= 0:
            raise ConfigError(f"max timeout must be positive, got {self.max_timeout}")


class RunObserver:
    """Progress hooks for a run. Called synchronously; override what you need."""

    def on_progress(self, processed: int, total: int) -> None:
        pass

    def on_batch_complete(self, batch_index: int, tasks: list[Task]) -> None:
        pass


@dataclass
class ScheduleOutcome:
    batches_run: int
    processed: int  # comments handled in this invocation
    total: int  # comments handed to the scheduler
    elapsed_seconds: float
    timed_out: bool = False

    @property
    def more_remaining(self) -> bool:
        return self.processed < self.total


BatchHandler = Callable[[int, list[ReviewComment]], list[Task]]


def split_batches(comments: list[ReviewComment], batch_size: int) -> list[list[ReviewComment]]:
    if batch_size <= 0:
        raise ConfigError(f"batch size must be positive, got {batch_size}")
    return [comments[i:i + batch_size] for i in range(0, len(comments), batch_size)]


class BatchScheduler:
    def __init__(self, config: SchedulerConfig, clock: Callable[[], float] = time.monotonic):
        config.validate()
        self.config = config
        self.clock = clock

    def run(
        self,
        comments: list[ReviewComment],
        handler: BatchHandler,
        observer: RunObserver | None = None,
        processed_before: int = 0,
        total: int | None = None,
    ) -> ScheduleOutcome:
        """Run handler over batches of comments.

        Args:
            comments: Comments still to process, in order
            handler: Called as handler(batch_index, batch); returns the batch's tasks.
                Exceptions propagate after earlier batches have been reported.
            observer: Progress hooks
            processed_before: Comments already processed by earlier invocations,
                so progress is reported against the whole review
            total: Overall comment count for progress (defaults to the full set)

        Returns:
            ScheduleOutcome for this invocation
        """
        observer = observer or RunObserver()
        batches = split_batches(comments, self.config.batch_size)
        overall_total = total if total is not None else processed_before + len(comments)

        start = self.clock()
        batches_run = 0
        processed = 0
        timed_out = False

        for batch_index, batch in enumerate(batches):
            if self.config.max_batches and batches_run >= self.config.max_batches:
                logger.info(f"Reached batch limit ({self.config.max_batches}), stopping")
                break

            elapsed = self.clock() - start
            if elapsed > self.config.max_timeout:
                logger.warning(f"Time budget of {self.config.max_timeout:.0f}s used up after {batches_run} batches")
                timed_out = True
                break

            logger.debug(f"Batch {batch_index + 1}/{len(batches)}: {len(batch)} comments")
            tasks = handler(batch_index, batch)
            batches_run += 1

            for _ in batch:
                processed += 1
                observer.on_progress(processed_before + processed, overall_total)
            observer.on_batch_complete(batch_index, tasks)

        return ScheduleOutcome(
            batches_run=batches_run,
            processed=processed,
            total=len(comments),
            elapsed_seconds=self.clock() - start,
            timed_out=timed_out,
        )
