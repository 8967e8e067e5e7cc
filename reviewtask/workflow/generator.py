"""Task generation: one batch of comments in, validated tasks out.

The analyzer is untrusted. Its output is checked entry by entry:
- entries without a usable description are rejected
- entries naming a comment that is not in the batch are rejected
- priorities outside critical/high/medium/low become medium

Accepted drafts are deduplicated against everything accepted earlier in the
same run (or, with DEDUP_SCOPE=comment, against the same comment's tasks),
numbered per comment and turned into Task records. In real-time mode each
accepted task is merged into the store immediately.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from reviewtask.lib.config import AnalysisSettings
from reviewtask.lib.similarity import is_similar
from reviewtask.lib.types import ReviewComment
from reviewtask.lib.validate import is_valid
from reviewtask.tasks.models import Priority, Task, new_task, parse_priority
from reviewtask.tasks.store import TaskStore
from reviewtask.workflow.merger import merge_into_store

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """One analyzer call failed: error exit, timeout or unusable output."""

    def __init__(self, message: str, detail: str = ""):
        self.detail = detail
        super().__init__(message)


class GenerationFailed(Exception):
    """A batch could not be analyzed after all retries."""

    def __init__(self, batch_index: int, attempts: int, cause: Exception):
        self.batch_index = batch_index
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Batch {batch_index + 1} failed after {attempts} attempt(s): {cause}")


class Analyzer(Protocol):
    def analyze(self, comments: list[ReviewComment], settings: AnalysisSettings) -> list[dict]:
        ...


@dataclass
class BatchReport:
    accepted: int = 0
    rejected: int = 0
    duplicates_dropped: int = 0


def _to_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class TaskGenerator:
    def __init__(
        self,
        analyzer: Analyzer,
        pr_number: int,
        settings: AnalysisSettings,
        max_retries: int = 2,
        retry_delay: float = 0.0,
        store: TaskStore | None = None,
        realtime: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if realtime and store is None:
            raise ValueError("real-time saving needs a store")
        self.analyzer = analyzer
        self.pr_number = pr_number
        self.settings = settings
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.store = store
        self.realtime = realtime
        self.sleep = sleep

        self.accepted: list[Task] = []
        self.duplicates_dropped = 0
        self.rejected = 0
        self.last_report = BatchReport()

    def generate(self, batch: list[ReviewComment], batch_index: int = 0) -> list[Task]:
        """Analyze one batch and return its accepted tasks.

        Raises:
            GenerationFailed: analyzer failed on every attempt
        """
        if not batch:
            return []
        raw = self._call_with_retries(batch, batch_index)
        return self._accept(batch, raw)

    def _call_with_retries(self, batch: list[ReviewComment], batch_index: int) -> list:
        attempts = self.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                raw = self.analyzer.analyze(batch, self.settings)
                if not isinstance(raw, list):
                    raise AnalysisError(f"Analyzer returned {type(raw).__name__}, expected a list")
                return raw
            except AnalysisError as e:
                last_error = e
                logger.warning(f"Analyzer failed on batch {batch_index + 1} (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts and self.retry_delay:
                    self.sleep(self.retry_delay)
        raise GenerationFailed(batch_index, attempts, last_error)

    def _resolve_comment(self, entry: dict, batch: list[ReviewComment]) -> ReviewComment | None:
        raw_id = entry.get("source_comment_id", entry.get("comment_id"))
        comment_id = _to_int(raw_id)
        if raw_id is None and len(batch) == 1:
            return batch[0]
        if comment_id is None:
            return None

        candidates = [c for c in batch if c.id == comment_id]
        if len(candidates) > 1:
            review_id = _to_int(entry.get("source_review_id", entry.get("review_id")))
            narrowed = [c for c in candidates if c.review_id == review_id]
            candidates = narrowed or candidates
        return candidates[0] if candidates else None

    def _validated(self, batch: list[ReviewComment], raw: list) -> list[tuple[ReviewComment, dict]]:
        position = {id(c): n for n, c in enumerate(batch)}
        valid = []
        for n, entry in enumerate(raw):
            if not isinstance(entry, dict) or not is_valid(entry, "draft_task"):
                logger.warning(f"Rejected analyzer entry {n}: missing or empty description")
                self.last_report.rejected += 1
                continue
            comment = self._resolve_comment(entry, batch)
            if comment is None:
                logger.warning(
                    f"Rejected analyzer entry {n}: comment "
                    f"{entry.get('source_comment_id', entry.get('comment_id'))!r} is not in this batch"
                )
                self.last_report.rejected += 1
                continue
            valid.append((position[id(comment)], n, comment, entry))
        valid.sort(key=lambda item: (item[0], item[1]))
        return [(comment, entry) for _, _, comment, entry in valid]

    def _is_duplicate(self, description: str, comment: ReviewComment, batch_tasks: list[Task]) -> bool:
        if not self.settings.deduplication_enabled:
            return False
        if self.settings.dedup_scope == "comment":
            window = [t for t in batch_tasks if t.source_comment_id == comment.id
                      and t.source_review_id == comment.review_id]
        else:
            window = self.accepted + batch_tasks
        threshold = self.settings.similarity_threshold
        return any(is_similar(description, other.description, threshold) for other in window)

    def _build_task(self, comment: ReviewComment, entry: dict, task_index: int) -> Task:
        raw_priority = entry.get("priority")
        priority = parse_priority(raw_priority)
        if priority is Priority.MEDIUM and str(raw_priority).strip().lower() != "medium":
            logger.debug(f"Unknown priority {raw_priority!r} for comment {comment.id}, using medium")

        status = self.settings.default_status
        if self.settings.is_low_priority(comment.body):
            priority = Priority.LOW
            if self.settings.low_priority_status:
                status = self.settings.low_priority_status

        line = entry.get("line")
        line = _to_int(line) if line is not None else comment.line

        return new_task(
            pr_number=self.pr_number,
            source_review_id=comment.review_id,
            source_comment_id=comment.id,
            task_index=task_index,
            description=" ".join(entry["description"].split()),
            origin_text=entry.get("origin_text") or comment.body,
            priority=priority.value,
            file=entry.get("file") or comment.file,
            line=line,
            status=status,
        )

    def _accept(self, batch: list[ReviewComment], raw: list) -> list[Task]:
        self.last_report = BatchReport()
        batch_tasks: list[Task] = []
        next_index: dict[tuple[int, int], int] = {}

        for comment, entry in self._validated(batch, raw):
            description = entry["description"]
            if self._is_duplicate(description, comment, batch_tasks):
                logger.debug(f"Dropped duplicate task for comment {comment.id}: {description[:60]}")
                self.last_report.duplicates_dropped += 1
                continue

            comment_key = (comment.review_id, comment.id)
            task_index = next_index.get(comment_key, 0)
            next_index[comment_key] = task_index + 1

            task = self._build_task(comment, entry, task_index)
            batch_tasks.append(task)
            if self.realtime:
                merge_into_store(self.store, [task], self.settings.similarity_threshold)

        self.last_report.accepted = len(batch_tasks)
        self.accepted.extend(batch_tasks)
        self.rejected += self.last_report.rejected
        self.duplicates_dropped += self.last_report.duplicates_dropped

        logger.info(
            f"Batch produced {len(batch_tasks)} tasks "
            f"({self.last_report.rejected} rejected, {self.last_report.duplicates_dropped} duplicates)"
        )
        return batch_tasks
