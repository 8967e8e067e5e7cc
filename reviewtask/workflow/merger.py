"""Merge freshly generated tasks into the stored task list.

The rule that matters: regenerating tasks never resets operator progress.
A generated task that matches a stored one refreshes its content (wording,
priority, location) and keeps everything else: id, status, implementation
and verification state, verification history, cancellation details and
creation time.

Matching:
- Tasks with a source comment match on (source_comment_id, task_index).
- Synthetic tasks (source_comment_id == 0) match the most similar unmatched
  stored synthetic task from the same review, if it clears the threshold.

Stored tasks are never removed. Ones that belong to a regenerated comment
but were not matched this time are reported as orphaned.
"""

import logging
from dataclasses import dataclass, field

from reviewtask.lib.similarity import similarity, is_similar
from reviewtask.tasks.models import Task, TaskStatus, parse_status, now_iso
from reviewtask.tasks.store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.8


@dataclass
class MergeResult:
    tasks: list[Task]
    added: list[Task] = field(default_factory=list)
    updated: list[Task] = field(default_factory=list)
    unchanged: list[Task] = field(default_factory=list)
    orphaned: list[Task] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)

    def summary(self) -> str:
        return (
            f"{len(self.added)} added, {len(self.updated)} updated, "
            f"{len(self.unchanged)} unchanged, {len(self.orphaned)} orphaned"
        )


def _refresh(existing: Task, incoming: Task) -> Task:
    return existing.copy(
        description=incoming.description,
        origin_text=incoming.origin_text,
        priority=incoming.priority,
        file=incoming.file,
        line=incoming.line,
        updated_at=now_iso(),
    )


def _find_synthetic_match(
    merged: list[Task],
    candidates: list[int],
    incoming: Task,
    threshold: float,
) -> int | None:
    best_pos = None
    best_score = -1.0
    for pos in candidates:
        stored = merged[pos]
        if stored.source_review_id != incoming.source_review_id:
            continue
        if not is_similar(stored.description, incoming.description, threshold):
            continue
        score = similarity(stored.description, incoming.description)
        if score > best_score:
            best_pos, best_score = pos, score
    return best_pos


def merge_tasks(
    existing: list[Task],
    new: list[Task],
    similarity_threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> MergeResult:
    """Merge new tasks into existing ones. Neither input list is modified.

    Order is stable: stored tasks keep their positions and unmatched new
    tasks are appended in the order given.
    """
    merged = [t.copy() for t in existing]
    by_key = {t.key: pos for pos, t in enumerate(merged) if not t.is_synthetic}
    synthetic_open = [pos for pos, t in enumerate(merged) if t.is_synthetic]
    next_synthetic_index = max((t.task_index for t in merged if t.is_synthetic), default=-1) + 1

    result = MergeResult(tasks=merged)
    matched: set[int] = set()
    touched_comments: set[int] = set()
    touched_reviews: set[int] = set()

    for incoming in new:
        if incoming.is_synthetic:
            touched_reviews.add(incoming.source_review_id)
            pos = _find_synthetic_match(merged, synthetic_open, incoming, similarity_threshold)
            if pos is not None:
                synthetic_open.remove(pos)
        else:
            touched_comments.add(incoming.source_comment_id)
            pos = by_key.get(incoming.key)

        if pos is None:
            status = incoming.status if parse_status(incoming.status) else TaskStatus.TODO.value
            added = incoming.copy(status=status)
            if added.is_synthetic:
                added.task_index = next_synthetic_index
                next_synthetic_index += 1
            merged.append(added)
            if not added.is_synthetic:
                by_key[added.key] = len(merged) - 1
            matched.add(len(merged) - 1)
            result.added.append(added)
            continue

        matched.add(pos)
        stored = merged[pos]
        if stored.content() == incoming.content():
            result.unchanged.append(stored)
        else:
            refreshed = _refresh(stored, incoming)
            merged[pos] = refreshed
            result.updated.append(refreshed)

    for pos, task in enumerate(merged[:len(existing)]):
        if pos in matched:
            continue
        if task.is_synthetic and task.source_review_id in touched_reviews:
            result.orphaned.append(task)
        elif not task.is_synthetic and task.source_comment_id in touched_comments:
            result.orphaned.append(task)

    return result


def merge_into_store(
    store: TaskStore,
    new: list[Task],
    similarity_threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> MergeResult:
    """Load, merge and save as one atomic store operation."""
    def apply(tasks: list[Task]) -> MergeResult:
        result = merge_tasks(tasks, new, similarity_threshold)
        tasks[:] = result.tasks
        return result

    result = store.modify(apply)
    if result.changed:
        logger.info(f"Merged tasks for PR #{store.pr_number}: {result.summary()}")
    for task in result.orphaned:
        logger.debug(f"Task {task.id} no longer produced by analysis of comment {task.source_comment_id}")
    return result
