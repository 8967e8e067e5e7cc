"""Thread reconciliation.

reconcile() classifies every comment that still exists remotely:
- resolved: the remote thread is resolved, or all its tasks are done/cancel
- in_progress: it has tasks and at least one is still open
- unanalyzed: no task exists for it yet

The remote resolved flag always wins. Comments known locally but gone
remotely are reported only as stale. Embedded comments (id 0) have no thread
and are left out entirely.

resolve_completed_threads() is the write-side companion used by
`reviewtask resolve`: it resolves remote threads whose tasks are finished.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from reviewtask.lib.github import GitHubError
from reviewtask.lib.types import ReviewComment
from reviewtask.tasks.models import Task, TaskStatus, CLOSED_STATUSES, now_iso

logger = logging.getLogger(__name__)


class ThreadClient(Protocol):
    def resolve_thread(self, pr_number: int, comment_id: int) -> None:
        ...


@dataclass(frozen=True)
class ThreadStatus:
    comment_id: int
    resolved: bool
    last_checked_at: str


@dataclass
class UnresolvedReport:
    unanalyzed: list[ReviewComment] = field(default_factory=list)
    in_progress: list[ReviewComment] = field(default_factory=list)
    resolved: list[ReviewComment] = field(default_factory=list)
    stale: list[ReviewComment] = field(default_factory=list)
    threads: dict[int, ThreadStatus] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.unanalyzed) + len(self.in_progress) + len(self.resolved)

    def is_complete(self) -> bool:
        """True when nothing is left to analyze or finish."""
        return not self.unanalyzed and not self.in_progress

    def summary(self) -> str:
        if self.is_complete():
            return f"All {len(self.resolved)} comments resolved"
        parts = []
        if self.unanalyzed:
            parts.append(f"{len(self.unanalyzed)} not analyzed")
        if self.in_progress:
            parts.append(f"{len(self.in_progress)} in progress")
        parts.append(f"{len(self.resolved)} resolved")
        return ", ".join(parts)


def _group_by_comment(tasks: list[Task]) -> dict[int, list[Task]]:
    grouped: dict[int, list[Task]] = {}
    for task in tasks:
        if task.is_synthetic:
            continue
        grouped.setdefault(task.source_comment_id, []).append(task)
    return grouped


def reconcile(
    local_comments: list[ReviewComment],
    remote_comments: list[ReviewComment],
    local_tasks: list[Task],
) -> UnresolvedReport:
    """Classify remote comments against local tasks. Pure; mutates nothing."""
    checked_at = now_iso()
    report = UnresolvedReport()
    tasks_by_comment = _group_by_comment(local_tasks)

    remote_ids = set()
    for comment in remote_comments:
        if comment.id == 0 or comment.id in remote_ids:
            continue
        remote_ids.add(comment.id)
        report.threads[comment.id] = ThreadStatus(comment.id, comment.resolved, checked_at)

        tasks = tasks_by_comment.get(comment.id, [])
        if comment.resolved:
            report.resolved.append(comment)
        elif not tasks:
            report.unanalyzed.append(comment)
        elif all(t.status in CLOSED_STATUSES for t in tasks):
            report.resolved.append(comment)
        else:
            report.in_progress.append(comment)

    for comment in local_comments:
        if comment.id != 0 and comment.id not in remote_ids:
            report.stale.append(comment)

    return report


@dataclass
class ThreadSyncResult:
    resolved_threads: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def is_thread_ready(tasks: list[Task]) -> tuple[bool, str | None]:
    """A thread may be resolved once every task is done, or cancelled with its reply posted."""
    if not tasks:
        return False, None
    for task in tasks:
        if task.status == TaskStatus.DONE.value:
            continue
        if task.status == TaskStatus.CANCEL.value:
            if not task.cancel_comment_posted:
                return False, f"task {task.id} was cancelled but the reason was never posted"
            continue
        return False, None
    return True, None


def resolve_completed_threads(
    client: ThreadClient,
    pr_number: int,
    report: UnresolvedReport,
    local_tasks: list[Task],
) -> ThreadSyncResult:
    """Resolve remote threads whose tasks are all finished.

    Failures are collected as warnings per thread; one failing thread does
    not stop the others.
    """
    result = ThreadSyncResult()
    tasks_by_comment = _group_by_comment(local_tasks)

    for comment in report.resolved:
        status = report.threads.get(comment.id)
        if status is not None and status.resolved:
            continue
        if not comment.has_thread:
            continue

        ready, warning = is_thread_ready(tasks_by_comment.get(comment.id, []))
        if warning:
            result.warnings.append(f"comment {comment.id}: {warning}")
        if not ready:
            result.skipped.append(comment.id)
            continue

        try:
            client.resolve_thread(pr_number, comment.id)
        except GitHubError as e:
            logger.warning(f"Failed to resolve thread for comment {comment.id}: {e}")
            result.failed.append(comment.id)
            result.warnings.append(f"comment {comment.id}: failed to resolve thread: {e}")
            continue
        result.resolved_threads.append(comment.id)

    return result
