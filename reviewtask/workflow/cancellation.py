"""Task cancellation with a reply on the review thread.

The local cancellation is always committed, even when posting the reply
fails. In that case cancel_comment_posted stays False and cancelling again
with the same reason retries only the reply.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from reviewtask.lib.github import GitHubError
from reviewtask.tasks.models import Task, TaskStatus, ACTIVE_STATUSES
from reviewtask.tasks.store import MissingCancelReason, TaskNotFound, TaskStore
from reviewtask.workflow.state_machine import InvalidTransition, can_transition

logger = logging.getLogger(__name__)

CANCEL_TEXT = {
    "English": {
        "header": "**Task Cancelled**",
        "priority": "Priority",
        "original": "**Original Feedback:**",
        "reason": "Cancellation reason:",
        "others": "\nℹ️ This comment has {count} other task(s) still active\n",
    },
    "Japanese": {
        "header": "**タスクをキャンセルしました**",
        "priority": "優先度",
        "original": "**元のフィードバック:**",
        "reason": "キャンセル理由:",
        "others": "\nℹ️ このコメントには他に {count} 件のタスクがあります\n",
    },
}


class ReplyClient(Protocol):
    def post_reply(self, pr_number: int, comment_id: int, text: str) -> None:
        ...


@dataclass
class CancelOutcome:
    task_id: str
    task: Task | None
    comment_posted: bool = False
    local_only: bool = False  # no thread to reply to
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.task is not None and self.task.status == TaskStatus.CANCEL.value


def format_cancel_comment(task: Task, reason: str, other_active: int, language: str = "English") -> str:
    text = CANCEL_TEXT.get(language, CANCEL_TEXT["English"])
    priority = (task.priority or "medium").upper()

    parts = [f"{text['header']} ({text['priority']}: {priority})\n\n"]
    if task.description:
        parts.append(f"{text['original']}\n> {task.description}\n\n")
    parts.append(f"{text['reason']}\n> {reason}\n")
    if other_active > 0:
        parts.append(text["others"].format(count=other_active))
    return "".join(parts)


def _require_reason(reason: str) -> str:
    if not reason or not reason.strip():
        raise MissingCancelReason("A cancellation reason is required")
    return reason.strip()


def cancel_task(
    store: TaskStore,
    client: ReplyClient | None,
    task_id: str,
    reason: str,
    language: str = "English",
) -> CancelOutcome:
    """Cancel one task and post the reason to its thread.

    Raises:
        MissingCancelReason: empty reason
        TaskNotFound: unknown task id
        InvalidTransition: the task is done
    """
    reason = _require_reason(reason)
    task = store.get(task_id)

    if not can_transition(task.status, TaskStatus.CANCEL.value):
        raise InvalidTransition(task.status, TaskStatus.CANCEL.value, task.id, "re-open the task first")

    if (task.status == TaskStatus.CANCEL.value and task.cancel_comment_posted
            and task.cancel_reason == reason):
        logger.info(f"Task {task.id} already cancelled with this reason")
        return CancelOutcome(task_id=task.id, task=task, comment_posted=True)

    if task.is_synthetic or client is None:
        updated = store.update_cancel_status(task.id, reason, comment_posted=False)
        return CancelOutcome(task_id=task.id, task=updated, local_only=True)

    siblings = store.by_comment(task.source_comment_id)
    other_active = sum(1 for t in siblings if t.id != task.id and t.status in ACTIVE_STATUSES)
    body = format_cancel_comment(task, reason, other_active, language)

    posted = False
    error = None
    try:
        client.post_reply(task.pr_number, task.source_comment_id, body)
        posted = True
    except GitHubError as e:
        error = str(e)
        logger.warning(f"Cancelled task {task.id} locally but could not post the reason: {e}")

    updated = store.update_cancel_status(task.id, reason, comment_posted=posted)
    return CancelOutcome(task_id=task.id, task=updated, comment_posted=posted, error=error)


def cancel_pending_tasks(
    store: TaskStore,
    client: ReplyClient | None,
    reason: str,
    language: str = "English",
) -> list[CancelOutcome]:
    """Cancel every task currently in pending. Each task succeeds or fails on its own."""
    reason = _require_reason(reason)
    outcomes = []
    for task in store.load():
        if task.status != TaskStatus.PENDING.value:
            continue
        try:
            outcomes.append(cancel_task(store, client, task.id, reason, language))
        except (TaskNotFound, InvalidTransition) as e:
            logger.warning(f"Could not cancel task {task.id}: {e}")
            outcomes.append(CancelOutcome(task_id=task.id, task=None, error=str(e)))
    return outcomes
