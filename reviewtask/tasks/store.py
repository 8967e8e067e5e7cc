"""
Task persistence for one pull request.

Every mutation is a read-modify-write under the store's lock, so a reader
sees either the collection before an operation or after it, never a torn
state. FileTaskStore writes tasks.json to a temporary file and renames it
into place; a crash mid-save leaves the previous file intact.

Usage:
    store = FileTaskStore(storage_dir, pr_number=42)
    tasks = store.load()
    store.update_status(task_id, "doing")
    store.update_cancel_status(task_id, "duplicate of #12", comment_posted=True)
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, TypeVar

from reviewtask.lib.config import ConfigError, get_unit_dir
from reviewtask.lib.validate import validate, validate_file, validate_before_write
from reviewtask.runner.locking import file_lock
from reviewtask.tasks.models import Task, TaskStatus, VerificationResult, now_iso
from reviewtask.workflow.state_machine import apply_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")

TASKS_FILE_NAME = "tasks.json"
STORE_LOCK_TIMEOUT = 30


class TaskNotFound(Exception):
    """No task with the given id exists for this pull request."""

    def __init__(self, task_id: str, pr_number: int):
        self.task_id = task_id
        self.pr_number = pr_number
        super().__init__(f"Task {task_id} not found in PR #{pr_number}")


class MissingCancelReason(ConfigError):
    """A cancellation was requested without a reason."""
    pass


StatusCallback = Callable[[Task, str], None]


class TaskStore:
    """Base class. Subclasses provide _read, _write and optionally _backend_lock."""

    def __init__(self, pr_number: int, strict: bool = False):
        self.pr_number = pr_number
        self.strict = strict
        self._mutex = threading.RLock()
        self._depth = 0

    def _read(self) -> list[Task]:
        raise NotImplementedError

    def _write(self, tasks: list[Task]) -> None:
        raise NotImplementedError

    @contextmanager
    def _backend_lock(self):
        yield

    @contextmanager
    def transaction(self):
        """Hold the store lock. Nested use within one thread is allowed."""
        with self._mutex:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return
            with self._backend_lock():
                self._depth = 1
                try:
                    yield
                finally:
                    self._depth = 0

    def modify(self, fn: Callable[[list[Task]], T]) -> T:
        """Atomically load, apply fn to the task list in place, and save."""
        with self.transaction():
            tasks = self._read()
            result = fn(tasks)
            self._write(tasks)
            return result

    def load(self) -> list[Task]:
        with self.transaction():
            return self._read()

    def save(self, tasks: list[Task]) -> None:
        keys = [t.key for t in tasks]
        if len(keys) != len(set(keys)):
            raise ValueError("Duplicate (source_comment_id, task_index) in task collection")
        with self.transaction():
            self._write(tasks)

    def get(self, task_id: str) -> Task:
        for task in self.load():
            if task.id == task_id:
                return task
        raise TaskNotFound(task_id, self.pr_number)

    def by_comment(self, comment_id: int) -> list[Task]:
        return [t for t in self.load() if t.source_comment_id == comment_id]

    def _find(self, tasks: list[Task], task_id: str) -> Task:
        for task in tasks:
            if task.id == task_id:
                return task
        raise TaskNotFound(task_id, self.pr_number)

    def update_status(
        self,
        task_id: str,
        new_status: str,
        on_change: StatusCallback | None = None,
        reason: str = "",
    ) -> Task:
        """Change a task's status through the generic path.

        on_change(task, old_status) runs after the change is saved and only
        if the status actually changed.

        Raises:
            TaskNotFound: unknown task id
            CancelRequiresReason: new_status is cancel
            InvalidTransition: unknown status, or a move rejected in strict mode
        """
        def change(tasks: list[Task]) -> tuple[Task, str, bool]:
            task = self._find(tasks, task_id)
            old_status = task.status
            changed = apply_transition(task, new_status, reason=reason, strict=self.strict)
            if changed:
                task.updated_at = now_iso()
            return task, old_status, changed

        task, old_status, changed = self.modify(change)
        if changed and on_change is not None:
            on_change(task, old_status)
        return task

    def update_cancel_status(self, task_id: str, reason: str, comment_posted: bool) -> Task:
        """Cancel a task, or refresh an existing cancellation.

        Calling again on an already-cancelled task only updates the reason
        and the posted flag, so a failed reply can be retried.

        Raises:
            MissingCancelReason: reason is empty
            TaskNotFound: unknown task id
            InvalidTransition: task is done (re-open it first)
        """
        if not reason or not reason.strip():
            raise MissingCancelReason("A cancellation reason is required")

        def change(tasks: list[Task]) -> Task:
            task = self._find(tasks, task_id)
            apply_transition(task, TaskStatus.CANCEL.value, reason=reason, strict=True, allow_cancel=True)
            task.cancel_reason = reason.strip()
            task.cancel_comment_posted = bool(comment_posted)
            task.updated_at = now_iso()
            return task

        return self.modify(change)

    def record_verification(self, task_id: str, result: VerificationResult) -> Task:
        """Append an externally produced verification result."""
        def change(tasks: list[Task]) -> Task:
            task = self._find(tasks, task_id)
            task.verification_results.append(result)
            task.verification_status = "verified" if result.success else "failed"
            task.last_verification_at = result.timestamp
            task.updated_at = now_iso()
            return task

        return self.modify(change)

    def update_implementation_status(self, task_id: str, status: str) -> Task:
        def change(tasks: list[Task]) -> Task:
            task = self._find(tasks, task_id)
            if task.implementation_status != status:
                task.implementation_status = status
                task.updated_at = now_iso()
            return task

        return self.modify(change)


class MemoryTaskStore(TaskStore):
    """In-process store. Keeps serialized copies so callers never share objects."""

    def __init__(self, pr_number: int, tasks: list[Task] | None = None, strict: bool = False):
        super().__init__(pr_number, strict=strict)
        self._records: list[dict] = [t.to_dict() for t in tasks or []]

    def _read(self) -> list[Task]:
        return [Task.from_dict(r) for r in self._records]

    def _write(self, tasks: list[Task]) -> None:
        self._records = [t.to_dict() for t in tasks]


class FileTaskStore(TaskStore):
    """tasks.json under .pr-review/PR-<n>/."""

    def __init__(self, storage_dir: Path, pr_number: int, strict: bool = False,
                 lock_timeout: float = STORE_LOCK_TIMEOUT):
        super().__init__(pr_number, strict=strict)
        self.storage_dir = storage_dir
        self.unit_dir = get_unit_dir(storage_dir, pr_number)
        self.path = self.unit_dir / TASKS_FILE_NAME
        self.lock_path = self.unit_dir / "tasks.lock"
        self.lock_timeout = lock_timeout

    @contextmanager
    def _backend_lock(self):
        with file_lock(self.lock_path, self.lock_timeout, f"task store for PR #{self.pr_number}"):
            yield

    def exists(self) -> bool:
        return self.path.exists()

    def _read(self) -> list[Task]:
        if not self.path.exists():
            return []
        data = validate_file(self.path, "tasks_file")
        tasks = []
        for record in data["tasks"]:
            validate(record, "task")
            tasks.append(Task.from_dict(record))
        return tasks

    def _write(self, tasks: list[Task]) -> None:
        records = [t.to_dict() for t in tasks]
        for record in records:
            validate_before_write(record, "task", self.path)
        document = {
            "pr_number": self.pr_number,
            "generated_at": now_iso(),
            "tasks": records,
        }
        validate_before_write(document, "tasks_file", self.path)

        self.unit_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tasks-", suffix=".tmp", dir=self.unit_dir)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Saved {len(tasks)} tasks to {self.path}")


def list_review_units(storage_dir: Path) -> list[int]:
    """PR numbers that have a tasks.json under the storage directory."""
    numbers = []
    if not storage_dir.exists():
        return numbers
    for unit_dir in storage_dir.glob("PR-*"):
        suffix = unit_dir.name[len("PR-"):]
        if suffix.isdigit() and (unit_dir / TASKS_FILE_NAME).exists():
            numbers.append(int(suffix))
    return sorted(numbers)


def find_task_pr(storage_dir: Path, task_id: str) -> int | None:
    """PR number whose tasks.json holds task_id, or None."""
    for pr_number in list_review_units(storage_dir):
        path = get_unit_dir(storage_dir, pr_number) / TASKS_FILE_NAME
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Skipping unreadable {path}: {e}")
            continue
        if any(record.get("id") == task_id for record in data.get("tasks", [])):
            return pr_number
    return None
