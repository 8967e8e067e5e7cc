"""
reviewtask show - List tasks or show one task in detail.
"""

import json
from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.lib.history import format_verification_history
from reviewtask.tasks.models import Task, parse_priority, parse_status
from reviewtask.tasks.store import FileTaskStore, TaskNotFound

STATUS_MARKERS = {
    "todo": "[ ]",
    "doing": "[>]",
    "done": "[x]",
    "pending": "[?]",
    "cancel": "[-]",
}


def sort_tasks(tasks: list[Task]) -> list[Task]:
    """Priority first, then review order."""
    return sorted(tasks, key=lambda t: (parse_priority(t.priority).rank, t.source_comment_id, t.task_index))


def print_task_line(task: Task):
    marker = STATUS_MARKERS.get(task.status, "[ ]")
    location = ""
    if task.file:
        location = f"  {task.file}" + (f":{task.line}" if task.line is not None else "")
    print(f"{marker} {task.id[:8]}  {task.priority:<8} {task.description}{location}")


def print_task_detail(task: Task):
    print(f"Task {task.id}")
    print("=" * 60)
    print(f"Description:    {task.description}")
    print(f"Status:         {task.status}")
    print(f"Priority:       {task.priority}")
    if task.file:
        location = task.file if task.line is None else f"{task.file}:{task.line}"
        print(f"Location:       {location}")
    if task.is_synthetic:
        print(f"Source:         review {task.source_review_id} (embedded comment)")
    else:
        print(f"Source:         comment {task.source_comment_id} in review {task.source_review_id}")
    print(f"Implementation: {task.implementation_status}")
    print(f"Verification:   {task.verification_status}")
    if task.cancel_reason:
        posted = "posted" if task.cancel_comment_posted else "not posted"
        print(f"Cancel reason:  {task.cancel_reason} ({posted})")
    print(f"Created:        {task.created_at}")
    print(f"Updated:        {task.updated_at}")

    if task.origin_text:
        print()
        print("Original comment:")
        for line in task.origin_text.splitlines():
            print(f"  > {line}")

    history = format_verification_history(task.verification_results)
    if history:
        print()
        print("Verification history:")
        for line in history.splitlines():
            print(f"  {line}")


def cmd_show(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    pr_number = args.pr
    store = FileTaskStore(get_storage_dir(repo_path), pr_number)

    if args.task:
        try:
            task = store.get(args.task)
        except TaskNotFound as e:
            print(f"ERROR: {e}")
            return 1
        if args.json:
            print(json.dumps(task.to_dict(), indent=2, ensure_ascii=False))
        else:
            print_task_detail(task)
        return 0

    tasks = store.load()
    if args.status:
        if parse_status(args.status) is None:
            print(f"ERROR: Unknown status '{args.status}'")
            return 2
        tasks = [t for t in tasks if t.status == args.status]

    if args.json:
        print(json.dumps([t.to_dict() for t in sort_tasks(tasks)], indent=2, ensure_ascii=False))
        return 0

    if not tasks:
        print(f"No tasks for PR #{pr_number}")
        return 0

    for task in sort_tasks(tasks):
        print_task_line(task)
    return 0
