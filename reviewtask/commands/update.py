"""
reviewtask update - Change a task's status or implementation state.
"""

from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.tasks.models import Task
from reviewtask.tasks.store import FileTaskStore, TaskNotFound
from reviewtask.workflow.state_machine import CancelRequiresReason, InvalidTransition

IMPLEMENTATION_STATUSES = ("not_implemented", "implemented")


def report_change(task: Task, old_status: str):
    print(f"Task {task.id[:8]}: {old_status} -> {task.status}")


def cmd_update(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    """Move a task through its lifecycle. Cancelling goes through `reviewtask cancel`."""
    if not args.status and not args.implementation:
        print("ERROR: Nothing to update. Give a status and/or --implementation")
        return 2

    store = FileTaskStore(get_storage_dir(repo_path), args.pr, strict=args.strict)

    try:
        if args.status:
            changes = []

            def on_change(task: Task, old_status: str):
                changes.append(old_status)
                report_change(task, old_status)

            task = store.update_status(args.id, args.status, on_change=on_change)
            if not changes:
                print(f"Task {task.id[:8]} is already {task.status}")
        if args.implementation:
            task = store.update_implementation_status(args.id, args.implementation)
            print(f"Task {task.id[:8]}: implementation {task.implementation_status}")
    except TaskNotFound as e:
        print(f"ERROR: {e}")
        return 1
    except CancelRequiresReason:
        print("ERROR: Use 'reviewtask cancel <id> --reason \"...\"' to cancel a task")
        return 2
    except InvalidTransition as e:
        print(f"ERROR: {e}")
        return 1

    return 0
