"""
reviewtask cancel - Cancel tasks and post the reason to the review thread.
"""

from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.lib.github import GhCommentSource
from reviewtask.tasks.store import FileTaskStore, MissingCancelReason, TaskNotFound
from reviewtask.workflow.cancellation import CancelOutcome, cancel_pending_tasks, cancel_task
from reviewtask.workflow.state_machine import InvalidTransition


def print_outcome(outcome: CancelOutcome):
    short_id = outcome.task_id[:8]
    if not outcome.ok:
        print(f"  {short_id}: not cancelled: {outcome.error}")
    elif outcome.local_only:
        print(f"  {short_id}: cancelled (no review thread to reply to)")
    elif outcome.comment_posted:
        print(f"  {short_id}: cancelled, reason posted")
    else:
        print(f"  {short_id}: cancelled locally, posting the reason failed: {outcome.error}")
        print(f"    Retry: reviewtask cancel {outcome.task_id} --pr {outcome.task.pr_number} --reason \"...\"")


def cmd_cancel(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    """Cancel one task, or every pending task with --all-pending."""
    if bool(args.id) == bool(args.all_pending):
        print("ERROR: Give either a task id or --all-pending")
        return 2

    store = FileTaskStore(get_storage_dir(repo_path), args.pr)
    client = None if args.local_only else GhCommentSource(repo_path)
    language = config.analysis.user_language

    try:
        if args.all_pending:
            outcomes = cancel_pending_tasks(store, client, args.reason, language)
            if not outcomes:
                print(f"No pending tasks in PR #{args.pr}")
                return 0
        else:
            outcomes = [cancel_task(store, client, args.id, args.reason, language)]
    except MissingCancelReason as e:
        print(f"ERROR: {e}")
        return 2
    except (TaskNotFound, InvalidTransition) as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Cancelled tasks in PR #{args.pr}:")
    for outcome in outcomes:
        print_outcome(outcome)

    if any(not o.ok for o in outcomes):
        return 1
    if any(not o.comment_posted and not o.local_only for o in outcomes):
        return 1
    return 0
