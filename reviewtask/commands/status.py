"""
reviewtask status - Show task progress for a pull request.
"""

from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.lib.github import GhCommentSource, GitHubError
from reviewtask.lib.stats import (
    comment_stats,
    format_stats_summary,
    get_stats_file,
    load_analysis_stats,
    summarize_analysis_stats,
    summarize_tasks,
)
from reviewtask.runner.analysis import fetch_review_comments
from reviewtask.runner.locking import is_review_unit_locked, read_lock_owner
from reviewtask.tasks.checkpoint import CheckpointStore
from reviewtask.tasks.comments import CommentCache
from reviewtask.tasks.store import FileTaskStore
from reviewtask.workflow.reconciler import reconcile


def print_thread_report(report):
    print()
    print(f"Threads:        {report.summary()}")
    for comment in report.unanalyzed:
        location = f" {comment.file}:{comment.line}" if comment.file else ""
        print(f"  [new]     {comment.id}{location}")
    for comment in report.in_progress:
        location = f" {comment.file}:{comment.line}" if comment.file else ""
        print(f"  [open]    {comment.id}{location}")
    for comment in report.stale:
        print(f"  [deleted] {comment.id} (no longer on the pull request)")


def cmd_status(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    """Show task counts, run state and, with --threads, remote thread state."""
    pr_number = args.pr
    storage_dir = get_storage_dir(repo_path)
    store = FileTaskStore(storage_dir, pr_number)

    tasks = store.load()
    summary = summarize_tasks(tasks)

    print(f"PR #{pr_number}")
    print("=" * 60)
    print()

    if is_review_unit_locked(storage_dir, pr_number):
        owner = read_lock_owner(storage_dir, pr_number)
        suffix = f" (pid {owner})" if owner else ""
        print(f"Analysis:       running{suffix}")
    checkpoint = CheckpointStore(storage_dir, pr_number).load()
    if checkpoint is not None:
        print(f"Checkpoint:     {checkpoint.processed_count}/{checkpoint.total_comments} comments, "
              f"{checkpoint.batches_completed} batches (last {checkpoint.last_processed_at})")

    if not tasks:
        print(f"No tasks yet. Run: reviewtask analyze {pr_number}")
    else:
        print(f"Tasks:          {summary.total} ({summary.completion_rate:.0%} closed)")
        print(f"  todo:    {summary.todo}")
        print(f"  doing:   {summary.doing}")
        print(f"  pending: {summary.pending}")
        print(f"  done:    {summary.done}")
        print(f"  cancel:  {summary.cancel}")

        open_comments = [c for c in comment_stats(tasks) if c.active]
        if open_comments:
            print()
            print("Comments with open tasks:")
            for c in open_comments:
                location = f" ({c.file})" if c.file else ""
                print(f"  {c.comment_id}{location}: {c.active}/{c.total} open")

    aggregated = summarize_analysis_stats(load_analysis_stats(get_stats_file(storage_dir, pr_number)))
    if aggregated:
        print()
        print("Analysis stats:")
        for line in format_stats_summary(aggregated):
            print(line)

    if args.threads:
        try:
            remote = fetch_review_comments(
                GhCommentSource(repo_path), pr_number, config.analysis.process_nitpick_comments
            )
        except GitHubError as e:
            print(f"ERROR: Could not fetch review threads: {e}")
            return 1
        print_thread_report(reconcile(CommentCache(storage_dir, pr_number).load(), remote, tasks))

    return 0
