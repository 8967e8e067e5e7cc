"""
reviewtask resolve - Resolve review threads whose tasks are all finished.
"""

from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.lib.github import GhCommentSource, GitHubError
from reviewtask.runner.analysis import fetch_review_comments
from reviewtask.tasks.comments import CommentCache
from reviewtask.tasks.store import FileTaskStore
from reviewtask.workflow.reconciler import is_thread_ready, reconcile, resolve_completed_threads


def cmd_resolve(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    pr_number = args.pr
    storage_dir = get_storage_dir(repo_path)
    source = GhCommentSource(repo_path)
    tasks = FileTaskStore(storage_dir, pr_number).load()

    try:
        remote = fetch_review_comments(source, pr_number, config.analysis.process_nitpick_comments)
    except GitHubError as e:
        print(f"ERROR: Could not fetch review threads: {e}")
        return 1

    report = reconcile(CommentCache(storage_dir, pr_number).load(), remote, tasks)
    print(f"PR #{pr_number}: {report.summary()}")
    if report.stale:
        print(f"  {len(report.stale)} cached comments no longer exist remotely")

    if args.dry_run:
        by_comment = {}
        for task in tasks:
            by_comment.setdefault(task.source_comment_id, []).append(task)
        for comment in report.resolved:
            if report.threads[comment.id].resolved or not comment.has_thread:
                continue
            ready, warning = is_thread_ready(by_comment.get(comment.id, []))
            if ready:
                print(f"  would resolve thread of comment {comment.id}")
            elif warning:
                print(f"  skip {comment.id}: {warning}")
        return 0

    result = resolve_completed_threads(source, pr_number, report, tasks)
    for comment_id in result.resolved_threads:
        print(f"  resolved thread of comment {comment_id}")
    for warning in result.warnings:
        print(f"  WARNING: {warning}")
    if not result.resolved_threads:
        print("  No threads to resolve")

    return 1 if result.failed else 0
