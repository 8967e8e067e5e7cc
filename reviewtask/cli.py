#!/usr/bin/env python3
"""reviewtask CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from reviewtask.lib.config import ConfigError, get_storage_dir, load_config
from reviewtask.lib.github import GhCommentSource, GitHubError
from reviewtask.lib.validate import ValidationError
from reviewtask.tasks.models import TaskStatus
from reviewtask.tasks.store import find_task_pr
from reviewtask.commands import analyze as cmd_analyze_module
from reviewtask.commands import status as cmd_status_module
from reviewtask.commands import show as cmd_show_module
from reviewtask.commands import update as cmd_update_module
from reviewtask.commands import cancel as cmd_cancel_module
from reviewtask.commands import verify as cmd_verify_module
from reviewtask.commands import resolve as cmd_resolve_module

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_repo_config(args):
    """Resolve the repository path and load its config."""
    repo_path = Path(args.repo).resolve()
    try:
        config = load_config(get_storage_dir(repo_path))
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(2)
    return repo_path, config


def resolve_pr_number(args, repo_path: Path) -> int:
    """PR number from args, or the PR of the checked-out branch."""
    if args.pr is not None:
        return args.pr
    try:
        return GhCommentSource(repo_path).current_pr_number()
    except GitHubError as e:
        print(f"ERROR: No PR number given and none found for the current branch: {e}")
        sys.exit(2)


def resolve_task_pr(args, repo_path: Path) -> int:
    """PR number from --pr, or the PR whose task list holds args.id."""
    if args.pr is not None:
        return args.pr
    pr_number = find_task_pr(get_storage_dir(repo_path), args.id)
    if pr_number is None:
        print(f"ERROR: Task '{args.id}' not found. Use --pr to specify the pull request.")
        sys.exit(2)
    return pr_number


def cmd_analyze(args):
    repo_path, config = get_repo_config(args)
    args.pr = resolve_pr_number(args, repo_path)
    return cmd_analyze_module.cmd_analyze(args, repo_path, config)


def cmd_status(args):
    repo_path, config = get_repo_config(args)
    args.pr = resolve_pr_number(args, repo_path)
    return cmd_status_module.cmd_status(args, repo_path, config)


def cmd_show(args):
    repo_path, config = get_repo_config(args)
    if args.task and args.pr is None:
        args.id = args.task
        args.pr = resolve_task_pr(args, repo_path)
    else:
        args.pr = resolve_pr_number(args, repo_path)
    return cmd_show_module.cmd_show(args, repo_path, config)


def cmd_update(args):
    repo_path, config = get_repo_config(args)
    args.pr = resolve_task_pr(args, repo_path)
    return cmd_update_module.cmd_update(args, repo_path, config)


def cmd_cancel(args):
    repo_path, config = get_repo_config(args)
    if args.id:
        args.pr = resolve_task_pr(args, repo_path)
    else:
        args.pr = resolve_pr_number(args, repo_path)
    return cmd_cancel_module.cmd_cancel(args, repo_path, config)


def cmd_verify(args):
    repo_path, config = get_repo_config(args)
    args.pr = resolve_task_pr(args, repo_path)
    return cmd_verify_module.cmd_verify(args, repo_path, config)


def cmd_resolve(args):
    repo_path, config = get_repo_config(args)
    args.pr = resolve_pr_number(args, repo_path)
    return cmd_resolve_module.cmd_resolve(args, repo_path, config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='reviewtask', description='Turn PR review comments into tracked tasks')
    parser.add_argument('--repo', '-C', default='.', help='Repository path (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    statuses = [s.value for s in TaskStatus]

    # reviewtask analyze
    p_analyze = subparsers.add_parser('analyze', help='Generate tasks from review comments')
    p_analyze.add_argument('pr', nargs='?', type=int, help='PR number (default: PR of current branch)')
    p_analyze.add_argument('--batch-size', type=int, help='Comments per analyzer call')
    p_analyze.add_argument('--max-batches', type=int, help='Batches per invocation (0 = unlimited)')
    p_analyze.add_argument('--timeout', type=float, help='Time limit for the whole run in seconds')
    p_analyze.add_argument('--fresh', action='store_true', help='Ignore any checkpoint and start over')
    p_analyze.add_argument('--realtime', action='store_true', help='Save each task as soon as it is generated')
    p_analyze.add_argument('--background', action='store_true', help='Run detached; check with status')
    p_analyze.add_argument('--worker', action='store_true', help=argparse.SUPPRESS)
    p_analyze.set_defaults(func=cmd_analyze)

    # reviewtask status
    p_status = subparsers.add_parser('status', help='Show task progress')
    p_status.add_argument('pr', nargs='?', type=int, help='PR number (default: PR of current branch)')
    p_status.add_argument('--threads', action='store_true', help='Also check remote thread state')
    p_status.set_defaults(func=cmd_status)

    # reviewtask show
    p_show = subparsers.add_parser('show', help='List tasks or show one task')
    p_show.add_argument('pr', nargs='?', type=int, help='PR number (default: PR of current branch)')
    p_show.add_argument('--task', '-t', help='Task ID to show in detail')
    p_show.add_argument('--status', '-s', choices=statuses, help='Only tasks with this status')
    p_show.add_argument('--json', action='store_true', help='Print JSON')
    p_show.set_defaults(func=cmd_show)

    # reviewtask update
    p_update = subparsers.add_parser('update', help='Change task status')
    p_update.add_argument('id', help='Task ID')
    p_update.add_argument('status', nargs='?', choices=statuses, help='New status')
    p_update.add_argument('--implementation', choices=cmd_update_module.IMPLEMENTATION_STATUSES,
                          help='Set implementation status')
    p_update.add_argument('--pr', type=int, help='PR number (found from the task ID if omitted)')
    p_update.add_argument('--strict', action='store_true', help='Reject moves outside the task lifecycle')
    p_update.set_defaults(func=cmd_update)

    # reviewtask cancel
    p_cancel = subparsers.add_parser('cancel', help='Cancel tasks and reply on the review thread')
    p_cancel.add_argument('id', nargs='?', help='Task ID')
    p_cancel.add_argument('--reason', '-r', required=True, help='Why the task is cancelled')
    p_cancel.add_argument('--all-pending', action='store_true', help='Cancel every pending task')
    p_cancel.add_argument('--pr', type=int, help='PR number')
    p_cancel.add_argument('--local-only', action='store_true', help='Do not post the reason to GitHub')
    p_cancel.set_defaults(func=cmd_cancel)

    # reviewtask verify
    p_verify = subparsers.add_parser('verify', help='Record an externally run verification')
    p_verify.add_argument('id', help='Task ID')
    outcome = p_verify.add_mutually_exclusive_group(required=True)
    outcome.add_argument('--passed', action='store_true', help='Verification succeeded')
    outcome.add_argument('--failed', action='store_true', help='Verification failed')
    p_verify.add_argument('--checks', help='Comma-separated list of checks run')
    p_verify.add_argument('--reason', help='Failure reason')
    p_verify.add_argument('--pr', type=int, help='PR number (found from the task ID if omitted)')
    p_verify.set_defaults(func=cmd_verify)

    # reviewtask resolve
    p_resolve = subparsers.add_parser('resolve', help='Resolve threads whose tasks are finished')
    p_resolve.add_argument('pr', nargs='?', type=int, help='PR number (default: PR of current branch)')
    p_resolve.add_argument('--dry-run', action='store_true', help='Only show what would be resolved')
    p_resolve.set_defaults(func=cmd_resolve)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=LOG_FORMAT)

    try:
        return args.func(args)
    except ValidationError as e:
        print(f"ERROR: Stored data is invalid: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
