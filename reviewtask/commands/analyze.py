"""
reviewtask analyze - Turn review comments into tasks.
"""

import logging
from pathlib import Path

from reviewtask.lib.agents_config import load_agents_config, validate_stage_binary
from reviewtask.lib.config import ConfigError, ReviewTaskConfig, get_storage_dir
from reviewtask.lib.github import GitHubError
from reviewtask.lib.stats import format_duration
from reviewtask.runner.analysis import (
    RunAlreadyActive,
    background_log_path,
    generation_flow,
    launch_background,
    run_analysis,
)
from reviewtask.runner.locking import LockTimeout
from reviewtask.workflow.engine import RUN_COMPLETE, RUN_FAILED, RUN_TIMED_OUT, RunResult
from reviewtask.workflow.scheduler import RunObserver

logger = logging.getLogger(__name__)


class ConsoleObserver(RunObserver):
    def on_progress(self, processed: int, total: int) -> None:
        print(f"\r  Processed {processed}/{total} comments", end="", flush=True)

    def on_batch_complete(self, batch_index: int, tasks) -> None:
        print(f"\n  Batch {batch_index + 1}: {len(tasks)} new tasks")


def run_overrides(args) -> dict:
    """RunConfig fields set on the command line."""
    overrides = {
        "batch_size": args.batch_size,
        "max_batches": args.max_batches,
        "max_timeout": args.timeout,
    }
    if args.fresh:
        overrides["resume"] = False
    if args.realtime:
        overrides["realtime_save"] = True
    return overrides


def worker_args(args) -> list[str]:
    """The same overrides, as arguments for the background worker."""
    extra = []
    if args.batch_size is not None:
        extra += ["--batch-size", str(args.batch_size)]
    if args.max_batches is not None:
        extra += ["--max-batches", str(args.max_batches)]
    if args.timeout is not None:
        extra += ["--timeout", str(args.timeout)]
    if args.fresh:
        extra.append("--fresh")
    if args.realtime:
        extra.append("--realtime")
    return extra


def print_result(pr_number: int, result: RunResult):
    print()
    if result.status == RUN_COMPLETE:
        print(f"PR #{pr_number}: analysis complete")
    elif result.status == RUN_FAILED:
        print(f"ERROR: PR #{pr_number}: analysis failed: {result.error}")
    elif result.status == RUN_TIMED_OUT:
        print(f"PR #{pr_number}: stopped at the time limit")
    else:
        print(f"PR #{pr_number}: batch limit reached")

    print(f"  Comments:   {result.processed}/{result.total} processed")
    if result.skipped_resolved:
        print(f"  Resolved:   {result.skipped_resolved} skipped")
    print(f"  New tasks:  {len(result.tasks)}")
    if result.duplicates_dropped:
        print(f"  Duplicates: {result.duplicates_dropped} dropped")
    if result.rejected:
        print(f"  Rejected:   {result.rejected} malformed entries")
    print(f"  Elapsed:    {format_duration(result.elapsed_seconds)}")

    if result.more_remaining:
        print()
        print(f"  {result.total - result.processed} comments remaining. Run again to continue:")
        print(f"    reviewtask analyze {pr_number}")


def cmd_analyze(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    """Analyze a pull request's review comments."""
    pr_number = args.pr
    overrides = run_overrides(args)

    try:
        config = config.with_overrides(**overrides)
        config.validate()
    except ConfigError as e:
        print(f"ERROR: {e}")
        return 2

    if args.worker:
        try:
            return generation_flow(str(repo_path), pr_number, overrides)
        except (LockTimeout, GitHubError) as e:
            logger.error(f"Background analysis of PR #{pr_number} aborted: {e}")
            return 1

    binary_check = validate_stage_binary(load_agents_config(get_storage_dir(repo_path)))
    if not binary_check.ok:
        print(f"ERROR: {binary_check.error_message}")
        return 2

    if args.background:
        try:
            process = launch_background(repo_path, pr_number, worker_args(args))
        except RunAlreadyActive as e:
            print(f"ERROR: {e}")
            return 1
        log_path = background_log_path(get_storage_dir(repo_path), pr_number)
        print(f"Started background analysis of PR #{pr_number} (pid {process.pid})")
        print(f"  Log: {log_path}")
        print(f"  Check progress: reviewtask status {pr_number}")
        return 0

    print(f"Analyzing review comments on PR #{pr_number}...")
    try:
        result = run_analysis(repo_path, pr_number, config, observer=ConsoleObserver())
    except LockTimeout:
        print(f"ERROR: Another analyze run for PR #{pr_number} is in progress")
        return 1
    except GitHubError as e:
        print(f"ERROR: Could not fetch review comments: {e}")
        return 1

    print_result(pr_number, result)
    return result.exit_code
