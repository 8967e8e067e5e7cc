"""Analyze run entry points.

run_analysis() is the foreground path used by `reviewtask analyze`.
generation_flow() is the same run wrapped as a Prefect flow; it is what the
detached worker started by launch_background() executes, so background runs
get Prefect retries on the GitHub fetch and show up in the Prefect UI when a
server is configured.

Both take the per-PR run lock, so a foreground and a background run of the
same pull request never overlap.
"""

import logging
import subprocess
import sys
from datetime import datetime
from pathlib import Path

from prefect import flow, task

from reviewtask.agents.claude import ClaudeAnalyzer
from reviewtask.lib.agents_config import load_agents_config
from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir, get_unit_dir, load_config
from reviewtask.lib.github import GhCommentSource, GitHubError
from reviewtask.lib.stats import get_stats_file
from reviewtask.lib.types import ReviewComment, collect_comments
from reviewtask.lib.validate import ValidationError
from reviewtask.notifications import notify_run_error, notify_run_finished
from reviewtask.runner.locking import is_review_unit_locked, read_lock_owner, review_unit_lock
from reviewtask.tasks.checkpoint import CheckpointStore
from reviewtask.tasks.comments import CommentCache
from reviewtask.tasks.store import FileTaskStore
from reviewtask.workflow.engine import Orchestrator, RunResult
from reviewtask.workflow.generator import Analyzer
from reviewtask.workflow.scheduler import RunObserver

logger = logging.getLogger(__name__)

BACKGROUND_LOG_NAME = "background.log"


class RunAlreadyActive(Exception):
    """Another analyze run holds the run lock for this pull request."""
    pass


class LoggingObserver(RunObserver):
    """Progress reporting for runs nobody is watching."""

    def __init__(self, pr_number: int):
        self.pr_number = pr_number

    def on_progress(self, processed: int, total: int) -> None:
        logger.info(f"PR #{self.pr_number}: processed {processed}/{total} comments")

    def on_batch_complete(self, batch_index: int, tasks) -> None:
        logger.info(f"PR #{self.pr_number}: batch {batch_index + 1} produced {len(tasks)} tasks")


def new_run_id() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def fetch_review_comments(source: GhCommentSource, pr_number: int, include_nitpick: bool) -> list[ReviewComment]:
    """Fetch and flatten the review's comments, thread state included.

    Raises:
        GitHubError: on any gh failure
    """
    reviews = source.fetch_reviews(pr_number)
    comments = collect_comments(reviews, include_nitpick_reviews=include_nitpick)
    logger.info(f"PR #{pr_number}: {len(comments)} comments from {len(reviews)} reviews")
    return comments


def analyze_comments(
    repo_path: Path,
    pr_number: int,
    config: ReviewTaskConfig,
    comments: list[ReviewComment],
    observer: RunObserver | None = None,
    analyzer: Analyzer | None = None,
) -> RunResult:
    """Run the orchestrator over already fetched comments against the on-disk store."""
    storage_dir = get_storage_dir(repo_path)
    try:
        CommentCache(storage_dir, pr_number).save(comments)
    except (OSError, ValidationError) as e:
        logger.warning(f"Could not cache comments for PR #{pr_number}: {e}")

    if analyzer is None:
        analyzer = ClaudeAnalyzer(
            pr_number,
            agents_config=load_agents_config(storage_dir),
            cwd=repo_path,
            stats_file=get_stats_file(storage_dir, pr_number),
            run_id=new_run_id(),
        )
    orchestrator = Orchestrator(
        pr_number=pr_number,
        store=FileTaskStore(storage_dir, pr_number),
        analyzer=analyzer,
        config=config,
        checkpoints=CheckpointStore(storage_dir, pr_number),
        observer=observer,
    )
    return orchestrator.run(comments)


def run_analysis(
    repo_path: Path,
    pr_number: int,
    config: ReviewTaskConfig,
    observer: RunObserver | None = None,
    source: GhCommentSource | None = None,
    analyzer: Analyzer | None = None,
    lock_timeout: float = 0,
) -> RunResult:
    """Fetch comments and run one analyze invocation under the run lock.

    Raises:
        ConfigError: invalid configuration
        LockTimeout: another run holds the lock
        GitHubError: fetching comments failed
    """
    config.validate()
    storage_dir = get_storage_dir(repo_path)
    with review_unit_lock(storage_dir, pr_number, timeout=lock_timeout):
        source = source or GhCommentSource(repo_path)
        comments = fetch_review_comments(source, pr_number, config.analysis.process_nitpick_comments)
        return analyze_comments(repo_path, pr_number, config, comments, observer, analyzer)


@task(
    retries=2,
    retry_delay_seconds=5,
    name="fetch_review_comments",
    description="Fetch review comments and thread state with gh"
)
def task_fetch_comments(repo_path: str, pr_number: int, include_nitpick: bool) -> list[ReviewComment]:
    """Comment fetch with Prefect retry handling for transient gh failures."""
    return fetch_review_comments(GhCommentSource(Path(repo_path)), pr_number, include_nitpick)


@flow(name="review_task_generation")
def generation_flow(repo_path: str, pr_number: int, run_overrides: dict | None = None) -> int:
    """Background analyze run. Returns the run's exit code.

    Raises:
        ConfigError: invalid configuration
        LockTimeout: another run holds the lock
        GitHubError: fetching comments failed after retries
    """
    repo = Path(repo_path)
    storage_dir = get_storage_dir(repo)
    config = load_config(storage_dir).with_overrides(**(run_overrides or {}))
    config.validate()

    logger.info(f"Starting background analysis of PR #{pr_number}")
    with review_unit_lock(storage_dir, pr_number, timeout=0):
        try:
            comments = task_fetch_comments(repo_path, pr_number, config.analysis.process_nitpick_comments)
        except GitHubError as e:
            notify_run_error(pr_number, str(e))
            raise
        result = analyze_comments(repo, pr_number, config, comments, LoggingObserver(pr_number))

    notify_run_finished(pr_number, result.status, result.processed, result.total, len(result.tasks))
    return result.exit_code


def background_log_path(storage_dir: Path, pr_number: int) -> Path:
    return get_unit_dir(storage_dir, pr_number) / BACKGROUND_LOG_NAME


def launch_background(repo_path: Path, pr_number: int, extra_args: list[str]) -> subprocess.Popen:
    """Start a detached worker process for the analyze run.

    The worker survives the calling shell and logs to PR-<n>/background.log.

    Raises:
        RunAlreadyActive: a run for this pull request is already in progress
    """
    storage_dir = get_storage_dir(repo_path)
    if is_review_unit_locked(storage_dir, pr_number):
        owner = read_lock_owner(storage_dir, pr_number)
        detail = f" (pid {owner})" if owner else ""
        raise RunAlreadyActive(f"An analyze run for PR #{pr_number} is already active{detail}")

    log_path = background_log_path(storage_dir, pr_number)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        sys.executable, "-m", "reviewtask.cli",
        "--repo", str(repo_path), "--verbose",
        "analyze", str(pr_number), "--worker",
    ] + list(extra_args)

    with open(log_path, "a") as log:
        process = subprocess.Popen(
            cmd,
            cwd=str(repo_path),
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            # Don't let the worker die when the parent shell exits
            start_new_session=True,
        )
    logger.info(f"Started background worker {process.pid} for PR #{pr_number}")
    return process
