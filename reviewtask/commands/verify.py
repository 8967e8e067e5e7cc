"""
reviewtask verify - Record the result of an externally run verification.
"""

from pathlib import Path

from reviewtask.lib.config import ReviewTaskConfig, get_storage_dir
from reviewtask.tasks.models import VerificationResult, now_iso
from reviewtask.tasks.store import FileTaskStore, TaskNotFound


def parse_checks(value: str | None) -> list[str]:
    if not value:
        return []
    return [c.strip() for c in value.split(",") if c.strip()]


def cmd_verify(args, repo_path: Path, config: ReviewTaskConfig) -> int:
    if not args.passed and not args.reason:
        print("ERROR: A failed verification needs --reason")
        return 2

    result = VerificationResult(
        success=args.passed,
        timestamp=now_iso(),
        checks_run=parse_checks(args.checks),
        failure_reason=None if args.passed else args.reason,
    )

    store = FileTaskStore(get_storage_dir(repo_path), args.pr)
    try:
        task = store.record_verification(args.id, result)
    except TaskNotFound as e:
        print(f"ERROR: {e}")
        return 1

    runs = len(task.verification_results)
    print(f"Task {task.id[:8]}: {task.verification_status} ({runs} verification runs recorded)")
    return 0
