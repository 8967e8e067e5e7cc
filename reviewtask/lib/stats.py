"""
Stats for analyzer calls and task progress.

Analyzer calls are appended to PR-<n>/stats.jsonl, one JSON object per line.
Task progress summaries are computed from the task list on demand.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from reviewtask.lib.config import get_unit_dir
from reviewtask.tasks.models import Task, TaskStatus, CLOSED_STATUSES

logger = logging.getLogger(__name__)

STATS_FILE_NAME = "stats.jsonl"


@dataclass
class AnalysisStats:
    """Stats for a single analyzer invocation."""
    timestamp: str
    run_id: str
    comment_count: int
    elapsed_seconds: float
    success: bool
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    error: Optional[str] = None


def get_stats_file(storage_dir: Path, pr_number: int) -> Path:
    return get_unit_dir(storage_dir, pr_number) / STATS_FILE_NAME


def record_analysis_stats(stats_file: Path, stats: AnalysisStats) -> None:
    stats_file.parent.mkdir(parents=True, exist_ok=True)
    with open(stats_file, "a") as f:
        f.write(json.dumps(asdict(stats)) + "\n")
        f.flush()


def load_analysis_stats(stats_file: Path) -> list[AnalysisStats]:
    """Load all recorded calls. Skips corrupted lines."""
    if not stats_file.exists():
        return []

    stats = []
    for line_num, line in enumerate(stats_file.read_text().splitlines(), 1):
        if not line.strip():
            continue
        try:
            stats.append(AnalysisStats(**json.loads(line)))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Skipping corrupted stats line {line_num} in {stats_file}: {e}")
    return stats


@dataclass
class AggregatedStats:
    calls: int
    failures: int
    comments_analyzed: int
    total_elapsed_seconds: float
    input_tokens: int
    output_tokens: int


def summarize_analysis_stats(stats: list[AnalysisStats]) -> Optional[AggregatedStats]:
    if not stats:
        return None
    return AggregatedStats(
        calls=len(stats),
        failures=sum(1 for s in stats if not s.success),
        comments_analyzed=sum(s.comment_count for s in stats if s.success),
        total_elapsed_seconds=sum(s.elapsed_seconds for s in stats),
        input_tokens=sum(s.input_tokens or 0 for s in stats),
        output_tokens=sum(s.output_tokens or 0 for s in stats),
    )


@dataclass
class StatusSummary:
    todo: int = 0
    doing: int = 0
    done: int = 0
    pending: int = 0
    cancel: int = 0

    @property
    def total(self) -> int:
        return self.todo + self.doing + self.done + self.pending + self.cancel

    @property
    def completion_rate(self) -> float:
        """Share of tasks that are done or cancelled, 0.0 for an empty list."""
        if not self.total:
            return 0.0
        return (self.done + self.cancel) / self.total


def summarize_tasks(tasks: list[Task]) -> StatusSummary:
    summary = StatusSummary()
    for task in tasks:
        if task.status in {s.value for s in TaskStatus}:
            setattr(summary, task.status, getattr(summary, task.status) + 1)
        else:
            logger.warning(f"Task {task.id} has unknown status '{task.status}'")
    return summary


@dataclass
class CommentStats:
    comment_id: int
    file: Optional[str]
    total: int
    closed: int

    @property
    def active(self) -> int:
        return self.total - self.closed


def comment_stats(tasks: list[Task]) -> list[CommentStats]:
    """Per-comment task counts, in first-seen order. Synthetic tasks are excluded."""
    by_comment: dict[int, CommentStats] = {}
    for task in tasks:
        if task.is_synthetic:
            continue
        entry = by_comment.setdefault(
            task.source_comment_id,
            CommentStats(comment_id=task.source_comment_id, file=task.file, total=0, closed=0),
        )
        entry.total += 1
        if task.status in CLOSED_STATUSES:
            entry.closed += 1
    return list(by_comment.values())


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def format_stats_summary(stats: AggregatedStats) -> list[str]:
    lines = [
        f"  Analyzer calls: {stats.calls} ({stats.failures} failed)",
        f"  Comments:       {stats.comments_analyzed}",
        f"  Time:           {format_duration(stats.total_elapsed_seconds)}",
    ]
    if stats.input_tokens or stats.output_tokens:
        lines.append(f"  Tokens:         {stats.input_tokens:,} in / {stats.output_tokens:,} out")
    return lines
