"""
Resumable progress for analyze runs.

A checkpoint records which comments (by content hash) have already been
turned into tasks, so the next invocation can continue where the last one
stopped. It is written after every completed batch and deleted once every
comment has been processed.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

from reviewtask.lib.config import get_unit_dir
from reviewtask.lib.types import ReviewComment
from reviewtask.lib.validate import ValidationError, validate_file, validate_before_write
from reviewtask.tasks.models import now_iso

logger = logging.getLogger(__name__)

CHECKPOINT_FILE_NAME = "checkpoint.json"


@dataclass
class Checkpoint:
    pr_number: int
    processed_comments: dict[str, str] = field(default_factory=dict)  # comment key -> content hash
    batches_completed: int = 0
    total_comments: int = 0
    batch_size: int = 0
    started_at: str = field(default_factory=now_iso)
    last_processed_at: str = field(default_factory=now_iso)

    @property
    def processed_count(self) -> int:
        return len(self.processed_comments)

    def is_processed(self, comment: ReviewComment) -> bool:
        """True only if the comment was processed with its current text."""
        return self.processed_comments.get(comment.key) == comment.content_hash()

    def mark_processed(self, comments: list[ReviewComment]) -> None:
        for comment in comments:
            self.processed_comments[comment.key] = comment.content_hash()
        self.batches_completed += 1
        self.last_processed_at = now_iso()

    def is_stale(self, max_age_hours: float, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        try:
            last = datetime.fromisoformat(self.last_processed_at)
        except ValueError:
            return True
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return now - last > timedelta(hours=max_age_hours)


class CheckpointStore:
    """checkpoint.json under .pr-review/PR-<n>/."""

    def __init__(self, storage_dir: Path, pr_number: int):
        self.pr_number = pr_number
        self.path = get_unit_dir(storage_dir, pr_number) / CHECKPOINT_FILE_NAME

    def load(self) -> Checkpoint | None:
        """Load the checkpoint. A corrupt file is treated as absent."""
        if not self.path.exists():
            return None
        try:
            data = validate_file(self.path, "checkpoint")
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            return None
        return Checkpoint(
            pr_number=data["pr_number"],
            processed_comments=dict(data["processed_comments"]),
            batches_completed=data["batches_completed"],
            total_comments=data.get("total_comments", 0),
            batch_size=data.get("batch_size", 0),
            started_at=data["started_at"],
            last_processed_at=data["last_processed_at"],
        )

    def save(self, checkpoint: Checkpoint) -> None:
        data = asdict(checkpoint)
        if not data["batch_size"]:
            del data["batch_size"]
        validate_before_write(data, "checkpoint", self.path)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".checkpoint-", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
