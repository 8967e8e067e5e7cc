"""
Local copy of the review comments seen by the last analyze run.

Saved to .pr-review/PR-<n>/comments.json after every fetch. Thread checks
compare it with the current remote state to find comments that were deleted
since the last run.
"""

import json
import logging
import os
import tempfile
from dataclasses import asdict
from pathlib import Path

from reviewtask.lib.config import get_unit_dir
from reviewtask.lib.types import ReviewComment
from reviewtask.lib.validate import ValidationError, validate_file, validate_before_write
from reviewtask.tasks.models import now_iso

logger = logging.getLogger(__name__)

COMMENTS_FILE_NAME = "comments.json"


def _to_record(comment: ReviewComment) -> dict:
    record = asdict(comment)
    record["replies"] = list(comment.replies)
    return record


class CommentCache:
    """comments.json under .pr-review/PR-<n>/."""

    def __init__(self, storage_dir: Path, pr_number: int):
        self.pr_number = pr_number
        self.unit_dir = get_unit_dir(storage_dir, pr_number)
        self.path = self.unit_dir / COMMENTS_FILE_NAME

    def load(self) -> list[ReviewComment]:
        """Cached comments. A missing or corrupt file reads as empty."""
        if not self.path.exists():
            return []
        try:
            data = validate_file(self.path, "comments_file")
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable comment cache {self.path}: {e}")
            return []
        comments = []
        for record in data["comments"]:
            record = dict(record)
            record["replies"] = tuple(record.get("replies", ()))
            comments.append(ReviewComment(**record))
        return comments

    def save(self, comments: list[ReviewComment]) -> None:
        document = {
            "pr_number": self.pr_number,
            "fetched_at": now_iso(),
            "comments": [_to_record(c) for c in comments],
        }
        validate_before_write(document, "comments_file", self.path)

        self.unit_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".comments-", suffix=".tmp", dir=self.unit_dir)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Cached {len(comments)} comments to {self.path}")
