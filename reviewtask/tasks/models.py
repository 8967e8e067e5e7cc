"""
Task records and their enumerations.

A Task is the tracked unit of work derived from one review comment. Content
fields (what to do) are refreshed every time the comment is re-analyzed;
lifecycle fields (how far along it is) belong to the operator and survive
regeneration.
"""

import uuid
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum


class Priority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER.index(self)


PRIORITY_ORDER = [Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW]


class TaskStatus(Enum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    PENDING = "pending"
    CANCEL = "cancel"


CLOSED_STATUSES = {TaskStatus.DONE.value, TaskStatus.CANCEL.value}
ACTIVE_STATUSES = {TaskStatus.TODO.value, TaskStatus.DOING.value, TaskStatus.PENDING.value}


def parse_priority(value) -> Priority:
    """Map untrusted priority text onto Priority. Anything unrecognized is MEDIUM."""
    if isinstance(value, Priority):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        for priority in Priority:
            if priority.value == normalized:
                return priority
    return Priority.MEDIUM


def parse_status(value: str | None) -> TaskStatus | None:
    """Parse a status string. Returns None if unknown."""
    if value is None:
        return None
    for status in TaskStatus:
        if status.value == value:
            return status
    return None


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_task_id() -> str:
    return str(uuid.uuid4())


@dataclass
class VerificationResult:
    """One verification run recorded against a task. Produced externally."""
    success: bool
    timestamp: str
    checks_run: list[str] = field(default_factory=list)
    failure_reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationResult":
        return cls(
            success=bool(data["success"]),
            timestamp=data["timestamp"],
            checks_run=list(data.get("checks_run") or []),
            failure_reason=data.get("failure_reason"),
        )


# Fields the analyzer owns. Everything else on a Task is identity or lifecycle.
CONTENT_FIELDS = ("description", "origin_text", "priority", "file", "line")


@dataclass
class Task:
    # identity
    id: str
    pr_number: int
    source_review_id: int
    source_comment_id: int
    task_index: int
    # content
    description: str
    origin_text: str = ""
    priority: str = Priority.MEDIUM.value
    file: str | None = None
    line: int | None = None
    # lifecycle
    status: str = TaskStatus.TODO.value
    implementation_status: str = "not_implemented"
    verification_status: str = "not_verified"
    verification_results: list[VerificationResult] = field(default_factory=list)
    cancel_reason: str | None = None
    cancel_comment_posted: bool = False
    # timestamps
    created_at: str = ""
    updated_at: str = ""
    last_verification_at: str | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.source_comment_id, self.task_index)

    @property
    def is_synthetic(self) -> bool:
        """Embedded-comment tasks have no remote thread."""
        return self.source_comment_id == 0

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def content(self) -> tuple:
        return tuple(getattr(self, name) for name in CONTENT_FIELDS)

    def copy(self, **changes) -> "Task":
        """Shallow copy with fresh verification history list."""
        changes.setdefault("verification_results", list(self.verification_results))
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        results = [VerificationResult.from_dict(r) for r in data.get("verification_results") or []]
        return cls(
            id=data["id"],
            pr_number=data["pr_number"],
            source_review_id=data["source_review_id"],
            source_comment_id=data["source_comment_id"],
            task_index=data["task_index"],
            description=data["description"],
            origin_text=data.get("origin_text", ""),
            priority=parse_priority(data.get("priority")).value,
            file=data.get("file"),
            line=data.get("line"),
            status=data.get("status", TaskStatus.TODO.value),
            implementation_status=data.get("implementation_status", "not_implemented"),
            verification_status=data.get("verification_status", "not_verified"),
            verification_results=results,
            cancel_reason=data.get("cancel_reason"),
            cancel_comment_posted=data.get("cancel_comment_posted", False),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            last_verification_at=data.get("last_verification_at"),
        )


def new_task(
    pr_number: int,
    source_review_id: int,
    source_comment_id: int,
    task_index: int,
    description: str,
    origin_text: str = "",
    priority: str = Priority.MEDIUM.value,
    file: str | None = None,
    line: int | None = None,
    status: str = TaskStatus.TODO.value,
) -> Task:
    """Build a freshly generated task with a new id and timestamps."""
    timestamp = now_iso()
    return Task(
        id=new_task_id(),
        pr_number=pr_number,
        source_review_id=source_review_id,
        source_comment_id=source_comment_id,
        task_index=task_index,
        description=description,
        origin_text=origin_text,
        priority=priority,
        file=file,
        line=line,
        status=status,
        created_at=timestamp,
        updated_at=timestamp,
    )
