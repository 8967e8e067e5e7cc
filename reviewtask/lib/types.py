"""
Shared types for review data fetched from the remote host.

Review data is read-only once fetched: nothing in reviewtask mutates a
ReviewComment after it has been built.
"""

import hashlib
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReviewComment:
    """A single unit of review feedback.

    Line comments carry their own id. A review body is represented as a
    comment whose id is the review id. Embedded comments extracted from a
    body by a bot have id 0 and no remote thread.
    """
    id: int
    review_id: int
    body: str
    file: str | None = None
    line: int | None = None
    diff_context: str | None = None
    resolved: bool = False
    author: str = ""
    url: str = ""
    created_at: str = ""
    replies: tuple[str, ...] = ()

    @property
    def is_review_body(self) -> bool:
        return self.id != 0 and self.id == self.review_id

    @property
    def has_thread(self) -> bool:
        return self.id != 0 and not self.is_review_body

    @property
    def key(self) -> str:
        """Identity used for checkpoint bookkeeping. Embedded comments key on content."""
        if self.id:
            return str(self.id)
        return f"{self.review_id}:{self.content_hash()}"

    def content_hash(self) -> str:
        """Stable hash of the feedback text, used to detect edited comments."""
        digest = hashlib.sha256()
        digest.update(self.body.encode())
        for reply in self.replies:
            digest.update(b"\x00")
            digest.update(reply.encode())
        return digest.hexdigest()[:16]


@dataclass
class Review:
    """A submitted review and its line comments."""
    id: int
    reviewer: str
    state: str  # "APPROVED", "CHANGES_REQUESTED", "COMMENTED"
    body: str = ""
    submitted_at: str = ""
    comments: list[ReviewComment] = field(default_factory=list)


NITPICK_ONLY_MARKER = "actionable comments posted: 0"


def is_nitpick_only_review(body: str) -> bool:
    """Detect bot review bodies that contain nothing but a nitpick section."""
    lower = body.lower()
    if NITPICK_ONLY_MARKER not in lower:
        return False
    if "nitpick comments" not in lower and "\U0001f9f9" not in body:
        return False

    before_details = body.split("<details>")[0]
    before_details = before_details.replace("**Actionable comments posted: 0**", "")
    return before_details.strip() == ""


def collect_comments(reviews: list[Review], include_nitpick_reviews: bool = True) -> list[ReviewComment]:
    """Flatten reviews into the ordered comment list that gets analyzed.

    Review bodies come first within each review, followed by its line
    comments. Nitpick-only bot bodies are dropped unless requested.
    """
    comments = []
    for review in reviews:
        body = review.body.strip()
        if body and (include_nitpick_reviews or not is_nitpick_only_review(body)):
            comments.append(ReviewComment(
                id=review.id,
                review_id=review.id,
                body=body,
                author=review.reviewer,
                created_at=review.submitted_at,
            ))
        comments.extend(review.comments)
    return comments
