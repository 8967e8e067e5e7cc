"""
Text formatting for review comments and verification history.

format_comments renders a batch for the analysis prompt; the verification
formatter is used by `reviewtask show`.
"""

from reviewtask.lib.types import ReviewComment
from reviewtask.tasks.models import VerificationResult

__all__ = ["format_comments", "format_verification_history"]

MAX_DIFF_CONTEXT_LINES = 20


def format_comments(comments: list[ReviewComment]) -> str:
    """
    Format a batch of comments as markdown for the analysis prompt.

    Each comment gets its own heading carrying the ids the model must echo
    back, followed by location, diff context, body and thread replies.
    """
    entries = []
    for comment in comments:
        kind = "Review summary" if comment.is_review_body else "Comment"
        parts = [f"### {kind} source_comment_id={comment.id} (review {comment.review_id})\n"]

        if comment.author:
            parts.append(f"**Author:** {comment.author}\n")
        if comment.file:
            location = comment.file if comment.line is None else f"{comment.file}:{comment.line}"
            parts.append(f"**Location:** {location}\n")
        if comment.diff_context:
            lines = comment.diff_context.splitlines()[-MAX_DIFF_CONTEXT_LINES:]
            parts.append("```diff\n" + "\n".join(lines) + "\n```\n")

        parts.append(f"\n{comment.body.strip()}\n")

        if comment.replies:
            parts.append("\n**Replies:**\n")
            for reply in comment.replies:
                parts.append(f"> {reply.strip()}\n")

        entries.append("".join(parts))

    return "\n".join(entries)


def format_verification_history(results: list[VerificationResult] | None) -> str:
    """Format verification runs, oldest first, one line each."""
    if not results:
        return ""

    lines = []
    for n, result in enumerate(results, 1):
        outcome = "PASS" if result.success else "FAIL"
        checks = ", ".join(result.checks_run) if result.checks_run else "no checks"
        line = f"{n}. [{outcome}] {result.timestamp} ({checks})"
        if not result.success and result.failure_reason:
            line += f": {result.failure_reason}"
        lines.append(line)
    return "\n".join(lines)
