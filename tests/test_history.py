"""Tests for reviewtask.lib.history module."""

from reviewtask.lib.history import format_comments, format_verification_history
from reviewtask.lib.types import ReviewComment
from reviewtask.tasks.models import VerificationResult


class TestFormatComments:
    """Tests for format_comments()."""

    def test_line_comment(self):
        comment = ReviewComment(
            id=11, review_id=1, body="Handle the None case", file="app.py", line=7,
            author="alice", diff_context="@@ -1,3 +1,3 @@\n-a\n+b",
        )
        text = format_comments([comment])

        assert "### Comment source_comment_id=11 (review 1)" in text
        assert "**Author:** alice" in text
        assert "**Location:** app.py:7" in text
        assert "```diff\n@@ -1,3 +1,3 @@\n-a\n+b\n```" in text
        assert "Handle the None case" in text

    def test_review_body_heading(self):
        text = format_comments([ReviewComment(id=1, review_id=1, body="Overall fine")])
        assert text.startswith("### Review summary source_comment_id=1")

    def test_file_without_line(self):
        text = format_comments([ReviewComment(id=2, review_id=1, body="x", file="README.md")])
        assert "**Location:** README.md\n" in text

    def test_diff_context_truncated(self):
        diff = "\n".join(f"line{i}" for i in range(50))
        text = format_comments([ReviewComment(id=2, review_id=1, body="x", diff_context=diff)])
        assert "line29" not in text
        assert "line30" in text
        assert "line49" in text

    def test_replies_quoted(self):
        comment = ReviewComment(id=2, review_id=1, body="x", replies=("bob: agreed", "carol: me too"))
        text = format_comments([comment])
        assert "**Replies:**" in text
        assert "> bob: agreed" in text
        assert "> carol: me too" in text


class TestFormatVerificationHistory:
    """Tests for format_verification_history()."""

    def test_empty(self):
        assert format_verification_history([]) == ""
        assert format_verification_history(None) == ""

    def test_pass_and_fail(self):
        results = [
            VerificationResult(success=False, timestamp="t1", checks_run=["build", "test"],
                               failure_reason="2 tests failed"),
            VerificationResult(success=True, timestamp="t2", checks_run=[]),
        ]
        text = format_verification_history(results)
        assert text.splitlines() == [
            "1. [FAIL] t1 (build, test): 2 tests failed",
            "2. [PASS] t2 (no checks)",
        ]
