"""
GitHub access through the gh CLI.

GhCommentSource fetches reviews, line comments and thread resolution state
for a pull request, posts replies and resolves threads. Authentication is
whatever `gh auth` has set up; reviewtask never handles tokens.
"""

import json
import logging
import subprocess
from pathlib import Path

from reviewtask.lib.types import Review, ReviewComment, collect_comments

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!, $after: String) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: 1) { nodes { databaseId } }
        }
      }
    }
  }
}
"""

RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { isResolved }
  }
}
"""

REVIEWS_JQ = '.[] | {id, body, state, submitted_at, user: .user.login}'
COMMENTS_JQ = (
    '.[] | {id, pull_request_review_id, in_reply_to_id, body, path, line, '
    'original_line, diff_hunk, html_url, created_at, user: .user.login}'
)


class GitHubError(Exception):
    """A gh call failed or returned something unusable."""
    pass


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(["gh", "auth", "status"], capture_output=True, text=True, timeout=GH_TIMEOUT_SECONDS)
    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"
    if result.returncode != 0:
        return False, "GitHub CLI not authenticated\n  Run: gh auth login"
    return True, ""


def _parse_json_lines(output: str) -> list[dict]:
    items = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            items.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning(f"Skipping unparseable gh output line: {line[:80]}")
    return items


class GhCommentSource:
    """Remote comment source backed by the gh CLI, run inside repo_path."""

    def __init__(self, repo_path: Path, timeout: int = GH_TIMEOUT_SECONDS):
        self.repo_path = repo_path
        self.timeout = timeout
        self._repo: tuple[str, str] | None = None
        self._threads: dict[int, dict[int, tuple[str, bool]]] = {}

    def _run(self, args: list[str]) -> str:
        try:
            result = subprocess.run(
                ["gh"] + args,
                capture_output=True,
                text=True,
                cwd=str(self.repo_path),
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise GitHubError("GitHub API timeout") from None
        except FileNotFoundError:
            raise GitHubError("GitHub CLI (gh) not found") from None

        if result.returncode != 0:
            raise GitHubError(result.stderr.strip() or f"gh exited with {result.returncode}")
        return result.stdout

    def _run_json(self, args: list[str]):
        output = self._run(args)
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            raise GitHubError("Invalid JSON from gh") from None

    def repo_slug(self) -> tuple[str, str]:
        if self._repo is None:
            data = self._run_json(["repo", "view", "--json", "owner,name"])
            try:
                self._repo = (data["owner"]["login"], data["name"])
            except (KeyError, TypeError):
                raise GitHubError("Could not determine repository owner/name") from None
        return self._repo

    def current_pr_number(self) -> int:
        """PR number for the checked-out branch."""
        data = self._run_json(["pr", "view", "--json", "number"])
        try:
            return int(data["number"])
        except (KeyError, TypeError, ValueError):
            raise GitHubError("No pull request found for the current branch") from None

    def fetch_thread_states(self, pr_number: int) -> dict[int, tuple[str, bool]]:
        """Map root comment id -> (thread node id, resolved)."""
        owner, name = self.repo_slug()
        threads: dict[int, tuple[str, bool]] = {}
        after = None
        while True:
            args = [
                "api", "graphql",
                "-f", f"query={THREADS_QUERY}",
                "-F", f"owner={owner}",
                "-F", f"name={name}",
                "-F", f"number={pr_number}",
            ]
            if after:
                args += ["-f", f"after={after}"]
            data = self._run_json(args)
            try:
                page = data["data"]["repository"]["pullRequest"]["reviewThreads"]
            except (KeyError, TypeError):
                raise GitHubError(f"Unexpected GraphQL response for PR #{pr_number}") from None

            for node in page.get("nodes") or []:
                comments = (node.get("comments") or {}).get("nodes") or []
                if comments and comments[0].get("databaseId"):
                    threads[int(comments[0]["databaseId"])] = (node["id"], bool(node.get("isResolved")))

            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage"):
                break
            after = info.get("endCursor")

        self._threads[pr_number] = threads
        return threads

    def fetch_reviews(self, pr_number: int) -> list[Review]:
        """Reviews with their root line comments, replies folded in.

        Raises:
            GitHubError: on any gh failure
        """
        base = f"repos/{{owner}}/{{repo}}/pulls/{pr_number}"
        raw_reviews = _parse_json_lines(self._run(["api", f"{base}/reviews", "--paginate", "--jq", REVIEWS_JQ]))
        raw_comments = _parse_json_lines(self._run(["api", f"{base}/comments", "--paginate", "--jq", COMMENTS_JQ]))
        threads = self.fetch_thread_states(pr_number)

        replies: dict[int, list[str]] = {}
        roots = []
        for c in raw_comments:
            parent = c.get("in_reply_to_id")
            if parent:
                replies.setdefault(int(parent), []).append(f"{c.get('user') or 'unknown'}: {c.get('body') or ''}")
            else:
                roots.append(c)

        reviews: dict[int, Review] = {}
        for r in raw_reviews:
            reviews[int(r["id"])] = Review(
                id=int(r["id"]),
                reviewer=r.get("user") or "",
                state=r.get("state") or "",
                body=r.get("body") or "",
                submitted_at=r.get("submitted_at") or "",
            )

        for c in roots:
            comment_id = int(c["id"])
            review_id = int(c.get("pull_request_review_id") or 0)
            review = reviews.get(review_id)
            if review is None:
                review = reviews[review_id] = Review(id=review_id, reviewer=c.get("user") or "", state="COMMENTED")
            review.comments.append(ReviewComment(
                id=comment_id,
                review_id=review_id,
                body=c.get("body") or "",
                file=c.get("path"),
                line=c.get("line") or c.get("original_line"),
                diff_context=c.get("diff_hunk"),
                resolved=threads.get(comment_id, ("", False))[1],
                author=c.get("user") or "",
                url=c.get("html_url") or "",
                created_at=c.get("created_at") or "",
                replies=tuple(replies.get(comment_id, [])),
            ))

        return list(reviews.values())

    def fetch_comments(self, pr_number: int) -> list[ReviewComment]:
        return collect_comments(self.fetch_reviews(pr_number))

    def post_reply(self, pr_number: int, comment_id: int, text: str) -> None:
        if comment_id == 0:
            raise GitHubError("Embedded comments have no thread to reply to")
        self._run([
            "api", "--method", "POST",
            f"repos/{{owner}}/{{repo}}/pulls/{pr_number}/comments/{comment_id}/replies",
            "-f", f"body={text}",
        ])

    def resolve_thread(self, pr_number: int, comment_id: int) -> None:
        threads = self._threads.get(pr_number)
        if threads is None or comment_id not in threads:
            threads = self.fetch_thread_states(pr_number)
        if comment_id not in threads:
            raise GitHubError(f"No review thread found for comment {comment_id}")

        thread_id, resolved = threads[comment_id]
        if resolved:
            return
        self._run([
            "api", "graphql",
            "-f", f"query={RESOLVE_THREAD_MUTATION}",
            "-f", f"threadId={thread_id}",
        ])
        threads[comment_id] = (thread_id, True)
