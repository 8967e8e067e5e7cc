"""Tests for reviewtask.workflow.cancellation module."""

from unittest.mock import MagicMock

import pytest

from reviewtask.lib.github import GitHubError
from reviewtask.tasks.models import new_task
from reviewtask.tasks.store import MemoryTaskStore, MissingCancelReason, TaskNotFound
from reviewtask.workflow.cancellation import (
    cancel_pending_tasks,
    cancel_task,
    format_cancel_comment,
)
from reviewtask.workflow.state_machine import InvalidTransition


def make_store(*specs):
    tasks = []
    for comment_id, index, status in specs:
        t = new_task(42, 1, comment_id, index, f"Task {comment_id}.{index}", priority="high")
        t.status = status
        tasks.append(t)
    return MemoryTaskStore(42, tasks), tasks


class TestFormatCancelComment:
    def test_english(self):
        t = new_task(42, 1, 11, 0, "Rename foo", priority="low")
        text = format_cancel_comment(t, "Out of scope", other_active=0)

        assert text.startswith("**Task Cancelled** (Priority: LOW)")
        assert "> Rename foo" in text
        assert "> Out of scope" in text
        assert "other task" not in text

    def test_other_active_tasks_mentioned(self):
        t = new_task(42, 1, 11, 0, "Rename foo")
        assert "2 other task(s)" in format_cancel_comment(t, "dup", other_active=2)

    def test_japanese(self):
        t = new_task(42, 1, 11, 0, "Rename foo")
        text = format_cancel_comment(t, "対象外", other_active=0, language="Japanese")
        assert "キャンセル理由" in text

    def test_unknown_language_falls_back(self):
        t = new_task(42, 1, 11, 0, "Rename foo")
        assert "**Task Cancelled**" in format_cancel_comment(t, "x", 0, language="Klingon")


class TestCancelTask:
    """Tests for cancel_task()."""

    def test_posts_reply_and_cancels(self):
        store, tasks = make_store((11, 0, "todo"), (11, 1, "doing"))
        client = MagicMock()

        outcome = cancel_task(store, client, tasks[0].id, "  Out of scope ")

        assert outcome.ok
        assert outcome.comment_posted
        pr, comment_id, body = client.post_reply.call_args.args
        assert (pr, comment_id) == (42, 11)
        assert "1 other task(s)" in body
        stored = store.get(tasks[0].id)
        assert stored.status == "cancel"
        assert stored.cancel_reason == "Out of scope"
        assert stored.cancel_comment_posted

    def test_reply_failure_then_retry(self):
        """A failed reply keeps the local cancel; cancelling again posts once."""
        store, tasks = make_store((11, 0, "todo"))
        client = MagicMock()
        client.post_reply.side_effect = [GitHubError("network down"), None]

        first = cancel_task(store, client, tasks[0].id, "Out of scope")
        assert first.ok
        assert not first.comment_posted
        assert "network down" in first.error
        assert store.get(tasks[0].id).status == "cancel"
        assert not store.get(tasks[0].id).cancel_comment_posted

        second = cancel_task(store, client, tasks[0].id, "Out of scope")
        assert second.comment_posted
        assert store.get(tasks[0].id).cancel_comment_posted
        assert client.post_reply.call_count == 2

        third = cancel_task(store, client, tasks[0].id, "Out of scope")
        assert third.comment_posted
        assert client.post_reply.call_count == 2

    def test_synthetic_task_is_local_only(self):
        store, tasks = make_store((0, 0, "todo"))
        client = MagicMock()

        outcome = cancel_task(store, client, tasks[0].id, "Not needed")

        assert outcome.ok
        assert outcome.local_only
        client.post_reply.assert_not_called()

    def test_no_client_is_local_only(self):
        store, tasks = make_store((11, 0, "pending"))
        outcome = cancel_task(store, None, tasks[0].id, "Not needed")
        assert outcome.local_only
        assert store.get(tasks[0].id).status == "cancel"

    def test_done_task_refused(self):
        store, tasks = make_store((11, 0, "done"))
        client = MagicMock()
        with pytest.raises(InvalidTransition):
            cancel_task(store, client, tasks[0].id, "Too late")
        client.post_reply.assert_not_called()
        assert store.get(tasks[0].id).status == "done"

    def test_reason_required(self):
        store, tasks = make_store((11, 0, "todo"))
        with pytest.raises(MissingCancelReason):
            cancel_task(store, MagicMock(), tasks[0].id, "   ")

    def test_unknown_task(self):
        store, _ = make_store()
        with pytest.raises(TaskNotFound):
            cancel_task(store, MagicMock(), "nope", "reason")


class TestCancelPendingTasks:
    def test_only_pending_cancelled(self):
        store, tasks = make_store((11, 0, "pending"), (12, 0, "todo"), (13, 0, "pending"))
        client = MagicMock()

        outcomes = cancel_pending_tasks(store, client, "Deferred to follow-up PR")

        assert [o.task_id for o in outcomes] == [tasks[0].id, tasks[2].id]
        assert all(o.ok for o in outcomes)
        assert store.get(tasks[1].id).status == "todo"
        assert client.post_reply.call_count == 2

    def test_failed_reply_does_not_stop_the_rest(self):
        store, tasks = make_store((11, 0, "pending"), (12, 0, "pending"), (13, 0, "pending"))
        client = MagicMock()
        client.post_reply.side_effect = [None, GitHubError("boom"), None]

        outcomes = cancel_pending_tasks(store, client, "Deferred to follow-up PR")

        assert len(outcomes) == 3
        assert all(o.ok for o in outcomes)
        assert [o.comment_posted for o in outcomes] == [True, False, True]
        assert outcomes[1].error == "boom"
        assert [store.get(t.id).status for t in tasks] == ["cancel", "cancel", "cancel"]
        assert [store.get(t.id).cancel_comment_posted for t in tasks] == [True, False, True]

    def test_reason_checked_up_front(self):
        store, _ = make_store((11, 0, "pending"))
        with pytest.raises(MissingCancelReason):
            cancel_pending_tasks(store, None, "")
