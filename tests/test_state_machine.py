"""Tests for reviewtask.workflow.state_machine module.

Tests the destination-based wrapper around the FSM.
The FSM itself is tested in test_fsm.py.
"""

import pytest

from reviewtask.tasks.models import new_task
from reviewtask.workflow.state_machine import (
    CancelRequiresReason,
    InvalidTransition,
    apply_transition,
    can_transition,
)


def make_task(status="todo"):
    task = new_task(42, 1, 11, 0, "Add a None check")
    task.status = status
    return task


class TestApplyTransition:
    """Tests for apply_transition()."""

    def test_valid_transition(self):
        task = make_task()
        assert apply_transition(task, "doing", reason="picked up") is True
        assert task.status == "doing"

    def test_self_transition_is_noop(self):
        task = make_task("pending")
        assert apply_transition(task, "pending") is False
        assert task.status == "pending"

    def test_unknown_target(self):
        with pytest.raises(InvalidTransition, match="unknown status"):
            apply_transition(make_task(), "blocked")

    def test_cancel_needs_cancel_operation(self):
        """pending -> cancel through the generic path is refused and leaves the task alone."""
        task = make_task("pending")
        with pytest.raises(CancelRequiresReason):
            apply_transition(task, "cancel")
        assert task.status == "pending"

    def test_cancel_allowed_for_cancel_operation(self):
        task = make_task("pending")
        assert apply_transition(task, "cancel", allow_cancel=True)
        assert task.status == "cancel"

    def test_move_outside_machine_allowed_with_warning(self, caplog):
        task = make_task("todo")
        assert apply_transition(task, "done")
        assert task.status == "done"
        assert "outside state machine" in caplog.text

    def test_move_outside_machine_rejected_when_strict(self):
        task = make_task("todo")
        with pytest.raises(InvalidTransition) as exc_info:
            apply_transition(task, "done", strict=True)
        assert exc_info.value.from_state == "todo"
        assert exc_info.value.to_state == "done"
        assert task.status == "todo"

    def test_done_cannot_be_cancelled(self):
        task = make_task("done")
        with pytest.raises(InvalidTransition):
            apply_transition(task, "cancel", strict=True, allow_cancel=True)

    def test_unknown_source_allowed(self, caplog):
        task = make_task("blocked")
        assert apply_transition(task, "todo", strict=True)
        assert task.status == "todo"
        assert "unknown source status" in caplog.text

    def test_error_message_names_task(self):
        task = make_task("todo")
        with pytest.raises(InvalidTransition, match=task.id):
            apply_transition(task, "done", strict=True)


class TestCanTransition:
    """Tests for can_transition()."""

    def test_defined_moves(self):
        assert can_transition("todo", "doing")
        assert can_transition("cancel", "todo")
        assert can_transition("pending", "cancel")

    def test_undefined_moves(self):
        assert not can_transition("todo", "done")
        assert can_transition("todo", "done", strict=False)
        assert not can_transition("done", "cancel")

    def test_self_and_unknown(self):
        assert can_transition("doing", "doing")
        assert not can_transition("doing", "blocked")
