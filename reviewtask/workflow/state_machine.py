"""Destination-based status changes on top of TaskFSM.

Callers say where a task should end up ("done"); this module finds the FSM
trigger that gets it there and applies the store's policy for moves the
machine does not model.

Usage:
    from reviewtask.workflow.state_machine import apply_transition

    changed = apply_transition(task, "doing", reason="picked up")
"""

import logging

from transitions import MachineError

from reviewtask.tasks.models import Task, TaskStatus, parse_status
from reviewtask.workflow.fsm import TaskFSM, TRIGGER_FOR, STATES

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """Raised when a status change is not allowed."""

    def __init__(self, from_state: str, to_state: str, task_id: str = "", detail: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.task_id = task_id
        message = f"Invalid transition: {from_state} -> {to_state}"
        if task_id:
            message += f" (task: {task_id})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CancelRequiresReason(InvalidTransition):
    """Cancellation attempted through the generic status update path."""

    def __init__(self, from_state: str, task_id: str = ""):
        super().__init__(
            from_state, TaskStatus.CANCEL.value, task_id,
            "use the cancel operation so a reason is recorded and posted",
        )


def apply_transition(
    task: Task,
    to_status: str,
    reason: str = "",
    strict: bool = False,
    allow_cancel: bool = False,
) -> bool:
    """Move task to to_status in place.

    Args:
        task: Task to modify
        to_status: Target status value
        reason: Optional reason, for logging
        strict: Reject moves the state machine does not define instead of
            allowing them with a warning
        allow_cancel: Only the cancel operation sets this

    Returns:
        True if the status changed, False for a self-transition.

    Raises:
        InvalidTransition: unknown target, or a move rejected by the machine
        CancelRequiresReason: target is cancel and allow_cancel is False
    """
    if parse_status(to_status) is None:
        raise InvalidTransition(task.status, to_status, task.id, "unknown status")

    if to_status == TaskStatus.CANCEL.value and not allow_cancel:
        raise CancelRequiresReason(task.status, task.id)

    current = task.status
    reason_str = f" ({reason})" if reason else ""

    if current == to_status:
        logger.debug(f"[STATE] {task.id}: already {to_status}, no-op")
        return False

    if current not in STATES:
        logger.warning(f"[STATE] {task.id}: {current} -> {to_status}{reason_str} (unknown source status, allowing)")
        task.status = to_status
        return True

    trigger = TRIGGER_FOR.get((current, to_status))
    if trigger is None:
        if strict:
            raise InvalidTransition(current, to_status, task.id)
        logger.warning(f"[STATE] {task.id}: {current} -> {to_status}{reason_str} (outside state machine, allowing)")
        task.status = to_status
        return True

    fsm = TaskFSM(task)
    try:
        logger.info(f"[STATE] {task.id}: {current} -> {to_status}{reason_str}")
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_status, task.id) from e
    return True


def can_transition(from_status: str, to_status: str, strict: bool = True) -> bool:
    """Check whether a status change would be accepted.

    Cancellation is reported per the state machine; the generic update path
    still refuses it.
    """
    if parse_status(to_status) is None:
        return False
    if from_status == to_status or from_status not in STATES:
        return True
    if (from_status, to_status) in TRIGGER_FOR:
        return True
    return not strict
