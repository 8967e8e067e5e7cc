"""Task status state machine using transitions library.

Usage:
    from reviewtask.workflow.fsm import TaskFSM

    fsm = TaskFSM(task)
    fsm.start()     # todo -> doing
    fsm.complete()  # doing -> done
    fsm.reopen()    # done -> todo

The machine writes the new state straight back onto the Task it wraps;
persisting the task is the store's job.
"""

import logging
from typing import Callable

from transitions import Machine

from reviewtask.tasks.models import Task

logger = logging.getLogger(__name__)


# State values match TaskStatus enum values
STATES = ["todo", "doing", "done", "pending", "cancel"]

TRANSITIONS = [
    # Normal progress
    {"trigger": "start", "source": "todo", "dest": "doing"},
    {"trigger": "complete", "source": "doing", "dest": "done"},

    # Parking work
    {"trigger": "hold", "source": "todo", "dest": "pending"},
    {"trigger": "hold", "source": "doing", "dest": "pending"},
    {"trigger": "resume", "source": "pending", "dest": "todo"},
    {"trigger": "resume_work", "source": "pending", "dest": "doing"},

    # Cancellation (only reachable through the cancel operation)
    {"trigger": "cancel", "source": "todo", "dest": "cancel"},
    {"trigger": "cancel", "source": "doing", "dest": "cancel"},
    {"trigger": "cancel", "source": "pending", "dest": "cancel"},

    # Operator re-open of closed tasks
    {"trigger": "reopen", "source": "done", "dest": "todo"},
    {"trigger": "reopen", "source": "cancel", "dest": "todo"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class TaskFSM:
    """State machine bound to one Task's status field."""

    def __init__(self, task: Task, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            task: Task whose status drives the machine
            on_transition: Optional callback(from_state, to_state, trigger) after a transition
        """
        self.task = task
        self.on_transition = on_transition

        initial = task.status
        if initial not in STATES:
            logger.warning(f"[FSM] {task.id}: Unknown status '{initial}', treating as 'todo'")
            initial = "todo"

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.task.id}: {from_state} -> {to_state} ({trigger})")
        self.task.status = self.state

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)
