"""Units of work that run inside an event loop."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, ClassVar, Optional

_log = logging.getLogger("Task")


class Task:
    """A unit of work managed by an event loop.

    Subclasses override the hook methods (start, timer_event, task_finished,
    task_message, handle_execution, process_finished). A task is done when
    set_result, set_error or set_timeout has been called.
    """

    #: The event loop currently managing tasks, set by the loop itself.
    supervisor: ClassVar[Optional[Any]] = None

    def __init__(self, label: str) -> None:
        self.label = label
        self.kill_children = False
        self.was_killed = False
        self._result: Optional[str] = None
        self._message = ""
        self._error = False
        self._timed_out = False
        self._terminated = False
        self._started = False
        self._clock: Callable[[], float] = time.monotonic
        self._start_time = 0.0

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r})"

    # State

    @property
    def result(self) -> str:
        """The result set when the task finished, or an empty string."""
        return self._result if self._result is not None else ""

    @property
    def message(self) -> str:
        """The latest message set with set_message."""
        return self._message

    @property
    def terminated(self) -> bool:
        """True once the task has finished or been removed."""
        return self._terminated

    @property
    def has_started(self) -> bool:
        return self._started

    @property
    def is_error(self) -> bool:
        return self._error

    @property
    def is_timeout(self) -> bool:
        return self._timed_out

    def finished_ok(self) -> bool:
        """Return True if the task finished with a result and without failure."""
        return (
            self._terminated
            and self._result is not None
            and not self._error
            and not self._timed_out
            and not self.was_killed
        )

    # Hooks for subclasses

    def start(self) -> float:
        """Called when the loop starts the task; return seconds to the first timer, or <= 0."""
        return 0.0

    def timer_event(self) -> float:
        """Called when the timer expires; return seconds to the next one, or <= 0."""
        return 0.0

    def task_finished(self, task: "Task") -> None:
        """Called when an observed task has finished."""

    def task_message(self, task: "Task") -> None:
        """Called when a child task has a message for its parent."""

    def handle_execution(self, sender: "Task", message: str) -> None:
        """Called when an observing task sends a message to this task."""

    def process_finished(self, pid: int, status: int) -> None:
        """Called when a child process started by this task has exited."""

    # Actions

    def set_result(self, result: str) -> None:
        """Finish the task with the given result. Later calls are ignored."""
        if self._result is not None:
            return
        self._result = result
        self._terminated = True
        _log.debug("%s finished: %s", self.label, result)
        loop = Task.supervisor
        if loop is not None and self._started:
            loop.notify_task_finished(self)

    def set_error(self, message: str) -> None:
        """Finish the task as failed."""
        if self._result is not None:
            return
        self._error = True
        self.set_result(message or "error")

    def set_timeout(self) -> None:
        """Finish the task as having given up in time."""
        if self._result is not None:
            return
        self._timed_out = True
        self.set_result("Timeout")

    def set_message(self, message: str) -> None:
        """Store a message and tell the parent task about it."""
        self._message = message
        loop = Task.supervisor
        if loop is not None:
            loop.notify_task_message(self)

    def add_new_task(self, task: "Task", parent: Optional["Task"] = None) -> "Task":
        """Add task to the running event loop, optionally with a parent."""
        loop = Task.supervisor
        if loop is None:
            raise RuntimeError("no event loop is running")
        loop.add_task(task, parent)
        return task

    def start_observing(self, task: "Task") -> bool:
        """Observe task: it may receive messages from us, and we learn when it dies."""
        loop = Task.supervisor
        if loop is None:
            return False
        return bool(loop.start_observing(self, task))

    def execute_handler(self, task: "Task", message: str) -> bool:
        """Deliver message to an observed task. Return False if it is not observed."""
        loop = Task.supervisor
        if loop is None or not loop.is_observing(self, task):
            _log.warning("%s: cannot send message to %r", self.label, task)
            return False
        task.handle_execution(self, message)
        return True

    def elapsed(self) -> float:
        """Seconds since the task was started, or 0 if it has not started."""
        if not self._started:
            return 0.0
        return self._clock() - self._start_time

    def kill_child_task_when_finished(self) -> None:
        """Abort child tasks when this task is removed."""
        self.kill_children = True

    # Used by the event loop

    def _begin(self, clock: Callable[[], float] = time.monotonic) -> float:
        self._clock = clock
        self._start_time = clock()
        self._started = True
        return self.start()

    def _set_terminated(self) -> None:
        self._terminated = True