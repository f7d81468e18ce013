"""An event loop that runs tasks, their timers and their child processes."""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Sequence
from typing import Callable, Optional

from .task import Task

# How often to look for finished child processes while waiting.
_PROCESS_POLL_INTERVAL = 0.05


def _first(ordered: dict) -> object:
    return next(iter(ordered))


class EventLoop:
    """Manage tasks, their timers, the observation between them, and child processes.

    Only one event loop may exist at a time; it becomes the supervisor of
    every Task. Use it as a context manager, or call close() when done.

    clock is a function returning seconds; if it has a ``sleep`` attribute
    that is used for waiting, otherwise time.sleep is.
    """

    def __init__(
        self, name: str = "MainLoop", clock: Optional[Callable[[], float]] = None
    ) -> None:
        if Task.supervisor is not None:
            raise RuntimeError("eventloop already exists")
        self.name = name
        self._clock: Callable[[], float] = clock if clock is not None else time.monotonic
        self._sleep: Callable[[float], None] = (
            getattr(clock, "sleep", time.sleep) if clock is not None else time.sleep
        )
        self._log = logging.getLogger(name)
        # Each task maps to its parent, or to None.
        self._tasks: dict[Task, Optional[Task]] = {}
        # Ordered sets, kept as dicts with None values.
        self._observed_by: dict[Task, dict[Task, None]] = {}
        self._observing: dict[Task, dict[Task, None]] = {}
        self._finished: dict[Task, None] = {}
        self._messages: dict[Task, None] = {}
        self._timers: dict[Task, float] = {}
        self._processes: dict[int, tuple[subprocess.Popen, Task]] = {}
        self._do_abort = False
        Task.supervisor = self

    def __enter__(self) -> "EventLoop":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Remove all tasks and stop being the supervisor."""
        self._remove_all_tasks()
        if Task.supervisor is self:
            Task.supervisor = None
        self._log.info("EventLoop finished.")

    # Tasks

    def add_task(self, task: Task, parent: Optional[Task] = None) -> None:
        """Add and start a task. If parent is given, it observes the new task."""
        if task is None or task in self._tasks:
            raise ValueError("cannot add task")
        self._tasks[task] = parent
        if parent is not None:
            self.start_observing(parent, task)
        if task.terminated:
            # Finished already before it was added.
            self.notify_task_finished(task)
            return
        seconds = task._begin(self._clock)
        self._log.info("Task %s timeout %s", task.label, seconds)
        if seconds > 0:
            self._timers[task] = self._clock() + seconds

    def running(self, task: Task) -> bool:
        """Return True if the task is managed by this loop."""
        return task in self._tasks

    def abort_task(self, task: Task) -> None:
        """Mark the task as killed; it is removed at the next check."""
        task.was_killed = True
        self._finished[task] = None

    def abort(self) -> None:
        """Remove all tasks and make the loop stop."""
        self._do_abort = True

    def aborted(self) -> bool:
        """Return True if the loop is about to be terminated."""
        return self._do_abort

    def child_tasks(self, parent: Task) -> set[Task]:
        """Return the tasks whose parent is the given task."""
        return {
            task
            for task in self._observed_by.get(parent, {})
            if self._tasks.get(task) is parent
        }

    def abort_child_tasks(self, parent: Task) -> None:
        """Kill every task whose parent is the given task."""
        for task in self.child_tasks(parent):
            self.abort_task(task)

    def reset_timer(self, task: Task, seconds: float) -> None:
        """Replace the task's timer: run it after seconds, now if 0, never if negative."""
        self._timers.pop(task, None)
        if seconds < 0:
            return
        if seconds == 0:
            seconds = task.timer_event()
        if seconds > 0:
            self._timers[task] = self._clock() + seconds

    # Observation

    def start_observing(self, observer: Task, task: Task) -> bool:
        """Let observer send messages to task and be told when task finishes.

        Returns False unless both tasks are managed by this loop.
        """
        if observer not in self._tasks or task not in self._tasks:
            self._log.error("startObserving: no such task")
            return False
        self._observing.setdefault(task, {})[observer] = None
        self._observed_by.setdefault(observer, {})[task] = None
        return True

    def is_observing(self, observer: Task, task: Task) -> bool:
        return task in self._observed_by.get(observer, {})

    def notify_task_finished(self, task: Task) -> None:
        """Mark the task as finished. Tasks call this through set_result."""
        self._finished[task] = None

    def notify_task_message(self, task: Task) -> None:
        """Note that the task has a message for its parent."""
        self._messages[task] = None

    # Child processes

    def external_command(self, owner: Task, argv: Sequence[str]) -> int:
        """Start a command in the background and return its process id.

        The owner's process_finished is called when the command exits.
        """
        if not argv:
            raise ValueError("empty command")
        proc = subprocess.Popen(list(argv))
        self._processes[proc.pid] = (proc, owner)
        return proc.pid

    # Running

    def run(self, timeout_s: float) -> bool:
        """Run for at most timeout_s seconds. Return False when all is done."""
        deadline = self._clock() + timeout_s
        while True:
            # Timers run regardless of the deadline.
            while (task := self._next_timer_to_execute()) is not None:
                seconds = task.timer_event()
                if seconds > 0:
                    self._timers[task] = self._clock() + seconds
            self._check_finished()

            now = self._clock()
            if not self._tasks or now > deadline or self._do_abort:
                break

            wake_at = min(deadline, min(self._timers.values(), default=deadline))
            time_left = wake_at - now
            if time_left <= 0:
                self._log.info("Timeout passed, will not wait")
                break
            if self._processes:
                time_left = min(time_left, _PROCESS_POLL_INTERVAL)
            self._sleep(time_left)
            self._check_finished()

        if self._do_abort:
            self._remove_all_tasks()
        return bool(self._tasks)

    def run_until_complete(self) -> None:
        """Run until every task is done."""
        while self.run(1.5):
            pass

    @staticmethod
    def run_task(task: Task, name: str = "MainLoop") -> None:
        """Run the task in a new event loop until it is done."""
        with EventLoop(name) as loop:
            loop.add_task(task)
            loop.run_until_complete()

    # Internals

    def _next_timer_to_execute(self) -> Optional[Task]:
        if not self._timers:
            return None
        task = min(self._timers, key=self._timers.__getitem__)
        if self._timers[task] <= self._clock():
            del self._timers[task]
            return task
        return None

    def _check_finished(self) -> None:
        for pid, (proc, owner) in list(self._processes.items()):
            status = proc.poll()
            if status is None:
                continue
            self._log.info("Terminated PID %s status %s", pid, status)
            del self._processes[pid]
            if owner in self._tasks:
                owner.process_finished(pid, status)

        while self._messages or self._finished:
            if self._messages:
                task = _first(self._messages)
                del self._messages[task]
                parent = self._tasks.get(task)
                if task in self._tasks and parent is not None:
                    parent.task_message(task)
            if self._finished:
                task = _first(self._finished)
                del self._finished[task]
                if task in self._tasks:
                    self._remove_task(task)

    def _remove_all_tasks(self) -> None:
        while self._tasks:
            self._remove_task(_first(self._tasks), killed=True)

    def _remove_task(self, task: Task, killed: bool = False) -> None:
        if task not in self._tasks:
            return
        del self._tasks[task]
        task._set_terminated()
        task.was_killed = task.was_killed or killed
        self._log.info("remove task %s", task.label)
        self._timers.pop(task, None)
        self._finished.pop(task, None)
        self._messages.pop(task, None)

        # The dying task may be observing others.
        for observed in self._observed_by.pop(task, {}):
            self._observing.get(observed, {}).pop(task, None)
            if self._tasks.get(observed) is task:
                # A child of the dying task becomes an orphan.
                self._tasks[observed] = None
                if task.kill_children:
                    self.abort_task(observed)

        # Others may be observing the dying task.
        for observer in self._observing.pop(task, {}):
            self._observed_by.get(observer, {}).pop(task, None)
            observer.task_finished(task)