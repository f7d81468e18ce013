"""A task that passes messages between an agent task and a client outside the loop."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .messages import agent_terminated_message, event_message, is_terminate_message
from .task import Task

_log = logging.getLogger("Bridge")


class BridgeTask(Task, ABC):
    """Connects an agent task in the event loop with a client outside it.

    Subclasses implement send_msg_to_client and pass the client's messages
    on through send_msg_to_agent. The agent is started as a child of the
    bridge and is aborted when the bridge finishes.
    """

    def __init__(self, agent: Optional[Task] = None) -> None:
        super().__init__("Bridge")
        self._agent = agent
        self.kill_child_task_when_finished()

    @property
    def agent(self) -> Optional[Task]:
        """The agent task, or None once it is gone."""
        return self._agent

    def start(self) -> float:
        """Add the agent to the loop. Overriding methods must call this first."""
        if self._agent is None:
            _log.error("You must call set_agent before starting bridge")
            self.set_error("no agent")
            return 0.0
        self.add_new_task(self._agent, self)
        self._agent.start_observing(self)
        return 0.0

    def task_finished(self, task: Task) -> None:
        """Tell the client if the agent died, then finish the bridge."""
        if task is self._agent:
            if task.result:
                _log.info("Agent terminated")
                self.send_msg_to_client(agent_terminated_message(task.result))
                self._agent = None
            self.die()

    def set_agent(self, agent: Task) -> None:
        """Set the agent; allowed only once, and only before the bridge starts."""
        if self._agent is not None or self.has_started:
            raise RuntimeError("cannot set agent")
        self._agent = agent

    def die(self) -> None:
        """Terminate the bridge task."""
        self.set_result("")

    @abstractmethod
    def send_msg_to_client(self, msg: str) -> None:
        """Deliver a message from the agent to the client."""

    def send_event_to_client(self, method: str, jsonobj: str = "{}") -> None:
        """Format an event with JSON arguments and deliver it to the client."""
        self.send_msg_to_client(event_message(method, jsonobj))

    def send_msg_to_agent(self, msg: str) -> None:
        """Pass a message from the client to the agent."""
        if self._agent is not None:
            self.execute_handler(self._agent, msg)
        if is_terminate_message(msg):
            self.die()