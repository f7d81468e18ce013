"""Small tasks and clients that show how the framework is used."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Optional, TextIO

from .messages import is_agent_terminated_message
from .task import Task

_log = logging.getLogger("Examples")


class PointlessTask(Task):
    """Ticks a fixed number of times at a fixed interval, then finishes."""

    def __init__(self, name: str, tick_length: float, no_ticks: int) -> None:
        super().__init__(name)
        self.tick_duration = tick_length
        self.ticks = no_ticks
        self.curr_tick = 0

    def start(self) -> float:
        _log.debug("%s starting, %d ticks", self.label, self.ticks)
        return self.tick_duration

    def timer_event(self) -> float:
        self.curr_tick += 1
        _log.info("%s timerEvent %d of %d", self.label, self.curr_tick, self.ticks)
        if self.curr_tick < self.ticks:
            return self.tick_duration
        self.set_result(f"Done after {self.elapsed():f} seconds")
        return 0.0


class ReceiverTask(Task):
    """Finishes after receiving three messages."""

    def __init__(self) -> None:
        super().__init__("ReceiverTask")
        self.msg_count = 0
        self.messages: list[str] = []

    def handle_execution(self, sender: Task, message: str) -> None:
        _log.info("Event: %s", message)
        self.messages.append(message)
        self.msg_count += 1
        if self.msg_count == 3:
            self.set_result("Got Event")


class SenderTask(Task):
    """Sends a message to its peer every second until the peer is gone."""

    def __init__(self, peer: Optional[Task]) -> None:
        super().__init__("SenderTask")
        self.peer = peer

    def start(self) -> float:
        if self.peer is None or not self.start_observing(self.peer):
            _log.info("Peer task does not exist.")
            self.set_result("Fail")
            return 0.0
        return 0.1

    def timer_event(self) -> float:
        if self.peer is not None:
            self.execute_handler(self.peer, "Hi there!")
        return 1.0

    def task_finished(self, task: Task) -> None:
        if task is self.peer:
            self.peer = None
            _log.info("Peer task dead, will exit.")
            self.set_result("Done.")


@dataclass
class _Leader:
    name: str
    score: int


class ScoreBoard:
    """Keeps the highest scoring names for each connection.

    Messages are either ``name score`` or ``winner``; the latter is answered
    with the leading name, or with all names that share the top score.
    """

    def __init__(self) -> None:
        self._leaders: dict[Hashable, _Leader] = {}

    def text_message(self, conn: Hashable, msg: str) -> Optional[str]:
        """Handle a message from conn; return the reply to send, if any."""
        leader = self._leaders.get(conn)
        if msg == "winner":
            return leader.name if leader is not None else None
        pos = msg.rfind(" ")
        if pos <= 0 or pos + 1 == len(msg):
            return None
        digits = msg[pos + 1:]
        if not (digits.isascii() and digits.isdigit()):
            return None
        score = int(digits)
        name = msg[:pos]
        if leader is None:
            self._leaders[conn] = _Leader(name, score)
        elif score > leader.score:
            leader.score = score
            leader.name = name
        elif score == leader.score:
            leader.name += ", " + name
        return None

    def remove(self, conn: Hashable) -> None:
        """Forget everything about conn."""
        self._leaders.pop(conn, None)


class TerminalClient:
    """Shows the latest agent message on a single terminal line."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._last_msg = ""
        self.msg_count = 0

    def initial_messages(self) -> list[str]:
        return ["client ready"]

    def handle_event(self, msg: str) -> list[str]:
        """Show msg and return the replies to the agent."""
        self.msg_count += 1
        out = "\b" * len(self._last_msg) + msg
        if len(self._last_msg) > len(msg):
            n = len(self._last_msg) - len(msg)
            out += " " * n + "\b" * n
        self._last_msg = msg
        replies = ["quit"] if self.msg_count == 4 else []
        if is_agent_terminated_message(msg):
            out += "\nBye.\n"
        self._stream.write(out)
        self._stream.flush()
        return replies