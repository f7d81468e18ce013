"""Message formats passed between an agent and its client."""

from __future__ import annotations

AGENT_EXIT_PREFIX = "AGENT EXIT: "
TERMINATE_PREFIX = '{"method": "terminate"'


def msg_to_agent(method: str, jsonobj: str = "{}") -> str:
    """Format a message to the agent: a method name and a JSON object of arguments.

    The method name must not contain characters that need escaping.
    """
    return '{"method": "' + method + '", "args": ' + jsonobj + "}"


def event_message(method: str, jsonobj: str = "{}") -> str:
    """Format a message to the client: an event name and a JSON object of arguments."""
    return '{"event": "' + method + '", "args": ' + jsonobj + "}"


def is_agent_terminated_message(msg: str) -> bool:
    """Return True if msg says the agent has terminated."""
    return msg.startswith(AGENT_EXIT_PREFIX)


def agent_terminated_message(err_msg: str) -> str:
    """Format a message telling the client that the agent is gone."""
    return AGENT_EXIT_PREFIX + err_msg


def is_terminate_message(msg: str) -> bool:
    """Return True if msg asks the agent to terminate."""
    return msg.startswith(TERMINATE_PREFIX)