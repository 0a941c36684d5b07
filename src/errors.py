"""Exception types raised at the seams of the orchestration core."""
from __future__ import annotations

from typing import Any, Optional


class AgentError(Exception):
    """Base class for errors raised by the desktop agent."""


class PolicyViolation(AgentError):
    """A command was classified as blocked and must not run."""

    def __init__(self, command: str, args: list[str], reason: str) -> None:
        super().__init__(f"Command '{command}' blocked: {reason}")
        self.command = command
        self.args = list(args)
        self.reason = reason


class MalformedToolCall(AgentError):
    """A tool-call request without a usable name or with unparseable arguments."""

    def __init__(self, message: str, raw: Optional[Any] = None) -> None:
        super().__init__(message)
        self.raw = raw


class HostCapabilityError(AgentError):
    """A capture, enumeration, command or analysis call on the host failed."""


class ReasoningServiceError(AgentError):
    """The reasoning service could not be reached or returned an unusable reply."""
