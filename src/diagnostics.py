"""Read-only docker diagnostics added to a model's tool calls, and container name lookup."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from intents import IntentSignals
from logging_utils import logger
from models import CAPTURE_TOOL, COMMAND_TOOL, ConversationTurn, ToolCallRequest

LOG_TAIL_LINES = "200"
DOCKER_CONTEXT_TURNS = 5
MAX_SUGGESTIONS = 5

_DOCKER_CONTEXT = re.compile(r"\b(docker|container)\b", re.IGNORECASE)
_COLUMN_SPLIT = re.compile(r"\s{2,}|\t+")
_NAME_SPLIT = re.compile(r"[, ]+")
_STATUS = re.compile(r"\b(Up|Exited|Created|Restarting|Paused)\b", re.IGNORECASE)


def docker_call(*args: str) -> ToolCallRequest:
    return ToolCallRequest(name=COMMAND_TOOL, arguments={"command": "docker", "args": list(args)}, injected=True)


def _docker_args(call: ToolCallRequest) -> Optional[List[str]]:
    if call.name != COMMAND_TOOL:
        return None
    if str(call.arguments.get("command", "")).strip().lower() != "docker":
        return None
    args = call.arguments.get("args") or []
    if not isinstance(args, list):
        return None
    return [str(arg).lower() for arg in args]


def _has_container_list(calls: Sequence[ToolCallRequest], include_stopped: bool) -> bool:
    for call in calls:
        args = _docker_args(call)
        if args and "ps" in args and (("-a" in args or "--all" in args) == include_stopped):
            return True
    return False


def _has_logs_call(calls: Sequence[ToolCallRequest]) -> bool:
    return any("logs" in (_docker_args(call) or []) for call in calls)


def has_docker_context(history: Sequence[ConversationTurn]) -> bool:
    return any(turn.content and _DOCKER_CONTEXT.search(turn.content) for turn in history[-DOCKER_CONTEXT_TURNS:])


def inject_diagnostic_calls(
    calls: Sequence[ToolCallRequest],
    signals: IntentSignals,
    history: Sequence[ConversationTurn] = (),
) -> Tuple[List[ToolCallRequest], List[ToolCallRequest]]:
    """
    Add read-only docker commands ahead of the model's own calls.

    The model's calls are kept as issued. An injection is only added when no
    equivalent call is already present. Returns ``(all_calls, injected)``.
    """
    model_calls = list(calls)
    if signals.wrap_up:
        return model_calls, []

    injected: List[ToolCallRequest] = []

    def add(call: ToolCallRequest) -> None:
        keys = {existing.dedup_key for existing in model_calls + injected}
        if call.dedup_key not in keys:
            injected.append(call)

    if signals.needs_container_list and not _has_container_list(model_calls, include_stopped=False):
        add(docker_call("ps"))

    wants_named_logs = bool(signals.wants_logs and signals.logs_target) and not _has_logs_call(model_calls)
    if (signals.needs_full_container_list or wants_named_logs) and not _has_container_list(
        model_calls, include_stopped=True
    ):
        add(docker_call("ps", "-a"))

    if wants_named_logs:
        add(docker_call("logs", "--tail", LOG_TAIL_LINES, signals.logs_target))

    captures_docker = any(
        call.name == CAPTURE_TOOL and "docker" in str(call.arguments.get("process_name") or "").lower()
        for call in model_calls
    )
    runs_commands = any(call.name == COMMAND_TOOL for call in model_calls + injected)
    if (
        captures_docker
        and not runs_commands
        and (signals.docker_question or signals.action_verb or has_docker_context(history))
    ):
        add(docker_call("ps"))

    if injected:
        logger.info(
            "Injected diagnostic commands",
            extra={"extra": {"commands": [call.arguments["args"] for call in injected]}},
        )
    return injected + model_calls, injected


@dataclass(frozen=True)
class ContainerInfo:
    name: str
    id: str
    status: str = ""


@dataclass
class ContainerResolution:
    name: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)


class ContainerRegistry:
    """Container names seen in ``docker ps`` output during the current turn."""

    def __init__(self) -> None:
        self.containers: List[ContainerInfo] = []

    def record(self, stdout: str) -> int:
        """Parse a ``docker ps`` table; returns how many new names were added."""
        lines = [line for line in (stdout or "").splitlines() if line.strip()]
        added = 0
        for line in lines[1:]:
            parts = _COLUMN_SPLIT.split(line.strip())
            if len(parts) < 2:
                continue
            status = next((part for part in parts if _STATUS.search(part)), "")
            for name in (n for n in _NAME_SPLIT.split(parts[-1]) if n):
                if not any(existing.name == name for existing in self.containers):
                    self.containers.append(ContainerInfo(name=name, id=parts[0], status=status))
                    added += 1
        return added

    def resolve(self, requested: str) -> ContainerResolution:
        if not self.containers:
            return ContainerResolution()
        lowered = requested.lower()
        for matches in (
            lambda name: name == lowered,
            lambda name: name.startswith(lowered),
            lambda name: lowered in name,
        ):
            for container in self.containers:
                if matches(container.name.lower()):
                    return ContainerResolution(name=container.name)
        return ContainerResolution(suggestions=[c.name for c in self.containers[:MAX_SUGGESTIONS]])

    def __len__(self) -> int:
        return len(self.containers)


def resolve_logs_call(
    call: ToolCallRequest, registry: ContainerRegistry
) -> Tuple[ToolCallRequest, Optional[str]]:
    """
    Point a ``docker logs`` call at a container that actually exists.

    Returns the (possibly rewritten) call and, when no container matches,
    a message listing suggestions instead. Calls are left untouched while the
    registry is empty.
    """
    args = _docker_args(call)
    if not args or "logs" not in args or not len(registry):
        return call, None

    original_args = [str(arg) for arg in call.arguments.get("args") or []]
    requested = original_args[-1]
    if requested.lower() == "logs" or requested.isdigit() or requested.startswith("-"):
        return call, None

    resolution = registry.resolve(requested)
    if resolution.name is None:
        suggestion_text = (
            f"Possible containers: {', '.join(resolution.suggestions)}"
            if resolution.suggestions
            else "No containers are currently listed by Docker."
        )
        return call, f'I couldn\'t find a container matching "{requested}". {suggestion_text}'

    if resolution.name == requested:
        return call, None
    rewritten = dict(call.arguments)
    rewritten["args"] = original_args[:-1] + [resolution.name]
    logger.info(
        "Container name resolved",
        extra={"extra": {"requested": requested, "resolved": resolution.name}},
    )
    return ToolCallRequest(name=call.name, arguments=rewritten, call_id=call.call_id, injected=call.injected), None
