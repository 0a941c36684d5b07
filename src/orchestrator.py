"""Tool-call orchestration: one conversational turn from user text to final reply."""
from __future__ import annotations

import asyncio
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Sequence, TypeVar

from analysis_cache import AnalysisCache
from approvals import ApprovalStateMachine, PendingActionListener
from capture_tool import CaptureToolHandler
from command_policy import classify
from config import OrchestratorConfig, config
from conversation import (
    build_capture_prompt,
    build_optimized_history,
    enforce_conversational_tone,
    history_mentions_capture,
)
from diagnostics import ContainerRegistry, inject_diagnostic_calls, resolve_logs_call
from errors import HostCapabilityError
from host import HostCapabilities
from intents import IntentSignals, UserIntent, analyze_message, classify_intent
from logging_utils import logger
from metrics import TurnMetrics
from models import (
    CAPTURE_TOOL,
    COMMAND_TOOL,
    ActionStatus,
    ApprovalLevel,
    Clock,
    ConversationTurn,
    PendingActionRequest,
    StreamEnd,
    TextFragment,
    ToolCallRequest,
    ToolResult,
)
from reasoning import SYSTEM_PROMPT, TOOL_SCHEMAS, ReasoningService, build_messages, image_part
from target_resolver import TargetCache, TargetResolver
from tool_calls import ToolCallCollector

T = TypeVar("T")

WRAP_UP_REPLY = "Glad I could help! Let me know if you need anything else."
FOLLOW_UP_PROMPT = "Please provide a response based on the command output above."
ROUND_LIMIT_REPLY = (
    "I've reached the limit of tool steps for this request. Let me know if you'd like me to keep going."
)

SKIP_MESSAGES = {
    "recent_capture": (
        "Capture skipped: a recent capture is already available and the user is just confirming. "
        "Use the existing context unless a new capture is explicitly requested."
    ),
    "prefer_command_output": (
        "Capture skipped: command output will be used to answer the question. Capture windows only "
        "when the user explicitly asks to see the UI."
    ),
    "terminal_capture_unnecessary": (
        "Capture skipped: command output is already available. Only capture the terminal when the "
        "user specifically asks to see it."
    ),
}

TERMINAL_PROCESS_MARKERS = ("windowsterminal", "terminal", "cmd", "powershell", "pwsh", "iterm", "konsole")


@dataclass(frozen=True)
class CaptureRecord:
    turn: int
    process_name: str
    title: str


def _discard_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


def _tool_call_message(call: ToolCallRequest) -> Dict[str, Any]:
    return {
        "id": call.call_id,
        "type": "function",
        "function": {"name": call.name, "arguments": json.dumps(call.arguments, default=str)},
    }


def _failure(call: ToolCallRequest, error: str, **extra: Any) -> ToolResult:
    payload: Dict[str, Any] = {"success": False, "error": error}
    payload.update(extra)
    return ToolResult(name=call.name, call_id=call.call_id, payload=payload)


def describe_outcome(request: PendingActionRequest) -> str:
    """Message that tells the model what happened to a command it asked to run."""
    invocation = " ".join([request.command, *request.args])
    if request.status is ActionStatus.DENIED:
        return f"The user denied the command `{invocation}`. Do not run it; suggest an alternative if useful."
    if request.status is ActionStatus.BLOCKED:
        return f"The command `{invocation}` was blocked by the safety policy: {request.policy.reason}"

    lines = [f"The user approved the command `{invocation}` and it was executed."]
    result = request.result
    if result is not None:
        lines.append(f"Exit code: {result.exit_code}")
        if result.stdout:
            lines.append(f"stdout:\n{result.stdout}")
        if result.stderr:
            lines.append(f"stderr:\n{result.stderr}")
    if request.error:
        lines.append(f"Error: {request.error}")
    lines.append("Summarize the outcome for the user.")
    return "\n".join(lines)


class Orchestrator:
    """
    Drives the reasoning service and host tools for each user turn.

    Tool calls inside a turn run strictly one after another in issue order.
    Commands that are not automatically safe become pending action requests
    and only run through approve().
    """

    def __init__(
        self,
        reasoning: ReasoningService,
        host: HostCapabilities,
        approvals: Optional[ApprovalStateMachine] = None,
        target_resolver: Optional[TargetResolver] = None,
        analysis_cache: Optional[AnalysisCache] = None,
        settings: Optional[OrchestratorConfig] = None,
        clock: Clock = time.monotonic,
        system_prompt: Optional[str] = SYSTEM_PROMPT,
    ) -> None:
        self.reasoning = reasoning
        self.host = host
        self.settings = settings or config.orchestrator
        self.approvals = approvals or ApprovalStateMachine(host.run_command)
        self.target_resolver = target_resolver or TargetResolver(TargetCache(config.cache.target_ttl, clock))
        self.analysis_cache = analysis_cache or AnalysisCache(
            max_entries=config.cache.analysis_max_entries, ttl=config.cache.analysis_ttl, clock=clock
        )
        self.capture_handler = CaptureToolHandler(host, self.target_resolver, self.analysis_cache)
        self.system_prompt = system_prompt
        self._turn_number = 0
        self._captures: List[CaptureRecord] = []

    # Application interface

    @property
    def pending_actions(self) -> "asyncio.Queue[PendingActionRequest]":
        return self.approvals.events

    def on_pending_action(self, callback: PendingActionListener) -> None:
        self.approvals.add_listener(callback)

    async def approve(self, request_id: str) -> Optional[PendingActionRequest]:
        return await self.approvals.approve(request_id)

    def deny(self, request_id: str) -> Optional[PendingActionRequest]:
        return self.approvals.deny(request_id)

    async def submit_turn(
        self,
        history: Sequence[ConversationTurn],
        new_user_text: str,
        attachments: Sequence[str] = (),
    ) -> AsyncIterator[str]:
        """
        Yield the assistant's reply text for one user turn, running tools as requested.

        Closing the iterator early stops the turn and closes the upstream stream.
        """
        turn = self._run_turn(history, new_user_text, attachments, heuristics=True)
        try:
            async for text in turn:
                yield text
        finally:
            await turn.aclose()

    async def resume(self, history: Sequence[ConversationTurn], request_id: str) -> AsyncIterator[str]:
        """
        Report the outcome of an approved, denied or blocked request to the model.

        Raises ValueError when the request is unknown or still awaiting a decision.
        The request is acknowledged once the reply has been produced.
        """
        request = self.approvals.get(request_id)
        if request is None:
            raise ValueError(f"Unknown action request '{request_id}'")
        if not request.status.is_terminal:
            raise ValueError(f"Action request '{request_id}' is still {request.status.value}")

        turn = self._run_turn(history, describe_outcome(request), (), heuristics=False)
        try:
            async for text in turn:
                yield text
        finally:
            await turn.aclose()
        self.approvals.acknowledge(request_id)

    # Turn loop

    async def _run_turn(
        self,
        history: Sequence[ConversationTurn],
        user_text: str,
        attachments: Sequence[str],
        heuristics: bool,
    ) -> AsyncIterator[str]:
        self._turn_number += 1
        metrics = TurnMetrics()
        full_history = list(history) + [ConversationTurn(role="user", content=user_text, images=list(attachments))]
        signals = analyze_message(user_text) if heuristics else IntentSignals(text=user_text)
        intent = classify_intent(user_text) if heuristics else UserIntent.OTHER

        logger.info(
            "Turn started",
            extra={
                "extra": {
                    "correlation_id": metrics.correlation_id,
                    "turn": self._turn_number,
                    "intent": intent.value,
                    "attachments": len(attachments),
                }
            },
        )
        try:
            if heuristics and self.settings.wrap_up_shortcut and signals.wrap_up and not attachments:
                metrics.wrap_up_shortcut = True
                yield WRAP_UP_REPLY
                return

            messages = build_messages(
                build_optimized_history(full_history, self.settings.max_history_turns), self.system_prompt
            )
            loop = self._tool_loop(messages, full_history, signals, intent, heuristics, metrics)
            try:
                async for text in loop:
                    yield text
            finally:
                await loop.aclose()
        finally:
            logger.info("Turn finished", extra={"extra": metrics.finalize()})

    async def _tool_loop(
        self,
        messages: List[Dict[str, Any]],
        history: List[ConversationTurn],
        signals: IntentSignals,
        intent: UserIntent,
        heuristics: bool,
        metrics: TurnMetrics,
    ) -> AsyncIterator[str]:
        registry = ContainerRegistry()
        follow_up_sent = False
        executed_last_round = False

        while True:
            condense = self.settings.concise_replies and metrics.tool_rounds > 0
            collector = ToolCallCollector()
            text_parts: List[str] = []
            metrics.reasoning_calls += 1

            stream = self.reasoning.stream(messages, TOOL_SCHEMAS)
            try:
                async for event in stream:
                    if isinstance(event, TextFragment):
                        text_parts.append(event.text)
                        if not condense:
                            yield event.text
                    elif isinstance(event, ToolCallRequest):
                        collector.add_request(event, origin="stream")
                    elif isinstance(event, StreamEnd):
                        metrics.tokens_prompt += event.prompt_tokens
                        metrics.tokens_completion += event.completion_tokens
                        metrics.tool_calls_malformed += event.malformed_tool_calls
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            reply = "".join(text_parts)
            if condense and reply.strip():
                yield enforce_conversational_tone(reply)

            calls = collector.calls
            if heuristics and metrics.tool_rounds == 0:
                calls, injected = inject_diagnostic_calls(calls, signals, history)
                metrics.tool_calls_injected += len(injected)

            if not calls:
                needs_follow_up = (
                    executed_last_round
                    and not follow_up_sent
                    and len(reply.strip()) < self.settings.follow_up_min_chars
                )
                if not needs_follow_up:
                    return
                follow_up_sent = True
                metrics.follow_ups += 1
                logger.info(
                    "Reply too short after command output, asking once more",
                    extra={"extra": {"correlation_id": metrics.correlation_id, "reply_chars": len(reply.strip())}},
                )
                if reply:
                    messages.append({"role": "assistant", "content": reply})
                messages.append({"role": "user", "content": FOLLOW_UP_PROMPT})
                executed_last_round = False
                continue

            if metrics.tool_rounds >= self.settings.max_tool_rounds:
                metrics.round_limit_hit = True
                logger.warning(
                    "Tool round limit reached",
                    extra={
                        "extra": {
                            "correlation_id": metrics.correlation_id,
                            "max_tool_rounds": self.settings.max_tool_rounds,
                            "dropped_calls": [call.name for call in calls],
                        }
                    },
                )
                yield ROUND_LIMIT_REPLY
                return
            metrics.tool_rounds += 1

            calls = [
                call
                if call.call_id
                else ToolCallRequest(
                    name=call.name,
                    arguments=call.arguments,
                    call_id=f"{'injected' if call.injected else 'call'}_{uuid.uuid4().hex[:12]}",
                    injected=call.injected,
                )
                for call in calls
            ]
            messages.append(
                {
                    "role": "assistant",
                    "content": reply or None,
                    "tool_calls": [_tool_call_message(call) for call in calls],
                }
            )

            executed_last_round = False
            captures: List[ToolResult] = []
            for call in calls:
                result = await self._execute_call(call, calls, signals, history, registry, metrics)
                if call.name == COMMAND_TOOL and result.payload.get("executed"):
                    executed_last_round = True
                if result.image_base64:
                    captures.append(result)
                messages.append({"role": "tool", "tool_call_id": call.call_id, "content": result.serialize()})

            if captures:
                content: List[Dict[str, Any]] = [
                    {"type": "text", "text": build_capture_prompt(captures, signals.text, intent)}
                ]
                content.extend(image_part(result.image_base64) for result in captures if result.image_base64)
                messages.append({"role": "user", "content": content})

    # Tool execution

    async def _execute_call(
        self,
        call: ToolCallRequest,
        batch: Sequence[ToolCallRequest],
        signals: IntentSignals,
        history: Sequence[ConversationTurn],
        registry: ContainerRegistry,
        metrics: TurnMetrics,
    ) -> ToolResult:
        if call.name == CAPTURE_TOOL:
            reason = self._capture_skip_reason(call, batch, signals, history)
            if reason:
                metrics.tool_calls_skipped += 1
                logger.info(
                    "Capture skipped",
                    extra={"extra": {"correlation_id": metrics.correlation_id, "reason": reason, "args": call.arguments}},
                )
                return ToolResult(
                    name=call.name,
                    call_id=call.call_id,
                    payload={"success": True, "skipped": True, "reason": reason, "message": SKIP_MESSAGES[reason]},
                )
            return await self._capture(call, metrics)

        if call.name == COMMAND_TOOL:
            return await self._command(call, registry, metrics)

        logger.warning(
            "Unknown tool requested",
            extra={"extra": {"correlation_id": metrics.correlation_id, "tool": call.name}},
        )
        return _failure(call, f"Unknown tool '{call.name}'")

    async def _capture(self, call: ToolCallRequest, metrics: TurnMetrics) -> ToolResult:
        metrics.tool_calls_executed += 1
        try:
            result = await self._bounded(self.capture_handler.handle(call.arguments, call.call_id))
        except Exception as exc:
            logger.error(
                "Capture failed",
                extra={"extra": {"correlation_id": metrics.correlation_id, "error": str(exc)}},
            )
            return _failure(call, f"Capture failed: {exc}")

        if result.succeeded:
            self._captures.append(
                CaptureRecord(
                    turn=self._turn_number,
                    process_name=str(result.payload.get("process_name") or ""),
                    title=str(result.payload.get("window_title") or ""),
                )
            )
        return result

    async def _command(self, call: ToolCallRequest, registry: ContainerRegistry, metrics: TurnMetrics) -> ToolResult:
        command = call.arguments.get("command")
        raw_args = call.arguments.get("args") or []
        if not isinstance(command, str) or not command.strip():
            return _failure(call, "execute_command requires a non-empty 'command'")
        if isinstance(raw_args, str):
            raw_args = [raw_args]
        if not isinstance(raw_args, list):
            return _failure(call, "execute_command 'args' must be a list of strings")
        args = [str(arg) for arg in raw_args]

        resolved, not_found = resolve_logs_call(
            ToolCallRequest(name=call.name, arguments={"command": command, "args": args}, call_id=call.call_id),
            registry,
        )
        if not_found:
            return _failure(call, not_found)
        args = [str(arg) for arg in resolved.arguments["args"]]

        decision = classify(command, args)
        base: Dict[str, Any] = {"command": command, "args": args, "policy": decision.to_dict()}

        if decision.level is ApprovalLevel.BLOCKED:
            request = self.approvals.create(command, args, decision)
            metrics.blocked_commands += 1
            logger.warning(
                "Command blocked by policy",
                extra={"extra": {"correlation_id": metrics.correlation_id, "command": command, "args": args}},
            )
            result = _failure(call, f"Command blocked: {decision.reason}", blocked=True, request_id=request.id, **base)
            # The model sees the block in this tool result; nothing is left to settle.
            self.approvals.acknowledge(request.id)
            return result

        if decision.level is ApprovalLevel.APPROVAL_REQUIRED:
            request = self.approvals.create(command, args, decision)
            metrics.pending_commands += 1
            return _failure(
                call,
                "Command requires user approval before it can run.",
                needs_approval=True,
                request_id=request.id,
                message=decision.suggested_confirmation,
                **base,
            )

        metrics.tool_calls_executed += 1
        try:
            result = await self._bounded(self.host.run_command(command, args))
        except Exception as exc:
            logger.error(
                "Command failed",
                extra={"extra": {"correlation_id": metrics.correlation_id, "command": command, "error": str(exc)}},
            )
            return _failure(call, f"Tool execution failed: {exc}", **base)

        if command.strip().lower() == "docker" and "ps" in [arg.lower() for arg in args] and result.stdout:
            registry.record(result.stdout)
        payload = dict(base, executed=True, **result.to_dict())
        return ToolResult(name=call.name, call_id=call.call_id, payload=payload)

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        """
        Await a host call under HOST_CALL_TIMEOUT.

        The call runs as a shielded task: cancelling the turn or hitting the
        timeout abandons the result but never interrupts the host call itself.
        """
        task = asyncio.ensure_future(awaitable)
        task.add_done_callback(_discard_result)
        timeout = self.settings.host_call_timeout
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout if timeout > 0 else None)
        except asyncio.TimeoutError as exc:
            raise HostCapabilityError(f"Host call timed out after {timeout:g} seconds") from exc

    # Redundancy suppression

    def _recently_captured(self, process_name: str, title: str) -> bool:
        oldest_turn = self._turn_number - self.settings.recent_capture_turns
        process = process_name.lower()
        wanted_title = title.lower()
        for record in reversed(self._captures):
            if record.turn < oldest_turn:
                break
            if not process and not wanted_title:
                return True
            if process and record.process_name.lower() == process:
                return True
            recorded_title = record.title.lower()
            if wanted_title and recorded_title and (wanted_title in recorded_title or recorded_title in wanted_title):
                return True
        return False

    def _capture_skip_reason(
        self,
        call: ToolCallRequest,
        batch: Sequence[ToolCallRequest],
        signals: IntentSignals,
        history: Sequence[ConversationTurn],
    ) -> Optional[str]:
        process_name = str(call.arguments.get("process_name") or "")
        window_title = str(call.arguments.get("window_title") or "")
        recent = self._recently_captured(process_name, window_title) or history_mentions_capture(
            history[:-1], process_name, window_title, self.settings.recent_capture_turns
        )

        if (
            recent
            and not window_title
            and not signals.explicit_capture
            and (signals.just_checking or signals.short_confirmation or signals.wrap_up)
        ):
            return "recent_capture"

        runs_command = any(other.name == COMMAND_TOOL for other in batch)
        if (
            not recent
            and runs_command
            and not signals.explicit_capture
            and not window_title
            and signals.data_status_question
            and not signals.just_checking
        ):
            return "prefer_command_output"

        process = process_name.lower()
        if any(marker in process for marker in TERMINAL_PROCESS_MARKERS) and not signals.explicit_capture:
            return "terminal_capture_unnecessary"
        return None
