"""Reasoning-service adapter: chat messages in, typed response events out."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

import openai

from config import config
from errors import ReasoningServiceError
from logging_utils import logger
from models import (
    CAPTURE_TOOL,
    COMMAND_TOOL,
    ConversationTurn,
    ResponseEvent,
    StreamEnd,
    TextFragment,
)
from tool_calls import ToolCallCollector, scan_for_tool_calls

SYSTEM_PROMPT = (
    "You are a friendly desktop assistant that can see the user's windows and run commands on "
    "their machine through tools.\n\n"
    "RULES:\n"
    "1. Answer conversationally and briefly; offer details instead of dumping them.\n"
    "2. Prefer real command output (docker ps, git status, logs) over guessing from screenshots "
    "when the question is about runtime state.\n"
    "3. If execute_command returns needs_approval, tell the user what you want to run and why, "
    "then wait for their decision.\n"
    "4. If execute_command returns blocked, explain why and suggest a safe alternative.\n"
    "5. When a capture returns multiple_windows_found, show the 'message' field to the user "
    "verbatim and wait for them to choose.\n"
    "6. Never invent container, file or window names that you have not seen."
)

TOOL_SCHEMAS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": CAPTURE_TOOL,
            "description": (
                "Capture a window of a running application and return OCR text plus the image. "
                "DO call it when the user asks you to look at, show, open or switch to a window, or "
                "picks a window from a list you presented (pass window_title). "
                "DON'T call it again when the same window was captured in the last few messages and "
                "the user is only confirming or checking in. DON'T capture terminals to read command "
                "output; use execute_command instead."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "process_name": {
                        "type": "string",
                        "description": "Process name of the application, e.g. 'chrome', 'Cursor', 'Code'.",
                    },
                    "window_title": {
                        "type": "string",
                        "description": (
                            "Which window to capture: a title, the name shown in a list, or a number "
                            "or ordinal such as '2' or 'the second one'."
                        ),
                    },
                },
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": COMMAND_TOOL,
            "description": (
                "Run a shell command on the user's machine and return stdout, stderr and exit code. "
                "Read-only diagnostics (docker ps, docker logs, git status, kubectl get) run "
                "immediately. Commands that change state need the user's approval and return "
                "needs_approval. Destructive commands (rm, docker rm, shutdown, format) are always "
                "blocked. DO use it for questions about containers, services, repositories and "
                "processes. DON'T wrap commands in a shell string; pass the executable and its "
                "arguments separately."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "Executable name, e.g. 'docker'."},
                    "args": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Arguments in order, e.g. ['ps', '-a'].",
                    },
                },
                "required": ["command"],
            },
        },
    },
]


class ReasoningService(Protocol):
    """Anything that turns a message list into a stream of response events."""

    def stream(self, messages: List[Dict[str, Any]], tools: Sequence[Dict[str, Any]]) -> AsyncIterator[ResponseEvent]:
        ...


def image_part(image_base64: str) -> Dict[str, Any]:
    url = image_base64 if image_base64.startswith("data:") else f"data:image/png;base64,{image_base64}"
    return {"type": "image_url", "image_url": {"url": url}}


def turn_to_message(turn: ConversationTurn) -> Dict[str, Any]:
    if turn.role == "user" and turn.images:
        content: List[Dict[str, Any]] = [{"type": "text", "text": turn.content}]
        content.extend(image_part(image) for image in turn.images)
        return {"role": "user", "content": content}
    return {"role": turn.role, "content": turn.content}


def build_messages(
    history: Sequence[ConversationTurn], system_prompt: Optional[str] = SYSTEM_PROMPT
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend(turn_to_message(turn) for turn in history)
    return messages


class OpenAIReasoningService:
    """Streams chat completions and reassembles tool-call deltas by index."""

    def __init__(
        self,
        client: Optional[openai.AsyncOpenAI] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self.client = client or openai.AsyncOpenAI(
            timeout=config.llm.timeout, max_retries=config.llm.max_retries
        )
        self.model = model or config.llm.model
        self.temperature = config.llm.temperature if temperature is None else temperature

    async def stream(
        self, messages: List[Dict[str, Any]], tools: Sequence[Dict[str, Any]]
    ) -> AsyncIterator[ResponseEvent]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = list(tools)
            request["tool_choice"] = "auto"
        if config.llm.max_tokens:
            request["max_tokens"] = config.llm.max_tokens

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            logger.error("Reasoning service call failed", extra={"extra": {"error": str(exc)}})
            raise ReasoningServiceError(f"Reasoning service call failed: {exc}") from exc

        partial: Dict[int, Dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        prompt_tokens = 0
        completion_tokens = 0
        try:
            async for chunk in response:
                usage = getattr(chunk, "usage", None)
                if usage:
                    prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
                    completion_tokens = getattr(usage, "completion_tokens", 0) or 0
                for choice in chunk.choices or []:
                    delta = choice.delta
                    if delta is not None:
                        if delta.content:
                            yield TextFragment(delta.content)
                        for tool_delta in delta.tool_calls or []:
                            entry = partial.setdefault(tool_delta.index, {"id": None, "name": "", "arguments": ""})
                            if tool_delta.id:
                                entry["id"] = tool_delta.id
                            function = tool_delta.function
                            if function is not None:
                                entry["name"] += function.name or ""
                                entry["arguments"] += function.arguments or ""
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
        except openai.OpenAIError as exc:
            logger.error("Reasoning stream interrupted", extra={"extra": {"error": str(exc)}})
            raise ReasoningServiceError(f"Reasoning stream interrupted: {exc}") from exc
        finally:
            await response.close()

        collector = ToolCallCollector()
        for index in sorted(partial):
            entry = partial[index]
            collector.add(
                entry["name"],
                entry["arguments"] or "{}",
                call_id=entry["id"],
                origin=f"stream.tool_calls[{index}]",
            )
        for call in collector:
            yield call
        yield StreamEnd(
            finish_reason=finish_reason,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            malformed_tool_calls=collector.malformed,
        )


def _collect_text(source: Any, parts: List[str]) -> None:
    if isinstance(source, list):
        for item in source:
            _collect_text(item, parts)
        return
    if not isinstance(source, Mapping):
        return
    if isinstance(source.get("text"), str):
        parts.append(source["text"])
    content = source.get("content")
    if isinstance(content, str):
        parts.append(content)
    elif isinstance(content, (list, Mapping)):
        _collect_text(content, parts)
    for key in ("parts", "candidates", "choices", "message"):
        if key in source:
            _collect_text(source[key], parts)


def events_from_payload(payload: Any) -> List[ResponseEvent]:
    """
    Adapt a complete (non-streamed) reply of any known shape into events.

    Tool calls are found by the recursive scanner, so the same call reported
    under several paths yields a single event.
    """
    events: List[ResponseEvent] = []
    text_parts: List[str] = []
    _collect_text(payload, text_parts)
    text = "".join(text_parts)
    if text:
        events.append(TextFragment(text))

    collector = ToolCallCollector()
    scan_for_tool_calls(payload, collector)
    events.extend(collector.calls)
    events.append(StreamEnd(malformed_tool_calls=collector.malformed))
    return events
