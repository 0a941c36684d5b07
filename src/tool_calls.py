"""Extract and deduplicate tool-call requests from model replies of any shape."""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional, Set

from errors import MalformedToolCall
from logging_utils import logger
from models import ToolCallRequest

MAX_SCAN_DEPTH = 32


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Accept a dict or a JSON object string; anything else is malformed."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedToolCall(f"Tool arguments are not valid JSON: {exc}", raw=raw) from exc
        if not isinstance(parsed, dict):
            raise MalformedToolCall("Tool arguments must be a JSON object", raw=raw)
        return parsed
    raise MalformedToolCall(f"Unsupported tool arguments type: {type(raw).__name__}", raw=raw)


def build_request(
    name: Any, arguments: Any, call_id: Optional[str] = None, injected: bool = False
) -> ToolCallRequest:
    if not isinstance(name, str) or not name.strip():
        raise MalformedToolCall("Tool call has no usable name", raw={"name": name, "arguments": arguments})
    return ToolCallRequest(
        name=name.strip(),
        arguments=parse_arguments(arguments),
        call_id=call_id,
        injected=injected,
    )


class ToolCallCollector:
    """Ordered, deduplicated tool calls for one model reply."""

    def __init__(self) -> None:
        self._calls: List[ToolCallRequest] = []
        self._keys: Set[str] = set()
        self.malformed = 0
        self.duplicates = 0

    def add_request(self, request: ToolCallRequest, origin: str = "direct") -> bool:
        key = request.dedup_key
        if key in self._keys:
            self.duplicates += 1
            logger.debug("Duplicate tool call dropped", extra={"extra": {"origin": origin, "key": key}})
            return False
        self._keys.add(key)
        self._calls.append(request)
        logger.info(
            "Collected tool call",
            extra={"extra": {"origin": origin, "tool": request.name, "args": request.arguments}},
        )
        return True

    def add(self, name: Any, arguments: Any, call_id: Optional[str] = None, origin: str = "direct") -> bool:
        try:
            request = build_request(name, arguments, call_id=call_id)
        except MalformedToolCall as exc:
            self.malformed += 1
            logger.warning(
                "Malformed tool call dropped",
                extra={"extra": {"origin": origin, "error": str(exc), "raw": exc.raw}},
            )
            return False
        return self.add_request(request, origin=origin)

    def contains(self, request: ToolCallRequest) -> bool:
        return request.dedup_key in self._keys

    @property
    def calls(self) -> List[ToolCallRequest]:
        return list(self._calls)

    def __iter__(self) -> Iterator[ToolCallRequest]:
        return iter(list(self._calls))

    def __len__(self) -> int:
        return len(self._calls)


def _as_mapping(source: Any) -> Optional[Mapping]:
    if isinstance(source, Mapping):
        return source
    attributes = getattr(source, "__dict__", None)
    if isinstance(attributes, dict):
        return {key: value for key, value in attributes.items() if not key.startswith("_")}
    return None


def _looks_like_call(mapping: Mapping) -> bool:
    return "name" in mapping and ("args" in mapping or "arguments" in mapping)


def scan_for_tool_calls(
    source: Any,
    collector: ToolCallCollector,
    origin: str = "payload",
    call_id: Optional[str] = None,
    _depth: int = 0,
    _seen: Optional[Set[int]] = None,
) -> None:
    """
    Walk a reply payload and hand every tool-call-shaped node to the collector.

    Handles top-level calls, ``functionCall`` / ``function_call`` properties,
    ``candidates[].content.parts[]`` and OpenAI ``tool_calls[].function``
    entries. SDK objects are read through their attributes; callables are
    never invoked.
    """
    if source is None or _depth > MAX_SCAN_DEPTH:
        return
    if isinstance(source, (str, bytes, int, float, bool)):
        return
    if callable(source) and not isinstance(source, Mapping):
        return

    seen = _seen if _seen is not None else set()
    if id(source) in seen:
        return
    seen.add(id(source))

    if isinstance(source, (list, tuple)):
        for index, item in enumerate(source):
            scan_for_tool_calls(item, collector, f"{origin}[{index}]", None, _depth + 1, seen)
        return

    mapping = _as_mapping(source)
    if mapping is None:
        return

    if _looks_like_call(mapping):
        arguments = mapping.get("args", mapping.get("arguments"))
        collector.add(mapping.get("name"), arguments, call_id=call_id or mapping.get("id"), origin=origin)
        return

    nested_id = mapping.get("id") if isinstance(mapping.get("id"), str) else None
    for key, value in mapping.items():
        if callable(value) and not isinstance(value, Mapping):
            continue
        scan_for_tool_calls(value, collector, f"{origin}.{key}", nested_id, _depth + 1, seen)


def extract_tool_calls(payload: Any) -> List[ToolCallRequest]:
    """Every distinct tool call found anywhere in a non-streamed payload."""
    collector = ToolCallCollector()
    scan_for_tool_calls(payload, collector)
    return collector.calls
