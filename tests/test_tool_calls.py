"""Tests for tool_calls.py - Tool-call extraction and deduplication."""
from types import SimpleNamespace

import pytest

from errors import MalformedToolCall
from models import ToolCallRequest
from tool_calls import ToolCallCollector, extract_tool_calls, parse_arguments, scan_for_tool_calls


@pytest.mark.unit
class TestParseArguments:
    """Test argument parsing."""

    def test_dict_passthrough(self):
        """Dict arguments pass through."""
        assert parse_arguments({"command": "docker"}) == {"command": "docker"}

    def test_json_string(self):
        """JSON string arguments are decoded."""
        assert parse_arguments('{"command": "docker", "args": ["ps"]}') == {"command": "docker", "args": ["ps"]}

    def test_empty_is_empty_dict(self):
        """Empty arguments become an empty dict."""
        assert parse_arguments("") == {}
        assert parse_arguments(None) == {}

    def test_invalid_json_raises(self):
        """Invalid JSON raises MalformedToolCall."""
        with pytest.raises(MalformedToolCall):
            parse_arguments('{"command": ')

    def test_non_object_json_raises(self):
        """Non-object JSON raises MalformedToolCall."""
        with pytest.raises(MalformedToolCall):
            parse_arguments("[1, 2]")


@pytest.mark.unit
class TestCollector:
    """Test dedup and malformed handling."""

    def test_dedup_ignores_key_order(self):
        """Key order does not defeat dedup."""
        collector = ToolCallCollector()
        assert collector.add("execute_command", {"command": "docker", "args": ["ps"]})
        assert not collector.add("execute_command", {"args": ["ps"], "command": "docker"})
        assert len(collector) == 1
        assert collector.duplicates == 1

    def test_different_args_are_distinct(self):
        """Different arguments are separate calls."""
        collector = ToolCallCollector()
        collector.add("execute_command", {"command": "docker", "args": ["ps"]})
        collector.add("execute_command", {"command": "docker", "args": ["ps", "-a"]})
        assert len(collector) == 2

    def test_malformed_calls_are_dropped(self):
        """Nameless or unparseable calls are dropped and counted."""
        collector = ToolCallCollector()
        assert not collector.add(None, {})
        assert not collector.add("execute_command", "{not json")
        assert len(collector) == 0
        assert collector.malformed == 2

    def test_dedup_key(self):
        """The dedup key sorts argument keys."""
        call = ToolCallRequest(name="execute_command", arguments={"b": 1, "a": 2})
        assert call.dedup_key == 'execute_command::{"a": 2, "b": 1}'


@pytest.mark.unit
class TestScanner:
    """Test recursive scanning of heterogeneous payloads."""

    def test_same_call_via_different_paths_counted_once(self):
        """A call reachable twice is collected once."""
        call = {"name": "execute_command", "args": {"command": "docker", "args": ["ps"]}}
        payload = {
            "functionCall": call,
            "candidates": [{"content": {"parts": [{"functionCall": dict(call)}]}}],
            "function_call": {"name": "execute_command", "arguments": '{"command": "docker", "args": ["ps"]}'},
        }
        calls = extract_tool_calls(payload)
        assert len(calls) == 1
        assert calls[0].arguments == {"command": "docker", "args": ["ps"]}

    def test_openai_tool_calls_shape_keeps_id(self):
        """OpenAI tool calls keep their ids."""
        payload = {
            "choices": [
                {
                    "message": {
                        "tool_calls": [
                            {
                                "id": "call_1",
                                "type": "function",
                                "function": {"name": "capture_window_with_ocr", "arguments": '{"process_name": "chrome"}'},
                            }
                        ]
                    }
                }
            ]
        }
        calls = extract_tool_calls(payload)
        assert calls == [ToolCallRequest(name="capture_window_with_ocr", arguments={"process_name": "chrome"})]
        assert calls[0].call_id == "call_1"

    def test_object_attributes_are_scanned(self):
        """Object attributes are scanned like dicts."""
        part = SimpleNamespace(function_call=SimpleNamespace(name="execute_command", args={"command": "git"}))
        payload = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])
        calls = extract_tool_calls(payload)
        assert [c.name for c in calls] == ["execute_command"]

    def test_callables_are_never_invoked(self):
        """Scanning never calls anything."""
        invoked = []

        def function_calls():
            invoked.append(True)
            return [{"name": "execute_command", "args": {}}]

        payload = {"functionCalls": function_calls, "text": "hello"}
        assert extract_tool_calls(payload) == []
        assert invoked == []

    def test_cycles_do_not_recurse_forever(self):
        """Self-referencing payloads terminate."""
        payload = {"name_only": "x"}
        payload["self"] = payload
        collector = ToolCallCollector()
        scan_for_tool_calls(payload, collector)
        assert len(collector) == 0

    def test_order_of_first_appearance(self):
        """Calls keep the order they were found in."""
        payload = [
            {"name": "execute_command", "args": {"command": "docker", "args": ["ps"]}},
            {"name": "capture_window_with_ocr", "args": {"process_name": "chrome"}},
        ]
        assert [c.name for c in extract_tool_calls(payload)] == ["execute_command", "capture_window_with_ocr"]
