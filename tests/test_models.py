"""Tests for models.py - Data models."""
import json

import pytest

from models import (
    ActionStatus,
    AnalysisResult,
    ApprovalLevel,
    CommandResult,
    PendingActionRequest,
    PolicyCategory,
    PolicyDecision,
    StreamEnd,
    ToolCallRequest,
    ToolResult,
)


@pytest.mark.unit
class TestActionStatus:
    """Test ActionStatus lifecycle helpers."""

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (ActionStatus.PENDING, False),
            (ActionStatus.EXECUTING, False),
            (ActionStatus.EXECUTED, True),
            (ActionStatus.DENIED, True),
            (ActionStatus.BLOCKED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        """Only finished statuses are terminal."""
        assert status.is_terminal is terminal

    def test_string_values(self):
        """Enums compare equal to their string values."""
        assert ActionStatus.PENDING == "pending"
        assert ApprovalLevel.APPROVAL_REQUIRED.value == "approval_required"


@pytest.mark.unit
class TestToolCallRequest:
    """Test ToolCallRequest identity."""

    def test_equality_ignores_call_id_and_origin(self):
        """Calls compare by name and arguments only."""
        model = ToolCallRequest(name="execute_command", arguments={"command": "docker"}, call_id="call_1")
        injected = ToolCallRequest(name="execute_command", arguments={"command": "docker"}, injected=True)
        assert model == injected
        assert model.dedup_key == injected.dedup_key

    def test_dedup_key_is_stable_for_nested_arguments(self):
        """Argument order does not change the dedup key."""
        first = ToolCallRequest(name="x", arguments={"args": ["ps", "-a"], "command": "docker"})
        second = ToolCallRequest(name="x", arguments={"command": "docker", "args": ["ps", "-a"]})
        assert first.dedup_key == second.dedup_key

    def test_stream_end_defaults(self):
        """StreamEnd defaults to no malformed calls."""
        end = StreamEnd()
        assert end.finish_reason is None
        assert end.malformed_tool_calls == 0


@pytest.mark.unit
class TestSerialization:
    """Test dict and JSON conversion."""

    def test_pending_request_to_dict(self):
        """Pending requests serialize with their policy."""
        request = PendingActionRequest(
            id="cmd_1",
            command="git",
            args=["pull"],
            policy=PolicyDecision(
                level=ApprovalLevel.APPROVAL_REQUIRED,
                reason="Mutates local repository state.",
                category=PolicyCategory.CRITICAL,
            ),
            created_at=1.5,
            status=ActionStatus.EXECUTED,
            result=CommandResult(success=True, stdout="ok", exit_code=0),
        )
        data = request.to_dict()
        assert data["policy"]["level"] == "approval_required"
        assert data["result"]["stdout"] == "ok"
        assert json.loads(json.dumps(data)) == data

    def test_tool_result_serialize(self):
        """Tool results serialize their payload as JSON."""
        result = ToolResult(name="execute_command", call_id="call_1", payload={"success": True, "stdout": "x"})
        assert result.succeeded
        assert json.loads(result.serialize()) == {"success": True, "stdout": "x"}

    def test_analysis_defaults(self):
        """Analysis results default to unknown fields."""
        analysis = AnalysisResult()
        assert analysis.to_dict()["window_type"] == "unknown"
        assert analysis.ui_elements == []
