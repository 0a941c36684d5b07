"""Pytest configuration and shared fixtures."""
import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

# Add src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

os.environ.setdefault("LOG_CONSOLE", "false")

from host import HostCapabilities  # noqa: E402
from models import (  # noqa: E402
    CAPTURE_TOOL,
    COMMAND_TOOL,
    AnalysisResult,
    CaptureResult,
    CommandResult,
    StreamEnd,
    TargetCandidate,
    TextFragment,
    ToolCallRequest,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHost(HostCapabilities):
    """In-memory host recording every call the orchestrator makes."""

    def __init__(self) -> None:
        self.windows: Dict[str, List[TargetCandidate]] = {}
        self.command_results: Dict[Tuple[str, ...], CommandResult] = {}
        self.analysis: Optional[AnalysisResult] = None
        self.enumerations: List[str] = []
        self.captures: List[Tuple[str, Optional[str]]] = []
        self.commands: List[Tuple[str, List[str]]] = []
        self.analyses = 0

    def add_window(self, process_name: str, title: str, display_name: str = "", is_active: bool = False) -> None:
        self.windows.setdefault(process_name.lower(), []).append(
            TargetCandidate(title=title, display_name=display_name, process_name=process_name, is_active=is_active)
        )

    async def enumerate_targets(self, process_name: str) -> List[TargetCandidate]:
        self.enumerations.append(process_name)
        return list(self.windows.get(process_name.lower(), []))

    async def capture_and_recognize(self, process_name: str, title: Optional[str] = None) -> CaptureResult:
        self.captures.append((process_name, title))
        return CaptureResult(
            image_base64="aW1hZ2U=",
            title=title or "",
            process_name=process_name,
            recognized_text=f"text of {title}",
        )

    async def analyze(self, capture: CaptureResult) -> Optional[AnalysisResult]:
        self.analyses += 1
        return self.analysis

    async def run_command(self, command: str, args: Sequence[str]) -> CommandResult:
        self.commands.append((command, list(args)))
        return self.command_results.get(
            (command, *args),
            CommandResult(success=True, stdout=f"output of {command} {' '.join(args)}", exit_code=0),
        )


class ScriptedReasoningService:
    """Replays one scripted list of events per call to stream()."""

    def __init__(self, replies: Optional[List[List[Any]]] = None) -> None:
        self.replies = list(replies or [])
        self.requests: List[List[Dict[str, Any]]] = []
        self.closed = 0

    def add_reply(self, *events: Any) -> None:
        self.replies.append(list(events))

    async def stream(self, messages, tools):
        self.requests.append(copy.deepcopy(messages))
        events = self.replies.pop(0) if self.replies else []
        try:
            for event in events:
                yield event
            yield StreamEnd(finish_reason="stop")
        finally:
            self.closed += 1


def text(value: str) -> TextFragment:
    return TextFragment(value)


def command_call(command: str, *args: str, call_id: Optional[str] = None) -> ToolCallRequest:
    return ToolCallRequest(name=COMMAND_TOOL, arguments={"command": command, "args": list(args)}, call_id=call_id)


def capture_call(process_name: str = "", window_title: str = "", call_id: Optional[str] = None) -> ToolCallRequest:
    arguments: Dict[str, Any] = {}
    if process_name:
        arguments["process_name"] = process_name
    if window_title:
        arguments["window_title"] = window_title
    return ToolCallRequest(name=CAPTURE_TOOL, arguments=arguments, call_id=call_id)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def reasoning() -> ScriptedReasoningService:
    return ScriptedReasoningService()
