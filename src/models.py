"""Data models and constants for the desktop agent."""
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

# Monotonic seconds; injected into the caches so TTLs can be driven in tests.
Clock = Callable[[], float]

CAPTURE_TOOL = "capture_window_with_ocr"
COMMAND_TOOL = "execute_command"


class ApprovalLevel(str, Enum):
    AUTO = "auto"
    APPROVAL_REQUIRED = "approval_required"
    BLOCKED = "blocked"


class PolicyCategory(str, Enum):
    CONTEXT = "context"
    CRITICAL = "critical"
    FORBIDDEN = "forbidden"


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    EXECUTED = "executed"
    DENIED = "denied"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionStatus.EXECUTED, ActionStatus.DENIED, ActionStatus.BLOCKED)


@dataclass(frozen=True)
class CommandRule:
    """One row of the command policy table."""
    command: str
    level: ApprovalLevel
    category: PolicyCategory
    reason: str
    args_prefix: tuple[str, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of classifying a command against the policy table."""
    level: ApprovalLevel
    reason: str
    category: PolicyCategory
    suggested_confirmation: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "reason": self.reason,
            "category": self.category.value,
            "suggested_confirmation": self.suggested_confirmation,
            "notes": self.notes,
        }


@dataclass
class CommandResult:
    """Raw outcome of a shell command on the host."""
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PendingActionRequest:
    """A command waiting for (or refused) human approval."""
    id: str
    command: str
    args: List[str]
    policy: PolicyDecision
    created_at: float
    status: ActionStatus
    result: Optional[CommandResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "args": list(self.args),
            "policy": self.policy.to_dict(),
            "created_at": self.created_at,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class TargetCandidate:
    """A window reported by the host for a given process."""
    title: str
    display_name: str
    process_name: str
    is_active: bool = False


@dataclass(frozen=True)
class ResolvedTarget:
    candidate: TargetCandidate
    process_name: str
    score: int


@dataclass
class CaptureResult:
    """Pixels and recognized text for one captured window."""
    image_base64: str
    title: str
    process_name: str
    recognized_text: Optional[str] = None
    content_hash: str = ""
    captured_at: float = field(default_factory=time.time)


@dataclass
class AnalysisResult:
    """Structured description of a captured window."""
    window_type: str = "unknown"
    application: str = "unknown"
    content_type: str = "unknown"
    language: Optional[str] = None
    file_path: Optional[str] = None
    ui_elements: List[str] = field(default_factory=list)
    visible_features: List[str] = field(default_factory=list)
    is_editing: bool = False
    has_errors: bool = False
    has_warnings: bool = False
    is_terminal: bool = False
    is_browser: bool = False
    detailed_description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnalysisCacheEntry:
    result: AnalysisResult
    inserted_at: float


@dataclass
class ConversationTurn:
    """One message in the conversation history (user or assistant)."""
    role: str
    content: str
    images: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model (or injected by the agent)."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict, hash=False)
    call_id: Optional[str] = field(default=None, compare=False)
    injected: bool = field(default=False, compare=False)

    @property
    def dedup_key(self) -> str:
        return f"{self.name}::{json.dumps(self.arguments, sort_keys=True, default=str)}"


@dataclass(frozen=True)
class TextFragment:
    text: str


@dataclass(frozen=True)
class StreamEnd:
    """Marks the end of one reasoning-service reply."""
    finish_reason: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    malformed_tool_calls: int = 0


ResponseEvent = Union[TextFragment, ToolCallRequest, StreamEnd]


@dataclass
class ToolResult:
    """Serialized outcome of one tool call, fed back to the model."""
    name: str
    call_id: Optional[str]
    payload: Dict[str, Any]
    image_base64: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.payload.get("success"))

    def serialize(self) -> str:
        return json.dumps(self.payload, default=str)
