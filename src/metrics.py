"""Per-turn metrics for the desktop agent."""
from __future__ import annotations

import time
import uuid
from typing import Any, Dict


class TurnMetrics:
    def __init__(self) -> None:
        self.correlation_id = str(uuid.uuid4())
        self.start_time = time.time()

        # Reasoning service
        self.reasoning_calls: int = 0
        self.tokens_prompt: int = 0
        self.tokens_completion: int = 0
        self.follow_ups: int = 0

        # Tool calls
        self.tool_calls_executed: int = 0
        self.tool_calls_skipped: int = 0
        self.tool_calls_injected: int = 0
        self.tool_calls_malformed: int = 0
        self.tool_rounds: int = 0
        self.round_limit_hit: bool = False

        # Approval gate
        self.blocked_commands: int = 0
        self.pending_commands: int = 0

        self.wrap_up_shortcut: bool = False
        self.total_latency_ms: int = 0

    @property
    def tokens_total(self) -> int:
        """Calculate total tokens as sum of prompt and completion tokens."""
        return self.tokens_prompt + self.tokens_completion

    def finalize(self) -> Dict[str, Any]:
        """Finalize metrics and return as dictionary with computed fields."""
        self.total_latency_ms = int((time.time() - self.start_time) * 1000)
        result = self.__dict__.copy()
        result["tokens_total"] = self.tokens_total
        return result
