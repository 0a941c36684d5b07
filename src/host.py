"""Host-side capabilities the orchestrator drives: window enumeration, capture, shell commands."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from command_policy import ensure_not_blocked
from errors import HostCapabilityError
from logging_utils import logger
from models import AnalysisResult, CaptureResult, CommandResult, TargetCandidate


class HostCapabilities(ABC):
    """Base class for the machine the agent acts on."""

    @abstractmethod
    async def enumerate_targets(self, process_name: str) -> List[TargetCandidate]:
        """List the visible windows of a process (empty when none)."""

    @abstractmethod
    async def capture_and_recognize(self, process_name: str, title: Optional[str] = None) -> CaptureResult:
        """Capture one window and run OCR on it. Raises HostCapabilityError on failure."""

    async def analyze(self, capture: CaptureResult) -> Optional[AnalysisResult]:
        """Best-effort structured description of a capture; None when unavailable."""
        return None

    async def run_command(self, command: str, args: Sequence[str]) -> CommandResult:
        """
        Run a shell command without a shell, capturing stdout and stderr.

        Blocked commands raise PolicyViolation before anything is spawned.
        A command that cannot be started returns a failed CommandResult.
        """
        ensure_not_blocked(command, args)
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *[str(arg) for arg in args],
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error(
                "Command could not be started",
                extra={"extra": {"command": command, "args": list(args), "error": str(exc)}},
            )
            return CommandResult(success=False, error=f"Failed to start '{command}': {exc}")

        stdout, stderr = await process.communicate()
        exit_code = process.returncode
        result = CommandResult(
            success=exit_code == 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            error=None if exit_code == 0 else f"Command exited with code {exit_code}",
        )
        logger.info(
            "Command finished",
            extra={"extra": {"command": command, "args": list(args), "exit_code": exit_code}},
        )
        return result


class LocalHost(HostCapabilities):
    """Shell-only host for the CLI; window capture requires a platform integration."""

    def __init__(self, analyzer=None) -> None:
        self.analyzer = analyzer

    async def enumerate_targets(self, process_name: str) -> List[TargetCandidate]:
        raise HostCapabilityError("Window enumeration is not available on this host")

    async def capture_and_recognize(self, process_name: str, title: Optional[str] = None) -> CaptureResult:
        raise HostCapabilityError("Window capture is not available on this host")

    async def analyze(self, capture: CaptureResult) -> Optional[AnalysisResult]:
        if self.analyzer is None:
            return None
        return await self.analyzer.analyze(capture)
