"""Approval workflow for commands that are not automatically safe.

States: pending -> executing -> executed
        pending -> denied
        (creation) -> blocked

Requests are announced on an asyncio queue (and to optional listeners) when
created. approve() is the only path through which a critical command reaches
the host; blocked requests never do.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from logging_utils import logger
from models import (
    ActionStatus,
    ApprovalLevel,
    CommandResult,
    PendingActionRequest,
    PolicyCategory,
    PolicyDecision,
)

CommandExecutor = Callable[[str, List[str]], Awaitable[CommandResult]]
PendingActionListener = Callable[[PendingActionRequest], None]


def generate_request_id(prefix: str = "cmd") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class ApprovalStateMachine:
    """Tracks pending action requests through their lifecycle."""

    def __init__(self, executor: CommandExecutor, wall_clock: Callable[[], float] = time.time) -> None:
        self._executor = executor
        self._wall_clock = wall_clock
        self._requests: Dict[str, PendingActionRequest] = {}
        self._listeners: List[PendingActionListener] = []
        self._events: Optional["asyncio.Queue[PendingActionRequest]"] = None

    @property
    def events(self) -> "asyncio.Queue[PendingActionRequest]":
        """Queue of announced requests, created on first use inside the running loop."""
        if self._events is None:
            self._events = asyncio.Queue()
        return self._events

    def add_listener(self, listener: PendingActionListener) -> None:
        self._listeners.append(listener)

    def create(self, command: str, args: Sequence[str], decision: PolicyDecision) -> PendingActionRequest:
        """Register a non-auto decision. Blocked and forbidden requests are terminal on creation."""
        if decision.level is ApprovalLevel.AUTO:
            raise ValueError(f"Command '{command}' is auto-approved; no approval record is needed")

        blocked = decision.level is ApprovalLevel.BLOCKED or decision.category is PolicyCategory.FORBIDDEN
        if decision.category is PolicyCategory.FORBIDDEN and decision.level is not ApprovalLevel.BLOCKED:
            decision = PolicyDecision(
                level=ApprovalLevel.BLOCKED,
                reason=decision.reason,
                category=decision.category,
                notes=decision.notes,
            )

        request = PendingActionRequest(
            id=generate_request_id(),
            command=command,
            args=list(args),
            policy=decision,
            created_at=self._wall_clock(),
            status=ActionStatus.BLOCKED if blocked else ActionStatus.PENDING,
            error=decision.reason if blocked else None,
        )
        self._requests[request.id] = request

        logger.info(
            "Action request created",
            extra={
                "extra": {
                    "request_id": request.id,
                    "command": command,
                    "args": request.args,
                    "status": request.status.value,
                    "category": decision.category.value,
                }
            },
        )
        self._publish(request)
        return request

    def _publish(self, request: PendingActionRequest) -> None:
        self.events.put_nowait(request)
        for listener in self._listeners:
            try:
                listener(request)
            except Exception as exc:  # listener bugs must not break the turn
                logger.error(
                    "Pending action listener failed",
                    extra={"extra": {"request_id": request.id, "error": str(exc)}},
                )

    def get(self, request_id: str) -> Optional[PendingActionRequest]:
        return self._requests.get(request_id)

    def active(self) -> List[PendingActionRequest]:
        return list(self._requests.values())

    def pending(self) -> List[PendingActionRequest]:
        return [r for r in self._requests.values() if r.status is ActionStatus.PENDING]

    async def approve(self, request_id: str) -> Optional[PendingActionRequest]:
        """
        Move a pending request to executing, run it, and record the outcome.

        Returns the updated request, or None when the id is unknown or the
        request is not pending (the call is then a logged no-op).
        """
        request = self._requests.get(request_id)
        if request is None or request.status is not ActionStatus.PENDING:
            logger.warning(
                "Approve ignored",
                extra={
                    "extra": {
                        "request_id": request_id,
                        "status": request.status.value if request else None,
                    }
                },
            )
            return None
        if request.policy.category is PolicyCategory.FORBIDDEN:
            # Forbidden requests never reach executing.
            request.status = ActionStatus.BLOCKED
            return None

        request.status = ActionStatus.EXECUTING
        request.error = None
        logger.info(
            "Action approved, executing",
            extra={"extra": {"request_id": request.id, "command": request.command, "args": request.args}},
        )

        try:
            result = await self._executor(request.command, list(request.args))
        except asyncio.CancelledError:
            request.status = ActionStatus.EXECUTED
            request.error = "Execution was cancelled"
            request.result = CommandResult(success=False, error=request.error)
            logger.warning("Approved action cancelled", extra={"extra": {"request_id": request.id}})
            raise
        except Exception as exc:
            request.status = ActionStatus.EXECUTED
            request.error = str(exc) or exc.__class__.__name__
            request.result = CommandResult(success=False, error=request.error)
            logger.error(
                "Approved action failed",
                extra={"extra": {"request_id": request.id, "error": request.error}},
            )
            return request

        request.status = ActionStatus.EXECUTED
        request.result = result
        request.error = result.error
        logger.info(
            "Approved action executed",
            extra={
                "extra": {
                    "request_id": request.id,
                    "success": result.success,
                    "exit_code": result.exit_code,
                }
            },
        )
        return request

    def deny(self, request_id: str) -> Optional[PendingActionRequest]:
        request = self._requests.get(request_id)
        if request is None or request.status is not ActionStatus.PENDING:
            logger.warning(
                "Deny ignored",
                extra={
                    "extra": {
                        "request_id": request_id,
                        "status": request.status.value if request else None,
                    }
                },
            )
            return None
        request.status = ActionStatus.DENIED
        logger.info("Action denied", extra={"extra": {"request_id": request.id, "command": request.command}})
        return request

    def acknowledge(self, request_id: str) -> bool:
        """Drop a terminal request once its outcome has been sent upstream."""
        request = self._requests.get(request_id)
        if request is None or not request.status.is_terminal:
            return False
        del self._requests[request_id]
        return True
