"""CLI for the desktop agent: interactive chat and policy lookups."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from command_policy import classify, describe_rules
from config import config
from errors import ReasoningServiceError
from host import LocalHost
from logging_utils import logger
from models import ActionStatus, ConversationTurn
from orchestrator import Orchestrator
from reasoning import OpenAIReasoningService
from window_analysis import VisionAnalyzer

EXIT_WORDS = {"exit", "quit", ":q"}


async def _ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def _stream_reply(chunks, history: List[ConversationTurn]) -> str:
    parts = []
    async for text in chunks:
        parts.append(text)
        print(text, end="", flush=True)
    print()
    reply = "".join(parts)
    history.append(ConversationTurn(role="assistant", content=reply))
    return reply


async def _settle_pending(orchestrator: Orchestrator, history: List[ConversationTurn]) -> None:
    """Prompt for every pending request, then feed each outcome back to the model."""
    while not orchestrator.pending_actions.empty():
        request = orchestrator.pending_actions.get_nowait()
        invocation = " ".join([request.command, *request.args])
        if request.status is ActionStatus.BLOCKED:
            # Already reported to the model within the turn.
            print(f"[blocked] {invocation}: {request.policy.reason}")
            continue
        print(f"[approval needed] {invocation}")
        print(f"  reason: {request.policy.reason}")
        answer = (await _ask("  Run it? [y/N] ")).strip().lower()
        if answer in ("y", "yes"):
            await orchestrator.approve(request.id)
        else:
            orchestrator.deny(request.id)
        await _stream_reply(orchestrator.resume(history, request.id), history)


async def chat() -> int:
    config.validate()
    orchestrator = Orchestrator(
        reasoning=OpenAIReasoningService(),
        host=LocalHost(analyzer=VisionAnalyzer()),
    )
    history: List[ConversationTurn] = []
    print("Desktop agent ready. Type 'exit' to quit.")

    while True:
        try:
            user_text = (await _ask("> ")).strip()
        except EOFError:
            break
        if not user_text:
            continue
        if user_text.lower() in EXIT_WORDS:
            break

        prior = list(history)
        history.append(ConversationTurn(role="user", content=user_text))
        try:
            await _stream_reply(orchestrator.submit_turn(prior, user_text), history)
            await _settle_pending(orchestrator, history)
        except ReasoningServiceError as exc:
            logger.error("Turn failed", extra={"extra": {"error": str(exc)}})
            print(f"Error: {exc}", file=sys.stderr)
    return 0


def policy(command: str, args: List[str], show_all: bool) -> int:
    if show_all:
        print(json.dumps(describe_rules(), indent=2))
        return 0
    decision = classify(command, args)
    print(json.dumps({"command": command, "args": args, **decision.to_dict()}, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="desktop agent CLI")
    subparsers = parser.add_subparsers(dest="action", required=True)

    subparsers.add_parser("chat", help="Start an interactive conversation")

    policy_parser = subparsers.add_parser("policy", help="Show how a command would be classified")
    policy_parser.add_argument("command", nargs="?", default="", help="Executable name, e.g. docker")
    policy_parser.add_argument("args", nargs=argparse.REMAINDER, help="Command arguments")
    policy_parser.add_argument("--list", action="store_true", help="Print the whole rule table")

    parsed = parser.parse_args(argv)
    if parsed.action == "policy":
        if not parsed.command and not parsed.list:
            policy_parser.error("a command is required unless --list is given")
        return policy(parsed.command, parsed.args, parsed.list)
    return asyncio.run(chat())


if __name__ == "__main__":
    sys.exit(main())
