"""Shaping of conversation history and of the text that goes back to the user."""
from __future__ import annotations

import re
from dataclasses import replace
from typing import List, Optional, Sequence

from intents import UserIntent
from models import ConversationTurn, ToolResult

RECENT_IMAGE_TURNS = 2
MAX_CONVERSATIONAL_CHARS = 600
CONDENSED_CHARS = 400
CONDENSED_SENTENCES = 3
DETAILS_OFFER = "Let me know if you'd like the details."
CAPTURE_PROMPT_OCR_CHARS = 500
CAPTURE_PROMPT_DESCRIPTION_CHARS = 300

_SYSTEM_BLOCK = re.compile(r"\[SYSTEM INSTRUCTION[^\]]*\][\s\S]*?\[END SYSTEM INSTRUCTION[^\]]*\]", re.IGNORECASE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_BULLET_LINE = re.compile(r"^\s*[-*]", re.MULTILINE)
_CAPTURE_WORDS = re.compile(r"\b(captured|screenshot|window|ocr|extracted|image|can see|i see)\b", re.IGNORECASE)


def clean_content(text: str) -> str:
    """Remove any system-instruction blocks that leaked into stored turns."""
    return _SYSTEM_BLOCK.sub("", text or "").strip()


def build_optimized_history(turns: Sequence[ConversationTurn], max_turns: int = 8) -> List[ConversationTurn]:
    """
    Trim history for the reasoning service.

    Keeps the first turn for context plus the most recent ``max_turns - 1``.
    Images survive only on the last two turns. Returns copies; the input is
    never modified.
    """
    turns = list(turns)
    if len(turns) > max_turns and max_turns > 1:
        kept = [turns[0]] + turns[-(max_turns - 1):]
    else:
        kept = turns

    optimized: List[ConversationTurn] = []
    for index, turn in enumerate(kept):
        is_recent = index >= len(kept) - RECENT_IMAGE_TURNS
        optimized.append(
            replace(turn, content=clean_content(turn.content), images=list(turn.images) if is_recent else [])
        )
    return optimized


def enforce_conversational_tone(text: str) -> str:
    """
    Condense a long reply to a few sentences.

    Replies of up to 600 characters, and replies with code blocks or bullet
    lists, are returned as they are.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return trimmed
    if len(trimmed) <= MAX_CONVERSATIONAL_CHARS or "```" in trimmed or _BULLET_LINE.search(trimmed):
        return trimmed

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(trimmed) if s.strip()]
    selected: List[str] = []
    total = 0
    for sentence in sentences:
        selected.append(sentence)
        total += len(sentence)
        if len(selected) >= CONDENSED_SENTENCES or total > CONDENSED_CHARS:
            break

    result = " ".join(selected)
    if not result.endswith((".", "!", "?")):
        result += "."
    if len(sentences) > len(selected):
        result += f" {DETAILS_OFFER}"
    return result


def history_mentions_capture(
    history: Sequence[ConversationTurn],
    process_name: Optional[str],
    window_title: Optional[str],
    lookback: int = 5,
) -> bool:
    """Text-only fallback: a recent assistant turn talks about this window or about a capture."""
    process = (process_name or "").lower()
    title = (window_title or "").lower()
    for turn in list(history)[-lookback:]:
        if turn.role != "assistant" or not turn.content:
            continue
        lowered = turn.content.lower()
        mentions_target = (process and process in lowered) or (title and title in lowered)
        if mentions_target and _CAPTURE_WORDS.search(turn.content):
            return True
    return False


def build_capture_prompt(results: Sequence[ToolResult], user_text: str, intent: UserIntent) -> str:
    """Text that accompanies captured images, tuned to what the user asked for."""
    names = ", ".join(
        f'"{result.payload.get("window_title")}" from {result.payload.get("process_name")}' for result in results
    )
    prompt = f"I've captured the window {names} that the user is referring to.\n\n"

    if intent in (UserIntent.JUST_CHECKING, UserIntent.CONFIRMATION, UserIntent.WRAP_UP):
        return prompt + (
            f'The user is just checking if you can see the window. They said: "{user_text}"\n'
            "Reply with a brief acknowledgment and ask if there is something else to talk about. "
            "Do not describe or analyze the content."
        )

    if intent in (UserIntent.QUESTION, UserIntent.STATUS_QUESTION, UserIntent.LOGS_REQUEST):
        prompt += (
            f'The user asked: "{user_text}"\n'
            "Answer directly using the OCR text, the image and any command output. Use only names "
            "that are visible; do not guess.\n\n"
        )
    else:
        prompt += (
            "Acknowledge briefly that you can see it, mention in one or two sentences what it shows, "
            "and ask what they need help with.\n\n"
        )

    for result in results:
        analysis = result.payload.get("analysis")
        if analysis:
            description = analysis.get("detailed_description") or ""
            prompt += (
                "[CONTEXT]\n"
                f"Window type: {analysis.get('window_type')}\n"
                f"Application: {analysis.get('application')}\n"
                f"Content: {analysis.get('content_type')}\n"
            )
            if analysis.get("file_path"):
                prompt += f"File: {analysis['file_path']}\n"
            if description:
                prompt += f"Brief context: {description[:CAPTURE_PROMPT_DESCRIPTION_CHARS]}\n"
            prompt += "[END CONTEXT]\n\n"
        ocr_text = result.payload.get("recognized_text") or ""
        if ocr_text:
            suffix = "..." if len(ocr_text) > CAPTURE_PROMPT_OCR_CHARS else ""
            prompt += f"[OCR PREVIEW]\n{ocr_text[:CAPTURE_PROMPT_OCR_CHARS]}{suffix}\n[END OCR PREVIEW]\n"
    return prompt.strip()
