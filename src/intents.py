"""Heuristic intent signals for the latest user message."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

WRAP_UP_MAX_CHARS = 60
SHORT_CONFIRMATION_MAX_CHARS = 32

WRAP_UP_PATTERN = re.compile(
    r"\b(all good|that's all|that is all|thanks|thank you|appreciate it|no further|no that's it"
    r"|just checking|just wanted to check|all set|we're good|done for now|cheers)\b",
    re.IGNORECASE,
)
JUST_CHECKING_PATTERN = re.compile(
    r"\b(can you see|do you see|still see|just checking|just wanted|wondered if"
    r"|make sure you can see|still looking at)\b",
    re.IGNORECASE,
)
JUST_CHECKING_PREFIX = re.compile(r"^no,?\s+just\b", re.IGNORECASE)
SHORT_CONFIRMATION_PATTERN = re.compile(
    r"^(yes|yeah|yep|yup|ok|okay|sure|got it|thanks|thank you|cool|awesome|great|sounds good"
    r"|all good|looks good|no worries|perfect|that helps|appreciate it|correct|right|exactly)[.!]*$",
    re.IGNORECASE,
)
EXPLICIT_CAPTURE_PATTERN = re.compile(
    r"\b(show|display|focus|switch|open|capture|screenshot|take a look|look at|bring up|pull up"
    r"|switch to|select)\b",
    re.IGNORECASE,
)
DOCKER_QUESTION_VERBS = re.compile(
    r"\b(what|which|is|are|show|start|stop|restart|run|check|grab|fetch|view|status)\b",
    re.IGNORECASE,
)
DOCKER_SUBJECTS = re.compile(r"\b(container|containers|docker|compose|stack|service|services|infra)\b", re.IGNORECASE)
CONTAINERS_PATTERN = re.compile(r"\bcontainers?\b", re.IGNORECASE)
LOGS_PATTERN = re.compile(r"\blogs?\b", re.IGNORECASE)
LOGS_TARGET_PATTERN = re.compile(r"\blogs?\s*(?:for|of|from)\s+([a-zA-Z0-9._-]+)", re.IGNORECASE)
ACTION_VERB_PATTERN = re.compile(
    r"\b(start|stop|restart|kill|rm|remove|up|down|deploy|launch|spin up)\b",
    re.IGNORECASE,
)
DATA_STATUS_PATTERN = re.compile(
    r"\b(status|running|stopped|list|tell me|what|which|are there|details|logs?)\b",
    re.IGNORECASE,
)
QUESTION_PREFIX = re.compile(
    r"^(what|how|why|when|where|which|who|is|are|can|could|do|does|explain|describe|tell me|help|analyze)\b",
    re.IGNORECASE,
)
ASKING_TO_SEE_PATTERN = re.compile(r"^(can you see|do you see|show me|what do you see|tell me what you see)", re.IGNORECASE)
TARGET_TOKEN_PATTERN = re.compile(r"\b[a-z0-9][a-z0-9._-]{2,}\b", re.IGNORECASE)

GENERIC_TARGET_WORDS = {"docker", "containers", "container", "app", "apps", "window", "windows"}


class UserIntent(str, Enum):
    WRAP_UP = "wrap_up"
    JUST_CHECKING = "just_checking"
    CONFIRMATION = "confirmation"
    EXPLICIT_CAPTURE = "explicit_capture"
    LOGS_REQUEST = "logs_request"
    STATUS_QUESTION = "status_question"
    ACTION_REQUEST = "action_request"
    QUESTION = "question"
    OTHER = "other"


@dataclass
class IntentSignals:
    """Every heuristic flag derived from one user message."""
    text: str
    wrap_up: bool = False
    just_checking: bool = False
    short_confirmation: bool = False
    explicit_capture: bool = False
    docker_question: bool = False
    action_verb: bool = False
    mentions_containers: bool = False
    wants_logs: bool = False
    logs_target: Optional[str] = None
    data_status_question: bool = False
    asking_to_see: bool = False
    asking_question: bool = False
    target_tokens: List[str] = field(default_factory=list)

    @property
    def mentions_specific_container(self) -> bool:
        return (self.docker_question or self.action_verb) and bool(self.target_tokens)

    @property
    def needs_container_list(self) -> bool:
        return not self.wrap_up and (
            self.mentions_containers or self.mentions_specific_container or self.docker_question
        )

    @property
    def needs_full_container_list(self) -> bool:
        return not self.wrap_up and (self.wants_logs or self.mentions_specific_container)


def is_wrap_up(text: str) -> bool:
    """Short sign-offs like "thanks, that's all"; anything with a question is not a wrap-up."""
    stripped = (text or "").strip()
    if not stripped or len(stripped) > WRAP_UP_MAX_CHARS or "?" in stripped:
        return False
    return bool(WRAP_UP_PATTERN.search(stripped))


def is_just_checking(text: str) -> bool:
    stripped = (text or "").strip()
    return bool(JUST_CHECKING_PATTERN.search(stripped) or JUST_CHECKING_PREFIX.search(stripped))


def is_short_confirmation(text: str) -> bool:
    stripped = (text or "").strip()
    return 0 < len(stripped) <= SHORT_CONFIRMATION_MAX_CHARS and bool(SHORT_CONFIRMATION_PATTERN.match(stripped))


def is_docker_question(text: str) -> bool:
    return bool(DOCKER_QUESTION_VERBS.search(text or "")) and bool(DOCKER_SUBJECTS.search(text or ""))


def extract_logs_target(text: str) -> Optional[str]:
    """'show logs for api-server' -> 'api-server'."""
    match = LOGS_TARGET_PATTERN.search(text or "")
    return match.group(1) if match else None


def extract_target_tokens(text: str) -> List[str]:
    return [
        token
        for token in TARGET_TOKEN_PATTERN.findall(text or "")
        if token.lower() not in GENERIC_TARGET_WORDS
    ]


def analyze_message(text: str) -> IntentSignals:
    text = text or ""
    wrap_up = is_wrap_up(text)
    docker_question = is_docker_question(text)
    logs_target = extract_logs_target(text)
    return IntentSignals(
        text=text,
        wrap_up=wrap_up,
        just_checking=is_just_checking(text),
        short_confirmation=is_short_confirmation(text),
        explicit_capture=bool(EXPLICIT_CAPTURE_PATTERN.search(text)) and not wrap_up,
        docker_question=docker_question,
        action_verb=bool(ACTION_VERB_PATTERN.search(text)),
        mentions_containers=bool(CONTAINERS_PATTERN.search(text)),
        wants_logs=bool(LOGS_PATTERN.search(text)) and (docker_question or logs_target is not None),
        logs_target=logs_target,
        data_status_question=bool(DATA_STATUS_PATTERN.search(text)),
        asking_to_see=bool(ASKING_TO_SEE_PATTERN.match(text.strip())),
        asking_question=bool(QUESTION_PREFIX.match(text.strip())) or text.strip().endswith("?"),
        target_tokens=extract_target_tokens(text),
    )


def classify_intent(text: str) -> UserIntent:
    """Collapse the signals into one label; earlier checks take precedence."""
    signals = analyze_message(text)
    if signals.wrap_up:
        return UserIntent.WRAP_UP
    if signals.just_checking:
        return UserIntent.JUST_CHECKING
    if signals.short_confirmation:
        return UserIntent.CONFIRMATION
    if signals.wants_logs and signals.logs_target:
        return UserIntent.LOGS_REQUEST
    if signals.action_verb and signals.docker_question and not signals.asking_question:
        return UserIntent.ACTION_REQUEST
    if signals.docker_question:
        return UserIntent.STATUS_QUESTION
    if signals.explicit_capture:
        return UserIntent.EXPLICIT_CAPTURE
    if signals.asking_question:
        return UserIntent.QUESTION
    return UserIntent.OTHER
