"""Resolve natural-language window references against recently enumerated targets."""
from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from logging_utils import logger
from models import Clock, ResolvedTarget, TargetCandidate

MIN_FUZZY_SCORE = 15

ORDINAL_WORDS: Dict[str, int] = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
}

_QUOTES = re.compile(r"[\"'`]")
_STOP_WORDS = re.compile(
    r"\b(window|app|tab|project|file|view|editor|panel|screen|pane|the|this|that|one|please"
    r"|focus|select|choose|open|show|display|look|at|into|on)\b"
)
_PUNCTUATION = re.compile(r"[^\w\s.\-/]")
_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"\b(\d+)\b")


def normalize_target_text(text: str) -> str:
    """Lower-case, drop quotes, punctuation and filler words, collapse whitespace."""
    lowered = _QUOTES.sub("", text.lower())
    lowered = _PUNCTUATION.sub(" ", lowered)
    lowered = _STOP_WORDS.sub(" ", lowered)
    return _WHITESPACE.sub(" ", lowered).strip()


def derive_display_name(title: str, process_name: str) -> str:
    """'main.py - proj - Cursor' for process 'Cursor' becomes 'proj'."""
    cleaned = title
    suffix = f" - {process_name}"
    if process_name and cleaned.lower().endswith(suffix.lower()):
        cleaned = cleaned[: -len(suffix)]
    parts = cleaned.split(" - ")
    if len(parts) > 1:
        return parts[-1]
    return cleaned


def extract_requested_index(text: str, total: int) -> Optional[int]:
    """Zero-based index for "2", "number 3" or "the second one", if within range."""
    digit_match = _DIGITS.search(text)
    if digit_match:
        candidate = int(digit_match.group(1))
        if 1 <= candidate <= total:
            return candidate - 1

    lowered = text.lower()
    for word, value in ORDINAL_WORDS.items():
        if value <= total and re.search(rf"\b{word}\b", lowered):
            return value - 1
    return None


def format_candidate_list(candidates: Sequence[TargetCandidate]) -> str:
    lines = []
    for index, candidate in enumerate(candidates, start=1):
        marker = " (currently active)" if candidate.is_active else ""
        lines.append(f'{index}. "{candidate.display_name}"{marker}')
    return "\n".join(lines)


def score_candidate(candidate: TargetCandidate, normalized_request: str, tokens: Sequence[str]) -> int:
    normalized_title = normalize_target_text(candidate.title)
    normalized_display = normalize_target_text(candidate.display_name)

    score = 0
    if normalized_request and (
        normalized_title.startswith(normalized_request) or normalized_display.startswith(normalized_request)
    ):
        score += 60
    elif normalized_request and (
        normalized_request in normalized_title or normalized_request in normalized_display
    ):
        score += 45

    if tokens:
        matched = [
            token
            for token in tokens
            if len(token) > 1 and (token in normalized_title or token in normalized_display)
        ]
        if matched:
            score += len(matched) * 10
            if len(matched) == len(tokens):
                score += 10

    if candidate.is_active:
        score += 5

    if normalized_request and normalized_title:
        score += max(0, 8 - abs(len(normalized_title) - len(normalized_request)))

    return score


def resolve_from_candidates(
    candidates: Sequence[TargetCandidate], requested: str
) -> Optional[Tuple[TargetCandidate, int]]:
    """
    Pick one candidate for a request, in priority order:

    1. explicit ordinal or number within range
    2. exact case-insensitive title / display-name match
    3. normalized title / display-name match
    4. fuzzy score; the best score >= MIN_FUZZY_SCORE wins, first seen on ties

    Returns the candidate with its score (100 for the non-fuzzy steps), or None.
    """
    if not requested or not candidates:
        return None

    cleaned = _QUOTES.sub("", requested).strip()
    if not cleaned:
        return None

    index = extract_requested_index(cleaned, len(candidates))
    if index is not None:
        return candidates[index], 100

    lowered = cleaned.lower()
    for candidate in candidates:
        if candidate.title.lower() == lowered or candidate.display_name.lower() == lowered:
            return candidate, 100

    normalized_request = normalize_target_text(cleaned)
    if normalized_request:
        for candidate in candidates:
            if normalized_request in (
                normalize_target_text(candidate.title),
                normalize_target_text(candidate.display_name),
            ):
                return candidate, 100

    tokens = [token for token in normalized_request.split(" ") if token]
    best: Optional[TargetCandidate] = None
    best_score = 0
    for candidate in candidates:
        score = score_candidate(candidate, normalized_request, tokens)
        if score > best_score:
            best, best_score = candidate, score

    if best is not None and best_score >= MIN_FUZZY_SCORE:
        return best, best_score
    return None


def cross_process_score(candidate: TargetCandidate, requested: str) -> int:
    """Comparable 0-100 score used when widening across processes."""
    normalized_request = normalize_target_text(requested)
    normalized_candidate = normalize_target_text(candidate.display_name or candidate.title)
    if not normalized_request:
        return 0
    if normalized_candidate == normalized_request:
        return 100
    if normalized_candidate.startswith(normalized_request):
        return 80
    if normalized_request in normalized_candidate:
        return 60
    tokens = [t for t in normalized_request.split(" ") if len(t) > 1]
    return min(100, sum(10 for token in tokens if token in normalized_candidate))


@dataclass
class _CachedTargets:
    candidates: Tuple[TargetCandidate, ...]
    stored_at: float


class TargetCache:
    """Recently enumerated targets per process, expired lazily after ``ttl`` seconds."""

    def __init__(self, ttl: float = 120.0, clock: Clock = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, _CachedTargets] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(process_name: str) -> str:
        return process_name.strip().lower()

    def store(self, process_name: str, candidates: Sequence[TargetCandidate]) -> None:
        key = self._key(process_name)
        if not key or not candidates:
            return
        with self._lock:
            self._entries[key] = _CachedTargets(tuple(candidates), self._clock())

    def get(self, process_name: str) -> Optional[Tuple[TargetCandidate, ...]]:
        key = self._key(process_name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl:
                del self._entries[key]
                return None
            return entry.candidates

    def all_live(self) -> List[Tuple[str, Tuple[TargetCandidate, ...]]]:
        now = self._clock()
        live = []
        with self._lock:
            for key in list(self._entries):
                entry = self._entries[key]
                if now - entry.stored_at > self.ttl:
                    del self._entries[key]
                else:
                    live.append((key, entry.candidates))
        return live

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class TargetResolver:
    """Resolves a reference like "the second one" or "api.py" without re-enumerating."""

    def __init__(self, cache: TargetCache) -> None:
        self.cache = cache

    def remember(self, process_name: str, candidates: Sequence[TargetCandidate]) -> None:
        self.cache.store(process_name, candidates)

    def resolve(self, process_name: Optional[str], requested: str) -> Optional[ResolvedTarget]:
        if not requested or not requested.strip():
            return None

        if process_name:
            candidates = self.cache.get(process_name)
            if candidates:
                match = resolve_from_candidates(candidates, requested)
                if match:
                    candidate, score = match
                    return ResolvedTarget(candidate=candidate, process_name=process_name, score=score)

        # A window from another process only wins on a positive name match.
        best: Optional[ResolvedTarget] = None
        best_score = 0
        for cached_process, candidates in self.cache.all_live():
            match = resolve_from_candidates(candidates, requested)
            if not match:
                continue
            candidate = match[0]
            score = cross_process_score(candidate, requested)
            if score > best_score:
                best_score = score
                best = ResolvedTarget(candidate=candidate, process_name=candidate.process_name or cached_process, score=score)

        if best is None:
            logger.info(
                "Target resolution failed",
                extra={"extra": {"process_name": process_name, "requested": requested}},
            )
        return best
