"""Bounded TTL cache for window analyses, keyed by window identity and content fingerprint."""
from __future__ import annotations

import hashlib
import threading
import time
from typing import Any, Dict, Optional

from logging_utils import logger
from models import AnalysisCacheEntry, AnalysisResult, Clock

FINGERPRINT_PREFIX_LENGTH = 16


def fingerprint(image_base64: str) -> str:
    """sha256 hex digest of the captured image payload."""
    return hashlib.sha256(image_base64.encode("utf-8")).hexdigest()


def make_key(title: str, process_name: str, content_hash: str) -> str:
    return f"{title}|{process_name}|{content_hash[:FINGERPRINT_PREFIX_LENGTH]}"


class AnalysisCache:
    """
    Analysis results for recently captured windows.

    Expired entries are purged before every lookup. When full, the single
    entry with the oldest insertion time is evicted before a new one goes in.
    """

    def __init__(self, max_entries: int = 50, ttl: float = 300.0, clock: Clock = time.monotonic) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, AnalysisCacheEntry] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now - entry.inserted_at > self.ttl]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def get(self, key: str) -> Optional[AnalysisResult]:
        with self._lock:
            self.purge_expired()
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry.result

    def put(self, key: str, result: AnalysisResult) -> None:
        with self._lock:
            self.purge_expired()
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].inserted_at)
                del self._entries[oldest]
                logger.debug("Analysis cache evicted entry", extra={"extra": {"key": oldest}})
            self._entries[key] = AnalysisCacheEntry(result=result, inserted_at=self._clock())

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
            }
