"""
Versioned read-through cache: memory first, then the persistent store.

Never the system of record. Callers show what peek()/read() return and then
refresh from the authoritative store (stale-while-revalidate).
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from theoryprep.models import to_count
from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


def overview_key(user_id: str, language: str) -> str:
    return f"cache:theory:overview:{language}:{user_id}"


def topic_detail_key(user_id: str, slug: str, language: str) -> str:
    return f"cache:theory:topic:{language}:{user_id}:{slug}"


def session_key(user_id: str, session_id: str, language: str) -> str:
    return f"cache:theory:session:{language}:{user_id}:{session_id}"


def topic_bank_key(topic_id: str, language: str) -> str:
    return f"cache:theory:topic-bank:{language}:{topic_id}"


class CacheLayer:
    def __init__(self, storage: KeyValueStorage, version: int = CACHE_VERSION,
                 clock: Callable[[], float] = time.time):
        self.storage = storage
        self.version = version
        self._clock = clock
        self._memory: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _decode(self, raw: str) -> Optional[Dict[str, Any]]:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict) or parsed.get("version") != self.version:
            return None
        return parsed

    def write(self, key: str, data: Any) -> None:
        """Always updates memory and the persistent store."""
        raw = json.dumps({"version": self.version, "savedAt": self._now_ms(), "data": data}, ensure_ascii=False)
        with self._lock:
            self._memory[key] = raw
        self.storage.set_item(key, raw)

    def peek_memory(self, key: str) -> Optional[Any]:
        """Memory only, no I/O."""
        with self._lock:
            raw = self._memory.get(key)
        if not raw:
            return None
        envelope = self._decode(raw)
        return envelope.get("data") if envelope else None

    def _load_persistent(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.storage.get_item(key)
        if not raw:
            return None
        with self._lock:
            self._memory[key] = raw
        return self._decode(raw)

    def peek(self, key: str) -> Optional[Any]:
        """Memory, falling back to the persistent store; no freshness check."""
        value = self.peek_memory(key)
        if value is not None:
            return value
        envelope = self._load_persistent(key)
        return envelope.get("data") if envelope else None

    def read(self, key: str, max_age_ms: int) -> Optional[Any]:
        """Like peek(), but entries older than max_age_ms count as absent."""
        with self._lock:
            raw = self._memory.get(key)
        if raw:
            envelope = self._decode(raw)
            if envelope and self._now_ms() - to_count(envelope.get("savedAt")) <= max_age_ms:
                return envelope.get("data")

        envelope = self._load_persistent(key)
        if not envelope:
            return None
        if self._now_ms() - to_count(envelope.get("savedAt")) > max_age_ms:
            return None
        return envelope.get("data")

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._memory.pop(key, None)
        self.storage.remove_item(key)
