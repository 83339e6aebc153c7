"""
Per-user local stores for question stats and sessions.

Each store keeps the whole per-user map in a single versioned record
({version, data}) and mirrors it in memory so repeated reads inside a session
skip deserialization. Writers always replace the full map.
"""
import json
import logging
from typing import Any, Dict, Generic, Optional, TypeVar

from theoryprep.errors import StorageError
from theoryprep.models import QuestionStats, Session
from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)

STORE_VERSION = 1

T = TypeVar("T")


def read_envelope(storage: KeyValueStorage, key: str, version: int) -> Optional[Any]:
    """Return envelope data, or None when absent, corrupt or from another version."""
    raw = storage.get_item(key)
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding unreadable record {key}")
        return None
    if not isinstance(parsed, dict) or parsed.get("version") != version:
        return None
    return parsed.get("data")


def write_envelope(storage: KeyValueStorage, key: str, version: int, data: Any) -> None:
    try:
        raw = json.dumps({"version": version, "data": data}, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Could not serialize {key}: {e}") from e
    storage.set_item(key, raw)


class _UserMapStore(Generic[T]):
    key_prefix = ""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._memory: Dict[str, Dict[str, T]] = {}

    def key_for(self, user_id: str) -> str:
        return f"{self.key_prefix}{user_id}"

    def _parse(self, entry_key: str, value: Any) -> Optional[T]:
        raise NotImplementedError

    def _dump(self, value: T) -> Dict[str, Any]:
        raise NotImplementedError

    def read(self, user_id: str) -> Dict[str, T]:
        """Copy of the user's map; mutate freely and pass back to write()."""
        cached = self._memory.get(user_id)
        if cached is None:
            data = read_envelope(self.storage, self.key_for(user_id), STORE_VERSION)
            cached = {}
            if isinstance(data, dict):
                for entry_key, value in data.items():
                    parsed = self._parse(entry_key, value)
                    if parsed is not None:
                        cached[entry_key] = parsed
            self._memory[user_id] = cached
        return {entry_key: self._parse(entry_key, self._dump(value)) for entry_key, value in cached.items()}

    def write(self, user_id: str, items: Dict[str, T]) -> None:
        payload = {entry_key: self._dump(value) for entry_key, value in items.items() if entry_key}
        write_envelope(self.storage, self.key_for(user_id), STORE_VERSION, payload)
        parsed = {entry_key: self._parse(entry_key, value) for entry_key, value in payload.items()}
        self._memory[user_id] = {entry_key: value for entry_key, value in parsed.items() if value is not None}


class LocalStatsStore(_UserMapStore[QuestionStats]):
    """`store:theory:stats:{userId}` -> {questionId: QuestionStats}."""

    key_prefix = "store:theory:stats:"

    def _parse(self, entry_key: str, value: Any) -> Optional[QuestionStats]:
        stats = QuestionStats.from_dict(value)
        return stats if stats.question_id else None

    def _dump(self, value: QuestionStats) -> Dict[str, Any]:
        return value.to_dict()


class LocalSessionStore(_UserMapStore[Session]):
    """`store:theory:sessions:{userId}` -> {sessionId: Session}."""

    key_prefix = "store:theory:sessions:"

    def _parse(self, entry_key: str, value: Any) -> Optional[Session]:
        session = Session.from_dict(value)
        if not session.id or session.id != entry_key:
            return None
        return session

    def _dump(self, value: Session) -> Dict[str, Any]:
        return value.to_dict()
