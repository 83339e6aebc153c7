"""
Durable queue of session completions waiting for the remote store.

At-least-once: an item leaves the queue only after its processor returns.
Re-enqueueing the same (user, session) merges answers by session question id,
newer values winning, so nothing is duplicated and no answer is lost.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List

from theoryprep.local_store import read_envelope, write_envelope
from theoryprep.models import AnswerRecord, PendingSessionCompletion
from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)

OFFLINE_QUEUE_VERSION = 1


@dataclass
class FlushResult:
    synced: int
    pending: int


def merge_answers(current: List[AnswerRecord], incoming: List[AnswerRecord]) -> List[AnswerRecord]:
    merged: Dict[str, AnswerRecord] = {}
    for answer in current:
        merged[answer.session_question_id] = answer
    for answer in incoming:
        merged[answer.session_question_id] = answer
    return sorted(merged.values(), key=lambda answer: answer.session_question_id)


class OfflineCompletionQueue:
    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._lock = threading.RLock()

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"queue:theory:pending:{user_id}"

    def read(self, user_id: str) -> List[PendingSessionCompletion]:
        data = read_envelope(self.storage, self.key_for(user_id), OFFLINE_QUEUE_VERSION)
        if not isinstance(data, list):
            return []
        items = [PendingSessionCompletion.from_dict(item) for item in data]
        return [item for item in items if item is not None]

    def _write(self, user_id: str, items: List[PendingSessionCompletion]) -> None:
        write_envelope(self.storage, self.key_for(user_id), OFFLINE_QUEUE_VERSION,
                       [item.to_dict() for item in items])

    def enqueue(self, item: PendingSessionCompletion) -> None:
        with self._lock:
            queue = self.read(item.user_id)
            existing = next(
                (i for i, current in enumerate(queue)
                 if current.kind == item.kind and current.session_id == item.session_id),
                None,
            )
            if existing is None:
                queue.append(item)
                logger.debug(f"Queued completion for session {item.session_id} ({len(item.answers)} answers)")
            else:
                current = queue[existing]
                queue[existing] = PendingSessionCompletion(
                    user_id=current.user_id,
                    session_id=current.session_id,
                    answers=merge_answers(current.answers, item.answers),
                    queued_at=item.queued_at,
                    kind=current.kind,
                )
                logger.debug(f"Merged queued completion for session {item.session_id}")
            self._write(item.user_id, queue)

    def remove(self, user_id: str, session_id: str) -> None:
        with self._lock:
            queue = self.read(user_id)
            remaining = [item for item in queue if item.session_id != session_id]
            if len(remaining) != len(queue):
                self._write(user_id, remaining)

    def flush(self, user_id: str, processor: Callable[[PendingSessionCompletion], None]) -> FlushResult:
        """
        Run processor on every queued item. Items whose processor raises stay queued.

        The lock is held only to snapshot and to write back, so enqueue() never
        waits on a processor. An item changed by enqueue() during the flush is
        kept in its new form even if the old form was synced.

        Returns:
            FlushResult with synced and still-pending counts
        """
        with self._lock:
            snapshot = self.read(user_id)
        if not snapshot:
            return FlushResult(synced=0, pending=0)

        synced: List[PendingSessionCompletion] = []
        for item in snapshot:
            try:
                processor(item)
                synced.append(item)
            except Exception as e:
                logger.error(f"Sync failed for session {item.session_id}, keeping it queued: {e}")

        with self._lock:
            remaining = [item for item in self.read(user_id) if item not in synced]
            self._write(user_id, remaining)
        logger.info(f"Flushed offline queue for {user_id}: synced={len(synced)} pending={len(remaining)}")
        return FlushResult(synced=len(synced), pending=len(remaining))

    def pending_count(self, user_id: str) -> int:
        return len(self.read(user_id))
