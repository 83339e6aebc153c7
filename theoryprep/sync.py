"""
Background drain of the offline completion queue.

Runs every `interval` seconds and whenever the app comes to the foreground.
Only one flush is ever in flight; a trigger that arrives during a flush is
skipped, the next tick picks up whatever is still queued.
"""
import logging
import threading
from typing import Optional

from theoryprep.engine import SessionEngine
from theoryprep.offline_queue import FlushResult, OfflineCompletionQueue

logger = logging.getLogger(__name__)

SYNC_INTERVAL_SECONDS = 15.0


class OfflineSyncWorker:
    def __init__(self, engine: SessionEngine, queue: OfflineCompletionQueue, user_id: str,
                 interval: float = SYNC_INTERVAL_SECONDS, language: Optional[str] = None):
        self.engine = engine
        self.queue = queue
        self.user_id = user_id
        self.interval = interval
        self.language = language
        self._in_flight = threading.Lock()
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _process(self, item) -> None:
        self.engine.complete_session(
            user_id=item.user_id,
            session_id=item.session_id,
            answers=item.answers,
            sync_remote=True,
            language=self.language,
        )

    def run_once(self) -> Optional[FlushResult]:
        """Flush now. Returns None if another flush was already running."""
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Offline sync already running, skipping")
            return None
        try:
            return self.queue.flush(self.user_id, self._process)
        finally:
            self._in_flight.release()

    def _loop(self) -> None:
        while not self._stopped.is_set():
            try:
                self.run_once()
            except Exception as e:
                # Storage trouble; try again on the next tick.
                logger.error(f"Offline sync run failed: {e}")
            self._wake.wait(self.interval)
            self._wake.clear()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name=f"offline-sync-{self.user_id}", daemon=True)
        self._thread.start()
        logger.info(f"Offline sync started for {self.user_id} (every {self.interval:.0f}s)")

    def notify_foreground(self) -> None:
        self._wake.set()

    request_sync = notify_foreground

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stopped.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
