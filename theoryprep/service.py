"""
Application-facing facade over the engine, stores, cache, queue and remote adapter.

Read methods return plain dicts (cache-friendly). The *_cached variants follow
stale-while-revalidate: whatever the cache has is handed to `on_cached` first,
then the fresh value is computed from the local stores, cached and returned.
"""
import itertools
import logging
import random
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from theoryprep import cache as cache_keys
from theoryprep.bookmarks import BookmarkStore
from theoryprep.cache import CacheLayer
from theoryprep.config import Settings, load_settings, normalize_language
from theoryprep.engine import SessionEngine
from theoryprep.errors import NotFoundError, StorageError
from theoryprep.local_store import LocalSessionStore, LocalStatsStore
from theoryprep.models import AnswerRecord, CompleteSessionResult, PendingSessionCompletion, iso_now, sort_options
from theoryprep.offline_queue import FlushResult, OfflineCompletionQueue
from theoryprep.progress import (
    EMPTY_SUMMARY,
    build_overview,
    build_topic_stats,
    question_to_dict,
    split_into_packs,
)
from theoryprep.question_bank import QuestionBank, json_question_source, url_image_resolver
from theoryprep.recency import RecencyHistory
from theoryprep.remote import RemoteSyncAdapter
from theoryprep.settings_store import TestSettingsStore
from theoryprep.storage import KeyValueStorage, SQLiteStorage
from theoryprep.sync import OfflineSyncWorker

logger = logging.getLogger(__name__)


class RequestTracker:
    """Last-request-wins: a result is kept only if no newer request for the same key started."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._latest: Dict[str, int] = {}
        self._lock = threading.Lock()

    def begin(self, key: str) -> int:
        with self._lock:
            token = next(self._counter)
            self._latest[key] = token
            return token

    def is_current(self, key: str, token: int) -> bool:
        with self._lock:
            return self._latest.get(key) == token


class TheoryService:
    def __init__(self, storage: KeyValueStorage, bank: QuestionBank, remote: Optional[RemoteSyncAdapter] = None,
                 language: Optional[str] = None, sync_interval: float = 15.0,
                 clock: Optional[Callable[[], datetime]] = None, rng: Optional[random.Random] = None):
        self.storage = storage
        self.bank = bank
        self.language = normalize_language(language)
        self.sync_interval = sync_interval
        self.stats_store = LocalStatsStore(storage)
        self.session_store = LocalSessionStore(storage)
        self.cache = CacheLayer(storage)
        self.queue = OfflineCompletionQueue(storage)
        self.bookmarks = BookmarkStore(storage)
        self.test_settings = TestSettingsStore(storage)
        self.requests = RequestTracker()
        self.engine = SessionEngine(
            bank=bank,
            stats_store=self.stats_store,
            session_store=self.session_store,
            history=RecencyHistory(storage),
            remote=remote,
            language=self.language,
            clock=clock,
            rng=rng,
        )
        self._workers: Dict[str, OfflineSyncWorker] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "TheoryService":
        settings = settings or load_settings()
        bank = QuestionBank(
            json_question_source(settings.data_dir),
            image_resolver=url_image_resolver(settings.image_base_url),
        )
        return cls(
            storage=SQLiteStorage(settings.store_path),
            bank=bank,
            remote=RemoteSyncAdapter.from_settings(settings),
            language=settings.default_language,
            sync_interval=settings.sync_interval,
        )

    def _lang(self, language: Optional[str]) -> str:
        return normalize_language(language) if language else self.language

    # ============= read models =============

    def load_overview(self, user_id: str, language: Optional[str] = None) -> Dict:
        bank = self.bank.get_bank(self._lang(language))
        if not bank.topics:
            return {"summary": dict(EMPTY_SUMMARY), "topics": []}
        stats = self.stats_store.read(user_id)
        return build_overview([build_topic_stats(topic, stats) for topic in bank.topics])

    def load_topic_detail(self, user_id: str, slug: str, language: Optional[str] = None) -> Dict:
        topic = self.bank.get_bank(self._lang(language)).topic_by_slug.get(slug)
        if topic is None:
            raise NotFoundError("Topic not found.")
        return {"topic": build_topic_stats(topic, self.stats_store.read(user_id))}

    def load_session(self, user_id: str, session_id: str, language: Optional[str] = None) -> Dict:
        lang = self._lang(language)
        session = self.engine.get_session(user_id, session_id)
        topic = self.bank.get_bank(lang).topic_by_id.get(session.topic_id) if session.topic_id else None

        questions = []
        for row in sorted(session.questions, key=lambda item: item.position):
            question = self.bank.get_question(lang, row.question_id)
            if question is None:
                raise NotFoundError("Session question data not found.")
            questions.append({
                "session_question_id": row.id,
                "question_id": row.question_id,
                "position": row.position,
                "prompt": question.prompt,
                "image_url": question.image_url,
                "explanation": question.explanation,
                "options": [option.to_dict() for option in sort_options(list(question.options))],
                "selected_option_id": row.selected_option_id,
                "is_correct": row.is_correct,
                "answered_at": row.answered_at,
            })

        return {
            "id": session.id,
            "user_id": session.user_id,
            "topic_id": session.topic_id,
            "topic_slug": topic.slug if topic else None,
            "topic_title": topic.title if topic else None,
            "mode": session.mode,
            "total_questions": session.total_questions,
            "settings": session.settings.to_dict(),
            "started_at": session.started_at,
            "finished_at": session.finished_at,
            "score_correct": session.score_correct,
            "score_incorrect": session.score_incorrect,
            "questions": questions,
        }

    def load_mistake_packs(self, user_id: str, language: Optional[str] = None) -> Dict:
        wrong_ids = self.engine.wrong_question_ids(user_id, self._lang(language))
        return {"total_wrong_questions": len(wrong_ids), "packs": split_into_packs(wrong_ids)}

    def _fetch_topic_question_bank(self, topic_id: str, language: str) -> Dict:
        return {
            "topic_id": topic_id,
            "questions": [question_to_dict(q) for q in self.bank.get_questions_by_topic(language, topic_id)],
            "updated_at": iso_now(),
        }

    def load_topic_question_bank(self, topic_id: str, language: Optional[str] = None) -> Dict:
        lang = self._lang(language)
        key = cache_keys.topic_bank_key(topic_id, lang)
        cached = self.cache.peek(key)
        if isinstance(cached, dict) and cached.get("topic_id") == topic_id and cached.get("questions"):
            return cached
        fresh = self._fetch_topic_question_bank(topic_id, lang)
        self.cache.write(key, fresh)
        return fresh

    def preload_topic_question_bank(self, topic_id: str, language: Optional[str] = None) -> None:
        """Warm the cache; failures are logged and dropped."""
        try:
            self.load_topic_question_bank(topic_id, language)
        except Exception as e:
            logger.warning(f"Preload of topic {topic_id} failed: {e}")

    # ============= stale-while-revalidate =============

    def _revalidate(self, cache_key: str, fetch: Callable[[], Any],
                    on_cached: Optional[Callable[[Any], None]]) -> Optional[Any]:
        token = self.requests.begin(cache_key)
        if on_cached is not None:
            try:
                cached = self.cache.peek(cache_key)
            except StorageError as e:
                logger.warning(f"Cache read failed for {cache_key}: {e}")
                cached = None
            if cached is not None:
                on_cached(cached)

        fresh = fetch()
        if not self.requests.is_current(cache_key, token):
            logger.debug(f"Discarding stale result for {cache_key}")
            return None
        self.cache.write(cache_key, fresh)
        return fresh

    def load_overview_cached(self, user_id: str, language: Optional[str] = None,
                             on_cached: Optional[Callable[[Dict], None]] = None) -> Optional[Dict]:
        lang = self._lang(language)
        return self._revalidate(cache_keys.overview_key(user_id, lang),
                                lambda: self.load_overview(user_id, lang), on_cached)

    def load_topic_detail_cached(self, user_id: str, slug: str, language: Optional[str] = None,
                                 on_cached: Optional[Callable[[Dict], None]] = None) -> Optional[Dict]:
        lang = self._lang(language)
        return self._revalidate(cache_keys.topic_detail_key(user_id, slug, lang),
                                lambda: self.load_topic_detail(user_id, slug, lang), on_cached)

    def load_session_cached(self, user_id: str, session_id: str, language: Optional[str] = None,
                            on_cached: Optional[Callable[[Dict], None]] = None) -> Optional[Dict]:
        lang = self._lang(language)
        return self._revalidate(cache_keys.session_key(user_id, session_id, lang),
                                lambda: self.load_session(user_id, session_id, lang), on_cached)

    # ============= completion & sync =============

    def finish_session_offline(self, user_id: str, session_id: str, answers: List[AnswerRecord],
                               language: Optional[str] = None) -> CompleteSessionResult:
        """
        Queue the remote payload first, then apply it locally, then nudge the
        background worker. The caller gets the local result without waiting on the network.
        """
        self.queue.enqueue(PendingSessionCompletion(
            user_id=user_id,
            session_id=session_id,
            answers=list(answers),
            queued_at=iso_now(),
        ))
        result = self.engine.complete_session(user_id, session_id, answers, sync_remote=False, language=language)
        worker = self._workers.get(user_id)
        if worker is not None:
            worker.request_sync()
        return result

    def flush_pending(self, user_id: str, language: Optional[str] = None) -> FlushResult:
        def process(item: PendingSessionCompletion) -> None:
            self.engine.complete_session(item.user_id, item.session_id, item.answers,
                                         sync_remote=True, language=language)

        return self.queue.flush(user_id, process)

    def start_sync(self, user_id: str) -> OfflineSyncWorker:
        worker = self._workers.get(user_id)
        if worker is None:
            worker = OfflineSyncWorker(self.engine, self.queue, user_id, interval=self.sync_interval,
                                       language=self.language)
            self._workers[user_id] = worker
        worker.start()
        return worker

    def stop_sync(self, user_id: Optional[str] = None) -> None:
        targets = [user_id] if user_id else list(self._workers)
        for target in targets:
            worker = self._workers.pop(target, None)
            if worker is not None:
                worker.stop()
