"""
Session Engine: question selection, answer recording and completion reconciliation.

Local state is the truth. Every operation here reads and writes the per-user
stats/session maps synchronously; the remote store is only touched by
complete_session when asked to, and only after the local write is committed.
"""
import logging
import random
import string
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from theoryprep.config import DEFAULT_LANGUAGE, normalize_language
from theoryprep.errors import EmptyPoolError, NoMistakesError, NotFoundError
from theoryprep.local_store import LocalSessionStore, LocalStatsStore
from theoryprep.models import (
    MARATHON,
    MISTAKES_PRACTICE,
    MOCK_EXAM,
    TOPIC_PRACTICE,
    AnswerRecord,
    CompleteSessionResult,
    CreatedSession,
    CreatedSessionQuestion,
    QuestionStats,
    Session,
    SessionQuestion,
    SubmitAnswerResult,
    TestSettings,
    iso_now,
    timestamp_ms,
)
from theoryprep.question_bank import QuestionBank
from theoryprep.recency import RecencyHistory
from theoryprep.remote import RemoteSyncAdapter

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36[rem])
    return "".join(reversed(digits))


def shuffled(items: Iterable[str], rng: random.Random) -> List[str]:
    """Unbiased Fisher-Yates on a copy, swapping from the end backward."""
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def dedupe_keep_latest(question_ids: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates; the last occurrence of an id decides its position."""
    seen = set()
    unique_reversed = []
    for raw in reversed(list(question_ids)):
        question_id = str(raw or "").strip()
        if not question_id or question_id in seen:
            continue
        seen.add(question_id)
        unique_reversed.append(question_id)
    unique_reversed.reverse()
    return unique_reversed


def dedupe_first(question_ids: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates keeping first occurrences."""
    seen = set()
    result = []
    for question_id in question_ids:
        if question_id and question_id not in seen:
            seen.add(question_id)
            result.append(question_id)
    return result


def history_limit(total_question_count: int, question_limit: int) -> int:
    return max(question_limit * 12, int(total_question_count * 0.75))


def select_avoiding_recent(all_question_ids: List[str], question_limit: int, recent_ids: Iterable[str],
                           rng: random.Random) -> List[str]:
    """
    Pick question_limit ids, preferring ones not in recent_ids.

    Best effort: when the fresh pool is too small the rest is backfilled from the
    whole pool, so the result is short only when the pool itself is.
    """
    unique_ids = dedupe_keep_latest(all_question_ids)
    if not unique_ids:
        return []
    limit = max(1, min(question_limit, len(unique_ids)))
    recent = set(recent_ids)
    fresh_pool = [question_id for question_id in unique_ids if question_id not in recent]
    selected = shuffled(fresh_pool, rng)[:limit]

    if len(selected) < limit:
        chosen = set(selected)
        fallback_pool = [question_id for question_id in unique_ids if question_id not in chosen]
        selected.extend(shuffled(fallback_pool, rng)[: limit - len(selected)])
    return selected


def positive_limit(value: Optional[int]) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return int(value)


@dataclass
class _Increment:
    seen: int = 0
    correct: int = 0
    incorrect: int = 0


class SessionEngine:
    """Creates, answers and completes practice/exam/marathon/mistake sessions."""

    MOCK_EXAM_DEFAULT_LIMIT = 20
    MARATHON_DEFAULT_LIMIT = 50

    def __init__(
        self,
        bank: QuestionBank,
        stats_store: LocalStatsStore,
        session_store: LocalSessionStore,
        history: RecencyHistory,
        remote: Optional[RemoteSyncAdapter] = None,
        language: str = DEFAULT_LANGUAGE,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.bank = bank
        self.stats_store = stats_store
        self.session_store = session_store
        self.history = history
        self.remote = remote
        self.language = normalize_language(language)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rng = rng or random.Random()
        self._locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    # ============= helpers =============

    def _lang(self, language: Optional[str]) -> str:
        return normalize_language(language) if language else self.language

    def _now(self) -> str:
        return iso_now(self._clock())

    def user_lock(self, user_id: str) -> threading.RLock:
        """Serializes read-modify-write of one user's stats and session maps."""
        with self._locks_guard:
            return self._locks[user_id]

    def _new_session_id(self) -> str:
        millis = int(self._clock().timestamp() * 1000)
        rand = "".join(self._rng.choice(BASE36) for _ in range(8))
        return f"local-{to_base36(millis)}-{rand}"

    def _persist_new_session(self, user_id: str, topic_id: Optional[str], mode: str,
                             settings: TestSettings, question_ids: List[str]) -> CreatedSession:
        session_id = self._new_session_id()
        started_at = self._now()
        rows = [
            SessionQuestion(id=f"{session_id}:q:{position}", question_id=question_id, position=position)
            for position, question_id in enumerate(question_ids, start=1)
        ]
        session = Session(
            id=session_id,
            user_id=user_id,
            topic_id=topic_id,
            mode=mode,
            total_questions=len(question_ids),
            settings=settings,
            started_at=started_at,
            questions=rows,
        )
        with self.user_lock(user_id):
            sessions = self.session_store.read(user_id)
            sessions[session_id] = session
            self.session_store.write(user_id, sessions)

        logger.info(f"Created {mode} session {session_id} for {user_id} with {len(rows)} questions")
        return CreatedSession(
            session_id=session_id,
            started_at=started_at,
            session_questions=[CreatedSessionQuestion(row.id, row.question_id, row.position) for row in rows],
        )

    def get_session(self, user_id: str, session_id: str) -> Session:
        session = self.session_store.read(user_id).get(session_id)
        if session is None:
            raise NotFoundError("Test session not found.")
        return session

    # ============= creation =============

    def create_topic_practice_session(
        self,
        user_id: str,
        topic_id: str,
        mode: str = TOPIC_PRACTICE,
        settings: Optional[TestSettings] = None,
        question_limit: Optional[int] = None,
        available_question_ids: Optional[List[str]] = None,
        language: Optional[str] = None,
    ) -> CreatedSession:
        """
        Build a session from one topic.

        Args:
            available_question_ids: hint from a possibly stale client cache; intersected
                with the topic, and ignored when the intersection is empty
        Raises:
            NotFoundError: unknown topic
            NoMistakesError: show_mistakes_only and nothing was answered wrong
            EmptyPoolError: nothing left to ask
        """
        settings = settings or TestSettings()
        bank = self.bank.get_bank(self._lang(language))
        topic = bank.topic_by_id.get(topic_id)
        if topic is None:
            raise NotFoundError("Topic not found.")

        topic_ids = list(topic.question_ids)
        pool = topic_ids
        if available_question_ids:
            topic_set = set(topic_ids)
            filtered = dedupe_first(
                str(question_id or "").strip() for question_id in available_question_ids
            )
            filtered = [question_id for question_id in filtered if question_id in topic_set]
            if filtered:
                pool = filtered
            else:
                logger.debug(f"Available ids for topic {topic_id} did not match, using full topic")

        if not pool:
            raise EmptyPoolError("No questions found for this topic.")

        if settings.show_mistakes_only:
            stats = self.stats_store.read(user_id)
            pool = [question_id for question_id in pool if question_id in stats and stats[question_id].has_mistake]
            if not pool:
                raise NoMistakesError()

        if settings.shuffle_questions:
            pool = shuffled(pool, self._rng)

        limit = positive_limit(question_limit)
        selected = pool[:limit] if limit is not None else pool
        if not selected:
            raise EmptyPoolError("Could not select questions for the test.")

        return self._persist_new_session(user_id, topic_id, mode, settings, selected)

    def _create_full_bank_session(self, user_id: str, mode: str, scope: str, question_limit: Optional[int],
                                  default_limit: int, settings: Optional[TestSettings],
                                  language: Optional[str]) -> CreatedSession:
        lang = self._lang(language)
        all_ids = self.bank.get_bank(lang).all_question_ids
        if not all_ids:
            raise EmptyPoolError(f"No questions found for the {mode.replace('_', ' ')}.")

        limit = positive_limit(question_limit) or default_limit
        with self.user_lock(user_id):
            recent = self.history.read(user_id, lang, scope)
            selected = select_avoiding_recent(all_ids, limit, recent, self._rng)
            if not selected:
                raise EmptyPoolError(f"Could not select questions for the {mode.replace('_', ' ')}.")

            cap = history_limit(len(all_ids), len(selected))
            self.history.write(user_id, lang, scope, dedupe_keep_latest(recent + selected)[-cap:])

        forced = TestSettings(
            show_mistakes_only=False,
            shuffle_questions=True,
            auto_advance=bool(settings.auto_advance) if settings else False,
        )
        return self._persist_new_session(user_id, None, mode, forced, selected)

    def create_mock_exam_session(self, user_id: str, question_limit: Optional[int] = MOCK_EXAM_DEFAULT_LIMIT,
                                 settings: Optional[TestSettings] = None,
                                 language: Optional[str] = None) -> CreatedSession:
        """Full-bank random exam; always shuffled, never mistakes-only."""
        return self._create_full_bank_session(
            user_id, MOCK_EXAM, RecencyHistory.MOCK, question_limit, self.MOCK_EXAM_DEFAULT_LIMIT, settings, language
        )

    def create_marathon_session(self, user_id: str, question_limit: Optional[int] = MARATHON_DEFAULT_LIMIT,
                                settings: Optional[TestSettings] = None,
                                language: Optional[str] = None) -> CreatedSession:
        """Same selection as the mock exam, with its own recency history."""
        return self._create_full_bank_session(
            user_id, MARATHON, RecencyHistory.MARATHON, question_limit, self.MARATHON_DEFAULT_LIMIT, settings,
            language,
        )

    def create_mistake_practice_session(self, user_id: str, question_ids: List[str],
                                        settings: Optional[TestSettings] = None,
                                        language: Optional[str] = None) -> CreatedSession:
        settings = settings or TestSettings()
        bank = self.bank.get_bank(self._lang(language))
        unique_ids = [question_id for question_id in dedupe_keep_latest(question_ids) if bank.has_question(question_id)]
        if not unique_ids:
            raise NoMistakesError("No mistake questions found.")

        selected = shuffled(unique_ids, self._rng) if settings.shuffle_questions else unique_ids
        forced = TestSettings(show_mistakes_only=False, shuffle_questions=True, auto_advance=settings.auto_advance)
        return self._persist_new_session(user_id, None, MISTAKES_PRACTICE, forced, selected)

    def wrong_question_ids(self, user_id: str, language: Optional[str] = None) -> List[str]:
        """Ids whose last answer was wrong, most recent first (ties by id)."""
        bank = self.bank.get_bank(self._lang(language))
        stats = self.stats_store.read(user_id)
        entries = [
            (question_id, item) for question_id, item in stats.items()
            if item.last_is_correct is False and bank.has_question(question_id)
        ]
        entries.sort(key=lambda entry: (-timestamp_ms(entry[1].last_answered_at), entry[0]))
        return [question_id for question_id, _ in entries]

    # ============= answering =============

    def submit_answer(self, user_id: str, session_id: str, session_question_id: str, question_id: str,
                      selected_option_id: str, language: Optional[str] = None) -> SubmitAnswerResult:
        """
        Record one answer. First answer wins: a second submission for the same
        session question returns already_answered=True and changes nothing.
        """
        with self.user_lock(user_id):
            sessions = self.session_store.read(user_id)
            session = sessions.get(session_id)
            if session is None:
                raise NotFoundError("Test session not found.")

            row = next(
                (item for item in session.questions
                 if item.id == session_question_id and item.question_id == question_id),
                None,
            )
            if row is None:
                raise NotFoundError("Session question not found.")

            if row.answered:
                return SubmitAnswerResult(
                    is_correct=False,
                    already_answered=True,
                    finished=bool(session.finished_at),
                    score_correct=session.score_correct,
                    score_incorrect=session.score_incorrect,
                )

            question = self.bank.get_question(self._lang(language), question_id)
            if question is None:
                raise NotFoundError("Question not found.")
            option = question.find_option(selected_option_id)
            if option is None:
                raise NotFoundError("Selected answer option not found.")

            answered_at = self._now()
            row.selected_option_id = option.id
            row.is_correct = option.is_correct
            row.answered_at = answered_at
            session.recompute_score()
            finished = session.unanswered_count == 0
            if finished:
                session.finished_at = session.finished_at or answered_at
            sessions[session.id] = session
            self.session_store.write(user_id, sessions)

            stats = self.stats_store.read(user_id)
            prev = stats.get(question_id) or QuestionStats(question_id=question_id)
            stats[question_id] = QuestionStats(
                question_id=question_id,
                seen_count=prev.seen_count + 1,
                correct_count=prev.correct_count + (1 if option.is_correct else 0),
                incorrect_count=prev.incorrect_count + (0 if option.is_correct else 1),
                last_is_correct=option.is_correct,
                last_answered_at=answered_at,
            )
            self.stats_store.write(user_id, stats)

        logger.debug(f"Answer recorded: session={session_id} q={question_id} correct={option.is_correct}")
        return SubmitAnswerResult(
            is_correct=option.is_correct,
            already_answered=False,
            finished=finished,
            score_correct=session.score_correct,
            score_incorrect=session.score_incorrect,
        )

    def finish_session(self, user_id: str, session_id: str) -> None:
        """Stamp finished_at once; unknown sessions are ignored."""
        with self.user_lock(user_id):
            sessions = self.session_store.read(user_id)
            session = sessions.get(session_id)
            if session is None or session.finished_at:
                return
            session.finished_at = self._now()
            self.session_store.write(user_id, sessions)

    # ============= completion =============

    def complete_session(self, user_id: str, session_id: str, answers: List[AnswerRecord],
                         sync_remote: bool = True, language: Optional[str] = None) -> CompleteSessionResult:
        """
        Reconcile a batch of client-side answers with the stored session and finalize it.

        Rows that already hold an answer are never overwritten (first write wins,
        same rule as submit_answer). Stats counters are incremented only for rows
        written here; last_is_correct/last_answered_at follow the newest observed
        answer per question. Local writes commit before any remote push.

        Raises:
            NotFoundError: unknown session
            RemoteSyncError: remote push failed for a reason other than missing tables
        """
        lang = self._lang(language)
        with self.user_lock(user_id):
            sessions = self.session_store.read(user_id)
            session = sessions.get(session_id)
            if session is None:
                raise NotFoundError("Test session not found.")
            stats = self.stats_store.read(user_id)
            now = self._now()

            normalized = sorted(
                (item for item in answers
                 if item.session_question_id and item.question_id and item.selected_option_id and item.answered_at),
                key=lambda item: timestamp_ms(item.answered_at),
            )

            validated: List[AnswerRecord] = []
            touched: List[str] = []
            if not normalized:
                session.finished_at = session.finished_at or now
                sessions[session.id] = session
                self.session_store.write(user_id, sessions)
            else:
                validated, touched = self._apply_answers(session, stats, normalized, lang)
                session.recompute_score()
                session.finished_at = session.finished_at or now
                sessions[session.id] = session
                self.session_store.write(user_id, sessions)
                self.stats_store.write(user_id, stats)

            result = CompleteSessionResult(
                score_correct=session.score_correct,
                score_incorrect=session.score_incorrect,
                finished_at=session.finished_at,
            )

        logger.info(
            f"Completed session {session_id}: correct={result.score_correct} "
            f"incorrect={result.score_incorrect} answers={len(validated)}"
        )
        if sync_remote and self.remote is not None:
            self.remote.try_push_session(user_id, session, touched, stats, validated, result.finished_at)
        return result

    def _apply_answers(self, session: Session, stats: Dict[str, QuestionStats], answers: List[AnswerRecord],
                       language: str) -> Tuple[List[AnswerRecord], List[str]]:
        rows = {row.id: row for row in session.questions}
        latest: Dict[str, Tuple[bool, str]] = {}
        increments: Dict[str, _Increment] = {}
        validated: List[AnswerRecord] = []

        for item in answers:
            row = rows.get(item.session_question_id)
            if row is None or row.question_id != item.question_id:
                continue
            question = self.bank.get_question(language, row.question_id)
            if question is None:
                continue
            option = question.find_option(item.selected_option_id)
            if option is None:
                continue

            is_correct = option.is_correct
            validated.append(AnswerRecord(
                session_question_id=row.id,
                question_id=row.question_id,
                selected_option_id=option.id,
                is_correct=is_correct,
                answered_at=item.answered_at,
            ))

            if not row.answered:
                increment = increments.setdefault(row.question_id, _Increment())
                increment.seen += 1
                if is_correct:
                    increment.correct += 1
                else:
                    increment.incorrect += 1
                row.selected_option_id = option.id
                row.is_correct = is_correct
                row.answered_at = item.answered_at

            current = latest.get(row.question_id)
            if current is None or timestamp_ms(item.answered_at) >= timestamp_ms(current[1]):
                latest[row.question_id] = (is_correct, item.answered_at)

        for question_id, (is_correct, answered_at) in latest.items():
            base = stats.get(question_id) or QuestionStats(question_id=question_id)
            increment = increments.get(question_id, _Increment())
            correct_count = base.correct_count + increment.correct
            incorrect_count = base.incorrect_count + increment.incorrect
            if is_correct:
                correct_count = max(1, correct_count)
            else:
                incorrect_count = max(1, incorrect_count)

            last_is_correct, last_answered_at = is_correct, answered_at
            if base.last_answered_at and timestamp_ms(answered_at) < timestamp_ms(base.last_answered_at):
                last_is_correct, last_answered_at = base.last_is_correct, base.last_answered_at

            stats[question_id] = QuestionStats(
                question_id=question_id,
                seen_count=max(1, base.seen_count + increment.seen),
                correct_count=correct_count,
                incorrect_count=incorrect_count,
                last_is_correct=last_is_correct,
                last_answered_at=last_answered_at,
            )

        return validated, list(latest)
