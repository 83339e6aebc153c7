"""Supabase push of completed sessions and per-question stats. Client is cached per process."""
import logging
from typing import Dict, Iterable, List, Optional

from supabase import Client, ClientOptions, create_client

from theoryprep.config import Settings, load_settings
from theoryprep.errors import RemoteSyncError, error_message, is_ignorable_sync_error
from theoryprep.models import AnswerRecord, QuestionStats, Session, iso_now, to_count

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def _env_client(settings: Settings) -> Client:
    if not settings.remote_configured:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    options = ClientOptions(postgrest_client_timeout=settings.remote_timeout)
    return create_client(settings.supabase_url, settings.supabase_key, options=options)


def get_supabase(settings: Optional[Settings] = None) -> Client:
    global _client
    if _client is None:
        _client = _env_client(settings or load_settings())
    return _client


def current_user_id(client: Client) -> Optional[str]:
    """Signed-in user id from the auth session; None when signed out."""
    try:
        response = client.auth.get_user()
    except Exception as e:
        logger.warning(f"Could not read auth session: {e}")
        return None
    user = getattr(response, "user", None)
    user_id = getattr(user, "id", None)
    return str(user_id) if user_id else None


def stats_rows(user_id: str, question_ids: Iterable[str], stats_map: Dict[str, QuestionStats]) -> List[dict]:
    rows = []
    for question_id in question_ids:
        stats = stats_map.get(question_id)
        if stats is None:
            continue
        rows.append({
            "user_id": user_id,
            "question_id": question_id,
            "seen_count": to_count(stats.seen_count),
            "correct_count": to_count(stats.correct_count),
            "incorrect_count": to_count(stats.incorrect_count),
            "last_is_correct": stats.last_is_correct,
            "last_answered_at": stats.last_answered_at,
        })
    return rows


def session_row(user_id: str, session: Session, answers: List[AnswerRecord], finished_at: str) -> dict:
    return {
        "user_id": user_id,
        "session_id": session.id,
        "topic_id": session.topic_id,
        "total_questions": to_count(session.total_questions),
        "score_correct": to_count(session.score_correct),
        "score_incorrect": to_count(session.score_incorrect),
        "finished_at": finished_at,
        "updated_at": iso_now(),
        "payload": {
            "mode": session.mode,
            "settings": session.settings.to_dict(),
            "started_at": session.started_at,
            "answers": [answer.to_dict() for answer in answers],
        },
    }


class RemoteSyncAdapter:
    """
    Upserts into two tables keyed by natural keys:
    stats on (user_id, question_id), sessions on (user_id, session_id).
    """

    def __init__(self, client: Optional[Client] = None, stats_table: str = "user_theory_question_stats",
                 sessions_table: str = "user_theory_sessions", enabled: bool = True, chunk_size: int = 200):
        self._client = client
        self.stats_table = stats_table
        self.sessions_table = sessions_table
        self.enabled = enabled
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteSyncAdapter":
        enabled = settings.offline_sync_enabled and settings.remote_configured
        return cls(
            client=None,
            stats_table=settings.stats_table,
            sessions_table=settings.sessions_table,
            enabled=enabled,
        )

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _upsert_stats(self, rows: List[dict]) -> None:
        n_chunks = (len(rows) + self.chunk_size - 1) // self.chunk_size
        for i in range(0, len(rows), self.chunk_size):
            chunk = rows[i : i + self.chunk_size]
            logger.debug("Upserting stats chunk %d/%d (%d rows)", i // self.chunk_size + 1, n_chunks, len(chunk))
            self.client.table(self.stats_table).upsert(chunk, on_conflict="user_id,question_id").execute()

    def push_session(self, user_id: str, session: Session, touched_question_ids: List[str],
                     stats_map: Dict[str, QuestionStats], answers: List[AnswerRecord], finished_at: str) -> None:
        """Raises whatever the client raises; callers decide what is ignorable."""
        if not self.enabled:
            return
        rows = stats_rows(user_id, touched_question_ids, stats_map)
        if rows:
            self._upsert_stats(rows)
        self.client.table(self.sessions_table).upsert(
            session_row(user_id, session, answers, finished_at), on_conflict="user_id,session_id"
        ).execute()
        logger.info(f"Pushed session {session.id} ({len(rows)} stats rows)")

    def try_push_session(self, *args, **kwargs) -> bool:
        """
        push_session with the 'backend not provisioned' errors swallowed.

        Returns:
            True if pushed (or disabled), False if an ignorable error was swallowed
        Raises:
            RemoteSyncError for everything else
        """
        try:
            self.push_session(*args, **kwargs)
            return True
        except Exception as e:
            if is_ignorable_sync_error(e):
                logger.warning(f"Remote sync skipped, backend tables not ready: {error_message(e)}")
                return False
            raise RemoteSyncError(f"Remote sync failed: {error_message(e)}", cause=e) from e
