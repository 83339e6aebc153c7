import pytest

from conftest import FakeSupabase

from theoryprep.errors import RemoteSyncError, is_ignorable_sync_error
from theoryprep.models import QuestionStats, Session, TestSettings
from theoryprep.remote import RemoteSyncAdapter, current_user_id, session_row, stats_rows


class APIError(Exception):
    def __init__(self, message):
        super().__init__("api error")
        self.message = message


def make_session():
    return Session(id="s1", user_id="u1", topic_id=None, mode="mock_exam", total_questions=20,
                   settings=TestSettings(), started_at="2024-03-01T09:00:00.000Z", score_correct=18,
                   score_incorrect=2)


@pytest.mark.parametrize("message", [
    'relation "public.user_theory_sessions" does not exist',
    "invalid input syntax for type uuid",
    "Relation missing",
])
def test_ignorable_errors(message):
    assert is_ignorable_sync_error(APIError(message))


def test_other_errors_are_not_ignorable():
    assert not is_ignorable_sync_error(Exception("timeout"))
    assert not is_ignorable_sync_error(Exception(""))


def test_wrapped_error_is_checked_by_cause():
    assert is_ignorable_sync_error(RemoteSyncError("failed", cause=APIError("relation does not exist")))


def test_stats_rows_skip_unknown_questions():
    stats = {"1": QuestionStats("1", seen_count=2, correct_count=1, incorrect_count=1, last_is_correct=True)}
    rows = stats_rows("u1", ["1", "2"], stats)
    assert rows == [{
        "user_id": "u1", "question_id": "1", "seen_count": 2, "correct_count": 1, "incorrect_count": 1,
        "last_is_correct": True, "last_answered_at": None,
    }]


def test_session_row_payload():
    row = session_row("u1", make_session(), [], "2024-03-01T09:20:00.000Z")
    assert row["session_id"] == "s1"
    assert row["topic_id"] is None
    assert row["score_correct"] == 18
    assert row["payload"]["mode"] == "mock_exam"
    assert row["payload"]["settings"]["shuffleQuestions"] is True


def test_stats_are_upserted_in_chunks():
    client = FakeSupabase()
    adapter = RemoteSyncAdapter(client=client, chunk_size=2)
    stats = {str(i): QuestionStats(str(i), seen_count=1) for i in range(5)}
    adapter.push_session("u1", make_session(), list(stats), stats, [], "2024-03-01T09:20:00.000Z")
    chunks = client.upserts_to("user_theory_question_stats")
    assert [len(chunk) for chunk in chunks] == [2, 2, 1]
    assert client.calls[0][2] == "user_id,question_id"
    assert client.calls[-1][2] == "user_id,session_id"


def test_disabled_adapter_does_nothing():
    client = FakeSupabase()
    RemoteSyncAdapter(client=client, enabled=False).push_session("u1", make_session(), [], {}, [], "x")
    assert client.calls == []


def test_try_push_swallows_ignorable():
    adapter = RemoteSyncAdapter(client=FakeSupabase(error=APIError('relation "x" does not exist')))
    assert adapter.try_push_session("u1", make_session(), [], {}, [], "x") is False


def test_try_push_wraps_other_errors():
    cause = APIError("permission denied")
    adapter = RemoteSyncAdapter(client=FakeSupabase(error=cause))
    with pytest.raises(RemoteSyncError) as info:
        adapter.try_push_session("u1", make_session(), [], {}, [], "x")
    assert info.value.cause is cause


class FakeAuth:
    def __init__(self, user_id=None, error=None):
        self.user_id = user_id
        self.error = error

    def get_user(self):
        if self.error:
            raise self.error
        if self.user_id is None:
            return None
        return type("Response", (), {"user": type("User", (), {"id": self.user_id})()})()


class AuthClient:
    def __init__(self, auth):
        self.auth = auth


def test_current_user_id():
    assert current_user_id(AuthClient(FakeAuth("abc"))) == "abc"
    assert current_user_id(AuthClient(FakeAuth())) is None
    assert current_user_id(AuthClient(FakeAuth(error=RuntimeError("expired")))) is None
