import json

from theoryprep.local_store import LocalSessionStore, LocalStatsStore
from theoryprep.models import QuestionStats, Session, SessionQuestion, TestSettings
from theoryprep.storage import MemoryStorage, SQLiteStorage


def make_session(session_id="s1"):
    return Session(
        id=session_id,
        user_id="u1",
        topic_id="1",
        mode="topic_practice",
        total_questions=2,
        settings=TestSettings(),
        started_at="2024-03-01T09:00:00.000Z",
        questions=[
            SessionQuestion(id=f"{session_id}:q:2", question_id="102", position=2),
            SessionQuestion(id=f"{session_id}:q:1", question_id="101", position=1),
        ],
    )


def test_stats_persist_across_instances():
    storage = MemoryStorage()
    LocalStatsStore(storage).write("u1", {"101": QuestionStats("101", seen_count=2, correct_count=1,
                                                               incorrect_count=1, last_is_correct=False)})
    stats = LocalStatsStore(storage).read("u1")
    assert stats["101"].incorrect_count == 1
    assert stats["101"].last_is_correct is False


def test_stats_are_stored_in_versioned_camelcase_envelope():
    storage = MemoryStorage()
    LocalStatsStore(storage).write("u1", {"101": QuestionStats("101", seen_count=1)})
    raw = json.loads(storage.get_item("store:theory:stats:u1"))
    assert raw["version"] == 1
    assert raw["data"]["101"]["seenCount"] == 1


def test_wrong_version_reads_as_empty():
    storage = MemoryStorage({"store:theory:stats:u1": json.dumps({"version": 99, "data": {"101": {}}})})
    assert LocalStatsStore(storage).read("u1") == {}


def test_corrupt_record_reads_as_empty():
    storage = MemoryStorage({"store:theory:stats:u1": "{not json"})
    assert LocalStatsStore(storage).read("u1") == {}


def test_malformed_counters_become_zero():
    data = {"101": {"questionId": "101", "seenCount": "lots", "correctCount": -3, "incorrectCount": 2.7}}
    storage = MemoryStorage({"store:theory:stats:u1": json.dumps({"version": 1, "data": data})})
    stats = LocalStatsStore(storage).read("u1")["101"]
    assert (stats.seen_count, stats.correct_count, stats.incorrect_count) == (0, 0, 2)


def test_read_returns_a_copy():
    store = LocalStatsStore(MemoryStorage())
    store.write("u1", {"101": QuestionStats("101", seen_count=1)})
    copy = store.read("u1")
    copy["101"].seen_count = 50
    assert store.read("u1")["101"].seen_count == 1


def test_sessions_round_trip_sorted_by_position():
    store = LocalSessionStore(MemoryStorage())
    store.write("u1", {"s1": make_session()})
    session = LocalSessionStore(store.storage).read("u1")["s1"]
    assert [row.position for row in session.questions] == [1, 2]


def test_session_under_wrong_key_is_dropped():
    storage = MemoryStorage()
    LocalSessionStore(storage).write("u1", {"other": make_session("s1")})
    assert LocalSessionStore(storage).read("u1") == {}


def test_users_are_isolated():
    store = LocalSessionStore(MemoryStorage())
    store.write("u1", {"s1": make_session()})
    assert store.read("u2") == {}


def test_sqlite_storage(tmp_path):
    storage = SQLiteStorage(str(tmp_path / "store.db"))
    storage.set_item("a:1", "one")
    storage.set_item("a:1", "uno")
    storage.set_item("b:1", "two")
    assert storage.get_item("a:1") == "uno"
    assert storage.keys("a:") == ["a:1"]
    storage.remove_item("a:1")
    assert storage.get_item("a:1") is None
    storage.close()


def test_session_settings_default_when_missing():
    raw = make_session().to_dict()
    raw["settings"] = {"autoAdvance": True}
    session = Session.from_dict(raw)
    assert session.settings == TestSettings(show_mistakes_only=False, shuffle_questions=True, auto_advance=True)
