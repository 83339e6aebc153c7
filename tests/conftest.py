import random
from datetime import datetime, timedelta, timezone

import pytest

from theoryprep.engine import SessionEngine
from theoryprep.local_store import LocalSessionStore, LocalStatsStore
from theoryprep.question_bank import QuestionBank
from theoryprep.recency import RecencyHistory
from theoryprep.storage import MemoryStorage


def make_raw(question_id, topic, correct=2, answers=("Stop", "Give way", "Speed up"), image=None):
    raw = {
        "id": question_id,
        "question": f"Question {question_id}?",
        "answers": list(answers),
        "correct_answer": correct,
        "topic": topic,
        "correct_ans_alls": f"Explanation {question_id}",
    }
    if image:
        raw["image_q"] = image
    return raw


class FakeClock:
    """Deterministic UTC clock; advance() moves it forward."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now = self.now + timedelta(seconds=seconds)


class FakeQuery:
    def __init__(self, client, table, rows, on_conflict):
        self.client = client
        self.table = table
        self.rows = rows
        self.on_conflict = on_conflict

    def execute(self):
        if self.client.error is not None:
            raise self.client.error
        self.client.calls.append((self.table, self.rows, self.on_conflict))
        return self


class FakeTable:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def upsert(self, rows, on_conflict=None):
        return FakeQuery(self.client, self.name, rows, on_conflict)


class FakeSupabase:
    """Records upserts; raises `error` on execute when set."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def table(self, name):
        return FakeTable(self, name)

    def upserts_to(self, table):
        return [rows for name, rows, _ in self.calls if name == table]


@pytest.fixture
def raw_questions():
    # Only small topics, so none of them get merged.
    return [
        make_raw("101", "1"),
        make_raw("102", "1", correct=1),
        make_raw("103", "1", correct=3),
        make_raw("201", "2"),
        make_raw("202", "2", image="signs/202.png"),
    ]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def bank(raw_questions):
    return QuestionBank(lambda language: raw_questions)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def engine(bank, storage, clock, rng):
    return SessionEngine(
        bank=bank,
        stats_store=LocalStatsStore(storage),
        session_store=LocalSessionStore(storage),
        history=RecencyHistory(storage),
        clock=clock,
        rng=rng,
    )
