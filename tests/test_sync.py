import time

from theoryprep.models import AnswerRecord, PendingSessionCompletion, TestSettings
from theoryprep.offline_queue import OfflineCompletionQueue
from theoryprep.sync import OfflineSyncWorker


def queue_completion(engine, storage):
    created = engine.create_topic_practice_session("u1", "1", settings=TestSettings(shuffle_questions=False))
    row = created.session_questions[0]
    queue = OfflineCompletionQueue(storage)
    queue.enqueue(PendingSessionCompletion(
        user_id="u1",
        session_id=created.session_id,
        answers=[AnswerRecord(row.id, row.question_id, "101:2", True, "2024-03-01T09:00:05.000Z")],
        queued_at="2024-03-01T09:00:06.000Z",
    ))
    return created, queue


def test_run_once_drains_queue(engine, storage):
    created, queue = queue_completion(engine, storage)
    result = OfflineSyncWorker(engine, queue, "u1").run_once()
    assert (result.synced, result.pending) == (1, 0)
    assert engine.get_session("u1", created.session_id).score_correct == 1


def test_run_once_skips_while_in_flight(engine, storage):
    _, queue = queue_completion(engine, storage)
    worker = OfflineSyncWorker(engine, queue, "u1")
    worker._in_flight.acquire()
    try:
        assert worker.run_once() is None
    finally:
        worker._in_flight.release()
    assert queue.pending_count("u1") == 1


def test_background_worker(engine, storage):
    _, queue = queue_completion(engine, storage)
    worker = OfflineSyncWorker(engine, queue, "u1", interval=60)
    worker.start()
    try:
        deadline = time.time() + 5
        while queue.pending_count("u1") and time.time() < deadline:
            time.sleep(0.01)
        assert queue.pending_count("u1") == 0
    finally:
        worker.stop()
