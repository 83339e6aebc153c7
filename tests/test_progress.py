from theoryprep.models import (
    MARATHON,
    MOCK_EXAM,
    TOPIC_PRACTICE,
    QuestionStats,
    Session,
    SessionQuestion,
    TestSettings,
    Topic,
)
from theoryprep.progress import (
    build_overview,
    build_topic_stats,
    compute_session_progress,
    evaluate_result,
    should_stop_exam,
    split_into_packs,
    time_limit_seconds,
    topic_breakdown,
)


def make_topic(topic_id="5", question_ids=("a", "b", "c", "d"), order=1):
    return Topic(id=topic_id, slug=f"section-{topic_id}", title=f"Section {topic_id}", subtitle=" Theory ",
                 order=order, image_key=topic_id, question_ids=tuple(question_ids))


def make_session(mode, results, total=None):
    rows = []
    for position, result in enumerate(results, start=1):
        rows.append(SessionQuestion(
            id=f"s:q:{position}",
            question_id=f"q{position}",
            position=position,
            selected_option_id=None if result is None else "opt",
            is_correct=result,
        ))
    session = Session(id="s", user_id="u1", topic_id=None, mode=mode, total_questions=total or len(rows),
                      settings=TestSettings(), started_at="2024-03-01T09:00:00.000Z", questions=rows)
    session.recompute_score()
    return session


def test_untouched_topic_has_no_progress():
    stats = build_topic_stats(make_topic(), {})
    assert stats["seen_questions"] == 0
    assert stats["progress_percent"] == 0
    assert stats["completed"] is False
    assert stats["subtitle"] == "Theory"


def test_topic_stats_follow_last_answer():
    stats_map = {
        "a": QuestionStats("a", seen_count=2, correct_count=1, incorrect_count=1, last_is_correct=True),
        "b": QuestionStats("b", seen_count=1, incorrect_count=1, last_is_correct=False),
        "z": QuestionStats("z", seen_count=1, correct_count=1, last_is_correct=True),
    }
    stats = build_topic_stats(make_topic(), stats_map)
    assert stats["seen_questions"] == 2
    assert stats["answered_questions"] == 2
    assert (stats["correct_count"], stats["incorrect_count"]) == (1, 1)
    assert stats["progress_percent"] == 50


def test_completed_topic():
    stats_map = {qid: QuestionStats(qid, seen_count=1) for qid in "abcd"}
    assert build_topic_stats(make_topic(), stats_map)["completed"] is True


def test_overview_orders_and_sums():
    second = build_topic_stats(make_topic("2", ("x", "y"), order=2), {"x": QuestionStats("x", seen_count=1)})
    first = build_topic_stats(make_topic("1", ("a", "b"), order=1), {})
    overview = build_overview([second, first])
    assert [topic["id"] for topic in overview["topics"]] == ["1", "2"]
    assert overview["summary"] == {
        "total_topics": 2,
        "total_questions": 4,
        "seen_questions": 1,
        "not_seen_questions": 3,
        "progress_percent": 25,
    }


def test_session_progress():
    progress = compute_session_progress(make_session(TOPIC_PRACTICE, [True, False, None, None]))
    assert progress["answered"] == 2
    assert progress["unanswered"] == 2
    assert progress["progress_percent"] == 50
    assert progress["finished"] is False


def test_mistake_packs_of_twenty():
    packs = split_into_packs([str(i) for i in range(45)])
    assert [pack["total_questions"] for pack in packs] == [20, 20, 5]
    assert packs[2]["id"] == "3"
    assert packs[2]["question_ids"][0] == "40"
    assert split_into_packs([]) == []


def test_mock_exam_rules():
    two_wrong = make_session(MOCK_EXAM, [True] * 18 + [False] * 2)
    assert evaluate_result(two_wrong)["passed"] is True
    assert should_stop_exam(two_wrong) is False

    three_wrong = make_session(MOCK_EXAM, [True] * 17 + [False] * 3)
    assert should_stop_exam(three_wrong) is True
    result = evaluate_result(three_wrong)
    assert (result["passed"], result["reason"]) == (False, "too_many_mistakes")

    assert evaluate_result(two_wrong, timed_out=True)["reason"] == "timeout"


def test_marathon_pass_mark():
    passing = make_session(MARATHON, [True] * 40 + [False] * 10)
    assert evaluate_result(passing)["passed"] is True
    failing = make_session(MARATHON, [True] * 39 + [False] * 11)
    result = evaluate_result(failing)
    assert (result["passed"], result["reason"], result["score_percent"]) == (False, "below_pass_mark", 78)


def test_time_limits():
    assert time_limit_seconds(make_session(MOCK_EXAM, [None] * 20)) == 25 * 60
    assert time_limit_seconds(make_session(MARATHON, [None] * 100)) == 120 * 60
    assert time_limit_seconds(make_session(MARATHON, [None] * 10), marathon_tier="marathon-150") == 180 * 60
    assert time_limit_seconds(make_session(TOPIC_PRACTICE, [None] * 10)) == 300
    assert time_limit_seconds(make_session(TOPIC_PRACTICE, [None] * 40)) == 600


def test_topic_breakdown_weakest_first():
    session = make_session(MOCK_EXAM, [True, False, True, True])
    breakdown = topic_breakdown(session, {"q1": "a", "q2": "b", "q3": "b", "q4": "a"})
    assert list(breakdown) == ["b", "a"]
    assert breakdown["b"]["accuracy_percent"] == 50
