"""
Progress read models and exam rules. Pure functions, no I/O.

Topic progress counts a question as seen once it has any recorded answer;
correct/incorrect per topic follow each question's last answer.
"""
import logging
from typing import Dict, List, Optional

from theoryprep.models import (
    MARATHON,
    MOCK_EXAM,
    Question,
    QuestionStats,
    Session,
    Topic,
    sort_options,
    to_count,
)

logger = logging.getLogger(__name__)

# Mock exam
MOCK_EXAM_QUESTIONS = 20
MOCK_EXAM_MINUTES = 25
MOCK_EXAM_ALLOWED_WRONG = 2
MOCK_EXAM_WRONG_LIMIT = MOCK_EXAM_ALLOWED_WRONG + 1

# Marathon tiers: (question count, minutes)
MARATHON_TIERS = {
    "marathon-50": (50, 60),
    "marathon-100": (100, 120),
    "marathon-150": (150, 180),
}
MARATHON_PASS_MARK = 80

# Topic tests
SECONDS_PER_QUESTION = 15
MIN_TEST_SECONDS = 5 * 60

MISTAKE_PACK_SIZE = 20

EMPTY_SUMMARY = {
    "total_topics": 0,
    "total_questions": 0,
    "seen_questions": 0,
    "not_seen_questions": 0,
    "progress_percent": 0,
}


def percent(part: int, total: int) -> int:
    return int(round(part / total * 100)) if total > 0 else 0


def build_topic_stats(topic: Topic, stats_map: Dict[str, QuestionStats]) -> Dict:
    seen = answered = correct = incorrect = 0
    for question_id in topic.question_ids:
        stats = stats_map.get(question_id)
        if stats is None:
            continue
        if to_count(stats.seen_count) > 0:
            seen += 1
        if to_count(stats.correct_count) + to_count(stats.incorrect_count) > 0:
            answered += 1
        if stats.last_is_correct is True:
            correct += 1
        elif stats.last_is_correct is False:
            incorrect += 1

    total = len(topic.question_ids)
    return {
        "id": topic.id,
        "slug": topic.slug,
        "title": topic.title,
        "subtitle": (topic.subtitle or "").strip(),
        "order": to_count(topic.order),
        "image_key": topic.image_key,
        "total_questions": total,
        "seen_questions": seen,
        "answered_questions": answered,
        "correct_count": correct,
        "incorrect_count": incorrect,
        "completed": total > 0 and seen >= total,
        "progress_percent": percent(seen, total),
    }


def build_overview(topics: List[Dict]) -> Dict:
    """Aggregate topic progress dicts; topics come back ordered by order, then title."""
    ordered = sorted(topics, key=lambda topic: (topic["order"], topic["title"]))
    total = sum(topic["total_questions"] for topic in ordered)
    seen = sum(topic["seen_questions"] for topic in ordered)
    return {
        "summary": {
            "total_topics": len(ordered),
            "total_questions": total,
            "seen_questions": seen,
            "not_seen_questions": max(0, total - seen),
            "progress_percent": percent(seen, total),
        },
        "topics": ordered,
    }


def compute_session_progress(session: Session) -> Dict:
    answered = sum(1 for row in session.questions if row.answered)
    total = len(session.questions)
    return {
        "session_id": session.id,
        "total_questions": total,
        "answered": answered,
        "unanswered": total - answered,
        "correct": session.score_correct,
        "incorrect": session.score_incorrect,
        "progress_percent": percent(answered, total),
        "finished": bool(session.finished_at),
    }


def split_into_packs(question_ids: List[str], pack_size: int = MISTAKE_PACK_SIZE) -> List[Dict]:
    size = max(1, int(pack_size))
    packs = []
    for index in range(0, len(question_ids), size):
        chunk = question_ids[index : index + size]
        packs.append({
            "id": str(index // size + 1),
            "total_questions": len(chunk),
            "question_ids": chunk,
        })
    return packs


def question_to_dict(question: Question) -> Dict:
    return {
        "question_id": question.id,
        "prompt": question.prompt,
        "image_url": question.image_url,
        "explanation": question.explanation,
        "options": [option.to_dict() for option in sort_options(list(question.options))],
    }


def topic_test_seconds(question_count: int) -> int:
    return max(MIN_TEST_SECONDS, question_count * SECONDS_PER_QUESTION)


def time_limit_seconds(session: Session, marathon_tier: Optional[str] = None) -> int:
    if session.mode == MOCK_EXAM:
        return MOCK_EXAM_MINUTES * 60
    if session.mode == MARATHON:
        tier = MARATHON_TIERS.get(marathon_tier or "")
        if tier is None:
            tier = next((t for t in MARATHON_TIERS.values() if t[0] >= session.total_questions),
                        MARATHON_TIERS["marathon-150"])
        return tier[1] * 60
    return topic_test_seconds(session.total_questions)


def should_stop_exam(session: Session) -> bool:
    """A mock exam ends early once the wrong-answer limit is reached."""
    return session.mode == MOCK_EXAM and session.score_incorrect >= MOCK_EXAM_WRONG_LIMIT


def evaluate_result(session: Session, timed_out: bool = False) -> Dict:
    """
    Pass/fail for a finished session.

    Mock exam: at most MOCK_EXAM_ALLOWED_WRONG wrong answers and no timeout.
    Marathon and practice: correct share of all questions >= MARATHON_PASS_MARK.
    """
    total = session.total_questions or len(session.questions)
    score_percent = percent(session.score_correct, total)
    if session.mode == MOCK_EXAM:
        if timed_out:
            passed, reason = False, "timeout"
        elif session.score_incorrect > MOCK_EXAM_ALLOWED_WRONG:
            passed, reason = False, "too_many_mistakes"
        else:
            passed, reason = True, "passed"
    else:
        passed = score_percent >= MARATHON_PASS_MARK and not timed_out
        reason = "passed" if passed else ("timeout" if timed_out else "below_pass_mark")

    return {
        "session_id": session.id,
        "mode": session.mode,
        "passed": passed,
        "reason": reason,
        "score_correct": session.score_correct,
        "score_incorrect": session.score_incorrect,
        "unanswered": session.unanswered_count,
        "score_percent": score_percent,
    }


def topic_breakdown(session: Session, topic_of: Dict[str, str]) -> Dict:
    """Per-topic correct/total for a session, weakest topics first (like a lag analysis)."""
    breakdown: Dict[str, Dict[str, int]] = {}
    for row in session.questions:
        topic_id = topic_of.get(row.question_id, "unknown")
        entry = breakdown.setdefault(topic_id, {"total": 0, "correct": 0})
        entry["total"] += 1
        if row.is_correct:
            entry["correct"] += 1
    ranked = sorted(breakdown.items(), key=lambda item: (item[1]["correct"] / item[1]["total"], item[0]))
    return {topic_id: {**entry, "accuracy_percent": percent(entry["correct"], entry["total"])}
            for topic_id, entry in ranked}
