"""
Domain records for theory practice.

Python attributes are snake_case; the persisted JSON keeps the camelCase field
names already on devices, so every record converts through to_dict/from_dict.
from_dict is lenient: unknown or malformed fields fall back to safe defaults.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

TOPIC_PRACTICE = "topic_practice"
MOCK_EXAM = "mock_exam"
MARATHON = "marathon"
MISTAKES_PRACTICE = "mistakes_practice"
TEST_MODES = (TOPIC_PRACTICE, MOCK_EXAM, MARATHON, MISTAKES_PRACTICE)


def to_count(value: Any) -> int:
    """Non-negative integer counter; anything non-numeric counts as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(math.floor(value)))


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _opt_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def iso_now(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and a Z suffix."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def timestamp_ms(value: Optional[str]) -> int:
    """Parse an ISO timestamp into epoch milliseconds; unparseable -> 0."""
    if not value:
        return 0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


@dataclass
class TestSettings:
    __test__ = False  # not a pytest test class

    show_mistakes_only: bool = False
    shuffle_questions: bool = True
    auto_advance: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "showMistakesOnly": self.show_mistakes_only,
            "shuffleQuestions": self.shuffle_questions,
            "autoAdvance": self.auto_advance,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "TestSettings":
        if not isinstance(raw, dict):
            return cls()
        shuffle = raw.get("shuffleQuestions")
        return cls(
            show_mistakes_only=bool(raw.get("showMistakesOnly")),
            shuffle_questions=shuffle if isinstance(shuffle, bool) else cls.shuffle_questions,
            auto_advance=bool(raw.get("autoAdvance")),
        )


DEFAULT_TEST_SETTINGS = TestSettings()


@dataclass(frozen=True)
class Option:
    id: str
    label: str
    text: str
    is_correct: bool
    order: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "text": self.text,
            "isCorrect": self.is_correct,
            "order": self.order,
        }


def sort_options(options: List[Option]) -> List[Option]:
    """Display order: explicit order field, ties broken by label."""
    return sorted(options, key=lambda option: (option.order, option.label))


@dataclass(frozen=True)
class Question:
    id: str
    topic_id: str
    prompt: str
    image_url: Optional[str]
    explanation: Optional[str]
    options: tuple

    def find_option(self, option_id: str) -> Optional[Option]:
        return next((option for option in self.options if option.id == option_id), None)


@dataclass(frozen=True)
class Topic:
    id: str
    slug: str
    title: str
    subtitle: str
    order: int
    image_key: Optional[str]
    question_ids: tuple


@dataclass
class QuestionStats:
    question_id: str
    seen_count: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    last_is_correct: Optional[bool] = None
    last_answered_at: Optional[str] = None

    @property
    def has_mistake(self) -> bool:
        return self.incorrect_count > 0 or self.last_is_correct is False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "seenCount": self.seen_count,
            "correctCount": self.correct_count,
            "incorrectCount": self.incorrect_count,
            "lastIsCorrect": self.last_is_correct,
            "lastAnsweredAt": self.last_answered_at,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "QuestionStats":
        item = raw if isinstance(raw, dict) else {}
        return cls(
            question_id=str(item.get("questionId") or "").strip(),
            seen_count=to_count(item.get("seenCount")),
            correct_count=to_count(item.get("correctCount")),
            incorrect_count=to_count(item.get("incorrectCount")),
            last_is_correct=_opt_bool(item.get("lastIsCorrect")),
            last_answered_at=_opt_str(item.get("lastAnsweredAt")),
        )


@dataclass
class SessionQuestion:
    id: str
    question_id: str
    position: int
    selected_option_id: Optional[str] = None
    is_correct: Optional[bool] = None
    answered_at: Optional[str] = None

    @property
    def answered(self) -> bool:
        return bool(self.selected_option_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "questionId": self.question_id,
            "position": self.position,
            "selectedOptionId": self.selected_option_id,
            "isCorrect": self.is_correct,
            "answeredAt": self.answered_at,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "SessionQuestion":
        item = raw if isinstance(raw, dict) else {}
        return cls(
            id=str(item.get("id") or "").strip(),
            question_id=str(item.get("questionId") or "").strip(),
            position=to_count(item.get("position")),
            selected_option_id=_opt_str(item.get("selectedOptionId")),
            is_correct=_opt_bool(item.get("isCorrect")),
            answered_at=_opt_str(item.get("answeredAt")),
        )


@dataclass
class Session:
    id: str
    user_id: str
    topic_id: Optional[str]
    mode: str
    total_questions: int
    settings: TestSettings
    started_at: str
    finished_at: Optional[str] = None
    score_correct: int = 0
    score_incorrect: int = 0
    questions: List[SessionQuestion] = field(default_factory=list)

    def find_question(self, session_question_id: str) -> Optional[SessionQuestion]:
        return next((row for row in self.questions if row.id == session_question_id), None)

    def recompute_score(self) -> None:
        """Rescan every row; the answered-count invariant holds by construction."""
        self.score_correct = sum(1 for row in self.questions if row.answered and row.is_correct is True)
        self.score_incorrect = sum(1 for row in self.questions if row.answered and row.is_correct is False)

    @property
    def unanswered_count(self) -> int:
        return sum(1 for row in self.questions if not row.answered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "topicId": self.topic_id,
            "mode": self.mode,
            "totalQuestions": self.total_questions,
            "settings": self.settings.to_dict(),
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "scoreCorrect": self.score_correct,
            "scoreIncorrect": self.score_incorrect,
            "questions": [row.to_dict() for row in self.questions],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "Session":
        item = raw if isinstance(raw, dict) else {}
        rows = item.get("questions") if isinstance(item.get("questions"), list) else []
        questions = [SessionQuestion.from_dict(row) for row in rows]
        questions = [row for row in questions if row.id]
        questions.sort(key=lambda row: row.position)
        mode = item.get("mode")
        return cls(
            id=str(item.get("id") or "").strip(),
            user_id=str(item.get("userId") or "").strip(),
            topic_id=_opt_str(item.get("topicId")),
            mode=mode if mode in TEST_MODES else TOPIC_PRACTICE,
            total_questions=to_count(item.get("totalQuestions")),
            settings=TestSettings.from_dict(item.get("settings")),
            started_at=_opt_str(item.get("startedAt")) or iso_now(),
            finished_at=_opt_str(item.get("finishedAt")),
            score_correct=to_count(item.get("scoreCorrect")),
            score_incorrect=to_count(item.get("scoreIncorrect")),
            questions=questions,
        )


@dataclass
class AnswerRecord:
    """One answered session question, as accumulated client-side or queued offline."""

    session_question_id: str
    question_id: str
    selected_option_id: str
    is_correct: bool
    answered_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionQuestionId": self.session_question_id,
            "questionId": self.question_id,
            "selectedOptionId": self.selected_option_id,
            "isCorrect": self.is_correct,
            "answeredAt": self.answered_at,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["AnswerRecord"]:
        if not isinstance(raw, dict):
            return None
        session_question_id = str(raw.get("sessionQuestionId") or "").strip()
        if not session_question_id:
            return None
        return cls(
            session_question_id=session_question_id,
            question_id=str(raw.get("questionId") or "").strip(),
            selected_option_id=str(raw.get("selectedOptionId") or "").strip(),
            is_correct=bool(raw.get("isCorrect")),
            answered_at=_opt_str(raw.get("answeredAt")) or "",
        )


@dataclass
class PendingSessionCompletion:
    user_id: str
    session_id: str
    answers: List[AnswerRecord]
    queued_at: str
    kind: str = "complete_session"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "answers": [answer.to_dict() for answer in self.answers],
            "queuedAt": self.queued_at,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["PendingSessionCompletion"]:
        if not isinstance(raw, dict):
            return None
        session_id = str(raw.get("sessionId") or "").strip()
        user_id = str(raw.get("userId") or "").strip()
        if not session_id or not user_id:
            return None
        answers = raw.get("answers") if isinstance(raw.get("answers"), list) else []
        parsed = [AnswerRecord.from_dict(answer) for answer in answers]
        return cls(
            user_id=user_id,
            session_id=session_id,
            answers=[answer for answer in parsed if answer is not None],
            queued_at=_opt_str(raw.get("queuedAt")) or "",
            kind=str(raw.get("kind") or "complete_session"),
        )


@dataclass
class CreatedSessionQuestion:
    id: str
    question_id: str
    position: int


@dataclass
class CreatedSession:
    session_id: str
    started_at: str
    session_questions: List[CreatedSessionQuestion]


@dataclass
class SubmitAnswerResult:
    is_correct: bool
    already_answered: bool
    finished: bool
    score_correct: int
    score_incorrect: int


@dataclass
class CompleteSessionResult:
    score_correct: int
    score_incorrect: int
    finished_at: str
