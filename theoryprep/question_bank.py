"""
Localized static question bank.

Raw per-language records look like
    {id, question, answers[], correct_answer (1-based), topic | question_category,
     image_q?, correct_ans_alls?}
Records without a prompt or without a single non-empty answer are dropped.
Topics at or below SMALL_TOPIC_THRESHOLD questions are folded into the nearest
larger neighbour. Full Question objects are materialized lazily and memoized.
"""
import json
import logging
import re
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from theoryprep.config import DEFAULT_LANGUAGE, normalize_language
from theoryprep.models import Option, Question, Topic

logger = logging.getLogger(__name__)

SMALL_TOPIC_THRESHOLD = 10
GENERAL_TOPIC_ID = "general"
OPTION_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
UNORDERED = sys.maxsize

TOPIC_TITLE_PREFIX = {
    "uz-Latn": "Bo'lim",
    "uz-Cyrl": "Бўлим",
    "ru": "Раздел",
}

TOPIC_SUBTITLE = {
    "uz-Latn": "Nazariy savollar",
    "uz-Cyrl": "Назарий саволлар",
    "ru": "Теоретические вопросы",
}

RawQuestion = Dict[str, object]
QuestionSource = Callable[[str], List[RawQuestion]]


def normalize_text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_id(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def topic_id_for(raw: RawQuestion) -> str:
    """topic, then question_category, then the shared 'general' bucket."""
    return normalize_id(raw.get("topic")) or normalize_id(raw.get("question_category")) or GENERAL_TOPIC_ID


def topic_slug(topic_id: str) -> str:
    return "section-" + re.sub(r"[^a-zA-Z0-9]+", "-", topic_id).lower()


def numeric_order(value: str) -> int:
    try:
        return int(float(value) // 1)
    except (TypeError, ValueError, OverflowError):
        return UNORDERED


def order_key(value: str) -> Tuple[int, str]:
    return numeric_order(value), value


def option_label(index: int) -> str:
    if 0 <= index < len(OPTION_LETTERS):
        return OPTION_LETTERS[index]
    return str(index + 1)


def correct_index(value) -> int:
    """1-based source index -> 0-based; -1 when missing or garbage."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return -1
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return -1
    return max(-1, int(parsed // 1) - 1)


def has_valid_options(raw: RawQuestion) -> bool:
    answers = raw.get("answers")
    if not isinstance(answers, list):
        return False
    return any(normalize_text(answer) for answer in answers)


def build_small_topic_merge_map(topic_counts: Dict[str, int], threshold: int = SMALL_TOPIC_THRESHOLD) -> Dict[str, str]:
    """
    Map each small topic to the topic that absorbs it.

    Search order: nearest preceding non-small topic, else nearest following one.
    A small topic with no large neighbour anywhere stays on its own.
    """
    ordered = sorted(topic_counts, key=order_key)

    def is_small(topic_id: str) -> bool:
        return topic_counts.get(topic_id, 0) <= threshold

    merge_map: Dict[str, str] = {}
    for index, topic_id in enumerate(ordered):
        if not is_small(topic_id):
            continue
        target = next((prev for prev in reversed(ordered[:index]) if not is_small(prev)), "")
        if not target:
            target = next((nxt for nxt in ordered[index + 1:] if not is_small(nxt)), "")
        if target:
            merge_map[topic_id] = target
    return merge_map


@dataclass
class LanguageBank:
    language: str
    topics: List[Topic]
    topic_by_id: Dict[str, Topic]
    topic_by_slug: Dict[str, Topic]
    question_topic_id: Dict[str, str]
    raw_by_id: Dict[str, RawQuestion]
    _questions: Dict[str, Question] = field(default_factory=dict)
    _topic_questions: Dict[str, List[Question]] = field(default_factory=dict)

    @property
    def all_question_ids(self) -> List[str]:
        return [question_id for topic in self.topics for question_id in topic.question_ids]

    def has_question(self, question_id: str) -> bool:
        return question_id in self.question_topic_id


class QuestionBank:
    """Process-wide read model, one immutable LanguageBank per language."""

    def __init__(self, source: QuestionSource, image_resolver: Optional[Callable[[str], str]] = None,
                 topic_titles: Optional[Dict[str, Dict[str, str]]] = None):
        self._source = source
        self._image_resolver = image_resolver or (lambda key: key)
        self._topic_titles = topic_titles or {}
        self._banks: Dict[str, LanguageBank] = {}
        self._lock = threading.Lock()

    def get_bank(self, language: Optional[str] = None) -> LanguageBank:
        lang = normalize_language(language)
        bank = self._banks.get(lang)
        if bank is not None:
            return bank
        with self._lock:
            bank = self._banks.get(lang)
            if bank is None:
                bank = self._build(lang)
                self._banks[lang] = bank
        return bank

    def _topic_title(self, language: str, topic_id: str) -> str:
        localized = self._topic_titles.get(language, {}).get(topic_id)
        if localized:
            return localized
        prefix = TOPIC_TITLE_PREFIX.get(language, TOPIC_TITLE_PREFIX[DEFAULT_LANGUAGE])
        return f"{prefix} {topic_id}"

    def _build(self, language: str) -> LanguageBank:
        raw_questions = self._source(language) or []
        drafts: List[Tuple[str, str, RawQuestion]] = []
        topic_counts: Dict[str, int] = {}

        for raw in raw_questions:
            if not isinstance(raw, dict):
                continue
            question_id = normalize_id(raw.get("id"))
            if not question_id:
                continue
            if not normalize_text(raw.get("question")):
                continue
            if not has_valid_options(raw):
                continue
            topic_id = topic_id_for(raw)
            drafts.append((question_id, topic_id, raw))
            topic_counts[topic_id] = topic_counts.get(topic_id, 0) + 1

        merge_map = build_small_topic_merge_map(topic_counts)
        raw_by_id: Dict[str, RawQuestion] = {}
        question_topic_id: Dict[str, str] = {}
        ids_by_topic: Dict[str, List[str]] = {}

        for question_id, topic_id, raw in drafts:
            merged = merge_map.get(topic_id, topic_id)
            raw_by_id[question_id] = raw
            question_topic_id[question_id] = merged
            ids_by_topic.setdefault(merged, []).append(question_id)

        topics: List[Topic] = []
        for index, topic_id in enumerate(sorted(ids_by_topic, key=order_key)):
            topics.append(Topic(
                id=topic_id,
                slug=topic_slug(topic_id),
                title=self._topic_title(language, topic_id),
                subtitle=TOPIC_SUBTITLE.get(language, ""),
                order=index + 1,
                image_key=topic_id,
                question_ids=tuple(sorted(ids_by_topic[topic_id], key=order_key)),
            ))

        logger.info(
            f"Built {language} question bank: {len(question_topic_id)} questions, "
            f"{len(topics)} topics ({len(merge_map)} small topics merged)"
        )
        return LanguageBank(
            language=language,
            topics=topics,
            topic_by_id={topic.id: topic for topic in topics},
            topic_by_slug={topic.slug: topic for topic in topics},
            question_topic_id=question_topic_id,
            raw_by_id=raw_by_id,
        )

    def _materialize(self, bank: LanguageBank, question_id: str) -> Optional[Question]:
        cached = bank._questions.get(question_id)
        if cached is not None:
            return cached
        raw = bank.raw_by_id.get(question_id)
        if raw is None:
            return None
        prompt = normalize_text(raw.get("question"))
        if not prompt:
            return None

        answers = raw.get("answers") if isinstance(raw.get("answers"), list) else []
        texts = [normalize_text(answer) for answer in answers]
        texts = [text for text in texts if text]
        if not texts:
            return None
        right = correct_index(raw.get("correct_answer"))
        options = tuple(
            Option(
                id=f"{question_id}:{index + 1}",
                label=option_label(index),
                text=text,
                is_correct=index == right,
                order=index + 1,
            )
            for index, text in enumerate(texts)
        )

        image_key = normalize_text(raw.get("image_q"))
        question = Question(
            id=question_id,
            topic_id=bank.question_topic_id.get(question_id) or topic_id_for(raw),
            prompt=prompt,
            image_url=self._image_resolver(image_key) if image_key else None,
            explanation=normalize_text(raw.get("correct_ans_alls")) or None,
            options=options,
        )
        bank._questions[question_id] = question
        return question

    def get_question(self, language: Optional[str], question_id: str) -> Optional[Question]:
        return self._materialize(self.get_bank(language), question_id)

    def get_questions_by_topic(self, language: Optional[str], topic_id: str) -> List[Question]:
        bank = self.get_bank(language)
        cached = bank._topic_questions.get(topic_id)
        if cached is not None:
            return cached
        topic = bank.topic_by_id.get(topic_id)
        question_ids = topic.question_ids if topic else ()
        questions = [q for q in (self._materialize(bank, qid) for qid in question_ids) if q is not None]
        bank._topic_questions[topic_id] = questions
        return questions

    def get_topics(self, language: Optional[str] = None) -> List[Topic]:
        return self.get_bank(language).topics


def json_question_source(data_dir: Path) -> QuestionSource:
    """Load `{data_dir}/{language}/questions.json`; a missing file is an empty bank."""

    def load(language: str) -> List[RawQuestion]:
        path = Path(data_dir) / language / "questions.json"
        if not path.exists():
            logger.warning(f"Question file not found: {path}")
            return []
        with path.open("r", encoding="utf-8") as f:
            loaded = json.load(f)
        if isinstance(loaded, dict) and isinstance(loaded.get("default"), list):
            loaded = loaded["default"]
        return loaded if isinstance(loaded, list) else []

    return load


def url_image_resolver(base_url: str) -> Callable[[str], str]:
    base = base_url.rstrip("/")
    if not base:
        return lambda key: key
    return lambda key: key if "://" in key else f"{base}/{key.lstrip('/')}"
