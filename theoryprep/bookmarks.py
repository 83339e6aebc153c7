"""Bookmarked questions, newest first, stored as a plain JSON array per user."""
import json
import logging
from typing import Callable, Dict, List, Optional

from theoryprep.models import iso_now, sort_options, timestamp_ms
from theoryprep.question_bank import QuestionBank
from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class BookmarkStore:
    def __init__(self, storage: KeyValueStorage, now: Callable[[], str] = iso_now):
        self.storage = storage
        self._now = now

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"store:theory:bookmarks:{user_id}"

    def _read(self, user_id: str) -> List[Dict[str, str]]:
        raw = self.storage.get_item(self.key_for(user_id))
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable bookmarks for {user_id}")
            return []
        if not isinstance(parsed, list):
            return []

        entries = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            question_id = str(item.get("questionId") or "").strip()
            if not question_id:
                continue
            saved_at = item.get("savedAt")
            if not isinstance(saved_at, str) or not saved_at.strip():
                saved_at = self._now()
            entries.append({"questionId": question_id, "savedAt": saved_at})
        entries.sort(key=lambda entry: timestamp_ms(entry["savedAt"]), reverse=True)
        return entries

    def _write(self, user_id: str, entries: List[Dict[str, str]]) -> None:
        self.storage.set_item(self.key_for(user_id), json.dumps(entries))

    def question_ids(self, user_id: str) -> List[str]:
        return [entry["questionId"] for entry in self._read(user_id)]

    def toggle(self, user_id: str, question_id: str) -> bool:
        """Returns True if the question is bookmarked after the call."""
        normalized = str(question_id or "").strip()
        if not normalized:
            return False
        entries = self._read(user_id)
        if any(entry["questionId"] == normalized for entry in entries):
            self._write(user_id, [entry for entry in entries if entry["questionId"] != normalized])
            return False
        self._write(user_id, [{"questionId": normalized, "savedAt": self._now()}] + entries)
        return True

    def load_questions(self, user_id: str, bank: QuestionBank, language: Optional[str] = None) -> List[Dict]:
        """Bookmarked questions resolved against the bank; ids no longer in the bank are skipped."""
        questions = []
        for entry in self._read(user_id):
            question = bank.get_question(language, entry["questionId"])
            if question is None:
                continue
            questions.append({
                "question_id": question.id,
                "saved_at": entry["savedAt"],
                "prompt": question.prompt,
                "image_url": question.image_url,
                "explanation": question.explanation,
                "options": [option.to_dict() for option in sort_options(list(question.options))],
            })
        return questions
