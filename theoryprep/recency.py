"""Recently served question ids per user, language and mode (mock / marathon)."""
import json
import logging
from typing import List

from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class RecencyHistory:
    MOCK = "mock"
    MARATHON = "marathon"

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    @staticmethod
    def key_for(user_id: str, language: str, scope: str) -> str:
        return f"store:theory:{scope}-history:{language}:{user_id}"

    def read(self, user_id: str, language: str, scope: str) -> List[str]:
        raw = self.storage.get_item(self.key_for(user_id, language, scope))
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding unreadable {scope} history for {user_id}")
            return []
        if not isinstance(parsed, list):
            return []
        ids = [str(item if item is not None else "").strip() for item in parsed]
        return [question_id for question_id in ids if question_id]

    def write(self, user_id: str, language: str, scope: str, question_ids: List[str]) -> None:
        self.storage.set_item(self.key_for(user_id, language, scope), json.dumps(question_ids))
