"""Persisted test toggles, stored as "0"/"1" strings."""
import logging

from theoryprep.models import DEFAULT_TEST_SETTINGS, TestSettings
from theoryprep.storage import KeyValueStorage

logger = logging.getLogger(__name__)

SETTINGS_KEYS = {
    "show_mistakes_only": "settings:showMistakesOnly",
    "shuffle_questions": "settings:shuffleQuestions",
    "auto_advance": "settings:autoAdvance",
}


def to_storage_value(value: bool) -> str:
    return "1" if value else "0"


def from_storage_value(value, fallback: bool) -> bool:
    if value == "1":
        return True
    if value == "0":
        return False
    return fallback


def auto_advance_key(slug: str) -> str:
    normalized = slug.strip() if slug and slug.strip() else "default"
    return f"test:autoAdvance:{normalized}"


class TestSettingsStore:
    __test__ = False

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def load(self) -> TestSettings:
        values = {
            field: from_storage_value(self.storage.get_item(key), getattr(DEFAULT_TEST_SETTINGS, field))
            for field, key in SETTINGS_KEYS.items()
        }
        return TestSettings(**values)

    def set(self, field: str, value: bool) -> None:
        key = SETTINGS_KEYS.get(field)
        if key is None:
            raise KeyError(f"Unknown test setting: {field}")
        self.storage.set_item(key, to_storage_value(bool(value)))

    def save(self, settings: TestSettings) -> None:
        for field in SETTINGS_KEYS:
            self.set(field, getattr(settings, field))

    def auto_advance_for(self, slug: str) -> bool:
        return self.storage.get_item(auto_advance_key(slug)) == "1"

    def set_auto_advance_for(self, slug: str, value: bool) -> None:
        self.storage.set_item(auto_advance_key(slug), to_storage_value(bool(value)))
