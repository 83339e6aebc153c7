"""Environment-driven settings. Reads .env once at import."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_LANGUAGES = ("uz-Latn", "uz-Cyrl", "ru")
DEFAULT_LANGUAGE = "uz-Latn"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str]
    supabase_key: Optional[str]
    offline_sync_enabled: bool = True
    stats_table: str = "user_theory_question_stats"
    sessions_table: str = "user_theory_sessions"
    remote_timeout: float = 12.0
    store_path: str = "theory_store.db"
    data_dir: Path = Path("data/questions")
    image_base_url: str = ""
    sync_interval: float = 15.0
    default_language: str = DEFAULT_LANGUAGE

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=os.getenv("SUPABASE_KEY"),
        offline_sync_enabled=_env_flag("THEORY_OFFLINE_SYNC_ENABLED", True),
        stats_table=os.getenv("THEORY_STATS_TABLE") or "user_theory_question_stats",
        sessions_table=os.getenv("THEORY_SESSIONS_TABLE") or "user_theory_sessions",
        remote_timeout=_env_float("THEORY_REMOTE_TIMEOUT", 12.0),
        store_path=os.getenv("THEORY_STORE_PATH") or "theory_store.db",
        data_dir=Path(os.getenv("THEORY_DATA_DIR") or "data/questions"),
        image_base_url=os.getenv("THEORY_IMAGE_BASE_URL") or "",
        sync_interval=_env_float("THEORY_SYNC_INTERVAL", 15.0),
        default_language=normalize_language(os.getenv("THEORY_LANGUAGE")),
    )


def normalize_language(language: Optional[str]) -> str:
    """Map any language code onto a supported one (unknown -> default)."""
    if language and language.strip() in SUPPORTED_LANGUAGES:
        return language.strip()
    return DEFAULT_LANGUAGE
