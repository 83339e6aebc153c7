"""Local-first driving-theory practice: sessions, progress and offline sync."""
from theoryprep.config import Settings, load_settings
from theoryprep.service import TheoryService

__all__ = ["Settings", "TheoryService", "load_settings"]
