"""Storage modules for NavGuard."""

from .allowlist import AllowlistStore
from .database import Database
from .session import SessionStore
from .settings import Settings, SettingsStore
from .verdict_cache import VerdictCache, VerdictCacheEntry

__all__ = [
    "AllowlistStore",
    "Database",
    "SessionStore",
    "Settings",
    "SettingsStore",
    "VerdictCache",
    "VerdictCacheEntry",
]
