"""Time-bounded cache of remote classification verdicts.

Entries are keyed by the stripped URL (host + path) so different paths on the
same host are cached independently. Every operation degrades to a miss or a
no-op on storage errors; a persistence fault never blocks a navigation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .database import CACHE_SCHEMA_VERSION, Database

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class VerdictCacheEntry:
    """A remote verdict remembered for one stripped URL."""

    key: str
    is_phishing: bool
    confidence: float = 0.0
    timestamp: float = 0.0
    explanation: Optional[str] = None
    remediation_code: Optional[str] = None
    schema_version: int = CACHE_SCHEMA_VERSION

    @classmethod
    def from_row(cls, row: dict) -> "VerdictCacheEntry":
        return cls(
            key=str(row["key"]),
            is_phishing=bool(row["is_phishing"]),
            confidence=float(row.get("confidence") or 0.0),
            timestamp=float(row.get("timestamp") or 0.0),
            explanation=row.get("explanation"),
            remediation_code=row.get("code"),
            schema_version=int(row.get("schema_version") or 1),
        )

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return now - self.timestamp >= ttl_seconds


class VerdictCache:
    """SQLite-backed verdict cache with a fixed TTL."""

    def __init__(
        self,
        database: Database,
        *,
        ttl_days: int = DEFAULT_TTL_DAYS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.ttl_seconds = ttl_days * SECONDS_PER_DAY
        self.enabled = enabled
        self._clock = clock

    async def get(self, stripped_url: str) -> Optional[VerdictCacheEntry]:
        """Return a fresh entry, or None when disabled, absent, stale or unreadable."""
        if not self.enabled:
            return None
        if not stripped_url:
            logger.error("Empty key passed to verdict cache lookup")
            return None

        try:
            row = await self.database.get_cache_entry(stripped_url)
        except Exception as exc:
            logger.error("Verdict cache read failed for %s: %s", stripped_url, exc)
            return None
        if not row:
            return None

        try:
            entry = VerdictCacheEntry.from_row(row)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable cache entry for %s: %s", stripped_url, exc)
            await self.delete(stripped_url)
            return None

        if entry.schema_version != CACHE_SCHEMA_VERSION:
            logger.info(
                "Discarding cache entry for %s written with schema v%s",
                stripped_url,
                entry.schema_version,
            )
            await self.delete(stripped_url)
            return None

        if entry.is_expired(self.ttl_seconds, self._clock()):
            await self.delete(stripped_url)
            return None

        return entry

    async def put(self, stripped_url: str, entry: VerdictCacheEntry) -> None:
        """Upsert an entry, always stamping it with the current time."""
        if not self.enabled:
            return
        entry.key = stripped_url
        entry.timestamp = self._clock()
        entry.schema_version = CACHE_SCHEMA_VERSION
        try:
            await self.database.upsert_cache_entry(
                key=stripped_url,
                is_phishing=entry.is_phishing,
                confidence=entry.confidence,
                timestamp=entry.timestamp,
                explanation=entry.explanation,
                code=entry.remediation_code,
            )
        except Exception as exc:
            logger.error("Failed to save verdict cache entry for %s: %s", stripped_url, exc)

    async def delete(self, stripped_url: str) -> None:
        try:
            await self.database.delete_cache_entry(stripped_url)
        except Exception as exc:
            logger.error("Failed to remove cache entry for %s: %s", stripped_url, exc)

    async def purge_expired(self) -> int:
        """Delete every stale entry; returns the number removed."""
        cutoff = self._clock() - self.ttl_seconds
        try:
            removed = await self.database.delete_cache_entries_before(cutoff)
        except Exception as exc:
            logger.warning("Verdict cache purge failed: %s", exc)
            return 0
        if removed:
            logger.info("Purged %s expired verdict cache entries", removed)
        return removed
