"""SQLite database operations for NavGuard."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Bumped whenever the meaning of a verdict_cache row changes.
CACHE_SCHEMA_VERSION = 2


class Database:
    """Async SQLite database backing the allow-list, verdict cache and settings."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self):
        """Establish database connection and create tables."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        # Best-effort because some SQLite builds/settings may reject these pragmas.
        try:
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=5000")
            await self._connection.commit()
        except Exception:
            pass
        await self._create_tables()

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        async with self._lock:
            await self._connection.executescript(
                """
                    CREATE TABLE IF NOT EXISTS allowlist (
                        domain TEXT PRIMARY KEY
                    );

                    CREATE TABLE IF NOT EXISTS verdict_cache (
                        key TEXT PRIMARY KEY,
                        is_phishing INTEGER NOT NULL,
                        confidence REAL DEFAULT 0,
                        timestamp REAL NOT NULL,
                        explanation TEXT,
                        code TEXT
                    );

                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );
                """
            )
            await self._connection.commit()
            await self._migrate_verdict_cache_table()
            await self._create_indexes()

    async def _create_indexes(self) -> None:
        """Create indexes (best-effort, safe for older DBs)."""
        statements = [
            "CREATE INDEX IF NOT EXISTS idx_verdict_cache_timestamp ON verdict_cache(timestamp)",
        ]
        for stmt in statements:
            try:
                await self._connection.execute(stmt)
            except Exception:
                continue
        await self._connection.commit()

    async def _migrate_verdict_cache_table(self) -> None:
        """Add the schema_version column to caches written before it existed."""
        cursor = await self._connection.execute("PRAGMA table_info(verdict_cache)")
        rows = await cursor.fetchall()
        existing = {row["name"] for row in rows}

        migrations: list[str] = []
        if "schema_version" not in existing:
            # Rows from before the column existed read back as version 1.
            migrations.append("ALTER TABLE verdict_cache ADD COLUMN schema_version INTEGER DEFAULT 1")

        for stmt in migrations:
            try:
                await self._connection.execute(stmt)
            except Exception:
                continue
        if migrations:
            await self._connection.commit()

    # ------------------------------------------------------------------
    # Allow-list
    # ------------------------------------------------------------------

    async def replace_allowlist(self, domains: Iterable[str]) -> int:
        """Replace the whole allow-list in one transaction.

        On failure the transaction is rolled back and the previous contents
        are kept; the exception propagates to the caller.
        """
        rows = [(domain,) for domain in domains]
        async with self._lock:
            try:
                await self._connection.execute("DELETE FROM allowlist")
                if rows:
                    await self._connection.executemany(
                        "INSERT OR IGNORE INTO allowlist (domain) VALUES (?)",
                        rows,
                    )
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
        return len(rows)

    async def allowlist_contains(self, domain: str) -> bool:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT 1 FROM allowlist WHERE domain = ? LIMIT 1",
                (domain,),
            )
            row = await cursor.fetchone()
        return row is not None

    async def allowlist_count(self) -> int:
        async with self._lock:
            cursor = await self._connection.execute("SELECT COUNT(*) FROM allowlist")
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Verdict cache
    # ------------------------------------------------------------------

    async def get_cache_entry(self, key: str) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT key, is_phishing, confidence, timestamp, explanation, code, schema_version
                FROM verdict_cache WHERE key = ?
                """,
                (key,),
            )
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def upsert_cache_entry(
        self,
        *,
        key: str,
        is_phishing: bool,
        confidence: float,
        timestamp: float,
        explanation: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO verdict_cache
                    (key, is_phishing, confidence, timestamp, explanation, code, schema_version)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    is_phishing = excluded.is_phishing,
                    confidence = excluded.confidence,
                    timestamp = excluded.timestamp,
                    explanation = excluded.explanation,
                    code = excluded.code,
                    schema_version = excluded.schema_version
                """,
                (
                    key,
                    1 if is_phishing else 0,
                    float(confidence),
                    float(timestamp),
                    explanation,
                    code,
                    CACHE_SCHEMA_VERSION,
                ),
            )
            await self._connection.commit()

    async def delete_cache_entry(self, key: str) -> None:
        async with self._lock:
            await self._connection.execute("DELETE FROM verdict_cache WHERE key = ?", (key,))
            await self._connection.commit()

    async def delete_cache_entries_before(self, cutoff: float) -> int:
        """Delete cache rows stamped before `cutoff` (epoch seconds)."""
        async with self._lock:
            cursor = await self._connection.execute(
                "DELETE FROM verdict_cache WHERE timestamp < ?",
                (float(cutoff),),
            )
            await self._connection.commit()
        return cursor.rowcount or 0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_settings(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for `keys` (missing keys are omitted)."""
        wanted = list(keys)
        if not wanted:
            return {}
        placeholders = ",".join("?" for _ in wanted)
        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT key, value FROM settings WHERE key IN ({placeholders})",
                wanted,
            )
            rows = await cursor.fetchall()

        values: dict[str, Any] = {}
        for row in rows:
            try:
                values[row["key"]] = json.loads(row["value"])
            except (TypeError, ValueError):
                logger.warning("Ignoring unreadable setting %s", row["key"])
        return values

    async def set_setting(self, key: str, value: Any) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value)),
            )
            await self._connection.commit()
