"""Persistent allow-list of trusted registrable domains."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

import aiohttp

from ..utils.allowlist import parse_allowlist_text, read_allowlist
from .database import Database

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 5.0


@dataclass
class RefreshResult:
    """Outcome of one allow-list refresh."""

    updated: bool
    domain_count: int = 0
    sources_ok: list[str] = field(default_factory=list)
    sources_failed: list[str] = field(default_factory=list)
    message: str = ""


class AllowlistStore:
    """Set of permanently trusted domains, replaced wholesale on every refresh."""

    def __init__(
        self,
        database: Database,
        sources: Sequence[str],
        *,
        local_path: Optional[Path] = None,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        self.database = database
        self.sources = list(sources)
        self.local_path = local_path
        self.fetch_timeout = fetch_timeout
        self.last_refresh: Optional[RefreshResult] = None

    async def _fetch_source(self, session: aiohttp.ClientSession, url: str) -> Optional[set[str]]:
        """Fetch one newline-delimited list; None when the source is unusable."""
        timeout = aiohttp.ClientTimeout(total=self.fetch_timeout)
        try:
            async with session.get(url, timeout=timeout) as resp:
                if resp.status != 200:
                    logger.error("Failed to fetch allow-list from %s: HTTP %s", url, resp.status)
                    return None
                text = await resp.text()
        except asyncio.TimeoutError:
            logger.error("Failed to fetch allow-list from %s: timed out", url)
            return None
        except aiohttp.ClientError as exc:
            logger.error("Failed to fetch allow-list from %s: %s", url, exc)
            return None
        except UnicodeDecodeError as exc:
            logger.error("Failed to decode allow-list from %s: %s", url, exc)
            return None

        if not isinstance(text, str):
            logger.warning("Invalid allow-list data format from %s", url)
            return None
        return parse_allowlist_text(text)

    async def refresh(self) -> RefreshResult:
        """Fetch every source, union the results and replace the stored set.

        A failing source is skipped. If the replacement transaction fails the
        previous contents stay in place.
        """
        domains: set[str] = set()
        result = RefreshResult(updated=False)

        if self.sources:
            async with aiohttp.ClientSession() as session:
                for url in self.sources:
                    fetched = await self._fetch_source(session, url)
                    if fetched is None:
                        result.sources_failed.append(url)
                        continue
                    result.sources_ok.append(url)
                    domains |= fetched

        if self.local_path is not None:
            try:
                domains |= read_allowlist(self.local_path)
            except OSError as exc:
                logger.warning("Failed to read local allow-list %s: %s", self.local_path, exc)

        try:
            count = await self.database.replace_allowlist(sorted(domains))
        except Exception as exc:
            logger.error("Failed to update allow-list database: %s", exc)
            result.message = f"Error: {exc}"
            self.last_refresh = result
            return result

        result.updated = True
        result.domain_count = count
        result.message = (
            f"Allow-list refreshed: {count} domains "
            f"({len(result.sources_ok)} sources ok, {len(result.sources_failed)} failed)"
        )
        logger.info(result.message)
        self.last_refresh = result
        return result

    async def contains(self, domain: str) -> bool:
        """Point lookup; storage errors read as "not listed"."""
        if not domain:
            return False
        try:
            return await self.database.allowlist_contains(domain)
        except Exception as exc:
            logger.error("Allow-list lookup failed for %s: %s", domain, exc)
            return False

    async def count(self) -> int:
        try:
            return await self.database.allowlist_count()
        except Exception as exc:
            logger.warning("Allow-list count failed: %s", exc)
            return 0
