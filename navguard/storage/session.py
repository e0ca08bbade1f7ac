"""Browser-session scoped flags.

Lives only as long as the service process, mirroring a browser's session
storage: restarting the service clears every click-through and first-visit
marker.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

SESSION_ALLOW_PREFIX = "whitelist-"
VISITED_BEFORE_PREFIX = "visited-before-"


class SessionStore:
    """Ephemeral key/value store with per-key atomic reads and writes."""

    def __init__(self):
        self._values: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def clear(self) -> None:
        count = len(self._values)
        self._values.clear()
        logger.info("Session store cleared (%s keys)", count)

    def __len__(self) -> int:
        return len(self._values)

    # Session allow-list

    def is_session_allowed(self, domain: str) -> bool:
        return bool(self.get(f"{SESSION_ALLOW_PREFIX}{domain}"))

    def mark_session_allowed(self, domain: str) -> None:
        self.set(f"{SESSION_ALLOW_PREFIX}{domain}", True)
        logger.info("Session allow-listed: %s", domain)

    # First-visit banner marker (read by the UI only)

    def mark_visited_before(self, domain: str) -> None:
        self.set(f"{VISITED_BEFORE_PREFIX}{domain}", True)

    def has_visited_before(self, domain: str) -> bool:
        return bool(self.get(f"{VISITED_BEFORE_PREFIX}{domain}"))
