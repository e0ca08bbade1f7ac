"""Persisted flags shared with the extension UI (active toggle, token, threshold)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .database import Database

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_CONFIDENCE = 0.8

ACTIVE_KEY = "active"
TOKEN_KEY = "token"
REQUIRED_CONFIDENCE_KEY = "requiredConfidence"
SETTING_KEYS = (ACTIVE_KEY, TOKEN_KEY, REQUIRED_CONFIDENCE_KEY)


@dataclass(frozen=True)
class Settings:
    """Values read fresh for each navigation."""

    active: bool = False
    token: Optional[str] = None
    required_confidence: float = DEFAULT_REQUIRED_CONFIDENCE

    @property
    def ready(self) -> bool:
        return self.active and bool(self.token)


def parse_required_confidence(value: Any, default: float = DEFAULT_REQUIRED_CONFIDENCE) -> float:
    """Coerce a stored threshold; missing, unparsable or zero falls back to `default`."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if parsed != parsed or parsed == 0:  # NaN or zero
        return default
    return parsed


class SettingsStore:
    """Read/write access to the persisted extension flags."""

    def __init__(self, database: Database, *, default_required_confidence: float = DEFAULT_REQUIRED_CONFIDENCE):
        self.database = database
        self.default_required_confidence = default_required_confidence

    async def snapshot(self) -> Settings:
        """Load the current flags. Storage errors propagate to the caller."""
        values = await self.database.get_settings(SETTING_KEYS)
        token = values.get(TOKEN_KEY)
        return Settings(
            active=bool(values.get(ACTIVE_KEY)),
            token=str(token) if token else None,
            required_confidence=parse_required_confidence(
                values.get(REQUIRED_CONFIDENCE_KEY),
                self.default_required_confidence,
            ),
        )

    async def update(
        self,
        *,
        active: Optional[bool] = None,
        token: Optional[str] = None,
        required_confidence: Optional[float] = None,
    ) -> Settings:
        """Persist any provided flags and return the resulting snapshot."""
        if active is not None:
            await self.database.set_setting(ACTIVE_KEY, bool(active))
        if token is not None:
            await self.database.set_setting(TOKEN_KEY, token)
        if required_confidence is not None:
            await self.database.set_setting(REQUIRED_CONFIDENCE_KEY, float(required_confidence))
        return await self.snapshot()
