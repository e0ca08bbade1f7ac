"""Navigation decision engine for NavGuard.

Every completed top-level navigation runs through a forward-only pipeline:

    preconditions -> verdict cache -> allow-list -> session allow-list -> remote

Each lookup stage returns a Verdict or None and the first Verdict ends the
pipeline. Lookup faults read as "no data" and the pipeline moves on; a remote
failure ends it without a verdict so the navigation proceeds (fail open).
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from ..classifier.client import ClassificationResult, RemoteClassifier
from ..storage.allowlist import AllowlistStore
from ..storage.session import SessionStore
from ..storage.settings import Settings, SettingsStore
from ..storage.verdict_cache import VerdictCache, VerdictCacheEntry
from ..utils.domains import NormalizedURL, is_checkable_url, normalize
from .interstitial import build_interstitial_url

logger = logging.getLogger(__name__)


class VerdictSource(str, Enum):
    """Pipeline stage that produced a verdict."""

    CACHE = "cache"
    ALLOWLIST = "allowlist"
    SESSION_ALLOWLIST = "session_allowlist"
    REMOTE = "remote"


class Stage(str, Enum):
    """Pipeline position; transitions only move forward."""

    START = "start"
    CACHE_CHECKED = "cache_checked"
    ALLOWLIST_CHECKED = "allowlist_checked"
    SESSION_CHECKED = "session_checked"
    REMOTE_CALLED = "remote_called"
    DONE = "done"


class Outcome(str, Enum):
    """What happened to the navigation."""

    BLOCKED = "blocked"  # Redirected to the interstitial
    ALLOWED = "allowed"  # Benign verdict, navigation continues
    SUPPRESSED = "suppressed"  # No verdict produced, navigation continues


@dataclass
class Verdict:
    """Engine output. `is_phishing` is True only when the threshold was met."""

    is_phishing: bool
    confidence: float
    source: VerdictSource
    explanation: Optional[str] = None
    remediation_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "isPhishing": self.is_phishing,
            "confidence": self.confidence,
            "source": self.source.value,
            "explanation": self.explanation,
            "hasCode": bool(self.remediation_code),
        }


@dataclass
class NavigationEvent:
    """A completed navigation reported by the browser."""

    url: str
    tab_id: Optional[int] = None
    frame_id: int = 0


@dataclass
class Decision:
    """Result of one pipeline run."""

    outcome: Outcome
    stage: Stage
    url: str
    verdict: Optional[Verdict] = None
    redirect_url: Optional[str] = None
    reason: str = ""


class Navigator(Protocol):
    """Browser-side actions the engine can request."""

    async def redirect(self, tab_id: Optional[int], url: str) -> None: ...

    async def open_tab(self, url: str) -> None: ...


LookupStage = Callable[[NormalizedURL, Settings], Awaitable[Optional[Verdict]]]


class DecisionEngine:
    """Decides whether a navigated page is phishing and acts on the verdict."""

    def __init__(
        self,
        *,
        settings: SettingsStore,
        cache: VerdictCache,
        allowlist: AllowlistStore,
        session: SessionStore,
        classifier: RemoteClassifier,
        interstitial_url: str,
        navigator: Optional[Navigator] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.allowlist = allowlist
        self.session = session
        self.classifier = classifier
        self.interstitial_url = interstitial_url
        self.navigator = navigator
        self.stats: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Lookup stages
    # ------------------------------------------------------------------

    async def _check_cache(self, keys: NormalizedURL, settings: Settings) -> Optional[Verdict]:
        cached = await self.cache.get(keys.stripped_url)
        if cached is None:
            return None
        blocked = cached.is_phishing and cached.confidence >= settings.required_confidence
        return Verdict(
            is_phishing=blocked,
            confidence=cached.confidence,
            source=VerdictSource.CACHE,
            explanation=cached.explanation,
            remediation_code=cached.remediation_code,
        )

    async def _check_allowlist(self, keys: NormalizedURL, settings: Settings) -> Optional[Verdict]:
        if await self.allowlist.contains(keys.registrable_domain):
            return Verdict(is_phishing=False, confidence=0.0, source=VerdictSource.ALLOWLIST)
        return None

    async def _check_session(self, keys: NormalizedURL, settings: Settings) -> Optional[Verdict]:
        if self.session.is_session_allowed(keys.registrable_domain):
            return Verdict(is_phishing=False, confidence=0.0, source=VerdictSource.SESSION_ALLOWLIST)
        return None

    def _lookup_stages(self) -> list[tuple[Stage, LookupStage]]:
        return [
            (Stage.CACHE_CHECKED, self._check_cache),
            (Stage.ALLOWLIST_CHECKED, self._check_allowlist),
            (Stage.SESSION_CHECKED, self._check_session),
        ]

    # ------------------------------------------------------------------
    # Remote stage
    # ------------------------------------------------------------------

    async def _check_remote(self, url: str, keys: NormalizedURL, settings: Settings) -> Optional[Verdict]:
        result = await self.classifier.classify(keys.stripped_url, settings.token or "")
        if not result.ok:
            logger.error(
                "Failed to check if URL is phishing (url=%s, stage=%s, error=%s: %s)",
                url,
                Stage.REMOTE_CALLED.value,
                result.kind.value,
                result.message,
            )
            return None

        data: ClassificationResult = result.value
        await self.cache.put(
            keys.stripped_url,
            VerdictCacheEntry(
                key=keys.stripped_url,
                is_phishing=data.is_phishing,
                confidence=data.confidence,
                explanation=data.explanation,
                remediation_code=data.remediation_code,
            ),
        )

        if not data.is_phishing or data.confidence < settings.required_confidence:
            if not data.visited_before:
                self.session.mark_visited_before(keys.registrable_domain)
            return Verdict(
                is_phishing=False,
                confidence=data.confidence,
                source=VerdictSource.REMOTE,
                explanation=data.explanation,
            )

        return Verdict(
            is_phishing=True,
            confidence=data.confidence,
            source=VerdictSource.REMOTE,
            explanation=data.explanation,
            remediation_code=data.remediation_code,
        )

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _block(self, event: NavigationEvent, verdict: Verdict, navigator: Optional[Navigator]) -> str:
        """Send the tab to the interstitial, falling back to a new tab."""
        target = build_interstitial_url(self.interstitial_url, event.url, verdict)
        if navigator is None:
            logger.warning("No navigator attached; cannot redirect %s", event.url)
            return target

        try:
            await navigator.redirect(event.tab_id, target)
            return target
        except Exception as exc:
            logger.error("Failed to navigate to blocked page for %s: %s", event.url, exc)

        try:
            await navigator.open_tab(target)
        except Exception as exc:
            logger.error("Fallback navigation also failed for %s: %s", event.url, exc)
        return target

    def _finish(self, decision: Decision) -> Decision:
        self.stats[decision.outcome.value] += 1
        if decision.verdict is not None:
            self.stats[f"source_{decision.verdict.source.value}"] += 1
        return decision

    def _suppressed(self, url: str, stage: Stage, reason: str) -> Decision:
        logger.debug("No decision for %s at %s: %s", url, stage.value, reason)
        return self._finish(Decision(outcome=Outcome.SUPPRESSED, stage=stage, url=url, reason=reason))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle_navigation(
        self,
        event: NavigationEvent,
        navigator: Optional[Navigator] = None,
    ) -> Decision:
        """Run the pipeline for one navigation and apply the verdict."""
        navigator = navigator or self.navigator
        url = event.url

        if event.frame_id != 0:
            return self._suppressed(url, Stage.START, "not a top-level navigation")

        try:
            settings = await self.settings.snapshot()
        except Exception as exc:
            logger.error("Failed to read settings (url=%s, stage=%s): %s", url, Stage.START.value, exc)
            return self._suppressed(url, Stage.START, "settings unavailable")

        if not settings.ready:
            return self._suppressed(url, Stage.START, "inactive or signed out")
        if not is_checkable_url(url):
            return self._suppressed(url, Stage.START, "ignored scheme")

        keys = normalize(url)
        verdict: Optional[Verdict] = None
        stage = Stage.START

        for stage, check in self._lookup_stages():
            try:
                verdict = await check(keys, settings)
            except Exception as exc:
                logger.error("Lookup failed (url=%s, stage=%s): %s", url, stage.value, exc)
                verdict = None
            if verdict is not None:
                break

        if verdict is None:
            stage = Stage.REMOTE_CALLED
            try:
                verdict = await self._check_remote(url, keys, settings)
            except Exception as exc:
                logger.exception("Remote check crashed (url=%s, stage=%s): %s", url, stage.value, exc)
                verdict = None
            if verdict is None:
                return self._suppressed(url, stage, "no verdict from remote classifier")

        if not verdict.is_phishing:
            return self._finish(Decision(outcome=Outcome.ALLOWED, stage=stage, url=url, verdict=verdict))

        logger.info(
            "Blocking %s (source=%s, confidence=%.2f)",
            url,
            verdict.source.value,
            verdict.confidence,
        )
        target = await self._block(event, verdict, navigator)
        return self._finish(
            Decision(
                outcome=Outcome.BLOCKED,
                stage=stage,
                url=url,
                verdict=verdict,
                redirect_url=target,
            )
        )
