"""Tests for the navigation decision engine."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

from navguard.classifier.client import ClassificationResult
from navguard.pipeline.engine import (
    DecisionEngine,
    NavigationEvent,
    Outcome,
    Stage,
    VerdictSource,
)
from navguard.storage.allowlist import AllowlistStore
from navguard.storage.database import Database
from navguard.storage.session import SessionStore
from navguard.storage.settings import SettingsStore
from navguard.storage.verdict_cache import SECONDS_PER_DAY, VerdictCache, VerdictCacheEntry
from navguard.utils.result import Err, ErrorKind, Ok

INTERSTITIAL = "chrome-extension://navguard/pages/blocked.html"
PHISH_URL = "https://login.bank-secure.example/verify?session=1"


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _FakeClassifier:
    def __init__(self, *results):
        self._results = list(results)
        self.calls: list[tuple[str, str]] = []

    async def classify(self, stripped_url: str, token: str):
        self.calls.append((stripped_url, token))
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class _FakeNavigator:
    def __init__(self, *, fail_redirect: bool = False, fail_open: bool = False):
        self.fail_redirect = fail_redirect
        self.fail_open = fail_open
        self.redirects: list[tuple[int | None, str]] = []
        self.opened: list[str] = []

    async def redirect(self, tab_id, url):  # noqa: ANN001
        if self.fail_redirect:
            raise RuntimeError("No tab with id")
        self.redirects.append((tab_id, url))

    async def open_tab(self, url):  # noqa: ANN001
        if self.fail_open:
            raise RuntimeError("tabs API unavailable")
        self.opened.append(url)


@dataclass
class _Harness:
    db: Database
    engine: DecisionEngine
    cache: VerdictCache
    session: SessionStore
    settings: SettingsStore
    classifier: _FakeClassifier
    navigator: _FakeNavigator
    clock: _Clock


def _phishing(confidence: float = 0.95, **extra) -> Ok:
    return Ok(ClassificationResult(is_phishing=True, confidence=confidence, **extra))


def _benign(**extra) -> Ok:
    return Ok(ClassificationResult(is_phishing=False, confidence=0.1, **extra))


async def _harness(
    tmp_path: Path,
    *results,
    active: bool = True,
    token: str | None = "tok-1",
    required_confidence: float | None = None,
    allowlisted: tuple[str, ...] = (),
    navigator: _FakeNavigator | None = None,
) -> _Harness:
    db = Database(tmp_path / "navguard.db")
    await db.connect()
    clock = _Clock()
    cache = VerdictCache(db, clock=clock)
    session = SessionStore()
    settings = SettingsStore(db)
    await settings.update(active=active, token=token, required_confidence=required_confidence)
    allowlist = AllowlistStore(db, [])
    if allowlisted:
        await db.replace_allowlist(allowlisted)
    classifier = _FakeClassifier(*(results or (_benign(),)))
    navigator = navigator or _FakeNavigator()
    engine = DecisionEngine(
        settings=settings,
        cache=cache,
        allowlist=allowlist,
        session=session,
        classifier=classifier,
        interstitial_url=INTERSTITIAL,
        navigator=navigator,
    )
    return _Harness(db, engine, cache, session, settings, classifier, navigator, clock)


def _query(url: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(url).query)


@pytest.mark.asyncio
async def test_inactive_extension_makes_no_decision(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(), active=False)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert decision.stage == Stage.START
    assert h.classifier.calls == []
    assert h.navigator.redirects == []
    await h.db.close()


@pytest.mark.asyncio
async def test_missing_token_makes_no_decision(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(), token=None)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    [
        "chrome://extensions",
        "chrome-extension://abc/pages/blocked.html",
        "moz-extension://abc/popup.html",
        "about:blank",
        "file:///etc/passwd",
    ],
)
async def test_non_web_urls_are_ignored(tmp_path: Path, url: str):
    h = await _harness(tmp_path, _phishing())

    decision = await h.engine.handle_navigation(NavigationEvent(url=url, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_subframe_navigations_are_ignored(tmp_path: Path):
    h = await _harness(tmp_path, _phishing())

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1, frame_id=3))

    assert decision.outcome == Outcome.SUPPRESSED
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_remote_phishing_verdict_redirects_and_caches(tmp_path: Path):
    h = await _harness(
        tmp_path,
        _phishing(0.97, explanation="Impersonates a bank", remediation_code="123456"),
    )

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=7))

    assert decision.outcome == Outcome.BLOCKED
    assert decision.stage == Stage.REMOTE_CALLED
    assert decision.verdict.source == VerdictSource.REMOTE
    assert h.classifier.calls == [("login.bank-secure.example/verify", "tok-1")]

    assert len(h.navigator.redirects) == 1
    tab_id, target = h.navigator.redirects[0]
    assert tab_id == 7
    assert target.startswith(INTERSTITIAL + "?")
    params = _query(target)
    assert params["url"] == [PHISH_URL]
    assert params["code"] == ["MTIzNDU2"]
    assert params["confidence"] == ["0.97"]
    assert params["explanation"] == ["Impersonates a bank"]

    cached = await h.cache.get("login.bank-secure.example/verify")
    assert cached is not None
    assert cached.is_phishing is True
    assert cached.remediation_code == "123456"
    await h.db.close()


@pytest.mark.asyncio
async def test_benign_remote_verdict_is_cached_and_marks_visited(tmp_path: Path):
    h = await _harness(tmp_path, _benign())

    decision = await h.engine.handle_navigation(NavigationEvent(url="https://news.example.org/today", tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.verdict.source == VerdictSource.REMOTE
    assert h.navigator.redirects == []
    assert h.session.has_visited_before("example.org")
    assert not h.session.is_session_allowed("example.org")
    cached = await h.cache.get("news.example.org/today")
    assert cached is not None and cached.is_phishing is False
    await h.db.close()


@pytest.mark.asyncio
async def test_visited_before_response_does_not_mark_session(tmp_path: Path):
    h = await _harness(tmp_path, _benign(visited_before=True))

    await h.engine.handle_navigation(NavigationEvent(url="https://news.example.org/", tab_id=1))

    assert not h.session.has_visited_before("example.org")
    await h.db.close()


@pytest.mark.asyncio
async def test_warm_cache_gives_same_verdict_with_one_remote_call(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(0.9, remediation_code="654321"))
    event = NavigationEvent(url=PHISH_URL, tab_id=2)

    first = await h.engine.handle_navigation(event)
    second = await h.engine.handle_navigation(event)

    assert first.outcome == second.outcome == Outcome.BLOCKED
    assert first.verdict.is_phishing == second.verdict.is_phishing
    assert first.verdict.confidence == second.verdict.confidence
    assert second.verdict.source == VerdictSource.CACHE
    assert second.stage == Stage.CACHE_CHECKED
    assert len(h.classifier.calls) == 1
    assert len(h.navigator.redirects) == 2
    assert _query(h.navigator.redirects[1][1])["code"] == ["NjU0MzIx"]
    await h.db.close()


@pytest.mark.asyncio
async def test_threshold_is_inclusive(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(0.8), required_confidence=0.8)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.BLOCKED
    await h.db.close()


@pytest.mark.asyncio
async def test_confidence_below_threshold_is_benign(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(0.79999), required_confidence=0.8)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.verdict.is_phishing is False
    assert h.navigator.redirects == []
    # The raw remote answer is still cached.
    cached = await h.cache.get("login.bank-secure.example/verify")
    assert cached.is_phishing is True
    await h.db.close()


@pytest.mark.asyncio
async def test_threshold_is_read_fresh_for_every_navigation(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(0.85), required_confidence=0.9)
    event = NavigationEvent(url=PHISH_URL, tab_id=1)

    first = await h.engine.handle_navigation(event)
    await h.settings.update(required_confidence=0.8)
    second = await h.engine.handle_navigation(event)

    assert first.outcome == Outcome.ALLOWED
    assert second.outcome == Outcome.BLOCKED
    assert second.verdict.source == VerdictSource.CACHE
    await h.db.close()


@pytest.mark.asyncio
async def test_allowlisted_domain_is_never_checked_or_cached(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(), allowlisted=("example.com",))

    decision = await h.engine.handle_navigation(NavigationEvent(url="https://mail.example.com/inbox", tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.stage == Stage.ALLOWLIST_CHECKED
    assert decision.verdict.source == VerdictSource.ALLOWLIST
    assert h.classifier.calls == []
    assert await h.db.get_cache_entry("mail.example.com/inbox") is None
    await h.db.close()


@pytest.mark.asyncio
async def test_cache_is_checked_before_allowlist(tmp_path: Path):
    h = await _harness(tmp_path, _benign(), allowlisted=("example.com",))
    await h.cache.put(
        "mail.example.com/inbox",
        VerdictCacheEntry(key="", is_phishing=True, confidence=0.99),
    )

    decision = await h.engine.handle_navigation(NavigationEvent(url="https://mail.example.com/inbox", tab_id=1))

    assert decision.outcome == Outcome.BLOCKED
    assert decision.verdict.source == VerdictSource.CACHE
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_cache_hit_below_threshold_ends_pipeline(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(0.99))
    await h.cache.put(
        "login.bank-secure.example/verify",
        VerdictCacheEntry(key="", is_phishing=True, confidence=0.5),
    )

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.verdict.source == VerdictSource.CACHE
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_expired_cache_entry_triggers_remote_call(tmp_path: Path):
    h = await _harness(tmp_path, _benign())
    await h.cache.put(
        "login.bank-secure.example/verify",
        VerdictCacheEntry(key="", is_phishing=True, confidence=0.99),
    )
    h.clock.now += 31 * SECONDS_PER_DAY

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.verdict.source == VerdictSource.REMOTE
    assert len(h.classifier.calls) == 1
    await h.db.close()


@pytest.mark.asyncio
async def test_session_allowlisted_domain_skips_remote(tmp_path: Path):
    h = await _harness(tmp_path, _phishing())
    h.session.mark_session_allowed("bank-secure.example")

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.ALLOWED
    assert decision.stage == Stage.SESSION_CHECKED
    assert decision.verdict.source == VerdictSource.SESSION_ALLOWLIST
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_remote_failure_lets_navigation_continue_and_caches_nothing(tmp_path: Path):
    h = await _harness(tmp_path, Err(ErrorKind.NETWORK, "HTTP 502"))

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert decision.stage == Stage.REMOTE_CALLED
    assert decision.verdict is None
    assert h.navigator.redirects == []
    assert await h.db.get_cache_entry("login.bank-secure.example/verify") is None
    assert not h.session.has_visited_before("bank-secure.example")
    await h.db.close()


@pytest.mark.asyncio
async def test_protocol_error_is_treated_like_network_failure(tmp_path: Path):
    h = await _harness(tmp_path, Err(ErrorKind.PROTOCOL, "Invalid API response format"))

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert await h.db.get_cache_entry("login.bank-secure.example/verify") is None
    await h.db.close()


@pytest.mark.asyncio
async def test_cache_fault_falls_through_to_remote(tmp_path: Path):
    h = await _harness(tmp_path, _phishing())

    async def broken_get(key):  # noqa: ANN001
        raise RuntimeError("storage exploded")

    h.cache.get = broken_get

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.BLOCKED
    assert decision.verdict.source == VerdictSource.REMOTE
    assert len(h.classifier.calls) == 1
    await h.db.close()


@pytest.mark.asyncio
async def test_settings_fault_suppresses_decision(tmp_path: Path):
    h = await _harness(tmp_path, _phishing())

    async def broken_snapshot():
        raise RuntimeError("database is locked")

    h.settings.snapshot = broken_snapshot

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.SUPPRESSED
    assert h.classifier.calls == []
    await h.db.close()


@pytest.mark.asyncio
async def test_failed_redirect_falls_back_to_new_tab(tmp_path: Path):
    navigator = _FakeNavigator(fail_redirect=True)
    h = await _harness(tmp_path, _phishing(remediation_code="111111"), navigator=navigator)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.BLOCKED
    assert navigator.redirects == []
    assert navigator.opened == [decision.redirect_url]
    await h.db.close()


@pytest.mark.asyncio
async def test_failed_fallback_is_not_raised(tmp_path: Path):
    navigator = _FakeNavigator(fail_redirect=True, fail_open=True)
    h = await _harness(tmp_path, _phishing(), navigator=navigator)

    decision = await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))

    assert decision.outcome == Outcome.BLOCKED
    await h.db.close()


@pytest.mark.asyncio
async def test_stats_count_outcomes_and_sources(tmp_path: Path):
    h = await _harness(tmp_path, _phishing(), allowlisted=("example.com",))

    await h.engine.handle_navigation(NavigationEvent(url=PHISH_URL, tab_id=1))
    await h.engine.handle_navigation(NavigationEvent(url="https://example.com/", tab_id=1))
    await h.engine.handle_navigation(NavigationEvent(url="about:blank", tab_id=1))

    assert h.engine.stats["blocked"] == 1
    assert h.engine.stats["allowed"] == 1
    assert h.engine.stats["suppressed"] == 1
    assert h.engine.stats["source_remote"] == 1
    assert h.engine.stats["source_allowlist"] == 1
    await h.db.close()
