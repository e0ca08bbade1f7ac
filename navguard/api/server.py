"""HTTP API used by the browser extension.

The extension forwards each completed navigation to `POST /navigation` and
applies the returned redirect. UI pages use the session and settings routes
to read and write the shared flags.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from aiohttp import web

from ..pipeline.engine import Decision, DecisionEngine, NavigationEvent
from ..pipeline.interstitial import verify_challenge
from ..storage.session import SessionStore
from ..storage.settings import SettingsStore, parse_required_confidence
from ..utils.domains import registrable_domain

logger = logging.getLogger(__name__)


class ResponseNavigator:
    """Collects the redirect the engine requests so it can be returned to the caller."""

    def __init__(self):
        self.mode: Optional[str] = None
        self.tab_id: Optional[int] = None
        self.url: Optional[str] = None

    async def redirect(self, tab_id: Optional[int], url: str) -> None:
        if tab_id is None:
            raise ValueError("navigation has no tab id")
        self.mode, self.tab_id, self.url = "update", tab_id, url

    async def open_tab(self, url: str) -> None:
        self.mode, self.tab_id, self.url = "create", None, url

    def to_dict(self) -> Optional[dict]:
        if not self.mode:
            return None
        return {"mode": self.mode, "tabId": self.tab_id, "url": self.url}


def _decision_payload(decision: Decision, navigator: ResponseNavigator) -> dict:
    return {
        "outcome": decision.outcome.value,
        "stage": decision.stage.value,
        "url": decision.url,
        "reason": decision.reason,
        "verdict": decision.verdict.to_dict() if decision.verdict else None,
        "redirect": navigator.to_dict(),
    }


def _coerce_tab_id(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class NavGuardServer:
    """Serves the navigation, session, settings and health endpoints."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        engine: DecisionEngine,
        session: SessionStore,
        settings: SettingsStore,
        status_provider: Callable[[], dict],
    ):
        self.host = host
        self.port = port
        self.engine = engine
        self.session = session
        self.settings = settings
        self.status_provider = status_provider
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        self._app = web.Application()
        self._app.router.add_get("/healthz", self._handle_health)
        self._app.router.add_get("/metrics", self._handle_metrics)
        self._app.router.add_post("/navigation", self._handle_navigation)
        self._app.router.add_post("/session/allow", self._handle_session_allow)
        self._app.router.add_get("/session/visited", self._handle_session_visited)
        self._app.router.add_get("/settings", self._handle_get_settings)
        self._app.router.add_put("/settings", self._handle_put_settings)

    async def start(self):
        """Start the API server."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info("Navigation API listening on %s:%s", self.host, self.port)

    async def stop(self):
        """Stop the API server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    async def _handle_navigation(self, request: web.Request) -> web.Response:
        """Run the decision pipeline for a completed navigation."""
        try:
            data = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON payload"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid JSON payload"}, status=400)

        url = str(data.get("url") or "").strip()
        if not url:
            return web.json_response({"error": "url is required"}, status=400)

        event = NavigationEvent(
            url=url,
            tab_id=_coerce_tab_id(data.get("tabId")),
            frame_id=_coerce_tab_id(data.get("frameId")) or 0,
        )
        navigator = ResponseNavigator()
        decision = await self.engine.handle_navigation(event, navigator=navigator)
        return web.json_response(_decision_payload(decision, navigator))

    async def _handle_session_allow(self, request: web.Request) -> web.Response:
        """Interstitial click-through: allow the domain for the rest of the session.

        When the interstitial forwards a challenge (`code` + `entered`), the
        entered value must match before the domain is allowed.
        """
        try:
            data = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON payload"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid JSON payload"}, status=400)

        url = str(data.get("url") or "").strip()
        if not url:
            return web.json_response({"error": "url is required"}, status=400)

        code = data.get("code")
        if code and not verify_challenge(str(code), str(data.get("entered") or "")):
            return web.json_response({"error": "Incorrect code"}, status=403)

        domain = registrable_domain(url)
        self.session.mark_session_allowed(domain)
        return web.json_response({"status": "allowed", "domain": domain})

    async def _handle_session_visited(self, request: web.Request) -> web.Response:
        url = (request.query.get("url") or "").strip()
        if not url:
            return web.json_response({"error": "url is required"}, status=400)
        domain = registrable_domain(url)
        return web.json_response({"domain": domain, "visitedBefore": self.session.has_visited_before(domain)})

    async def _handle_get_settings(self, request: web.Request) -> web.Response:
        try:
            current = await self.settings.snapshot()
        except Exception as exc:
            logger.error("Failed to read settings: %s", exc)
            return web.json_response({"error": "Settings unavailable"}, status=503)
        return web.json_response(
            {
                "active": current.active,
                "hasToken": bool(current.token),
                "requiredConfidence": current.required_confidence,
            }
        )

    async def _handle_put_settings(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except Exception:
            return web.json_response({"error": "Invalid JSON payload"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid JSON payload"}, status=400)

        required = data.get("requiredConfidence")
        if required is not None:
            required = parse_required_confidence(required, default=-1.0)
            if not 0 < required <= 1:
                return web.json_response({"error": "requiredConfidence must be in (0, 1]"}, status=400)

        active = data.get("active")
        if active is not None and not isinstance(active, bool):
            return web.json_response({"error": "active must be a boolean"}, status=400)
        token = data.get("token")
        if token is not None and not isinstance(token, str):
            return web.json_response({"error": "token must be a string"}, status=400)
        try:
            await self.settings.update(
                active=active,
                token=token,
                required_confidence=required,
            )
        except Exception as exc:
            logger.error("Failed to update settings: %s", exc)
            return web.json_response({"error": "Settings unavailable"}, status=503)
        return await self._handle_get_settings(request)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Return JSON health status."""
        try:
            payload = self.status_provider() or {}
        except Exception as exc:
            logger.warning("Health status provider failed: %s", exc)
            payload = {"status": "error", "message": str(exc)}

        payload.setdefault("status", "ok")
        return web.json_response(payload)

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Expose numeric status fields and decision counters (Prometheus-ish)."""
        try:
            data = dict(self.status_provider() or {})
        except Exception as exc:
            logger.warning("Metrics provider failed: %s", exc)
            data = {}

        for key, value in self.engine.stats.items():
            data[f"decisions_{key}"] = value

        lines = []
        for key, value in sorted(data.items()):
            metric_key = str(key).replace(".", "_").replace("-", "_")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            lines.append(f"navguard_{metric_key} {value}")
        if not lines:
            lines.append('navguard_status{state="empty"} 1')

        return web.Response(text="\n".join(lines) + "\n")
