"""Main entry point for the NavGuard navigation protection service."""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone

from .api import NavGuardServer
from .classifier import RemoteClassifier
from .config import Config, load_config, validate_config
from .pipeline import AllowlistRefreshScheduler, DecisionEngine
from .storage import (
    AllowlistStore,
    Database,
    SessionStore,
    SettingsStore,
    VerdictCache,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


class NavGuardService:
    """Wires the stores, classifier, decision engine and API together."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False
        self._stop_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._started_at = datetime.now(timezone.utc)

        self.database = Database(config.database_path)
        self.session = SessionStore()
        self.settings = SettingsStore(
            self.database,
            default_required_confidence=config.default_required_confidence,
        )
        self.cache = VerdictCache(
            self.database,
            ttl_days=config.cache_ttl_days,
            enabled=config.cache_enabled,
        )
        self.allowlist = AllowlistStore(
            self.database,
            config.allowlist_sources,
            local_path=config.local_allowlist_path,
            fetch_timeout=config.allowlist_fetch_timeout,
        )
        self.classifier = RemoteClassifier(
            config.classifier_base_url,
            timeout=config.classifier_timeout,
            max_retries=config.classifier_max_retries,
            retry_delay=config.classifier_retry_delay,
        )
        self.engine = DecisionEngine(
            settings=self.settings,
            cache=self.cache,
            allowlist=self.allowlist,
            session=self.session,
            classifier=self.classifier,
            interstitial_url=config.interstitial_url,
        )
        self.scheduler = AllowlistRefreshScheduler(
            self.allowlist,
            interval_seconds=config.allowlist_refresh_hours * 60 * 60,
        )
        self.server = NavGuardServer(
            host=config.api_host,
            port=config.api_port,
            engine=self.engine,
            session=self.session,
            settings=self.settings,
            status_provider=self._health_snapshot,
        )

    def _health_snapshot(self) -> dict:
        """Provide a lightweight status dict for health endpoints."""
        uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
        last = self.allowlist.last_refresh
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(uptime, 1),
            "environment": self.config.environment,
            "cache_enabled": self.config.cache_enabled,
            "allowlist_refreshes": self.scheduler.runs,
            "allowlist_domains": last.domain_count if last else 0,
            "allowlist_sources_failed": len(last.sources_failed) if last else 0,
            "session_keys": len(self.session),
        }

    async def start(self):
        """Start all service components."""
        logger.info("Starting NavGuard (%s)...", self.config.environment)
        self._running = True

        await self.database.connect()
        logger.info("Database connected")

        await self.cache.purge_expired()
        await self.scheduler.start()
        await self.server.start()
        logger.info("NavGuard started")

    async def wait(self):
        await self._stop_event.wait()

    async def stop(self):
        """Stop all components (idempotent)."""
        async with self._stop_lock:
            if not self._running:
                self._stop_event.set()
                return
            logger.info("Stopping NavGuard...")
            self._running = False

            await self.server.stop()
            await self.scheduler.stop()
            await self.database.close()
            self._stop_event.set()
            logger.info("NavGuard stopped")


async def run_service():
    """Run the NavGuard service until a shutdown signal arrives."""
    config = load_config()
    configure_logging(config.log_level)

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    service = NavGuardService(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

    try:
        await service.start()
        await service.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await service.stop()


def main():
    """Entry point."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
