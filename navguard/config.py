"""Configuration management for NavGuard."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://api.lajosh.com"
DEVELOPMENT_BASE_URL = "http://localhost:3000"

INTERSTITIAL_SCHEMES = ("chrome-extension://", "moz-extension://", "http://", "https://")

DEFAULT_ALLOWLIST_SOURCES: list[str] = [
    "https://raw.githubusercontent.com/lajo-sh/whitelist/refs/heads/main/top-domains.txt",
    "https://raw.githubusercontent.com/lajo-sh/whitelist/refs/heads/main/croatian-lists.txt",
]


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Non-production builds talk to a local classifier and skip the verdict cache
    environment: str = "production"
    classifier_base_url: str = PRODUCTION_BASE_URL

    # Navigation API
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    # Allow-list refresh
    allowlist_sources: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWLIST_SOURCES))
    allowlist_refresh_hours: float = 24.0
    allowlist_fetch_timeout: float = 5.0

    # Remote classifier
    classifier_timeout: float = 10.0
    classifier_max_retries: int = 3
    classifier_retry_delay: float = 1.0

    # Decision policy
    cache_ttl_days: int = 30
    default_required_confidence: float = 0.8
    # Blocked page served by the extension (or any page that reads the query)
    interstitial_url: str = ""

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    config_dir: Path = field(default_factory=lambda: Path("./config"))

    log_level: str = "INFO"

    def __post_init__(self):
        """Ensure paths exist."""
        self.data_dir = Path(self.data_dir)
        self.config_dir = Path(self.config_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def production(self) -> bool:
        return (self.environment or "").strip().lower() == "production"

    @property
    def cache_enabled(self) -> bool:
        return self.production

    @property
    def database_path(self) -> Path:
        return self.data_dir / "navguard.db"

    @property
    def local_allowlist_path(self) -> Path:
        return self.config_dir / "allowlist.txt"


def _load_overrides(config_dir: Path) -> dict:
    """Load overrides from config/navguard.yaml (optional)."""
    path = Path(config_dir or ".") / "navguard.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        logger.warning("Failed to parse navguard.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        return {}

    allowlist_cfg = data.get("allowlist") or {}
    classifier_cfg = data.get("classifier") or {}
    overrides: dict = {}

    sources = allowlist_cfg.get("sources") if isinstance(allowlist_cfg, dict) else None
    if isinstance(sources, list):
        overrides["allowlist_sources"] = [str(s).strip() for s in sources if str(s or "").strip()]

    base_url = classifier_cfg.get("base_url") if isinstance(classifier_cfg, dict) else None
    if base_url:
        overrides["classifier_base_url"] = str(base_url).strip()

    return overrides


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    overrides = _load_overrides(config_dir)

    environment = os.getenv("NAVGUARD_ENV", "production").strip().lower() or "production"
    default_base_url = PRODUCTION_BASE_URL if environment == "production" else DEVELOPMENT_BASE_URL
    base_url = os.getenv("CLASSIFIER_BASE_URL") or overrides.get("classifier_base_url") or default_base_url

    sources_str = os.getenv("ALLOWLIST_SOURCES", "")
    if sources_str.strip():
        sources = [s.strip() for s in sources_str.split(",") if s.strip()]
    else:
        sources = overrides.get("allowlist_sources", list(DEFAULT_ALLOWLIST_SOURCES))

    api_host = os.getenv("API_HOST", "127.0.0.1")
    api_port = int(os.getenv("API_PORT", "8765"))

    return Config(
        environment=environment,
        classifier_base_url=base_url,
        api_host=api_host,
        api_port=api_port,
        allowlist_sources=sources,
        allowlist_refresh_hours=float(os.getenv("ALLOWLIST_REFRESH_HOURS", "24")),
        allowlist_fetch_timeout=float(os.getenv("ALLOWLIST_FETCH_TIMEOUT", "5")),
        classifier_timeout=float(os.getenv("CLASSIFIER_TIMEOUT", "10")),
        classifier_max_retries=int(os.getenv("CLASSIFIER_MAX_RETRIES", "3")),
        classifier_retry_delay=float(os.getenv("CLASSIFIER_RETRY_DELAY", "1")),
        cache_ttl_days=int(os.getenv("CACHE_TTL_DAYS", "30")),
        default_required_confidence=float(os.getenv("DEFAULT_REQUIRED_CONFIDENCE", "0.8")),
        interstitial_url=os.getenv("INTERSTITIAL_URL", "").strip(),
        data_dir=Path(os.getenv("DATA_DIR", "./data")),
        config_dir=config_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def validate_config(config: Config) -> list[str]:
    """Validate required configuration and return list of error messages."""
    errors: list[str] = []
    if not config.classifier_base_url.startswith(("http://", "https://")):
        errors.append("CLASSIFIER_BASE_URL must be an http(s) URL")
    if not config.interstitial_url:
        errors.append("INTERSTITIAL_URL is required (the blocked page, e.g. chrome-extension://<id>/pages/blocked.html)")
    elif not config.interstitial_url.startswith(INTERSTITIAL_SCHEMES):
        errors.append(f"INTERSTITIAL_URL has an unsupported scheme: {config.interstitial_url}")
    if not 0 < config.default_required_confidence <= 1:
        errors.append("DEFAULT_REQUIRED_CONFIDENCE must be in (0, 1]")
    if config.classifier_max_retries < 0:
        errors.append("CLASSIFIER_MAX_RETRIES must not be negative")
    if config.allowlist_refresh_hours <= 0:
        errors.append("ALLOWLIST_REFRESH_HOURS must be positive")
    for source in config.allowlist_sources:
        if not source.startswith(("http://", "https://")):
            errors.append(f"Allow-list source is not an http(s) URL: {source}")

    if not config.allowlist_sources:
        logger.info("No allow-list sources configured; only config/allowlist.txt will be used")
    if not config.production:
        logger.info("Non-production environment: verdict cache disabled")

    return errors
