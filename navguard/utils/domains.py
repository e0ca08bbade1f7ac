"""Domain normalization utilities.

Two keys are derived from every navigated URL:

- the registrable domain (last two hostname labels), used by the allow-lists
- the stripped URL (hostname + path), used by the verdict cache

Both fail closed: a URL that cannot be parsed is returned unchanged.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

CHECKABLE_SCHEMES = ("http://", "https://")
INTERNAL_SCHEMES = (
    "chrome://",
    "chrome-extension://",
    "moz-extension://",
    "about:",
)


@dataclass(frozen=True)
class NormalizedURL:
    """Derived lookup keys for a URL."""

    registrable_domain: str
    stripped_url: str


def _parse(url: str):
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"not an absolute URL: {url!r}")
    return parts


def _is_numeric(label: str) -> bool:
    if not label.strip():
        return True
    try:
        value = float(label)
    except ValueError:
        return False
    return not math.isnan(value)


def registrable_domain(url: str) -> str:
    """Return the last two hostname labels, or the whole host for IPs/single labels."""
    try:
        hostname = _parse(url).hostname
    except ValueError as exc:
        logger.debug("Could not extract domain from %r: %s", url, exc)
        return url

    labels = hostname.split(".")
    if len(labels) < 2 or all(_is_numeric(label) for label in labels):
        return hostname
    return ".".join(labels[-2:])


def stripped_url(url: str) -> str:
    """Return hostname + path with scheme, query and fragment removed."""
    try:
        parts = _parse(url)
    except ValueError as exc:
        logger.debug("Could not strip protocol from %r: %s", url, exc)
        return url
    return f"{parts.hostname}{parts.path or '/'}"


def normalize(url: str) -> NormalizedURL:
    return NormalizedURL(
        registrable_domain=registrable_domain(url),
        stripped_url=stripped_url(url),
    )


def is_checkable_url(url: str | None) -> bool:
    """True for plain http(s) URLs; internal browser pages are never checked."""
    if not url:
        return False
    if url.startswith(INTERNAL_SCHEMES):
        return False
    return url.startswith(CHECKABLE_SCHEMES)
