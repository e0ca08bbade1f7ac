"""Interstitial (blocked page) hand-off helpers."""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlencode

if TYPE_CHECKING:
    from .engine import Verdict

logger = logging.getLogger(__name__)

CHALLENGE_LENGTH = 6


def encode_challenge(code: str) -> str:
    return base64.b64encode(code.encode("utf-8")).decode("ascii")


def decode_challenge(encoded: str) -> Optional[str]:
    try:
        return base64.b64decode(encoded.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        logger.debug("Undecodable challenge token: %r", encoded)
        return None


def build_interstitial_url(base_url: str, url: str, verdict: "Verdict") -> str:
    """Build the blocked-page URL carrying the original URL and verdict details.

    For phishing verdicts carrying a remediation code, `code` (base64-encoded,
    opaque to the engine) and `confidence` are added.
    """
    params: list[tuple[str, str]] = [("url", url)]
    if verdict.is_phishing and verdict.remediation_code:
        params.append(("code", encode_challenge(verdict.remediation_code)))
        params.append(("confidence", f"{verdict.confidence:g}"))
    if verdict.explanation:
        params.append(("explanation", verdict.explanation))
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def verify_challenge(encoded_code: Optional[str], entered: str) -> bool:
    """Check a user-entered code against the token carried by the interstitial."""
    if not encoded_code or len(entered or "") != CHALLENGE_LENGTH:
        return False
    expected = decode_challenge(encoded_code)
    if expected is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), entered.encode("utf-8"))
