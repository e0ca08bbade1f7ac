"""Allow-list text helpers."""

from __future__ import annotations

from pathlib import Path


def parse_allowlist_text(text: str) -> set[str]:
    """Parse a newline-delimited domain list (blank lines and comments dropped)."""
    entries: set[str] = set()
    for line in text.splitlines():
        value = line.strip()
        if not value or value.startswith("#"):
            continue
        entries.add(value)
    return entries


def read_allowlist(path: Path) -> set[str]:
    """Read a local allow-list file; a missing file is an empty list."""
    if not path.exists():
        return set()
    return parse_allowlist_text(path.read_text())
