"""AdGuard Home version handling."""

from __future__ import annotations

import re
from typing import Optional

from packaging.version import InvalidVersion, Version

# Oldest AdGuard Home release whose control API is supported.
MIN_VERSION = "v0.107.0"

_NON_VERSION_RE = re.compile(r"[^0-9.]")


def sanitize(version: str) -> str:
    """Strip everything but digits and dots ("v0.107.43" -> "0.107.43")."""
    return _NON_VERSION_RE.sub("", version or "").strip(".")


def parse(version: str) -> Optional[Version]:
    cleaned = sanitize(version)
    if not cleaned:
        return None
    try:
        return Version(cleaned)
    except InvalidVersion:
        return None


def is_newer_than(v1: str, v2: str) -> bool:
    """True when v1 is strictly newer than v2. Unparseable versions sort lowest."""
    p1, p2 = parse(v1), parse(v2)
    if p1 is None:
        return False
    if p2 is None:
        return True
    return p1 > p2


def is_same(v1: str, v2: str) -> bool:
    p1, p2 = parse(v1), parse(v2)
    if p1 is None or p2 is None:
        return sanitize(v1) == sanitize(v2)
    return p1 == p2


def is_supported(version: str) -> bool:
    return not is_newer_than(MIN_VERSION, version)
