"""Keyword-based severity inference for issues that arrive untagged."""

from __future__ import annotations

from typing import Optional, Sequence

CRITICAL = "critical"
MAJOR = "major"
MINOR = "minor"

CRITICAL_KEYWORDS: Sequence[str] = (
    "critical",
    "security",
    "vulnerability",
    "breach",
    "broken",
    "missing ssl",
    "missing https",
)
MAJOR_KEYWORDS: Sequence[str] = (
    "major",
    "significant",
    "performance",
    "slow",
    "accessibility",
    "mobile",
    "seo",
)


def infer_severity(text: Optional[str]) -> str:
    """Best-effort classification; critical keywords win over major ones."""
    lowered = (text or "").lower()
    if any(keyword in lowered for keyword in CRITICAL_KEYWORDS):
        return CRITICAL
    if any(keyword in lowered for keyword in MAJOR_KEYWORDS):
        return MAJOR
    return MINOR


def resolve_severity(explicit: Optional[str], text: Optional[str]) -> str:
    if explicit in (CRITICAL, MAJOR, MINOR):
        return explicit
    return infer_severity(text)
