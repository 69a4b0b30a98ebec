"""Heuristic chapter timestamp extraction from video descriptions."""

from __future__ import annotations

import re

_TIME_CODE = r"\d{1,2}:(?:\d{1,2}:)?\d{2}"
_LABELLED_TIMESTAMP = re.compile(
    rf"({_TIME_CODE})\s*[-–—:]\s*(.{{3,50}}?)(?=\n|$|{_TIME_CODE})"
)
_BARE_TIMESTAMP = re.compile(_TIME_CODE)


def extract_timestamps(description: str | None) -> list[str]:
    """Return `"m:ss - label"` entries, or bare time codes if none are labelled."""
    if not description:
        return []

    labelled = [
        f"{match.group(1)} - {match.group(2).strip()}"
        for match in _LABELLED_TIMESTAMP.finditer(description)
    ]
    if labelled:
        return labelled
    return _BARE_TIMESTAMP.findall(description)

