"""Turn streamed tool output into progress, ETA and info metadata."""

from __future__ import annotations

import re

PROGRESS_REGEX = re.compile(
    r"(?:Compressing|Extracting|Processing|Verifying),?\s+(\d+\.?\d*)%\s+complete",
    re.IGNORECASE,
)

INFO_FIELDS = {
    "game id": "game_id",
    "internal name": "game_title",
    "region": "region",
}


def parse_progress(line: str) -> float | None:
    match = PROGRESS_REGEX.search(line)
    if not match:
        return None
    return float(match.group(1))


def compute_eta(start_time: float | None, percentage: float, now: float) -> float | None:
    """Linear extrapolation of the remaining seconds.

    Returns None when there is no start time or no progress yet.
    """
    if start_time is None or percentage <= 0:
        return None
    elapsed = now - start_time
    total_estimate = elapsed / percentage * 100
    return max(0.0, total_estimate - elapsed)


def parse_info_line(line: str) -> dict[str, str]:
    key, sep, value = line.strip().partition(":")
    if not sep:
        return {}
    field_name = INFO_FIELDS.get(key.strip().lower())
    value = value.strip()
    if field_name is None or not value:
        return {}
    return {field_name: value}
