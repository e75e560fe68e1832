from __future__ import annotations

import math
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

MAX_CONCURRENCY = 16

DISC_PATTERNS = (
    re.compile(r"\(Disc\s*(\d+)\)", re.IGNORECASE),
    re.compile(r"\(CD\s*(\d+)\)", re.IGNORECASE),
    re.compile(r"\bPart\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\bDisc\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\bDisk\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\s-\s*Disc\s*(\d+)", re.IGNORECASE),
)


@dataclass(slots=True, frozen=True)
class DiscInfo:
    base_name: str
    disc_number: int


def new_job_id() -> str:
    return uuid.uuid4().hex


def file_extension(path: str | Path) -> str:
    return Path(path).suffix.lower().lstrip(".")


def suggest_concurrency(cpu_count: int | None = None) -> int:
    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 2)
    return min(MAX_CONCURRENCY, max(2, math.ceil(cores / 2)))


def extract_disc_info(filename: str) -> DiscInfo | None:
    for pattern in DISC_PATTERNS:
        match = pattern.search(filename)
        if match:
            base_name = re.sub(r"\s+", " ", pattern.sub("", filename, count=1)).strip()
            return DiscInfo(base_name=base_name, disc_number=int(match.group(1)))
    return None


def format_eta(seconds: float | None) -> str:
    if seconds is None:
        return "--:--"
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
