from __future__ import annotations

import logging
import re
from pathlib import Path

from .app_logging import log_with_fields
from .utils import file_extension

UNKNOWN = "Unknown"

EXTENSION_SYSTEMS = {
    "chd": "CHD",
    "gdi": "Dreamcast",
    "gcm": "GameCube",
    "wbfs": "Wii",
    "rvz": "GameCube",
    "gcz": "GameCube",
    "cue": "PS1",
    "bin": "PS1",
    "nsp": "Switch",
    "nsz": "Switch",
    "xci": "Switch",
    "xcz": "Switch",
}

GAMECUBE_MAGIC = bytes([0xC2, 0x33, 0x9F, 0x3D])
WII_MAGIC = bytes([0x5D, 0x1C, 0x9E, 0xA3])
GAME_ID_REGEX = re.compile(rb"^[A-Z0-9]{6}$")


def detect_by_extension(ext: str) -> str:
    return EXTENSION_SYSTEMS.get(ext.lower(), UNKNOWN)


def detect_by_path(path: str) -> str:
    lower = path.lower().replace("\\", "/")
    if "gamecube" in lower or "gcn" in lower:
        return "GameCube"
    if "wii" in lower and "switch" not in lower:
        return "Wii"
    if "dreamcast" in lower:
        return "Dreamcast"
    if "saturn" in lower:
        return "Saturn"
    if "ps2" in lower or "playstation 2" in lower:
        return "PS2"
    if "psx" in lower or "ps1" in lower or "playstation" in lower:
        return "PS1"
    return UNKNOWN


def detect_by_filename(filename: str) -> str:
    lower = filename.lower()
    if "ps2" in lower:
        return "PS2"
    if "psx" in lower or "ps1" in lower:
        return "PS1"
    return UNKNOWN


def detect_by_header(header: bytes) -> str:
    if len(header) < 32:
        return UNKNOWN
    if header[24:28] == WII_MAGIC:
        return "Wii"
    if header[28:32] == GAMECUBE_MAGIC:
        return "GameCube"
    # A printable six character game id at offset 0 is typical of Nintendo discs.
    if GAME_ID_REGEX.match(header[:6]):
        return "GameCube"
    return UNKNOWN


def read_header(path: Path, length: int = 32) -> bytes:
    with path.open("rb") as handle:
        return handle.read(length)


def detect_system(path: str | Path, logger: logging.Logger | None = None) -> str:
    source = Path(path)
    ext = file_extension(source)

    by_extension = detect_by_extension(ext)
    if by_extension != UNKNOWN:
        return by_extension

    by_path = detect_by_path(str(source))
    if by_path != UNKNOWN:
        return by_path

    if ext != "iso":
        return UNKNOWN

    try:
        by_header = detect_by_header(read_header(source))
    except OSError as exc:
        by_header = UNKNOWN
        if logger is not None:
            log_with_fields(logger, logging.WARNING, "header_read_failed", path=str(source), error=str(exc))
    if by_header != UNKNOWN:
        return by_header

    by_filename = detect_by_filename(source.name)
    if by_filename != UNKNOWN:
        return by_filename
    return "PS2"
