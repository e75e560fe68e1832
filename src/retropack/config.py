from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import Platform
from .utils import MAX_CONCURRENCY, suggest_concurrency

PRESETS = {"balanced", "max", "fast", "raw", "custom"}
MEDIA_TYPES = {"auto", "cd", "dvd"}
DOLPHIN_FORMATS = {"rvz", "iso", "gcz", "wia"}
DOLPHIN_ALGORITHMS = {"zstd", "lzma", "none"}
VERIFY_ALGORITHMS = {"md5", "sha1", "crc32"}

DEFAULT_CUSTOM_COMPRESSION = "lzma,zlib,huff"


@dataclass(slots=True)
class ToolsConfig:
    chdman: str = "chdman"
    dolphin_tool: str = "DolphinTool"


@dataclass(slots=True)
class PollConfig:
    interval_seconds: float = 1.0


@dataclass(slots=True)
class TerminationConfig:
    timeout_seconds: float = 2.0


@dataclass(slots=True)
class CompressionConfig:
    preset: str = "balanced"
    custom: str = DEFAULT_CUSTOM_COMPRESSION


@dataclass(slots=True)
class ChdConfig:
    hunk_size: int | None = None
    media_type: str = "auto"


@dataclass(slots=True)
class DolphinConfig:
    block_size: int = 131072
    format: str = "rvz"
    compression_algorithm: str = "zstd"
    scrub: bool = False
    verify_algorithm: str = "md5"


@dataclass(slots=True, frozen=True)
class JobSettings:
    preset: str = "balanced"
    custom_compression: str = DEFAULT_CUSTOM_COMPRESSION
    chd: ChdConfig = field(default_factory=ChdConfig)
    dolphin: DolphinConfig = field(default_factory=DolphinConfig)
    platform: Platform = Platform.AUTO


@dataclass(slots=True)
class AppConfig:
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    output_dir: Path | None = None
    log: Path | None = None
    concurrency: int = field(default_factory=suggest_concurrency)
    platform: Platform = Platform.AUTO
    poll: PollConfig = field(default_factory=PollConfig)
    termination: TerminationConfig = field(default_factory=TerminationConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    chd: ChdConfig = field(default_factory=ChdConfig)
    dolphin: DolphinConfig = field(default_factory=DolphinConfig)

    def job_settings(self) -> JobSettings:
        return JobSettings(
            preset=self.compression.preset,
            custom_compression=self.compression.custom,
            chd=self.chd,
            dolphin=self.dolphin,
            platform=self.platform,
        )


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _choice(value: object, allowed: set[str], name: str) -> str:
    output = str(value).lower()
    if output not in allowed:
        raise ValueError(f"`{name}` must be one of {', '.join(sorted(allowed))}")
    return output


def parse_platform(value: object) -> Platform:
    try:
        return Platform(str(value).lower())
    except ValueError:
        allowed = ", ".join(platform.value for platform in Platform)
        raise ValueError(f"`platform` must be one of {allowed}") from None


def validate_concurrency(value: object) -> int:
    concurrency = int(value)
    if not 1 <= concurrency <= MAX_CONCURRENCY:
        raise ValueError(f"`concurrency` must be between 1 and {MAX_CONCURRENCY}")
    return concurrency


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        return AppConfig()

    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    tools_raw = _section(raw, "tools")
    poll_raw = _section(raw, "poll")
    termination_raw = _section(raw, "termination")
    compression_raw = _section(raw, "compression")
    chd_raw = _section(raw, "chd")
    dolphin_raw = _section(raw, "dolphin")

    def to_path(value: object | None) -> Path | None:
        if value is None:
            return None
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    tools = ToolsConfig(
        chdman=str(tools_raw.get("chdman", "chdman")),
        dolphin_tool=str(tools_raw.get("dolphin_tool", "DolphinTool")),
    )

    poll = PollConfig(interval_seconds=float(poll_raw.get("interval_seconds", 1.0)))
    if poll.interval_seconds <= 0:
        raise ValueError("`poll.interval_seconds` must be > 0")

    termination = TerminationConfig(timeout_seconds=float(termination_raw.get("timeout_seconds", 2.0)))
    if termination.timeout_seconds <= 0:
        raise ValueError("`termination.timeout_seconds` must be > 0")

    compression = CompressionConfig(
        preset=_choice(compression_raw.get("preset", "balanced"), PRESETS, "compression.preset"),
        custom=str(compression_raw.get("custom") or DEFAULT_CUSTOM_COMPRESSION),
    )

    hunk_raw = chd_raw.get("hunk_size")
    chd = ChdConfig(
        hunk_size=int(hunk_raw) if hunk_raw is not None else None,
        media_type=_choice(chd_raw.get("media_type", "auto"), MEDIA_TYPES, "chd.media_type"),
    )
    if chd.hunk_size is not None and chd.hunk_size <= 0:
        raise ValueError("`chd.hunk_size` must be > 0")

    dolphin = DolphinConfig(
        block_size=int(dolphin_raw.get("block_size", 131072)),
        format=_choice(dolphin_raw.get("format", "rvz"), DOLPHIN_FORMATS, "dolphin.format"),
        compression_algorithm=_choice(
            dolphin_raw.get("compression_algorithm", "zstd"),
            DOLPHIN_ALGORITHMS,
            "dolphin.compression_algorithm",
        ),
        scrub=bool(dolphin_raw.get("scrub", False)),
        verify_algorithm=_choice(
            dolphin_raw.get("verify_algorithm", "md5"),
            VERIFY_ALGORITHMS,
            "dolphin.verify_algorithm",
        ),
    )
    if dolphin.block_size <= 0:
        raise ValueError("`dolphin.block_size` must be > 0")

    concurrency_raw = raw.get("concurrency")
    concurrency = validate_concurrency(concurrency_raw) if concurrency_raw is not None else suggest_concurrency()

    return AppConfig(
        tools=tools,
        output_dir=to_path(raw.get("output_dir")),
        log=to_path(raw.get("log")),
        concurrency=concurrency,
        platform=parse_platform(raw.get("platform", "auto")),
        poll=poll,
        termination=termination,
        compression=compression,
        chd=chd,
        dolphin=dolphin,
    )
