from __future__ import annotations

import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple


class Workflow(str, Enum):
    COMPRESS = "compress"
    EXTRACT = "extract"
    VERIFY = "verify"
    INFO = "info"

    @property
    def label(self) -> str:
        return WORKFLOW_LABELS[self]


WORKFLOW_LABELS = {
    Workflow.COMPRESS: "Compression",
    Workflow.EXTRACT: "Extraction",
    Workflow.VERIFY: "Verification",
    Workflow.INFO: "Info",
}


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Strategy(str, Enum):
    CREATECD = "createcd"
    CREATEDVD = "createdvd"


class ToolName(str, Enum):
    CHDMAN = "chdman"
    DOLPHIN_TOOL = "DolphinTool"


class Platform(str, Enum):
    AUTO = "auto"
    PS1 = "ps1"
    PS2 = "ps2"
    PSP = "psp"
    SATURN = "saturn"
    DREAMCAST = "dreamcast"
    GAMECUBE = "gamecube"
    WII = "wii"


NINTENDO_NAMES = frozenset({"gamecube", "wii", "nintendo"})

CANCELLED_MESSAGE = "Cancelled"

TERMINATION_SIGNALS = frozenset(
    int(sig)
    for sig in (getattr(signal, name, None) for name in ("SIGTERM", "SIGKILL", "SIGINT"))
    if sig is not None
)


def is_nintendo(system_or_platform: str) -> bool:
    return system_or_platform.lower() in NINTENDO_NAMES


@dataclass(slots=True)
class Job:
    job_id: str
    filename: str
    path: str
    system: str
    strategy: Strategy
    original_size: int = 0
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    compressed_size: int | None = None
    start_time: float | None = None
    eta_seconds: float | None = None
    error_message: str | None = None
    output_log: list[str] = field(default_factory=list)
    platform_override: Platform | None = None
    disc_group: str | None = None
    disc_number: int | None = None
    game_id: str | None = None
    game_title: str | None = None
    region: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status is JobStatus.FAILED and self.error_message == CANCELLED_MESSAGE

    @property
    def is_multi_disc(self) -> bool:
        return self.disc_group is not None and self.disc_number is not None

    @property
    def compression_ratio(self) -> float | None:
        if not self.compressed_size or self.original_size == 0:
            return None
        return self.compressed_size / self.original_size


class RegistryKey(NamedTuple):
    workflow: Workflow
    job_id: str


@dataclass(slots=True, frozen=True)
class CommandResult:
    code: int | None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> CommandResult:
        # subprocess reports death-by-signal as a negative return code on POSIX.
        if returncode < 0:
            return cls(code=None, signal=-returncode)
        return cls(code=returncode, signal=None)

    @property
    def terminated(self) -> bool:
        return self.signal is not None and self.signal in TERMINATION_SIGNALS
