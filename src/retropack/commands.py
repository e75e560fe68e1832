from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

from .config import DEFAULT_CUSTOM_COMPRESSION, JobSettings
from .models import Job, Platform, Strategy, ToolName, Workflow, is_nintendo
from .utils import file_extension

DOLPHIN_ONLY_EXTENSIONS = {"gcm", "wbfs", "rvz", "gcz"}
DOLPHIN_TEMP_DIRNAME = ".retropack_temp"
DVD_HUNK_SIZE = 2048

CHD_CODECS = {
    "balanced": "lzma,zlib,huff",
    "max": "lzma",
    "fast": "zstd",
    "raw": "none",
}

COMPRESSION_LEVELS = {
    "fast": 1,
    "balanced": 5,
    "max": 19,
    "raw": 0,
    "custom": 5,
}


@dataclass(slots=True, frozen=True)
class CommandPlan:
    tool: ToolName
    args: tuple[str, ...]
    output_path: Path | None = None

    def render(self, program: str | None = None) -> str:
        return shlex.join([program or self.tool.value, *self.args])


def effective_platform(job: Job, settings: JobSettings) -> str:
    if job.platform_override is not None and job.platform_override is not Platform.AUTO:
        return job.platform_override.value
    if settings.platform is not Platform.AUTO:
        return settings.platform.value
    return job.system.lower()


def uses_dolphin(job: Job, settings: JobSettings) -> bool:
    if file_extension(job.path) in DOLPHIN_ONLY_EXTENSIONS:
        return True
    return is_nintendo(effective_platform(job, settings))


def chd_codecs(preset: str, custom: str) -> str:
    if preset == "custom":
        return custom or DEFAULT_CUSTOM_COMPRESSION
    return CHD_CODECS.get(preset, CHD_CODECS["balanced"])


def compression_level(preset: str) -> int:
    return COMPRESSION_LEVELS.get(preset, COMPRESSION_LEVELS["balanced"])


def chd_strategy(job: Job, settings: JobSettings) -> Strategy:
    if settings.chd.media_type == "cd":
        return Strategy.CREATECD
    if settings.chd.media_type == "dvd":
        return Strategy.CREATEDVD
    return job.strategy


def hunk_size(job: Job, settings: JobSettings) -> int | None:
    if settings.chd.hunk_size:
        return settings.chd.hunk_size
    if effective_platform(job, settings) == Platform.PS2.value or file_extension(job.filename) == "iso":
        return DVD_HUNK_SIZE
    return None


def build_command(job: Job, output_dir: Path, workflow: Workflow, settings: JobSettings) -> CommandPlan:
    if uses_dolphin(job, settings):
        return build_dolphin_command(job, output_dir, workflow, settings)
    return build_chdman_command(job, output_dir, workflow, settings)


def build_chdman_command(job: Job, output_dir: Path, workflow: Workflow, settings: JobSettings) -> CommandPlan:
    stem = Path(job.filename).stem

    if workflow is Workflow.COMPRESS:
        output_path = output_dir / f"{stem}.chd"
        args = [
            chd_strategy(job, settings).value,
            "-i",
            job.path,
            "-o",
            str(output_path),
            "-c",
            chd_codecs(settings.preset, settings.custom_compression),
        ]
        hunk = hunk_size(job, settings)
        if hunk:
            args.extend(["-hs", str(hunk)])
        args.append("-f")
        return CommandPlan(ToolName.CHDMAN, tuple(args), output_path)

    if workflow is Workflow.EXTRACT:
        if chd_strategy(job, settings) is Strategy.CREATEDVD:
            output_path = output_dir / f"{stem}.iso"
            args = ["extractdvd", "-i", job.path, "-o", str(output_path), "-f"]
            return CommandPlan(ToolName.CHDMAN, tuple(args), output_path)
        output_path = output_dir / f"{stem}.cue"
        args = [
            "extractcd",
            "-i",
            job.path,
            "-o",
            str(output_path),
            "-ob",
            str(output_dir / f"{stem}.bin"),
            "-f",
        ]
        return CommandPlan(ToolName.CHDMAN, tuple(args), output_path)

    if workflow is Workflow.VERIFY:
        return CommandPlan(ToolName.CHDMAN, ("verify", "-i", job.path))
    return CommandPlan(ToolName.CHDMAN, ("info", "-i", job.path))


def build_dolphin_command(job: Job, output_dir: Path, workflow: Workflow, settings: JobSettings) -> CommandPlan:
    dolphin = settings.dolphin
    user_dir = str(output_dir / DOLPHIN_TEMP_DIRNAME)
    stem = Path(job.filename).stem

    if workflow is Workflow.COMPRESS:
        output_path = output_dir / f"{stem}.{dolphin.format}"
        args = [
            "convert",
            "-u",
            user_dir,
            "-i",
            job.path,
            "-o",
            str(output_path),
            "-f",
            dolphin.format,
            "-b",
            str(dolphin.block_size),
        ]
        if dolphin.scrub:
            args.append("-s")
        if dolphin.format != "iso" and dolphin.compression_algorithm != "none":
            args.extend(["-c", dolphin.compression_algorithm, "-l", str(compression_level(settings.preset))])
        return CommandPlan(ToolName.DOLPHIN_TOOL, tuple(args), output_path)

    if workflow is Workflow.EXTRACT:
        output_path = output_dir / f"{stem}.iso"
        args = ["convert", "-u", user_dir, "-i", job.path, "-o", str(output_path), "-f", "iso"]
        return CommandPlan(ToolName.DOLPHIN_TOOL, tuple(args), output_path)

    if workflow is Workflow.VERIFY:
        args = ["verify", "-u", user_dir, "-i", job.path, "-a", dolphin.verify_algorithm]
        return CommandPlan(ToolName.DOLPHIN_TOOL, tuple(args))
    return CommandPlan(ToolName.DOLPHIN_TOOL, ("header", "-u", user_dir, "-i", job.path))
