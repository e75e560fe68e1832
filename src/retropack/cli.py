from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from .app_logging import log_with_fields, setup_logger
from .commands import build_command
from .config import AppConfig, load_config, parse_platform, validate_concurrency
from .models import Job, JobStatus, Platform, ToolName, Workflow
from .queue_manager import QueueManager, accepts
from .service import QueueService
from .store import JobStore
from .utils import format_eta

WORKFLOW_CHOICES = [workflow.value for workflow in Workflow]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retropack", description="Batch disc-image conversion queue")
    parser.add_argument("--config", help="Path to retropack YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Queue files and process them")
    run_parser.add_argument("workflow", choices=WORKFLOW_CHOICES)
    run_parser.add_argument("paths", nargs="+", help="Disc images to process")
    run_parser.add_argument("--concurrency", type=int, help="Override the concurrent job limit")
    run_parser.add_argument("--platform", help="Per-job platform override for every queued file")
    run_parser.add_argument("--quiet", action="store_true", help="Do not print progress lines")

    plan_parser = subparsers.add_parser("plan", help="Print the tool invocations without running them")
    plan_parser.add_argument("workflow", choices=WORKFLOW_CHOICES)
    plan_parser.add_argument("paths", nargs="+", help="Disc images to inspect")
    plan_parser.add_argument("--platform", help="Per-job platform override for every file")
    return parser


def _platform_arg(value: str | None) -> Platform | None:
    if value is None:
        return None
    return parse_platform(value)


def _render_progress(jobs: list[Job], running: list[Job]) -> str:
    done = sum(1 for job in jobs if job.status in {JobStatus.COMPLETED, JobStatus.FAILED})
    parts = [f"[{done}/{len(jobs)}]"]
    for job in running:
        parts.append(f"{job.filename} {job.progress:5.1f}% eta {format_eta(job.eta_seconds)}")
    return "  ".join(parts)


def _print_summary(jobs: list[Job]) -> None:
    print()
    for job in jobs:
        if job.status is JobStatus.COMPLETED:
            detail = "ok"
            if job.compressed_size is not None and job.compression_ratio is not None:
                detail = f"ok ({job.compressed_size} bytes, ratio {job.compression_ratio:.1%})"
        elif job.is_cancelled:
            detail = "cancelled"
        else:
            detail = f"failed: {job.error_message}"
        print(f"  {job.status.value:10} {job.filename}: {detail}")
        metadata = {"game_id": job.game_id, "title": job.game_title, "region": job.region}
        if any(metadata.values()):
            rendered = " ".join(f"{key}={value}" for key, value in metadata.items() if value)
            print(f"             {rendered}")


def shutdown_deadline(config: AppConfig) -> float:
    # Both termination phases plus slack for the exit callbacks.
    return 2 * config.termination.timeout_seconds + 1.0


def cancel_and_wait(service: QueueService, workflow: Workflow, timeout: float, poll_seconds: float = 0.1) -> bool:
    """Cancel the workflow and wait, bounded, for its jobs to finalize."""
    deadline = time.monotonic() + timeout
    try:
        service.registry.cancel_all(workflow)
        while service.store.count_by_state(workflow, JobStatus.PROCESSING):
            if time.monotonic() >= deadline:
                log_with_fields(
                    service.logger,
                    logging.WARNING,
                    "shutdown_timeout",
                    workflow=workflow,
                    processing=service.store.count_by_state(workflow, JobStatus.PROCESSING),
                    timeout_seconds=timeout,
                )
                return False
            time.sleep(poll_seconds)
    except KeyboardInterrupt:
        log_with_fields(service.logger, logging.WARNING, "shutdown_interrupted", workflow=workflow)
        return False
    return True


def cmd_run(
    config: AppConfig,
    workflow: Workflow,
    paths: list[str],
    *,
    platform: Platform | None = None,
    quiet: bool = False,
) -> int:
    logger = setup_logger(config.log)
    service = QueueService(config, logger=logger)
    try:
        jobs = service.add_files(workflow, paths, platform_override=platform)
        if not jobs:
            print(f"no files accepted for {workflow.value}", file=sys.stderr)
            return 2

        service.start(workflow)
        while not service.is_drained(workflow):
            if not quiet:
                line = _render_progress(service.jobs(workflow), service.queue.processing_jobs(workflow))
                print(f"\r{line}", end="", file=sys.stderr, flush=True)
            time.sleep(config.poll.interval_seconds)
    except KeyboardInterrupt:
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt", workflow=workflow)
        service.pause(workflow)
        cancel_and_wait(service, workflow, shutdown_deadline(config))
    finally:
        final = service.jobs(workflow)
        service.shutdown()

    _print_summary(final)
    return 0 if final and all(job.status is JobStatus.COMPLETED for job in final) else 1


def cmd_plan(config: AppConfig, workflow: Workflow, paths: list[str], *, platform: Platform | None = None) -> int:
    logger = setup_logger(None)
    queue = QueueManager(JobStore(), logger)
    settings = config.job_settings()
    tools = {ToolName.CHDMAN: config.tools.chdman, ToolName.DOLPHIN_TOOL: config.tools.dolphin_tool}
    status = 0
    for raw in paths:
        if not accepts(workflow, raw):
            print(f"# skipped (not a {workflow.value} input): {raw}", file=sys.stderr)
            status = 2
            continue
        job = queue.add_file(workflow, raw, platform_override=platform)
        if job is None:
            continue
        output_dir = config.output_dir or Path(job.path).parent
        plan = build_command(job, output_dir, workflow, settings)
        print(plan.render(tools[plan.tool]))
    return status


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
        platform = _platform_arg(args.platform)
        if getattr(args, "concurrency", None) is not None:
            config.concurrency = validate_concurrency(args.concurrency)
    except ValueError as exc:
        parser.error(str(exc))
        return 2

    workflow = Workflow(args.workflow)
    if args.command == "run":
        return cmd_run(config, workflow, args.paths, platform=platform, quiet=bool(args.quiet))
    if args.command == "plan":
        return cmd_plan(config, workflow, args.paths, platform=platform)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
