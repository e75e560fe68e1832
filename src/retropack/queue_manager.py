from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path

from .app_logging import log_with_fields
from .detect import detect_system
from .models import Job, JobStatus, Platform, Strategy, Workflow
from .store import JobStore
from .utils import extract_disc_info, file_extension, new_job_id

WORKFLOW_EXTENSIONS: dict[Workflow, frozenset[str]] = {
    Workflow.COMPRESS: frozenset({"iso", "cue", "bin", "gdi", "toc", "wbfs", "gcm"}),
    Workflow.EXTRACT: frozenset({"chd", "rvz", "cso", "gcz"}),
    Workflow.VERIFY: frozenset({"chd", "rvz", "nsz", "xcz"}),
    Workflow.INFO: frozenset({"iso", "chd", "rvz", "cue", "gdi", "wbfs", "gcm", "nsp", "xci"}),
}


def strategy_for(path: str | Path) -> Strategy:
    if file_extension(path) == "iso":
        return Strategy.CREATEDVD
    return Strategy.CREATECD


def accepts(workflow: Workflow, path: str | Path) -> bool:
    return file_extension(path) in WORKFLOW_EXTENSIONS[workflow]


class QueueManager:
    def __init__(self, store: JobStore, logger: logging.Logger) -> None:
        self.store = store
        self.logger = logger

    def add_file(
        self,
        workflow: Workflow,
        path: str | Path,
        size: int | None = None,
        platform_override: Platform | None = None,
    ) -> Job | None:
        source = Path(path)
        if not accepts(workflow, source):
            log_with_fields(self.logger, logging.WARNING, "file_rejected", workflow=workflow, path=str(source))
            return None

        if size is None:
            try:
                size = source.stat().st_size
            except OSError as exc:
                log_with_fields(self.logger, logging.WARNING, "stat_failed", path=str(source), error=str(exc))
                size = 0

        disc = extract_disc_info(source.name)
        job = Job(
            job_id=new_job_id(),
            filename=source.name,
            path=str(source),
            system=detect_system(source, self.logger),
            strategy=strategy_for(source),
            original_size=size,
            platform_override=platform_override,
            disc_group=disc.base_name if disc else None,
            disc_number=disc.disc_number if disc else None,
        )
        self.store.add_job(workflow, job)
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_queued",
            workflow=workflow,
            job_id=job.job_id,
            path=job.path,
            system=job.system,
            strategy=job.strategy,
        )
        return job

    def add_files(
        self,
        workflow: Workflow,
        paths: list[str | Path],
        platform_override: Platform | None = None,
    ) -> list[Job]:
        added: list[Job] = []
        for path in paths:
            job = self.add_file(workflow, path, platform_override=platform_override)
            if job is not None:
                added.append(job)
        return added

    def remove_job(self, workflow: Workflow, job_id: str) -> bool:
        return self.store.remove_job(workflow, job_id)

    def clear_queue(self, workflow: Workflow) -> None:
        self.store.clear_queue(workflow)

    def pending_jobs(self, workflow: Workflow) -> list[Job]:
        return self.store.list_jobs_by_state(workflow, JobStatus.PENDING)

    def processing_jobs(self, workflow: Workflow) -> list[Job]:
        return self.store.list_jobs_by_state(workflow, JobStatus.PROCESSING)

    def assign_disc_groups(self, workflow: Workflow) -> int:
        groups: dict[str, list[tuple[str, int]]] = defaultdict(list)
        for job in self.store.get_jobs(workflow):
            disc = extract_disc_info(job.filename)
            if disc is not None:
                groups[disc.base_name].append((job.job_id, disc.disc_number))

        grouped = 0
        for base_name, members in groups.items():
            if len(members) < 2:
                continue
            for job_id, disc_number in members:
                self.store.update_job(workflow, job_id, disc_group=base_name, disc_number=disc_number)
                grouped += 1
        return grouped
