from __future__ import annotations

import logging
from pathlib import Path

from .app_logging import get_logger, log_with_fields
from .config import AppConfig, JobSettings, validate_concurrency
from .executor import CommandExecutor, SubprocessExecutor
from .models import Job, JobStatus, Platform, ToolName, Workflow
from .notifications import LogNotifier, Notifier
from .queue_manager import QueueManager
from .registry import ProcessRegistry
from .runner import JobRunner
from .scheduler import QueueScheduler
from .store import JobStore


class QueueService:
    def __init__(
        self,
        config: AppConfig,
        executor: CommandExecutor | None = None,
        notifier: Notifier | None = None,
        logger: logging.Logger | None = None,
        estimator_interval: float = 0.5,
    ) -> None:
        self.config = config
        self.logger = logger or get_logger()
        self.settings: JobSettings = config.job_settings()
        self.store = JobStore()
        self.registry = ProcessRegistry(self.logger, timeout_seconds=config.termination.timeout_seconds)
        self.runner = JobRunner(
            store=self.store,
            registry=self.registry,
            executor=executor or SubprocessExecutor(self.logger),
            notifier=notifier or LogNotifier(self.logger),
            logger=self.logger,
            tools={
                ToolName.CHDMAN: config.tools.chdman,
                ToolName.DOLPHIN_TOOL: config.tools.dolphin_tool,
            },
            estimator_interval=estimator_interval,
        )
        self.queue = QueueManager(self.store, self.logger)

        if config.output_dir is not None:
            config.output_dir.mkdir(parents=True, exist_ok=True)

        self.schedulers: dict[Workflow, QueueScheduler] = {}
        for workflow in Workflow:
            scheduler = QueueScheduler(
                workflow=workflow,
                store=self.store,
                registry=self.registry,
                runner=self.runner,
                logger=self.logger,
                settings_provider=lambda: self.settings,
                concurrency=config.concurrency,
                output_dir=config.output_dir,
            )
            scheduler.attach()
            self.schedulers[workflow] = scheduler

    def add_files(
        self,
        workflow: Workflow,
        paths: list[str | Path],
        platform_override: Platform | None = None,
    ) -> list[Job]:
        jobs = self.queue.add_files(workflow, paths, platform_override=platform_override)
        self.queue.assign_disc_groups(workflow)
        return jobs

    def start(self, workflow: Workflow) -> None:
        # Starting is the only action that lifts a cancellation latch.
        self.registry.clear_workflow_cancellation(workflow)
        log_with_fields(self.logger, logging.INFO, "workflow_started", workflow=workflow)
        self.store.set_processing(workflow, True)

    def pause(self, workflow: Workflow) -> None:
        log_with_fields(self.logger, logging.INFO, "workflow_paused", workflow=workflow)
        self.store.set_processing(workflow, False)

    def clear(self, workflow: Workflow) -> int:
        cancelled = self.registry.cancel_all(workflow)
        self.store.clear_queue(workflow)
        return cancelled

    def cancel_job(self, workflow: Workflow, job_id: str) -> bool:
        return self.registry.cancel(workflow, job_id)

    def retry_job(self, workflow: Workflow, job_id: str) -> bool:
        job = self.store.get_job(workflow, job_id)
        if job is None or job.status is not JobStatus.FAILED:
            return False
        if self.runner.is_active(workflow, job_id):
            return False
        self.store.requeue_job(workflow, job_id)
        log_with_fields(self.logger, logging.INFO, "job_requeued", workflow=workflow, job_id=job_id)
        return True

    def remove_job(self, workflow: Workflow, job_id: str) -> bool:
        self.registry.cancel(workflow, job_id)
        return self.queue.remove_job(workflow, job_id)

    def set_concurrency(self, concurrency: int) -> None:
        concurrency = validate_concurrency(concurrency)
        self.config.concurrency = concurrency
        for scheduler in self.schedulers.values():
            scheduler.set_concurrency(concurrency)

    def set_platform(self, platform: Platform) -> None:
        self.config.platform = platform
        self.settings = self.config.job_settings()

    def jobs(self, workflow: Workflow) -> list[Job]:
        return self.store.get_jobs(workflow)

    def is_drained(self, workflow: Workflow) -> bool:
        counts = self.store.summary_counts(workflow)
        if counts[JobStatus.PROCESSING.value]:
            return False
        if not counts[JobStatus.PENDING.value]:
            return True
        # Pending work only drains while processing is enabled and unlatched.
        return not self.store.is_processing(workflow) or self.registry.is_workflow_cancelled(workflow)

    def shutdown(self) -> None:
        for workflow in Workflow:
            self.store.set_processing(workflow, False)
            self.registry.cancel_all(workflow)
        for scheduler in self.schedulers.values():
            scheduler.detach()
