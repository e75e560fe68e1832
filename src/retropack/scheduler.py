from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable

from .app_logging import log_with_fields
from .config import JobSettings
from .models import Job, JobStatus, Workflow
from .registry import ProcessRegistry
from .runner import JobRunner
from .store import JobStore

OUTPUT_PATH_ERROR = "Could not determine output path"


class QueueScheduler:
    """Keeps up to ``concurrency`` jobs of one workflow running.

    Evaluation is driven by store notifications; a request that arrives while
    an evaluation is already running is folded into that evaluation.
    """

    def __init__(
        self,
        workflow: Workflow,
        store: JobStore,
        registry: ProcessRegistry,
        runner: JobRunner,
        logger: logging.Logger,
        settings_provider: Callable[[], JobSettings],
        concurrency: int = 2,
        output_dir: Path | None = None,
    ) -> None:
        self.workflow = workflow
        self.store = store
        self.registry = registry
        self.runner = runner
        self.logger = logger
        self.settings_provider = settings_provider
        self.output_dir = output_dir
        self._concurrency = concurrency
        self._lock = threading.Lock()
        self._evaluating = False
        self._rerun = False
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def set_concurrency(self, concurrency: int) -> None:
        self._concurrency = max(1, concurrency)
        log_with_fields(self.logger, logging.INFO, "concurrency_changed", workflow=self.workflow, concurrency=self._concurrency)
        self.evaluate()

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.workflow, lambda _jobs: self.evaluate())

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def evaluate(self) -> None:
        with self._lock:
            self._rerun = True
            if self._evaluating:
                return
            self._evaluating = True
        try:
            while True:
                with self._lock:
                    if not self._rerun:
                        self._evaluating = False
                        return
                    self._rerun = False
                self._fill_slots()
        except BaseException:
            with self._lock:
                self._evaluating = False
            raise

    def _fill_slots(self) -> None:
        while True:
            if not self.store.is_processing(self.workflow):
                return
            if self.registry.is_workflow_cancelled(self.workflow):
                return
            running = self.store.count_by_state(self.workflow, JobStatus.PROCESSING)
            if running >= self._concurrency:
                return
            job = self.store.next_pending(self.workflow)
            if job is None:
                return
            if not self._start(job):
                return

    def _start(self, job: Job) -> bool:
        output_dir = self.resolve_output_dir(job)
        if output_dir is None:
            self.store.update_job(
                self.workflow,
                job.job_id,
                status=JobStatus.FAILED,
                error_message=OUTPUT_PATH_ERROR,
            )
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_start_failed",
                workflow=self.workflow,
                job_id=job.job_id,
                error=OUTPUT_PATH_ERROR,
            )
            return True
        log_with_fields(self.logger, logging.INFO, "job_dispatched", workflow=self.workflow, job_id=job.job_id, filename=job.filename)
        return self.runner.start(job, output_dir, self.workflow, self.settings_provider())

    def resolve_output_dir(self, job: Job) -> Path | None:
        if self.output_dir is not None:
            return self.output_dir
        if not job.path:
            return None
        parent = Path(job.path).parent
        if not str(parent) or not parent.is_dir():
            return None
        return parent
