from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

from .app_logging import log_with_fields
from .commands import CommandPlan, build_command
from .config import JobSettings
from .executor import CommandCallbacks, CommandExecutor, SpawnError
from .models import CANCELLED_MESSAGE, CommandResult, Job, JobStatus, RegistryKey, ToolName, Workflow
from .notifications import Notifier
from .progress import compute_eta, parse_info_line, parse_progress
from .registry import ProcessRegistry
from .store import JobStore

# Parsed progress stays below 100 until the process has actually exited.
MAX_RUNNING_PROGRESS = 99.9
ESTIMATOR_CEILING = 99.0
ESTIMATED_BYTES_PER_SECOND = 4 * 1024 * 1024
MIN_ESTIMATED_SECONDS = 10.0


class ProgressEstimator(threading.Thread):
    """Synthetic progress for tools that never print a percentage."""

    def __init__(
        self,
        store: JobStore,
        workflow: Workflow,
        job_id: str,
        original_size: int,
        interval_seconds: float = 0.5,
    ) -> None:
        super().__init__(name=f"estimate-{workflow.value}-{job_id}", daemon=True)
        self.store = store
        self.workflow = workflow
        self.job_id = job_id
        self.interval_seconds = interval_seconds
        self.estimated_seconds = max(MIN_ESTIMATED_SECONDS, original_size / ESTIMATED_BYTES_PER_SECOND)
        self.step = 100.0 / self.estimated_seconds * interval_seconds
        self.progress = 0.0
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval_seconds):
            progress = min(ESTIMATOR_CEILING, self.progress + self.step)
            if progress <= self.progress:
                continue
            self.progress = progress
            eta = max(0.0, self.estimated_seconds - progress / 100 * self.estimated_seconds)
            updated = self.store.update_if_status(
                self.workflow,
                self.job_id,
                JobStatus.PROCESSING,
                progress=progress,
                eta_seconds=eta,
            )
            if updated is None:
                return

    def stop(self) -> None:
        self._stopped.set()
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout=self.interval_seconds * 4)


class _JobExecution:
    def __init__(
        self,
        runner: JobRunner,
        job: Job,
        workflow: Workflow,
        plan: CommandPlan,
        start_time: float,
        estimator: ProgressEstimator | None,
    ) -> None:
        self.runner = runner
        self.job = job
        self.workflow = workflow
        self.plan = plan
        self.key = RegistryKey(workflow, job.job_id)
        self.start_time = start_time
        self.progress = 0.0
        self.estimator = estimator
        self.registered = threading.Event()

    def callbacks(self) -> CommandCallbacks:
        return CommandCallbacks(
            on_stdout=self.on_stdout,
            on_stderr=self.on_stderr,
            on_close=self.on_close,
            on_error=self.on_error,
        )

    def on_stdout(self, line: str) -> None:
        self.runner.store.append_log(self.workflow, self.job.job_id, line)
        self._parse(line)

    def on_stderr(self, line: str) -> None:
        self.runner.store.append_log(self.workflow, self.job.job_id, f"[stderr] {line}")
        self._parse(line)

    def _parse(self, line: str) -> None:
        store = self.runner.store
        percentage = parse_progress(line)
        if percentage is not None:
            progress = max(self.progress, min(percentage, MAX_RUNNING_PROGRESS))
            self.progress = progress
            store.update_job(
                self.workflow,
                self.job.job_id,
                progress=progress,
                eta_seconds=compute_eta(self.start_time, percentage, time.time()),
            )
        if self.workflow is Workflow.INFO:
            metadata = parse_info_line(line)
            if metadata:
                store.update_job(self.workflow, self.job.job_id, **metadata)

    def _teardown(self) -> None:
        self.registered.wait(self.runner.registration_timeout)
        self.runner.registry.unregister(self.workflow, self.job.job_id)
        self.runner.release(self.key)
        if self.estimator is not None:
            self.estimator.stop()

    def on_close(self, result: CommandResult) -> None:
        self._teardown()
        runner = self.runner
        job_id = self.job.job_id
        cancelled = runner.registry.was_cancelled(self.workflow, job_id)
        runner.registry.clear_cancelled(self.workflow, job_id)
        runner.store.append_log(
            self.workflow,
            job_id,
            f"Process finished with code {result.code}" if result.signal is None else f"Process killed by signal {result.signal}",
        )

        if result.code == 0:
            runner.store.update_job(
                self.workflow,
                job_id,
                status=JobStatus.COMPLETED,
                progress=100.0,
                eta_seconds=0.0,
                error_message=None,
                compressed_size=self._output_size(),
            )
            log_with_fields(runner.logger, logging.INFO, "job_completed", workflow=self.workflow, job_id=job_id)
            runner.notify(True, f"{self.workflow.label} Completed", f"{self.job.filename} has finished processing.")
            return

        if cancelled or result.terminated:
            runner.store.update_job(self.workflow, job_id, status=JobStatus.FAILED, error_message=CANCELLED_MESSAGE, eta_seconds=None)
            log_with_fields(runner.logger, logging.INFO, "job_cancelled", workflow=self.workflow, job_id=job_id)
            return

        if result.code is not None:
            message = f"Exited with code {result.code}"
        else:
            message = f"Terminated by signal {result.signal}"
        runner.store.update_job(self.workflow, job_id, status=JobStatus.FAILED, error_message=message, eta_seconds=None)
        log_with_fields(runner.logger, logging.WARNING, "job_failed", workflow=self.workflow, job_id=job_id, error=message)
        runner.notify(False, f"{self.workflow.label} Failed", f"{self.job.filename} failed to process.")

    def on_error(self, error: Exception) -> None:
        self._teardown()
        runner = self.runner
        runner.registry.clear_cancelled(self.workflow, self.job.job_id)
        message = str(error) or error.__class__.__name__
        runner.store.append_log(self.workflow, self.job.job_id, f"Error: {message}")
        runner.store.update_job(self.workflow, self.job.job_id, status=JobStatus.FAILED, error_message=message, eta_seconds=None)
        log_with_fields(runner.logger, logging.ERROR, "job_errored", workflow=self.workflow, job_id=self.job.job_id, error=message)
        runner.notify(False, f"{self.workflow.label} Failed", f"{self.job.filename}: {message}")

    def _output_size(self) -> int | None:
        if self.workflow is not Workflow.COMPRESS or self.plan.output_path is None:
            return None
        try:
            return self.plan.output_path.stat().st_size
        except OSError:
            return None


class JobRunner:
    def __init__(
        self,
        store: JobStore,
        registry: ProcessRegistry,
        executor: CommandExecutor,
        notifier: Notifier,
        logger: logging.Logger,
        tools: dict[ToolName, str] | None = None,
        estimator_interval: float = 0.5,
        registration_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.registry = registry
        self.executor = executor
        self.notifier = notifier
        self.logger = logger
        self.tools = tools or {tool: tool.value for tool in ToolName}
        self.estimator_interval = estimator_interval
        self.registration_timeout = registration_timeout
        self._active: set[RegistryKey] = set()
        self._active_lock = threading.Lock()

    def acquire(self, key: RegistryKey) -> bool:
        with self._active_lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: RegistryKey) -> None:
        with self._active_lock:
            self._active.discard(key)

    def is_active(self, workflow: Workflow, job_id: str) -> bool:
        with self._active_lock:
            return RegistryKey(workflow, job_id) in self._active

    def notify(self, success: bool, title: str, body: str) -> None:
        try:
            if success:
                self.notifier.notify_success(title, body)
            else:
                self.notifier.notify_failure(title, body)
        except Exception:
            self.logger.exception("notification_failed")

    def start(self, job: Job, output_dir: Path, workflow: Workflow, settings: JobSettings) -> bool:
        """Run one job; returns False when the call was a no-op and the job is untouched."""
        if self.registry.is_workflow_cancelled(workflow):
            log_with_fields(self.logger, logging.INFO, "start_skipped_workflow_cancelled", workflow=workflow, job_id=job.job_id)
            return False

        key = RegistryKey(workflow, job.job_id)
        if not self.acquire(key):
            log_with_fields(self.logger, logging.WARNING, "duplicate_start_ignored", workflow=workflow, job_id=job.job_id)
            return False

        start_time = time.time()
        self.store.update_job(
            workflow,
            job.job_id,
            status=JobStatus.PROCESSING,
            progress=0.0,
            start_time=start_time,
            eta_seconds=None,
            error_message=None,
            compressed_size=None,
        )

        plan = build_command(job, output_dir, workflow, settings)
        program = self.tools[plan.tool]
        self.store.append_log(workflow, job.job_id, f"Starting: {plan.render(program)}")
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_started",
            workflow=workflow,
            job_id=job.job_id,
            tool=plan.tool,
            args=list(plan.args),
        )

        estimator = None
        if plan.tool is ToolName.DOLPHIN_TOOL:
            estimator = ProgressEstimator(self.store, workflow, job.job_id, job.original_size, self.estimator_interval)
            estimator.start()

        execution = _JobExecution(self, job, workflow, plan, start_time, estimator)
        try:
            handle = self.executor.spawn(program, list(plan.args), execution.callbacks())
        except SpawnError as exc:
            self.release(key)
            if estimator is not None:
                estimator.stop()
            message = str(exc)
            self.store.update_job(workflow, job.job_id, status=JobStatus.FAILED, error_message=message, eta_seconds=None)
            self.store.append_log(workflow, job.job_id, f"Exception: {message}")
            log_with_fields(self.logger, logging.ERROR, "job_spawn_failed", workflow=workflow, job_id=job.job_id, error=message)
            return True

        try:
            self.store.append_log(workflow, job.job_id, f"PID: {handle.pid}")
            self.registry.register(workflow, job.job_id, handle)
        finally:
            execution.registered.set()
        return True
