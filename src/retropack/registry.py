from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

from .app_logging import log_with_fields
from .executor import ProcessHandle
from .models import RegistryKey, Workflow


class ProcessRegistry:
    """Owns every live tool process, keyed by (workflow, job id).

    One instance exists per application and is shared by all runners. Besides
    the live table it keeps per-job cancellation flags and per-workflow
    cancellation latches. A latch is only ever cleared by an explicit
    ``clear_workflow_cancellation`` call.
    """

    def __init__(self, logger: logging.Logger, timeout_seconds: float = 2.0) -> None:
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._processes: dict[RegistryKey, ProcessHandle] = {}
        self._cancelled_jobs: set[RegistryKey] = set()
        self._cancelled_workflows: set[Workflow] = set()

    def register(self, workflow: Workflow, job_id: str, handle: ProcessHandle) -> bool:
        """Track a freshly spawned process.

        If the job or its workflow was cancelled while the process was being
        spawned, the process is torn down right away and not stored.
        """
        key = RegistryKey(workflow, job_id)
        with self._lock:
            if key in self._cancelled_jobs:
                reason = "job_cancelled"
            elif workflow in self._cancelled_workflows:
                reason = "workflow_cancelled"
                self._cancelled_jobs.add(key)
            else:
                self._processes[key] = handle
                reason = None
        if reason is not None:
            log_with_fields(
                self.logger,
                logging.INFO,
                "registration_refused",
                workflow=workflow,
                job_id=job_id,
                pid=handle.pid,
                reason=reason,
            )
            self._terminate_in_background(key, handle)
            return False
        log_with_fields(self.logger, logging.INFO, "process_registered", workflow=workflow, job_id=job_id, pid=handle.pid)
        return True

    def unregister(self, workflow: Workflow, job_id: str) -> None:
        with self._lock:
            self._processes.pop(RegistryKey(workflow, job_id), None)

    def is_running(self, workflow: Workflow, job_id: str) -> bool:
        with self._lock:
            return RegistryKey(workflow, job_id) in self._processes

    def running_keys(self, workflow: Workflow | None = None) -> list[RegistryKey]:
        with self._lock:
            return [key for key in self._processes if workflow is None or key.workflow is workflow]

    def was_cancelled(self, workflow: Workflow, job_id: str) -> bool:
        with self._lock:
            return RegistryKey(workflow, job_id) in self._cancelled_jobs

    def clear_cancelled(self, workflow: Workflow, job_id: str) -> None:
        with self._lock:
            self._cancelled_jobs.discard(RegistryKey(workflow, job_id))

    def cancel(self, workflow: Workflow, job_id: str) -> bool:
        key = RegistryKey(workflow, job_id)
        with self._lock:
            handle = self._processes.pop(key, None)
            if handle is None:
                live = len(self._processes)
            else:
                self._cancelled_jobs.add(key)
        if handle is None:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "cancel_no_process",
                workflow=workflow,
                job_id=job_id,
                live_processes=live,
            )
            return False
        log_with_fields(self.logger, logging.INFO, "job_cancel_requested", workflow=workflow, job_id=job_id, pid=handle.pid)
        self._terminate_in_background(key, handle)
        return True

    def cancel_all(self, workflow: Workflow) -> int:
        with self._lock:
            # The latch goes up before enumeration so a concurrent register()
            # either lands in this snapshot or sees the latch.
            self._cancelled_workflows.add(workflow)
            victims = [(key, handle) for key, handle in self._processes.items() if key.workflow is workflow]
            for key, _ in victims:
                del self._processes[key]
                self._cancelled_jobs.add(key)
        log_with_fields(self.logger, logging.INFO, "workflow_cancelled", workflow=workflow, processes=len(victims))
        if not victims:
            return 0
        with ThreadPoolExecutor(max_workers=len(victims), thread_name_prefix=f"cancel-{workflow.value}") as pool:
            list(pool.map(lambda item: self._terminate_logged(*item), victims))
        return len(victims)

    def is_workflow_cancelled(self, workflow: Workflow) -> bool:
        with self._lock:
            return workflow in self._cancelled_workflows

    def clear_workflow_cancellation(self, workflow: Workflow) -> None:
        with self._lock:
            self._cancelled_workflows.discard(workflow)
        log_with_fields(self.logger, logging.INFO, "workflow_cancellation_cleared", workflow=workflow)

    def _terminate_in_background(self, key: RegistryKey, handle: ProcessHandle) -> threading.Thread:
        thread = threading.Thread(
            target=self._terminate_logged,
            args=(key, handle),
            name=f"terminate-{key.workflow.value}-{key.job_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def _terminate_logged(self, key: RegistryKey, handle: ProcessHandle) -> None:
        try:
            self.terminate(handle)
        except Exception:
            self.logger.exception("termination_failed")
            return
        log_with_fields(self.logger, logging.INFO, "process_terminated", workflow=key.workflow, job_id=key.job_id, pid=handle.pid)

    def terminate(self, handle: ProcessHandle) -> None:
        try:
            handle.kill()
            if handle.wait(self.timeout_seconds):
                return
            log_with_fields(self.logger, logging.WARNING, "termination_timeout", phase="graceful", pid=handle.pid)
        except (OSError, subprocess.SubprocessError) as exc:
            log_with_fields(self.logger, logging.WARNING, "graceful_kill_failed", pid=handle.pid, error=str(exc))

        if not handle.pid or handle.poll() is not None:
            return

        try:
            force_kill(handle.pid, self.timeout_seconds)
            if not handle.wait(self.timeout_seconds):
                log_with_fields(self.logger, logging.WARNING, "termination_timeout", phase="forced", pid=handle.pid)
        except (OSError, subprocess.SubprocessError) as exc:
            log_with_fields(self.logger, logging.WARNING, "forced_kill_failed", pid=handle.pid, error=str(exc))


def force_kill(pid: int, timeout_seconds: float) -> None:
    if sys.platform == "win32":
        subprocess.run(
            ["taskkill", "/PID", str(pid), "/T", "/F"],
            capture_output=True,
            check=False,
            timeout=timeout_seconds,
        )
        return
    os.kill(pid, signal.SIGKILL)
