from __future__ import annotations

import threading
from dataclasses import fields, replace
from typing import Callable

from .models import Job, JobStatus, Workflow

Subscriber = Callable[[list[Job]], None]

_IMMUTABLE_FIELDS = {"job_id", "filename", "path", "output_log"}
_MUTABLE_FIELDS = {item.name for item in fields(Job)} - _IMMUTABLE_FIELDS


def _snapshot(job: Job) -> Job:
    return replace(job, output_log=list(job.output_log))


class JobStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: dict[Workflow, list[Job]] = {workflow: [] for workflow in Workflow}
        self._processing: dict[Workflow, bool] = {workflow: False for workflow in Workflow}
        self._subscribers: dict[Workflow, list[Subscriber]] = {workflow: [] for workflow in Workflow}

    def subscribe(self, workflow: Workflow, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers[workflow].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[workflow]:
                    self._subscribers[workflow].remove(callback)

        return unsubscribe

    def _notify(self, workflow: Workflow) -> None:
        with self._lock:
            callbacks = list(self._subscribers[workflow])
            if not callbacks:
                return
            jobs = [_snapshot(job) for job in self._queues[workflow]]
        for callback in callbacks:
            callback(jobs)

    def _find(self, workflow: Workflow, job_id: str) -> Job | None:
        for job in self._queues[workflow]:
            if job.job_id == job_id:
                return job
        return None

    def get_jobs(self, workflow: Workflow) -> list[Job]:
        with self._lock:
            return [_snapshot(job) for job in self._queues[workflow]]

    def get_job(self, workflow: Workflow, job_id: str) -> Job | None:
        with self._lock:
            job = self._find(workflow, job_id)
            return _snapshot(job) if job is not None else None

    def add_job(self, workflow: Workflow, job: Job) -> None:
        with self._lock:
            if self._find(workflow, job.job_id) is not None:
                raise ValueError(f"job already queued: {job.job_id}")
            self._queues[workflow].append(job)
        self._notify(workflow)

    def remove_job(self, workflow: Workflow, job_id: str) -> bool:
        with self._lock:
            job = self._find(workflow, job_id)
            if job is None:
                return False
            self._queues[workflow].remove(job)
        self._notify(workflow)
        return True

    def clear_queue(self, workflow: Workflow) -> None:
        with self._lock:
            self._queues[workflow] = []
        self._notify(workflow)

    def update_job(self, workflow: Workflow, job_id: str, /, **changes: object) -> Job | None:
        return self._update(workflow, job_id, None, changes)

    def update_if_status(
        self,
        workflow: Workflow,
        job_id: str,
        status: JobStatus,
        /,
        **changes: object,
    ) -> Job | None:
        """Apply ``changes`` only while the job is still in ``status``."""
        return self._update(workflow, job_id, status, changes)

    def _update(
        self,
        workflow: Workflow,
        job_id: str,
        expected: JobStatus | None,
        changes: dict[str, object],
    ) -> Job | None:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update job fields: {', '.join(sorted(unknown))}")
        with self._lock:
            job = self._find(workflow, job_id)
            if job is None or (expected is not None and job.status is not expected):
                return None
            for name, value in changes.items():
                setattr(job, name, value)
            updated = _snapshot(job)
        self._notify(workflow)
        return updated

    def append_log(self, workflow: Workflow, job_id: str, line: str) -> None:
        with self._lock:
            job = self._find(workflow, job_id)
            if job is None:
                return
            job.output_log.append(line)
        self._notify(workflow)

    def requeue_job(self, workflow: Workflow, job_id: str) -> Job | None:
        return self.update_job(
            workflow,
            job_id,
            status=JobStatus.PENDING,
            progress=0.0,
            start_time=None,
            eta_seconds=None,
            error_message=None,
            compressed_size=None,
        )

    def list_jobs_by_state(self, workflow: Workflow, state: JobStatus) -> list[Job]:
        with self._lock:
            return [_snapshot(job) for job in self._queues[workflow] if job.status is state]

    def count_by_state(self, workflow: Workflow, state: JobStatus) -> int:
        with self._lock:
            return sum(1 for job in self._queues[workflow] if job.status is state)

    def next_pending(self, workflow: Workflow) -> Job | None:
        with self._lock:
            for job in self._queues[workflow]:
                if job.status is JobStatus.PENDING:
                    return _snapshot(job)
        return None

    def summary_counts(self, workflow: Workflow) -> dict[str, int]:
        output = {state.value: 0 for state in JobStatus}
        with self._lock:
            for job in self._queues[workflow]:
                output[job.status.value] += 1
        return output

    def is_processing(self, workflow: Workflow) -> bool:
        with self._lock:
            return self._processing[workflow]

    def set_processing(self, workflow: Workflow, processing: bool) -> None:
        with self._lock:
            self._processing[workflow] = processing
        self._notify(workflow)
