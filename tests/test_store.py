import unittest

from retropack.models import Job, JobStatus, Strategy, Workflow
from retropack.store import JobStore


def make_job(job_id: str) -> Job:
    return Job(job_id=job_id, filename=f"{job_id}.cue", path=f"/roms/{job_id}.cue", system="PS1", strategy=Strategy.CREATECD)


class StoreTest(unittest.TestCase):
    def test_add_update_and_requeue(self) -> None:
        store = JobStore()
        store.add_job(Workflow.COMPRESS, make_job("a"))
        store.update_job(
            Workflow.COMPRESS,
            "a",
            status=JobStatus.FAILED,
            progress=37.0,
            start_time=1.0,
            error_message="Exited with code 1",
        )
        failed = store.get_job(Workflow.COMPRESS, "a")
        assert failed is not None
        self.assertEqual(failed.status, JobStatus.FAILED)

        store.requeue_job(Workflow.COMPRESS, "a")
        requeued = store.get_job(Workflow.COMPRESS, "a")
        assert requeued is not None
        self.assertEqual(requeued.status, JobStatus.PENDING)
        self.assertEqual(requeued.progress, 0.0)
        self.assertIsNone(requeued.start_time)
        self.assertIsNone(requeued.error_message)

    def test_rejects_duplicates_and_immutable_fields(self) -> None:
        store = JobStore()
        store.add_job(Workflow.COMPRESS, make_job("a"))
        with self.assertRaises(ValueError):
            store.add_job(Workflow.COMPRESS, make_job("a"))
        with self.assertRaises(ValueError):
            store.update_job(Workflow.COMPRESS, "a", job_id="b")
        with self.assertRaises(ValueError):
            store.update_job(Workflow.COMPRESS, "a", colour="red")

    def test_update_if_status_requires_matching_status(self) -> None:
        store = JobStore()
        store.add_job(Workflow.COMPRESS, make_job("a"))
        self.assertIsNone(store.update_if_status(Workflow.COMPRESS, "a", JobStatus.PROCESSING, progress=50.0))
        store.update_job(Workflow.COMPRESS, "a", status=JobStatus.PROCESSING)
        updated = store.update_if_status(Workflow.COMPRESS, "a", JobStatus.PROCESSING, progress=50.0)
        assert updated is not None
        self.assertEqual(updated.progress, 50.0)
        with self.assertRaises(ValueError):
            store.update_if_status(Workflow.COMPRESS, "a", JobStatus.PROCESSING, job_id="b")

    def test_missing_job_is_a_no_op(self) -> None:
        store = JobStore()
        self.assertIsNone(store.update_job(Workflow.VERIFY, "missing", progress=10.0))
        store.append_log(Workflow.VERIFY, "missing", "line")
        self.assertFalse(store.remove_job(Workflow.VERIFY, "missing"))

    def test_workflows_are_isolated(self) -> None:
        store = JobStore()
        store.add_job(Workflow.COMPRESS, make_job("a"))
        store.set_processing(Workflow.COMPRESS, True)
        self.assertEqual(store.get_jobs(Workflow.EXTRACT), [])
        self.assertFalse(store.is_processing(Workflow.EXTRACT))
        store.clear_queue(Workflow.EXTRACT)
        self.assertEqual(len(store.get_jobs(Workflow.COMPRESS)), 1)

    def test_queries_follow_insertion_order(self) -> None:
        store = JobStore()
        for job_id in ["a", "b", "c"]:
            store.add_job(Workflow.COMPRESS, make_job(job_id))
        store.update_job(Workflow.COMPRESS, "a", status=JobStatus.PROCESSING)
        next_job = store.next_pending(Workflow.COMPRESS)
        assert next_job is not None
        self.assertEqual(next_job.job_id, "b")
        self.assertEqual(store.count_by_state(Workflow.COMPRESS, JobStatus.PENDING), 2)
        self.assertEqual(
            [job.job_id for job in store.list_jobs_by_state(Workflow.COMPRESS, JobStatus.PENDING)],
            ["b", "c"],
        )
        self.assertEqual(
            store.summary_counts(Workflow.COMPRESS),
            {"pending": 2, "processing": 1, "completed": 0, "failed": 0},
        )

    def test_subscribers_receive_snapshots(self) -> None:
        store = JobStore()
        seen: list[list[Job]] = []
        unsubscribe = store.subscribe(Workflow.INFO, seen.append)
        store.add_job(Workflow.INFO, make_job("a"))
        store.append_log(Workflow.INFO, "a", "hello")
        store.add_job(Workflow.COMPRESS, make_job("b"))
        self.assertEqual(len(seen), 2)

        seen[-1][0].output_log.append("tampered")
        job = store.get_job(Workflow.INFO, "a")
        assert job is not None
        self.assertEqual(job.output_log, ["hello"])

        unsubscribe()
        store.clear_queue(Workflow.INFO)
        self.assertEqual(len(seen), 2)


if __name__ == "__main__":
    unittest.main()
