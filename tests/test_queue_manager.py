from pathlib import Path
from tempfile import TemporaryDirectory
import logging
import unittest

from retropack.detect import GAMECUBE_MAGIC, WII_MAGIC, detect_by_header, detect_system
from retropack.models import JobStatus, Platform, Strategy, Workflow
from retropack.queue_manager import QueueManager, accepts, strategy_for
from retropack.store import JobStore


def disc_header(offset: int, magic: bytes) -> bytes:
    header = bytearray(b"\x00" * 32)
    header[offset:offset + 4] = magic
    return bytes(header)


class DetectSystemTest(unittest.TestCase):
    def test_extension_and_path_keywords(self) -> None:
        self.assertEqual(detect_system("/roms/game.gdi"), "Dreamcast")
        self.assertEqual(detect_system("/roms/game.cue"), "PS1")
        self.assertEqual(detect_system("/roms/Saturn/game.iso"), "Saturn")
        self.assertEqual(detect_system("/roms/switch/wii-ish/game.iso"), "PS2")

    def test_header_magic(self) -> None:
        self.assertEqual(detect_by_header(disc_header(24, WII_MAGIC)), "Wii")
        self.assertEqual(detect_by_header(disc_header(28, GAMECUBE_MAGIC)), "GameCube")
        self.assertEqual(detect_by_header(b"GALE01" + b"\x00" * 26), "GameCube")
        self.assertEqual(detect_by_header(b"short"), "Unknown")

    def test_iso_falls_back_to_header_then_filename(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            wii = root / "game.iso"
            wii.write_bytes(disc_header(24, WII_MAGIC))
            self.assertEqual(detect_system(wii), "Wii")

            psx = root / "game_psx.iso"
            psx.write_bytes(b"\x00" * 64)
            self.assertEqual(detect_system(psx), "PS1")

            self.assertEqual(detect_system(root / "missing.iso"), "PS2")


class QueueManagerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = JobStore()
        self.manager = QueueManager(self.store, logging.getLogger("retropack.test"))

    def test_acceptance_and_strategy(self) -> None:
        self.assertTrue(accepts(Workflow.COMPRESS, "game.CUE"))
        self.assertFalse(accepts(Workflow.COMPRESS, "game.chd"))
        self.assertTrue(accepts(Workflow.EXTRACT, "game.chd"))
        self.assertEqual(strategy_for("game.iso"), Strategy.CREATEDVD)
        self.assertEqual(strategy_for("game.gdi"), Strategy.CREATECD)

    def test_add_file(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "game.cue"
            path.write_bytes(b"x" * 10)
            job = self.manager.add_file(Workflow.COMPRESS, path, platform_override=Platform.PS1)
            assert job is not None
            self.assertEqual(job.original_size, 10)
            self.assertEqual(job.system, "PS1")
            self.assertEqual(job.status, JobStatus.PENDING)
            self.assertEqual(job.platform_override, Platform.PS1)
            self.assertEqual([item.job_id for item in self.manager.pending_jobs(Workflow.COMPRESS)], [job.job_id])

        self.assertIsNone(self.manager.add_file(Workflow.COMPRESS, "/roms/readme.txt"))
        missing = self.manager.add_file(Workflow.VERIFY, "/nowhere/game.chd")
        assert missing is not None
        self.assertEqual(missing.original_size, 0)

    def test_disc_groups_need_two_discs(self) -> None:
        self.manager.add_files(
            Workflow.COMPRESS,
            [
                "/roms/Final Fantasy VII (Disc 1).cue",
                "/roms/Final Fantasy VII (Disc 2).cue",
                "/roms/Lone Game (Disc 1).cue",
            ],
        )
        grouped = self.manager.assign_disc_groups(Workflow.COMPRESS)
        self.assertEqual(grouped, 2)
        jobs = {job.filename: job for job in self.store.get_jobs(Workflow.COMPRESS)}
        self.assertEqual(jobs["Final Fantasy VII (Disc 2).cue"].disc_number, 2)
        self.assertTrue(jobs["Final Fantasy VII (Disc 1).cue"].is_multi_disc)
        self.assertEqual(
            jobs["Final Fantasy VII (Disc 1).cue"].disc_group,
            jobs["Final Fantasy VII (Disc 2).cue"].disc_group,
        )

    def test_pending_and_processing_views(self) -> None:
        jobs = self.manager.add_files(Workflow.VERIFY, ["/roms/a.chd", "/roms/b.chd"])
        self.store.update_job(Workflow.VERIFY, jobs[1].job_id, status=JobStatus.PROCESSING)
        self.assertEqual([job.job_id for job in self.manager.processing_jobs(Workflow.VERIFY)], [jobs[1].job_id])
        self.assertEqual([job.job_id for job in self.manager.pending_jobs(Workflow.VERIFY)], [jobs[0].job_id])

    def test_remove_and_clear(self) -> None:
        jobs = self.manager.add_files(Workflow.INFO, ["/roms/a.chd", "/roms/b.chd"])
        self.assertTrue(self.manager.remove_job(Workflow.INFO, jobs[0].job_id))
        self.assertEqual(len(self.store.get_jobs(Workflow.INFO)), 1)
        self.manager.clear_queue(Workflow.INFO)
        self.assertEqual(self.store.get_jobs(Workflow.INFO), [])


if __name__ == "__main__":
    unittest.main()
