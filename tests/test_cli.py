from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory
import logging
import shlex
import signal
import sys
import threading
import time
import unittest

from retropack.cli import build_parser, cancel_and_wait, main, shutdown_deadline
from retropack.config import AppConfig, TerminationConfig
from retropack.executor import CommandCallbacks
from retropack.models import CommandResult, JobStatus, Workflow
from retropack.service import QueueService


class CliTest(unittest.TestCase):
    def test_run_arguments(self) -> None:
        parser = build_parser()
        args = parser.parse_args(
            ["--config", "retropack.yaml", "run", "compress", "a.cue", "b.iso", "--concurrency", "3", "--platform", "ps2"]
        )
        self.assertEqual(args.command, "run")
        self.assertEqual(args.workflow, "compress")
        self.assertEqual(args.paths, ["a.cue", "b.iso"])
        self.assertEqual(args.concurrency, 3)
        self.assertEqual(args.platform, "ps2")

    def test_unknown_workflow_is_rejected(self) -> None:
        with redirect_stderr(StringIO()), self.assertRaises(SystemExit):
            build_parser().parse_args(["run", "shrink", "a.cue"])

    def test_plan_prints_invocations(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = root / "game.cue"
            source.write_bytes(b"\x00")
            out = StringIO()
            with redirect_stdout(out):
                code = main(["plan", "compress", str(source)])
            self.assertEqual(code, 0)
            self.assertEqual(
                shlex.split(out.getvalue()),
                ["chdman", "createcd", "-i", str(source), "-o", str(root / "game.chd"), "-c", "lzma,zlib,huff", "-f"],
            )

    def test_run_without_accepted_files(self) -> None:
        with redirect_stderr(StringIO()):
            self.assertEqual(main(["run", "extract", "notes.txt", "--quiet"]), 2)

    def test_run_reports_failed_tool(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = root / "game.cue"
            source.write_bytes(b"\x00")
            config_path = root / "retropack.yaml"
            # The interpreter stands in for chdman and rejects its arguments.
            config_path.write_text(
                f"tools:\n  chdman: {sys.executable!r}\npoll:\n  interval_seconds: 0.05\n",
                encoding="utf-8",
            )
            out = StringIO()
            with redirect_stdout(out), redirect_stderr(StringIO()):
                code = main(["--config", str(config_path), "run", "compress", str(source), "--quiet"])
            self.assertEqual(code, 1)
            self.assertIn("failed: Exited with code 2", out.getvalue())


class StubbornHandle:
    pid = 0

    def kill(self) -> None:
        pass

    def wait(self, timeout: float | None = None) -> bool:
        if timeout:
            time.sleep(min(timeout, 0.01))
        return False

    def poll(self) -> int | None:
        return None


class StubbornExecutor:
    def __init__(self) -> None:
        self.callbacks: list[CommandCallbacks] = []

    def spawn(self, program: str, args: list[str], callbacks: CommandCallbacks) -> StubbornHandle:
        self.callbacks.append(callbacks)
        return StubbornHandle()


class InterruptShutdownTest(unittest.TestCase):
    def make_service(self, root: Path, executor: StubbornExecutor) -> QueueService:
        config = AppConfig(concurrency=1, termination=TerminationConfig(timeout_seconds=0.05))
        service = QueueService(config, executor=executor, logger=logging.getLogger("retropack.test"))
        self.addCleanup(service.shutdown)
        source = root / "game.cue"
        source.write_bytes(b"\x00")
        service.add_files(Workflow.COMPRESS, [source])
        service.start(Workflow.COMPRESS)
        return service

    def test_wait_is_bounded_when_a_process_never_exits(self) -> None:
        with TemporaryDirectory() as temp_dir:
            service = self.make_service(Path(temp_dir), StubbornExecutor())
            started = time.monotonic()
            self.assertFalse(cancel_and_wait(service, Workflow.COMPRESS, timeout=0.3, poll_seconds=0.01))
            self.assertLess(time.monotonic() - started, 5.0)
            self.assertEqual([job.status for job in service.jobs(Workflow.COMPRESS)], [JobStatus.PROCESSING])

    def test_wait_returns_once_jobs_finalize(self) -> None:
        with TemporaryDirectory() as temp_dir:
            executor = StubbornExecutor()
            service = self.make_service(Path(temp_dir), executor)
            on_close = executor.callbacks[0].on_close
            assert on_close is not None
            threading.Timer(0.05, on_close, args=(CommandResult(code=None, signal=int(signal.SIGTERM)),)).start()
            self.assertTrue(cancel_and_wait(service, Workflow.COMPRESS, timeout=3.0, poll_seconds=0.01))
            (job,) = service.jobs(Workflow.COMPRESS)
            self.assertTrue(job.is_cancelled)

    def test_deadline_covers_both_termination_phases(self) -> None:
        config = AppConfig(termination=TerminationConfig(timeout_seconds=2.0))
        self.assertGreater(shutdown_deadline(config), 4.0)


if __name__ == "__main__":
    unittest.main()
