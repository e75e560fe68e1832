from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Callable, Protocol

from .app_logging import log_with_fields
from .models import CommandResult


class SpawnError(RuntimeError):
    pass


class ProcessHandle(Protocol):
    pid: int

    def kill(self) -> None: ...

    def wait(self, timeout: float | None = None) -> bool: ...

    def poll(self) -> int | None: ...


@dataclass(slots=True)
class CommandCallbacks:
    on_stdout: Callable[[str], None] | None = None
    on_stderr: Callable[[str], None] | None = None
    on_close: Callable[[CommandResult], None] | None = None
    on_error: Callable[[Exception], None] | None = None


class CommandExecutor(Protocol):
    def spawn(self, program: str, args: list[str], callbacks: CommandCallbacks) -> ProcessHandle: ...


class PopenHandle:
    def __init__(self, process: subprocess.Popen[str]) -> None:
        self.process = process
        self.pid = process.pid

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.terminate()

    def wait(self, timeout: float | None = None) -> bool:
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def poll(self) -> int | None:
        return self.process.poll()


class SubprocessExecutor:
    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def spawn(self, program: str, args: list[str], callbacks: CommandCallbacks) -> PopenHandle:
        cmd = [program, *args]
        try:
            # Text mode splits on "\r" as well, which chdman uses to redraw progress.
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"failed to start {program}: {exc}") from exc

        readers = [
            self._start_reader(process.stdout, callbacks.on_stdout, f"{program}-{process.pid}-stdout"),
            self._start_reader(process.stderr, callbacks.on_stderr, f"{program}-{process.pid}-stderr"),
        ]
        waiter = threading.Thread(
            target=self._wait_for_exit,
            args=(process, readers, callbacks),
            name=f"{program}-{process.pid}-wait",
            daemon=True,
        )
        waiter.start()
        return PopenHandle(process)

    def _start_reader(
        self,
        stream: IO[str] | None,
        callback: Callable[[str], None] | None,
        name: str,
    ) -> threading.Thread:
        thread = threading.Thread(target=self._pump_lines, args=(stream, callback), name=name, daemon=True)
        thread.start()
        return thread

    def _pump_lines(self, stream: IO[str] | None, callback: Callable[[str], None] | None) -> None:
        if stream is None:
            return
        with stream:
            for raw in stream:
                line = raw.strip()
                if not line or callback is None:
                    continue
                try:
                    callback(line)
                except Exception:
                    # Keep draining so the child never blocks on a full pipe.
                    self.logger.exception("output_callback_failed")

    def _wait_for_exit(
        self,
        process: subprocess.Popen[str],
        readers: list[threading.Thread],
        callbacks: CommandCallbacks,
    ) -> None:
        try:
            returncode = process.wait()
            for reader in readers:
                reader.join()
        except OSError as exc:
            log_with_fields(self.logger, logging.ERROR, "process_wait_failed", pid=process.pid, error=str(exc))
            if callbacks.on_error is not None:
                callbacks.on_error(exc)
            return
        if callbacks.on_close is not None:
            callbacks.on_close(CommandResult.from_returncode(returncode))
