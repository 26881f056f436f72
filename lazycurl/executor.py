"""lazycurl executor - spawn the HTTP client binary and stream its output.

The executor is driven from a single-threaded tick loop. ``poll()`` never
blocks: two daemon reader threads move pipe output into a bounded queue and
``poll()`` only drains what is already there.

States: IDLE -> RUNNING -> COMPLETED | FAILED | CANCELLED. A non-zero exit
code is a normal COMPLETED outcome; FAILED is reserved for spawn and I/O
errors. Only one run may be active: ``start()`` while RUNNING raises
AlreadyRunningError (the caller decides whether to cancel first).
"""

from __future__ import annotations

import codecs
import logging
import queue
import shlex
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field

from lazycurl.builder import CURL
from lazycurl.errors import AlreadyRunningError, ExecutionError, SpawnError
from lazycurl.models import ExecutionResult, RunStatus

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
QUEUE_SIZE = 256
TERMINATE_GRACE = 1.0
STDOUT = "stdout"
STDERR = "stderr"


@dataclass
class PollResult:
    """Output that arrived since the previous poll, plus the current state."""

    status: RunStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.status.is_terminal


class _StreamReader(threading.Thread):
    """Copies one pipe into the shared queue until EOF or stop."""

    def __init__(self, name: str, pipe, sink: queue.Queue, stop: threading.Event):
        super().__init__(name=f"lazycurl-{name}", daemon=True)
        self.stream = name
        self._pipe = pipe
        self._sink = sink
        self._stop_event = stop

    def run(self):
        try:
            while not self._stop_event.is_set():
                chunk = self._pipe.read1(CHUNK_SIZE)
                if not chunk:
                    break
                self._put(chunk)
        except (OSError, ValueError) as e:
            # ValueError: pipe closed underneath us by cancel()
            if not self._stop_event.is_set():
                self._put(ExecutionError(f"Failed reading {self.stream}: {e}"))
        finally:
            self._put(None)

    def _put(self, item) -> None:
        while not self._stop_event.is_set():
            try:
                self._sink.put((self.stream, item), timeout=0.05)
                return
            except queue.Full:
                continue


@dataclass
class _Run:
    command: str
    argv: list[str]
    process: subprocess.Popen
    queue: queue.Queue
    stop: threading.Event
    readers: list[_StreamReader]
    started: float
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    open_streams: set[str] = field(default_factory=lambda: {STDOUT, STDERR})
    io_error: str | None = None
    decoders: dict = field(
        default_factory=lambda: {
            STDOUT: codecs.getincrementaldecoder("utf-8")(errors="replace"),
            STDERR: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        },
    )


class Executor:
    """Runs one external command at a time and reports its progress."""

    def __init__(self, binary: str | None = None):
        # binary replaces argv[0] when the command starts with plain "curl"
        self.binary = binary
        self.status = RunStatus.IDLE
        self.exit_code: int | None = None
        self.error: str | None = None
        self.command: str | None = None
        self.duration_ms: float = 0
        self._run: _Run | None = None
        self._stdout = ""
        self._stderr = ""

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.RUNNING

    def resolve_argv(self, command: str | list[str]) -> list[str]:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise SpawnError("Empty command")
        if self.binary and argv[0] == CURL:
            argv[0] = self.binary
        return argv

    def start(self, command: str | list[str]) -> None:
        """Spawn the command and switch to RUNNING.

        Raises AlreadyRunningError if a run is active and SpawnError if the
        binary cannot be located or launched (the executor is then FAILED).
        """
        if self.is_running:
            raise AlreadyRunningError()

        self._reset(command if isinstance(command, str) else shlex.join(command))
        try:
            argv = self.resolve_argv(command)
        except ValueError as e:
            raise self._failed(SpawnError(f"Could not parse command: {e}")) from e
        except SpawnError as e:
            raise self._failed(e) from None

        executable = shutil.which(argv[0])
        if executable is None:
            raise self._failed(SpawnError(f"{argv[0]}: command not found"))

        try:
            process = subprocess.Popen(
                [executable] + argv[1:],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise self._failed(SpawnError(f"Failed to launch {argv[0]}: {e}")) from e

        sink: queue.Queue = queue.Queue(maxsize=QUEUE_SIZE)
        stop = threading.Event()
        readers = [
            _StreamReader(STDOUT, process.stdout, sink, stop),
            _StreamReader(STDERR, process.stderr, sink, stop),
        ]
        for reader in readers:
            reader.start()

        self._run = _Run(
            command=self.command,
            argv=argv,
            process=process,
            queue=sink,
            stop=stop,
            readers=readers,
            started=time.monotonic(),
        )
        self.status = RunStatus.RUNNING
        logger.debug("started pid=%s argv=%r", process.pid, argv)

    def poll(self) -> PollResult:
        """Drain available output without blocking and report the state."""
        run = self._run
        if run is None or not self.is_running:
            return PollResult(self.status, exit_code=self.exit_code, error=self.error)

        new_out: list[str] = []
        new_err: list[str] = []
        while True:
            try:
                stream, item = run.queue.get_nowait()
            except queue.Empty:
                break
            target = new_out if stream == STDOUT else new_err
            if item is None:
                run.open_streams.discard(stream)
                target.append(run.decoders[stream].decode(b"", final=True))
            elif isinstance(item, ExecutionError):
                run.io_error = item.detail
            else:
                target.append(run.decoders[stream].decode(item))

        out, err = "".join(new_out), "".join(new_err)
        run.stdout.append(out)
        run.stderr.append(err)

        if not run.open_streams:
            returncode = run.process.poll()
            if returncode is not None:
                self._finish(run, returncode)

        return PollResult(
            self.status,
            stdout=out,
            stderr=err,
            exit_code=self.exit_code,
            error=self.error,
        )

    def cancel(self) -> None:
        """Terminate the running child and release its pipes."""
        run = self._run
        if run is None or not self.is_running:
            raise ExecutionError("No request is running")
        self._terminate(run)
        self.duration_ms = (time.monotonic() - run.started) * 1000
        self.status = RunStatus.CANCELLED
        self.error = "Cancelled"
        self._stdout = "".join(run.stdout)
        self._stderr = "".join(run.stderr)
        self._run = None
        logger.debug("cancelled pid=%s", run.process.pid)

    def result(self) -> ExecutionResult:
        """Snapshot of the current (usually terminal) run."""
        stdout, stderr = self._stdout, self._stderr
        if self._run is not None:
            stdout = "".join(self._run.stdout)
            stderr = "".join(self._run.stderr)
        return ExecutionResult(
            status=self.status,
            exit_code=self.exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=self.duration_ms,
            error=self.error,
        )

    def wait(self, timeout: float | None = None, interval: float = 0.01) -> ExecutionResult:
        """Poll until the run is terminal. Blocking; for scripts and tests."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.is_running:
            self.poll()
            if not self.is_running:
                break
            if deadline is not None and time.monotonic() > deadline:
                self.cancel()
                break
            time.sleep(interval)
        return self.result()

    # ── Internals ─────────────────────────────────────────────────────

    def _reset(self, command: str) -> None:
        self.status = RunStatus.IDLE
        self.exit_code = None
        self.error = None
        self.command = command
        self.duration_ms = 0
        self._stdout = ""
        self._stderr = ""
        self._run = None

    def _failed(self, error: SpawnError) -> SpawnError:
        self.status = RunStatus.FAILED
        self.error = error.detail
        logger.warning("spawn failed: %s", error.detail)
        return error

    def _finish(self, run: _Run, returncode: int) -> None:
        self.duration_ms = (time.monotonic() - run.started) * 1000
        self._stdout = "".join(run.stdout)
        self._stderr = "".join(run.stderr)
        # Both readers already queued EOF, so they are exiting.
        for reader in run.readers:
            reader.join(timeout=0.1)
        self._close_pipes(run)
        self._run = None
        if run.io_error:
            self.status = RunStatus.FAILED
            self.error = run.io_error
            logger.warning("run failed: %s", run.io_error)
            return
        self.status = RunStatus.COMPLETED
        self.exit_code = returncode
        logger.debug("pid=%s exited with %s", run.process.pid, returncode)

    def _terminate(self, run: _Run) -> None:
        run.stop.set()
        process = run.process
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        for reader in run.readers:
            reader.join(timeout=TERMINATE_GRACE)
        self._close_pipes(run)

    @staticmethod
    def _close_pipes(run: _Run) -> None:
        for reader, pipe in zip(run.readers, (run.process.stdout, run.process.stderr)):
            # A reader still blocked in read1() holds the buffer lock.
            if pipe is not None and not reader.is_alive():
                try:
                    pipe.close()
                except OSError:
                    pass
