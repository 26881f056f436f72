"""Shared fixtures for lazycurl tests."""

import shlex
import sys

import pytest
from click.testing import CliRunner

from lazycurl import core
from lazycurl.builder import STATUS_MARKER_PREFIX
from lazycurl.core import Config
from lazycurl.errors import AlreadyRunningError, ExecutionError, SpawnError
from lazycurl.executor import PollResult
from lazycurl.models import ExecutionResult, IdGenerator, RunStatus
from lazycurl.session import AppContext, Session
from lazycurl.store import Store


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def global_lazycurl_dir(tmp_path, monkeypatch):
    """Point the global data dir at a temp location and run from tmp_path."""
    fake_global = tmp_path / "fake_home" / "lazycurl"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.chdir(tmp_path)
    return fake_global


@pytest.fixture
def ids():
    return IdGenerator()


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "data")


@pytest.fixture
def ctx(store):
    return AppContext.bootstrap(store, Config())


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def session(ctx, fake_executor):
    return Session(ctx, executor=fake_executor)


def python_command(code: str) -> str:
    """Shell-quoted command running ``code`` with this interpreter."""
    return shlex.join([sys.executable, "-c", code])


def curl_stdout(body: str, status: int = 200, headers: str | None = None) -> str:
    """What curl prints for a run built with the status marker."""
    prefix = f"{headers}\r\n\r\n" if headers else ""
    return f"{prefix}{body}\n{STATUS_MARKER_PREFIX}{status}\n"


class FakeExecutor:
    """Scripted stand-in for Executor; finishes after ``polls`` polls."""

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        polls: int = 1,
        spawn_error: str | None = None,
    ):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code_on_finish = exit_code
        self.polls = polls
        self.spawn_error = spawn_error
        self.commands: list[str] = []
        self.status = RunStatus.IDLE
        self.exit_code: int | None = None
        self.error: str | None = None
        self._remaining = 0

    @property
    def is_running(self) -> bool:
        return self.status == RunStatus.RUNNING

    def start(self, command: str) -> None:
        if self.is_running:
            raise AlreadyRunningError()
        self.commands.append(command)
        self.exit_code = None
        self.error = None
        if self.spawn_error:
            self.status = RunStatus.FAILED
            self.error = self.spawn_error
            raise SpawnError(self.spawn_error)
        self.status = RunStatus.RUNNING
        self._remaining = self.polls

    def poll(self) -> PollResult:
        if not self.is_running:
            return PollResult(self.status, exit_code=self.exit_code, error=self.error)
        self._remaining -= 1
        if self._remaining > 0:
            return PollResult(RunStatus.RUNNING)
        self.status = RunStatus.COMPLETED
        self.exit_code = self.exit_code_on_finish
        return PollResult(
            self.status,
            stdout=self.stdout,
            stderr=self.stderr,
            exit_code=self.exit_code,
        )

    def cancel(self) -> None:
        if not self.is_running:
            raise ExecutionError("No request is running")
        self.status = RunStatus.CANCELLED
        self.error = "Cancelled"

    def result(self) -> ExecutionResult:
        finished = self.status == RunStatus.COMPLETED
        return ExecutionResult(
            status=self.status,
            exit_code=self.exit_code,
            stdout=self.stdout if finished else "",
            stderr=self.stderr if finished else "",
            duration_ms=42.0,
            error=self.error,
        )
