"""lazycurl errors - typed failures surfaced by the core.

Every fallible core operation raises one of these; the session controller
turns them into a transient status message instead of aborting.
"""

from pathlib import Path


class LazycurlError(Exception):
    """Base class for all lazycurl errors."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(LazycurlError):
    """Malformed user input that can be recovered from locally."""


class PersistenceError(LazycurlError):
    """A persisted document could not be read or written."""

    def __init__(self, path: Path | str, detail: str):
        self.path = Path(path)
        super().__init__(f"{self.path}: {detail}")


class ExecutionError(LazycurlError):
    """The child process could not run to completion."""


class SpawnError(ExecutionError):
    """The HTTP client binary could not be located or launched."""


class AlreadyRunningError(ExecutionError):
    """A run was started while another one is still active."""

    def __init__(self, detail: str = "A request is already running"):
        super().__init__(detail)


class ImportRejectedError(LazycurlError):
    """An import batch was rejected as a unit."""
