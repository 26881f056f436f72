"""lazycurl output - parse curl's captured output and format runs."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from lazycurl.builder import STATUS_MARKER_PREFIX
from lazycurl.models import ExecutionResult, RunStatus

_MARKER_RE = re.compile(r"\n?" + re.escape(STATUS_MARKER_PREFIX) + r"(\d{3})\n?")
_STATUS_LINE_RE = re.compile(r"^HTTP/[\d.]+\s+(\d{3})(?:\s+(.*))?$")

CURL_ERRORS = {
    1: "Unsupported protocol",
    2: "Failed to initialize",
    3: "URL malformed",
    5: "Couldn't resolve proxy",
    6: "Couldn't resolve host",
    7: "Failed to connect to host",
    16: "HTTP/2 framing layer error",
    18: "Partial file transfer",
    22: "HTTP page not retrieved",
    23: "Write error",
    26: "Read error",
    27: "Out of memory",
    28: "Operation timeout",
    35: "SSL connect error",
    47: "Too many redirects",
    52: "Server returned nothing",
    55: "Failed sending network data",
    56: "Failure in receiving network data",
    60: "Peer certificate cannot be authenticated with known CA certificates",
}


@dataclass
class ResponseInfo:
    status_code: int | None = None
    status_message: str | None = None
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: str = ""

    @property
    def size(self) -> int:
        return len(self.body.encode("utf-8"))


def curl_error_message(exit_code: int) -> str:
    return CURL_ERRORS.get(exit_code, f"curl exited with code {exit_code}")


def strip_status_marker(stdout: str) -> tuple[str, int | None]:
    """Remove the write-out status marker. Returns (text, status_code)."""
    code: int | None = None

    def _grab(m: re.Match) -> str:
        nonlocal code
        value = int(m.group(1))
        code = value or None
        return ""

    return _MARKER_RE.sub(_grab, stdout), code


def parse_response(stdout: str) -> ResponseInfo:
    """Split curl output into status, headers and body.

    Header blocks are only present when curl ran with ``-i``; with redirects
    or ``100 Continue`` the last block wins.
    """
    text, marker_code = strip_status_marker(stdout)
    info = ResponseInfo(status_code=marker_code)

    lines = text.replace("\r\n", "\n").split("\n")
    idx = 0
    while idx < len(lines):
        m = _STATUS_LINE_RE.match(lines[idx])
        if not m:
            break
        info.status_code = marker_code or int(m.group(1))
        info.status_message = (m.group(2) or "").strip() or None
        info.headers = []
        idx += 1
        while idx < len(lines) and lines[idx].strip():
            key, sep, value = lines[idx].partition(":")
            if sep:
                info.headers.append((key.strip(), value.strip()))
            idx += 1
        idx += 1  # blank separator line
    info.body = "\n".join(lines[idx:]).strip() if idx else text.strip()
    return info


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


def format_run(result: ExecutionResult, verbose: bool = False, raw: bool = False) -> str:
    """Format a finished run for CLI output.

    Default output:
        STATUS: 200
        TIME: 45ms
        SIZE: 17 B
        BODY:
        {"id": 1}
    """
    if result.status == RunStatus.FAILED:
        return f"ERROR: {result.error}"

    info = parse_response(result.stdout)
    if info.status_code is None:
        # session runs store stdout without the marker
        info.status_code = result.status_code
    if raw:
        return info.body

    lines: list[str] = []
    if result.status == RunStatus.CANCELLED:
        lines.append("CANCELLED")
    if info.status_code is not None:
        status = f"STATUS: {info.status_code}"
        if info.status_message:
            status += f" {info.status_message}"
        lines.append(status)
    if result.exit_code:
        lines.append(f"EXIT: {result.exit_code} ({curl_error_message(result.exit_code)})")
    lines.append(f"TIME: {int(result.duration_ms)}ms")
    lines.append(f"SIZE: {format_size(info.size)}")

    if verbose and info.headers:
        lines.append("HEADERS:")
        for key, value in info.headers:
            lines.append(f"  {key}: {value}")

    if info.body:
        lines.append("BODY:")
        lines.append(_pretty_body(info.body))
    if verbose and result.stderr.strip():
        lines.append("STDERR:")
        lines.append(result.stderr.rstrip())
    return "\n".join(lines)


def _pretty_body(body: str) -> str:
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return body
    if isinstance(parsed, dict | list):
        return json.dumps(parsed, indent=2)
    return body
