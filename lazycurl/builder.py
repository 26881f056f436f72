"""lazycurl builder - turn a Request into the exact curl invocation.

The builder is a pure function of (Request, Environment): it never mutates
the request and the same inputs always produce the same string. Tokens are
joined with POSIX quoting, so ``shlex.split(build_command(...))`` gives back
``build_argv(...)`` exactly.
"""

from __future__ import annotations

import shlex
from urllib.parse import quote

from lazycurl.models import (
    BinaryBody,
    Body,
    Environment,
    FormDataBody,
    HttpMethod,
    NoBody,
    Option,
    RawBody,
    Request,
    body_is_empty,
)
from lazycurl.substitution import substitute

CURL = "curl"
STATUS_MARKER_PREFIX = "__LAZYCURL_HTTP_STATUS__"
STATUS_MARKER_FORMAT = "\\n" + STATUS_MARKER_PREFIX + "%{http_code}\\n"
WRITE_OUT_FLAGS = ("-w", "--write-out")


def build_url(request: Request, environment: Environment | None) -> str:
    """Substituted URL with enabled query params appended in list order."""
    url = substitute(request.url, environment)
    pairs = [
        f"{quote(p.key, safe='')}={quote(substitute(p.value, environment), safe='')}"
        for p in request.query_params
        if p.enabled
    ]
    if not pairs:
        return url
    separator = "&" if "?" in url else "?"
    return url + separator + "&".join(pairs)


def _method_args(request: Request) -> list[str]:
    # GET without a body is curl's implicit default.
    if request.method == HttpMethod.GET and body_is_empty(request.body):
        return []
    return ["-X", request.method.value]


def _body_args(body: Body, environment: Environment | None) -> list[str]:
    if isinstance(body, NoBody):
        return []
    if isinstance(body, RawBody):
        if not body.text.strip():
            return []
        text = substitute(body.text, environment)
        flag = "--data-raw" if text.startswith("@") else "-d"
        return [flag, text]
    if isinstance(body, FormDataBody):
        args: list[str] = []
        for item in body.fields:
            if item.enabled:
                args += ["-F", f"{item.key}={substitute(item.value, environment)}"]
        return args
    if isinstance(body, BinaryBody):
        if not body.path:
            return []
        return ["--data-binary", "@" + substitute(body.path, environment)]
    raise TypeError(f"Unknown body variant: {body!r}")


def _is_write_out(option: Option) -> bool:
    return option.flag in WRITE_OUT_FLAGS or option.flag.startswith(("--write-out=", "-w"))


def _write_out_with_marker(option: Option, environment: Environment | None) -> list[str]:
    """Append the status marker to a user-supplied -w/--write-out option."""
    flag = option.flag
    if flag.startswith("--write-out="):
        inline = flag[len("--write-out=") :]
        if STATUS_MARKER_PREFIX in inline:
            return [flag]
        return ["--write-out=" + inline + STATUS_MARKER_FORMAT]
    if flag.startswith("-w") and flag != "-w":
        inline = flag[2:]
        if STATUS_MARKER_PREFIX in inline:
            return [flag]
        return ["-w" + inline + STATUS_MARKER_FORMAT]
    value = substitute(option.value or "", environment)
    if STATUS_MARKER_PREFIX not in value:
        value += STATUS_MARKER_FORMAT
    return [flag, value]


def _option_args(
    request: Request,
    environment: Environment | None,
    for_execution: bool,
) -> list[str]:
    args: list[str] = []
    has_write_out = False
    for option in request.options:
        if not option.enabled:
            continue
        if for_execution and _is_write_out(option):
            has_write_out = True
            args += _write_out_with_marker(option, environment)
            continue
        args.append(option.flag)
        if option.value is not None:
            args.append(substitute(option.value, environment))
    if for_execution and not has_write_out:
        args += ["-w", STATUS_MARKER_FORMAT]
    return args


def build_argv(
    request: Request,
    environment: Environment | None = None,
    for_execution: bool = False,
) -> list[str]:
    """Return the argument vector, starting with ``curl``.

    Order: method flag, headers, body, options, URL. Disabled items never
    appear. ``for_execution`` appends a write-out marker that lets the
    output parser recover the HTTP status code.
    """
    argv = [CURL]
    argv += _method_args(request)
    for header in request.headers:
        if header.enabled:
            key = substitute(header.key, environment)
            value = substitute(header.value, environment)
            argv += ["-H", f"{key}: {value}"]
    argv += _body_args(request.body, environment)
    argv += _option_args(request, environment, for_execution)
    argv.append(build_url(request, environment))
    return argv


def build_command(
    request: Request,
    environment: Environment | None = None,
    for_execution: bool = False,
) -> str:
    """Return the command line as a single shell-safe string."""
    return join_argv(build_argv(request, environment, for_execution))


def join_argv(argv: list[str]) -> str:
    return " ".join(shlex.quote(arg) for arg in argv)
