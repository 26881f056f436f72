"""lazycurl importers - turn curl commands and OpenAPI documents into templates.

Parsers produce ImportedRequest records; the session converts a whole batch
into Templates at once (see ``to_template``).
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import requests
import yaml

from lazycurl.errors import ImportRejectedError, ValidationError
from lazycurl.models import (
    BinaryBody,
    HttpMethod,
    IdGenerator,
    RawBody,
    Request,
    Template,
)
from lazycurl.options import find_option

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://localhost"
FETCH_TIMEOUT = 30


@dataclass
class ImportedRequest:
    """An external request description, before it becomes a Template."""

    name: str
    url: str
    method: HttpMethod | str = HttpMethod.GET
    headers: list[tuple[str, str]] = field(default_factory=list)
    query_params: list[tuple[str, str]] = field(default_factory=list)
    body: str | None = None
    binary_path: str | None = None
    form: list[tuple[str, str]] = field(default_factory=list)
    options: list[tuple[str, str | None]] = field(default_factory=list)
    description: str | None = None
    category: str | None = None

    def has_header(self, key: str) -> bool:
        return any(k.lower() == key.lower() for k, _ in self.headers)


def to_template(imported: ImportedRequest, ids: IdGenerator) -> Template:
    """Build a Request + Template pair with fresh ids."""
    try:
        method = HttpMethod.parse(imported.method)
    except ValidationError as e:
        raise ImportRejectedError(f"{imported.name or imported.url}: {e.detail}") from e
    request = Request.new(
        ids,
        imported.url,
        name=imported.name,
        description=imported.description,
        method=method,
    )
    for key, value in imported.headers:
        request.add_header(ids, key, value)
    for key, value in imported.query_params:
        request.add_query_param(ids, key, value)
    if imported.form:
        for key, value in imported.form:
            request.add_form_field(ids, key, value)
    elif imported.binary_path:
        request.body = BinaryBody(imported.binary_path)
    elif imported.body is not None:
        request.body = RawBody(imported.body)
    for flag, value in imported.options:
        request.add_option(ids, flag, value)
    return Template(
        id=ids.next_id(),
        name=imported.name,
        request=request,
        description=imported.description,
        category=imported.category,
    )


# ── curl ─────────────────────────────────────────────────────────────────

_DATA_FLAGS = ("-d", "--data", "--data-raw", "--data-ascii")


def _split_query(url: str) -> tuple[str, list[tuple[str, str]]]:
    parts = urlsplit(url)
    if not parts.query or parts.fragment:
        return url, []
    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return base, parse_qsl(parts.query, keep_blank_values=True)


def parse_curl(curl_command: str) -> ImportedRequest:
    """Parse a curl command string into an ImportedRequest.

    Handles: -X, -H, -d, --data*, --json, -F, --url, quoted strings and
    escaped newlines. Other flags are kept as options. Raises
    ImportRejectedError when the command cannot be tokenized or has no URL.
    """
    # Normalize line continuations
    cmd = curl_command.replace("\\\r\n", " ").replace("\\\n", " ").strip()

    try:
        tokens = shlex.split(cmd)
    except ValueError as e:
        raise ImportRejectedError(f"Parse error: {e}") from e

    if tokens and tokens[0] == "curl":
        tokens = tokens[1:]

    method: HttpMethod | None = None
    url = ""
    headers: list[tuple[str, str]] = []
    body: str | None = None
    binary_path: str | None = None
    form: list[tuple[str, str]] = []
    options: list[tuple[str, str | None]] = []

    i = 0
    while i < len(tokens):
        tok = tokens[i]
        has_next = i + 1 < len(tokens)
        nxt = tokens[i + 1] if has_next else None

        if tok in ("-X", "--request") and has_next:
            try:
                method = HttpMethod.parse(nxt)
            except ValidationError as e:
                raise ImportRejectedError(e.detail) from e
            i += 2
        elif tok in ("-H", "--header") and has_next:
            key, sep, value = nxt.partition(":")
            if sep:
                headers.append((key.strip(), value.strip()))
            i += 2
        elif tok in _DATA_FLAGS and has_next:
            body = nxt if body is None else f"{body}&{nxt}"
            i += 2
        elif tok == "--data-binary" and has_next:
            if nxt.startswith("@"):
                binary_path = nxt[1:]
            else:
                body = nxt
            i += 2
        elif tok == "--json" and has_next:
            body = nxt
            if not any(k.lower() == "content-type" for k, _ in headers):
                headers.append(("Content-Type", "application/json"))
            if not any(k.lower() == "accept" for k, _ in headers):
                headers.append(("Accept", "application/json"))
            i += 2
        elif tok in ("-F", "--form") and has_next:
            key, _, value = nxt.partition("=")
            form.append((key.strip(), value))
            i += 2
        elif tok == "--url" and has_next:
            url = nxt
            i += 2
        elif tok.startswith("-") and len(tok) > 1:
            definition = find_option(tok)
            if definition is not None:
                takes_value = definition.takes_value
            else:
                # Unknown flag: treat the next token as its value if it looks like one.
                takes_value = has_next and not nxt.startswith("-") and "://" not in nxt
            if takes_value and has_next:
                options.append((tok, nxt))
                i += 2
            else:
                options.append((tok, None))
                i += 1
        else:
            # Positional argument = URL
            if not url:
                url = tok
            i += 1

    if not url:
        raise ImportRejectedError("No URL found in curl command")

    if method is None:
        has_payload = body is not None or binary_path is not None or form
        method = HttpMethod.POST if has_payload else HttpMethod.GET

    url, query_params = _split_query(url)
    path = urlsplit(url).path or "/"
    return ImportedRequest(
        name=f"{method.value} {path}",
        url=url,
        method=method,
        headers=headers,
        query_params=query_params,
        body=body,
        binary_path=binary_path,
        form=form,
        options=options,
    )


# ── OpenAPI / Swagger ────────────────────────────────────────────────────


def _load_document(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ImportRejectedError(f"Not a JSON or YAML document: {e}") from e


def _base_url(root: dict) -> str:
    if "openapi" in root:
        servers = root.get("servers")
        if isinstance(servers, list) and servers and isinstance(servers[0], dict):
            url = servers[0].get("url")
            if isinstance(url, str):
                return url
        return DEFAULT_BASE_URL
    if "swagger" in root:
        host = root.get("host")
        if not isinstance(host, str):
            return DEFAULT_BASE_URL
        scheme = "https"
        schemes = root.get("schemes")
        if isinstance(schemes, list) and schemes and isinstance(schemes[0], str):
            scheme = schemes[0]
        base_path = root.get("basePath")
        return f"{scheme}://{host}{base_path if isinstance(base_path, str) else ''}"
    return DEFAULT_BASE_URL


def join_url(base: str, path: str) -> str:
    if not base:
        return path
    if len(base) > 1 and base.endswith("/") and path.startswith("/") and not base.endswith("://"):
        base = base[:-1]
    if not path:
        return base
    if not base.endswith("/") and not path.startswith("/"):
        return f"{base}/{path}"
    return base + path


def _default_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float | str):
        return str(value)
    return ""


def _apply_parameters(imported: ImportedRequest, params: Any) -> None:
    if not isinstance(params, list):
        return
    for param in params:
        if not isinstance(param, dict):
            continue
        name, location = param.get("name"), param.get("in")
        if not isinstance(name, str) or not isinstance(location, str):
            continue
        value = _default_string(param.get("default"))
        if location.lower() == "query":
            imported.query_params.append((name, value))
        elif location.lower() == "header" and not imported.has_header(name):
            imported.headers.append((name, value))


def _content_type(operation: dict, root: dict) -> str | None:
    request_body = operation.get("requestBody")
    if isinstance(request_body, dict):
        content = request_body.get("content")
        if isinstance(content, dict) and content:
            return next(iter(content))
    consumes = operation["consumes"] if "consumes" in operation else root.get("consumes")
    if isinstance(consumes, list) and consumes and isinstance(consumes[0], str):
        return consumes[0]
    return None


def _operation_name(operation: dict, method: HttpMethod, path: str) -> str:
    for key in ("operationId", "summary"):
        value = operation.get(key)
        if isinstance(value, str) and value:
            return value
    return f"{method.value} {path}"


def parse_openapi(text: str, category: str | None = None) -> list[ImportedRequest]:
    """Convert every operation of an OpenAPI 3 or Swagger 2 document.

    Raises ImportRejectedError when the document has no paths or no
    operations; nothing is returned partially.
    """
    root = _load_document(text)
    if not isinstance(root, dict) or not isinstance(root.get("paths"), dict):
        raise ImportRejectedError("Document has no 'paths' object")

    base = _base_url(root)
    imported: list[ImportedRequest] = []
    for path, path_item in root["paths"].items():
        if not isinstance(path_item, dict):
            continue
        for key, operation in path_item.items():
            try:
                method = HttpMethod.parse(key)
            except ValidationError:
                # "parameters", "summary", extensions...
                continue
            if not isinstance(operation, dict):
                continue
            description = operation.get("description") or operation.get("summary")
            request = ImportedRequest(
                name=_operation_name(operation, method, path),
                url=join_url(base, path),
                method=method,
                description=description if isinstance(description, str) else None,
                category=category,
            )
            _apply_parameters(request, path_item.get("parameters"))
            _apply_parameters(request, operation.get("parameters"))
            content_type = _content_type(operation, root)
            if content_type and not request.has_header("Content-Type"):
                request.headers.append(("Content-Type", content_type))
            imported.append(request)

    if not imported:
        raise ImportRejectedError("Document contains no operations")
    logger.debug("parsed %d operations from OpenAPI document", len(imported))
    return imported


def fetch_openapi(url: str, timeout: int = FETCH_TIMEOUT) -> str:
    """Download an OpenAPI document and return its text."""
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.exceptions.Timeout as e:
        raise ImportRejectedError(f"Request timed out after {timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise ImportRejectedError(f"Could not fetch {url}: {e}") from e
    return resp.text
