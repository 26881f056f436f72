"""lazycurl store - JSON documents for templates, environments and history.

Each collection lives in one document under the data dir:

    templates.json     {"templates": [...]}
    environments.json  {"environments": [...]}
    history.json       {"history": [...]}

A missing document loads the built-in seed set. A document that exists but
cannot be parsed raises PersistenceError; nothing is overwritten. Saves
replace the whole document atomically. Ids are not persisted: records get
fresh ids from the session's IdGenerator when they are loaded.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any

from lazycurl.errors import PersistenceError, ValidationError
from lazycurl.models import (
    BinaryBody,
    Body,
    Environment,
    EnvironmentVariable,
    ExecutionResult,
    FormDataBody,
    FormField,
    Header,
    HistoryEntry,
    HttpMethod,
    IdGenerator,
    NoBody,
    Option,
    QueryParam,
    RawBody,
    Request,
    RunStatus,
    Template,
    now_timestamp,
)

logger = logging.getLogger(__name__)

TEMPLATES_FILE = "templates.json"
ENVIRONMENTS_FILE = "environments.json"
HISTORY_FILE = "history.json"

DEFAULT_ENVIRONMENT = "Default"
DEFAULT_MAX_HISTORY = 100


# ── Seeds ────────────────────────────────────────────────────────────────


def seed_templates(ids: IdGenerator) -> list[Template]:
    """The two example templates written on first run."""
    get_req = Request.new(
        ids,
        "https://httpbin.org/get",
        name="GET Example",
        description="Simple GET request",
    )
    get_req.add_option(ids, "-i")

    post_req = Request.new(
        ids,
        "https://httpbin.org/post",
        name="POST JSON",
        description="POST with JSON body",
        method=HttpMethod.POST,
        body=RawBody('{"key": "value"}'),
    )
    post_req.add_header(ids, "Content-Type", "application/json")
    post_req.add_option(ids, "-i")

    return [
        Template(
            id=ids.next_id(),
            name=req.name,
            request=req,
            description=req.description,
            category="Examples",
        )
        for req in (get_req, post_req)
    ]


def seed_environments(ids: IdGenerator) -> list[Environment]:
    return [Environment(id=ids.next_id(), name=DEFAULT_ENVIRONMENT)]


# ── Serialization ────────────────────────────────────────────────────────


def _items_to_list(items) -> list[dict]:
    return [{"key": i.key, "value": i.value, "enabled": i.enabled} for i in items]


def body_to_dict(body: Body) -> dict | None:
    if isinstance(body, NoBody):
        return None
    data: dict[str, Any] = {"kind": body.kind, "raw": None, "binary": None, "form_data": None}
    if isinstance(body, RawBody):
        data["raw"] = body.text
    elif isinstance(body, FormDataBody):
        data["form_data"] = _items_to_list(body.fields)
    elif isinstance(body, BinaryBody):
        data["binary"] = body.path
    else:
        raise TypeError(f"Unknown body variant: {body!r}")
    return data


def request_to_dict(request: Request) -> dict:
    return {
        "name": request.name,
        "description": request.description,
        "url": request.url,
        "method": request.method.value,
        "headers": _items_to_list(request.headers),
        "query_params": _items_to_list(request.query_params),
        "body": body_to_dict(request.body),
        "options": [
            {"flag": o.flag, "value": o.value, "enabled": o.enabled} for o in request.options
        ],
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def _read_items(raw: list | None, cls, ids: IdGenerator) -> list:
    return [
        cls(ids.next_id(), str(i["key"]), str(i.get("value") or ""), bool(i.get("enabled", True)))
        for i in raw or []
    ]


def body_from_dict(data: dict | None, ids: IdGenerator) -> Body:
    if not data:
        return NoBody()
    kind = data.get("kind", "none")
    if kind == "none":
        return NoBody()
    if kind == "raw":
        return RawBody(data.get("raw") or "")
    if kind == "form_data":
        return FormDataBody(_read_items(data.get("form_data"), FormField, ids))
    if kind == "binary":
        return BinaryBody(data.get("binary") or "")
    raise ValueError(f"unknown body kind {kind!r}")


def _read_method(label: str | None) -> HttpMethod:
    if not label:
        return HttpMethod.GET
    try:
        return HttpMethod.parse(label)
    except ValidationError as e:
        logger.warning("%s; using GET", e.detail)
        return HttpMethod.GET


def request_from_dict(data: dict, ids: IdGenerator) -> Request:
    now = now_timestamp()
    return Request(
        id=ids.next_id(),
        name=data.get("name") or "",
        description=data.get("description"),
        url=data.get("url") or "",
        method=_read_method(data.get("method")),
        headers=_read_items(data.get("headers"), Header, ids),
        query_params=_read_items(data.get("query_params"), QueryParam, ids),
        body=body_from_dict(data.get("body"), ids),
        options=[
            Option(ids.next_id(), str(o["flag"]), o.get("value"), bool(o.get("enabled", True)))
            for o in data.get("options") or []
        ],
        created_at=int(data.get("created_at") or now),
        updated_at=int(data.get("updated_at") or now),
    )


def template_to_dict(template: Template) -> dict:
    return {
        "name": template.name,
        "description": template.description,
        "category": template.category,
        "command": request_to_dict(template.request),
        "created_at": template.created_at,
        "updated_at": template.updated_at,
    }


def template_from_dict(data: dict, ids: IdGenerator) -> Template:
    now = now_timestamp()
    request = request_from_dict(data["command"], ids)
    return Template(
        id=ids.next_id(),
        name=data.get("name") or request.name,
        request=request,
        description=data.get("description"),
        category=data.get("category"),
        created_at=int(data.get("created_at") or now),
        updated_at=int(data.get("updated_at") or now),
    )


def environment_to_dict(environment: Environment) -> dict:
    return {
        "name": environment.name,
        "variables": [
            {"key": v.key, "value": v.value, "secret": v.secret} for v in environment.variables
        ],
        "created_at": environment.created_at,
        "updated_at": environment.updated_at,
    }


def environment_from_dict(data: dict, ids: IdGenerator) -> Environment:
    now = now_timestamp()
    return Environment(
        id=ids.next_id(),
        name=str(data["name"]),
        variables=[
            EnvironmentVariable(str(v["key"]), str(v.get("value") or ""), bool(v.get("secret")))
            for v in data.get("variables") or []
        ],
        created_at=int(data.get("created_at") or now),
        updated_at=int(data.get("updated_at") or now),
    )


def result_to_dict(result: ExecutionResult) -> dict:
    return {
        "status": result.status.value,
        "exit_code": result.exit_code,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "duration_ms": result.duration_ms,
        "error": result.error,
        "status_code": result.status_code,
    }


def result_from_dict(data: dict | None) -> ExecutionResult:
    data = data or {}
    return ExecutionResult(
        status=RunStatus(data.get("status", RunStatus.COMPLETED.value)),
        exit_code=data.get("exit_code"),
        stdout=data.get("stdout") or "",
        stderr=data.get("stderr") or "",
        duration_ms=float(data.get("duration_ms") or 0),
        error=data.get("error"),
        status_code=data.get("status_code"),
    )


def history_to_dict(entry: HistoryEntry) -> dict:
    return {
        "name": entry.name,
        "command": request_to_dict(entry.request),
        "result": result_to_dict(entry.result),
        "timestamp": entry.timestamp,
    }


def history_from_dict(data: dict, ids: IdGenerator) -> HistoryEntry:
    request = request_from_dict(data["command"], ids)
    return HistoryEntry(
        id=ids.next_id(),
        name=data.get("name") or request.display_name(),
        request=request,
        result=result_from_dict(data.get("result")),
        timestamp=int(data.get("timestamp") or now_timestamp()),
    )


# ── Store ────────────────────────────────────────────────────────────────


class Store:
    """Reads and writes the three collection documents in ``base_dir``."""

    def __init__(self, base_dir: str | Path, max_history: int = DEFAULT_MAX_HISTORY):
        self.base_dir = Path(base_dir)
        self.max_history = max_history

    @property
    def templates_path(self) -> Path:
        return self.base_dir / TEMPLATES_FILE

    @property
    def environments_path(self) -> Path:
        return self.base_dir / ENVIRONMENTS_FILE

    @property
    def history_path(self) -> Path:
        return self.base_dir / HISTORY_FILE

    # Templates

    def load_templates(self, ids: IdGenerator) -> list[Template]:
        records = self._read_document(self.templates_path, "templates")
        if records is None:
            logger.debug("no %s, seeding templates", self.templates_path)
            return seed_templates(ids)
        return self._convert(self.templates_path, records, template_from_dict, ids)

    def save_templates(self, templates: list[Template]) -> None:
        self._write_document(
            self.templates_path,
            {"templates": [template_to_dict(t) for t in templates]},
        )

    # Environments

    def load_environments(self, ids: IdGenerator) -> list[Environment]:
        records = self._read_document(self.environments_path, "environments")
        if records is None:
            logger.debug("no %s, seeding environments", self.environments_path)
            return seed_environments(ids)
        return self._convert(self.environments_path, records, environment_from_dict, ids)

    def save_environments(self, environments: list[Environment]) -> None:
        self._write_document(
            self.environments_path,
            {"environments": [environment_to_dict(e) for e in environments]},
        )

    # History (newest first)

    def load_history(self, ids: IdGenerator) -> list[HistoryEntry]:
        records = self._read_document(self.history_path, "history")
        if records is None:
            return []
        entries = self._convert(self.history_path, records, history_from_dict, ids)
        return entries[: self.max_history]

    def save_history(self, history: list[HistoryEntry]) -> None:
        self._write_document(
            self.history_path,
            {"history": [history_to_dict(h) for h in history[: self.max_history]]},
        )

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _read_document(path: Path, key: str) -> list | None:
        """Return the record list stored under ``key``, or None if absent."""
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PersistenceError(path, f"malformed JSON: {e}") from e
        except OSError as e:
            raise PersistenceError(path, f"could not read: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get(key, []), list):
            raise PersistenceError(path, f"expected an object with a '{key}' list")
        logger.debug("loaded %s", path)
        return data.get(key, [])

    @staticmethod
    def _convert(path: Path, records: list, from_dict, ids: IdGenerator) -> list:
        try:
            return [from_dict(record, ids) for record in records]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(path, f"invalid record: {e!r}") from e

    @staticmethod
    def _write_document(path: Path, data: dict) -> None:
        tmp = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(json.dumps(data, indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise PersistenceError(path, f"could not write: {e}") from e
        logger.debug("saved %s", path)
