"""lazycurl models - request, environment, template and history records."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union

from lazycurl.errors import ValidationError

DEFAULT_REQUEST_NAME = "New Command"
DEFAULT_URL = "https://"
MASK = "********"


def now_timestamp() -> int:
    """Unix timestamp in whole seconds."""
    return int(time.time())


class IdGenerator:
    """Monotonic id allocator scoped to one running session.

    Ids are never reused while the generator lives; persisted records get
    fresh ids when they are loaded back.
    """

    def __init__(self, start: int = 1):
        self._next = start

    def next_id(self) -> int:
        value = self._next
        self._next += 1
        return value


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"

    @classmethod
    def parse(cls, label: str) -> HttpMethod:
        """Case-insensitive lookup. Raises ValidationError for unknown labels."""
        try:
            return cls(label.strip().upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Unknown HTTP method: {label!r}") from None


METHODS: list[HttpMethod] = list(HttpMethod)


# ── Request items ────────────────────────────────────────────────────────


@dataclass
class Header:
    id: int
    key: str
    value: str
    enabled: bool = True


@dataclass
class QueryParam:
    id: int
    key: str
    value: str
    enabled: bool = True


@dataclass
class FormField:
    id: int
    key: str
    value: str
    enabled: bool = True


@dataclass
class Option:
    """An arbitrary command-line switch such as ``-i`` or ``--max-time 10``."""

    id: int
    flag: str
    value: str | None = None
    enabled: bool = True


# ── Body variants ────────────────────────────────────────────────────────
# Body is a closed union: every consumer handles exactly these four classes.


@dataclass
class NoBody:
    kind = "none"


@dataclass
class RawBody:
    text: str = ""
    kind = "raw"


@dataclass
class FormDataBody:
    fields: list[FormField] = field(default_factory=list)
    kind = "form_data"


@dataclass
class BinaryBody:
    """Reference to a file whose bytes are sent as the payload."""

    path: str = ""
    kind = "binary"


Body = Union[NoBody, RawBody, FormDataBody, BinaryBody]
BODY_KINDS = ("none", "raw", "form_data", "binary")


def empty_body(kind: str) -> Body:
    """Return a fresh, empty body of the given kind."""
    if kind == "none":
        return NoBody()
    if kind == "raw":
        return RawBody()
    if kind == "form_data":
        return FormDataBody()
    if kind == "binary":
        return BinaryBody()
    raise ValidationError(f"Unknown body kind: {kind!r}")


def body_is_empty(body: Body) -> bool:
    """True when the body would not put anything on the wire."""
    if isinstance(body, NoBody):
        return True
    if isinstance(body, RawBody):
        return not body.text.strip()
    if isinstance(body, FormDataBody):
        return not any(f.enabled for f in body.fields)
    if isinstance(body, BinaryBody):
        return not body.path
    raise TypeError(f"Unknown body variant: {body!r}")


def _clone_body(body: Body, ids: IdGenerator) -> Body:
    if isinstance(body, NoBody):
        return NoBody()
    if isinstance(body, RawBody):
        return RawBody(body.text)
    if isinstance(body, FormDataBody):
        return FormDataBody([replace(f, id=ids.next_id()) for f in body.fields])
    if isinstance(body, BinaryBody):
        return BinaryBody(body.path)
    raise TypeError(f"Unknown body variant: {body!r}")


# ── Request ──────────────────────────────────────────────────────────────

RequestItem = Union[Header, QueryParam, Option, FormField]


@dataclass
class Request:
    id: int
    name: str = DEFAULT_REQUEST_NAME
    description: str | None = None
    url: str = DEFAULT_URL
    method: HttpMethod = HttpMethod.GET
    headers: list[Header] = field(default_factory=list)
    query_params: list[QueryParam] = field(default_factory=list)
    body: Body = field(default_factory=NoBody)
    options: list[Option] = field(default_factory=list)
    created_at: int = field(default_factory=now_timestamp)
    updated_at: int = field(default_factory=now_timestamp)

    @classmethod
    def new(cls, ids: IdGenerator, url: str = DEFAULT_URL, **kwargs) -> Request:
        return cls(id=ids.next_id(), url=url, **kwargs)

    def add_header(self, ids: IdGenerator, key: str, value: str, enabled: bool = True) -> Header:
        header = Header(ids.next_id(), key, value, enabled)
        self.headers.append(header)
        return header

    def add_query_param(
        self, ids: IdGenerator, key: str, value: str, enabled: bool = True
    ) -> QueryParam:
        param = QueryParam(ids.next_id(), key, value, enabled)
        self.query_params.append(param)
        return param

    def add_option(
        self, ids: IdGenerator, flag: str, value: str | None = None, enabled: bool = True
    ) -> Option:
        option = Option(ids.next_id(), flag, value, enabled)
        self.options.append(option)
        return option

    def add_form_field(
        self, ids: IdGenerator, key: str, value: str, enabled: bool = True
    ) -> FormField:
        """Append a form field, switching the body to form data if needed."""
        if not isinstance(self.body, FormDataBody):
            self.body = FormDataBody()
        item = FormField(ids.next_id(), key, value, enabled)
        self.body.fields.append(item)
        return item

    def find_item(self, item_id: int) -> RequestItem | None:
        """Locate a header, query param, option or form field by id."""
        for item in self._all_items():
            if item.id == item_id:
                return item
        return None

    def remove_item(self, item_id: int) -> bool:
        for items in self._item_lists():
            for idx, item in enumerate(items):
                if item.id == item_id:
                    del items[idx]
                    return True
        return False

    def _item_lists(self) -> list[list]:
        lists: list[list] = [self.headers, self.query_params, self.options]
        if isinstance(self.body, FormDataBody):
            lists.append(self.body.fields)
        return lists

    def _all_items(self):
        for items in self._item_lists():
            yield from items

    def touch(self) -> None:
        self.updated_at = now_timestamp()

    def clone(self, ids: IdGenerator) -> Request:
        """Deep copy with fresh ids for the request and every list item."""
        return Request(
            id=ids.next_id(),
            name=self.name,
            description=self.description,
            url=self.url,
            method=self.method,
            headers=[replace(h, id=ids.next_id()) for h in self.headers],
            query_params=[replace(q, id=ids.next_id()) for q in self.query_params],
            body=_clone_body(self.body, ids),
            options=[replace(o, id=ids.next_id()) for o in self.options],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def display_name(self) -> str:
        """Label used for history: the name unless it is empty or the placeholder."""
        name = self.name.strip()
        if name and name != DEFAULT_REQUEST_NAME:
            return name
        return self.url


# ── Environments ─────────────────────────────────────────────────────────


@dataclass
class EnvironmentVariable:
    key: str
    value: str
    secret: bool = False

    def display_value(self) -> str:
        return MASK if self.secret else self.value


@dataclass
class Environment:
    id: int
    name: str
    variables: list[EnvironmentVariable] = field(default_factory=list)
    created_at: int = field(default_factory=now_timestamp)
    updated_at: int = field(default_factory=now_timestamp)

    def get(self, key: str) -> str | None:
        for var in self.variables:
            if var.key == key:
                return var.value
        return None

    def set(self, key: str, value: str, secret: bool = False) -> None:
        for var in self.variables:
            if var.key == key:
                var.value = value
                var.secret = secret
                break
        else:
            self.variables.append(EnvironmentVariable(key, value, secret))
        self.updated_at = now_timestamp()

    def remove(self, key: str) -> bool:
        before = len(self.variables)
        self.variables = [v for v in self.variables if v.key != key]
        self.updated_at = now_timestamp()
        return len(self.variables) < before

    def masked(self) -> Environment:
        """Copy whose secret values are replaced by a fixed mask."""
        return Environment(
            id=self.id,
            name=self.name,
            variables=[
                EnvironmentVariable(v.key, v.display_value(), v.secret) for v in self.variables
            ],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def layered(self, overrides: dict[str, str]) -> Environment:
        """Copy with overrides applied on top (used for ad-hoc -v variables)."""
        env = Environment(
            id=self.id,
            name=self.name,
            variables=[replace(v) for v in self.variables],
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
        for key, value in overrides.items():
            secret = any(v.secret for v in self.variables if v.key == key)
            env.set(key, value, secret)
        return env


# ── Templates and history ────────────────────────────────────────────────


@dataclass
class Template:
    id: int
    name: str
    request: Request
    description: str | None = None
    category: str | None = None
    created_at: int = field(default_factory=now_timestamp)
    updated_at: int = field(default_factory=now_timestamp)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass
class ExecutionResult:
    status: RunStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0
    error: str | None = None
    status_code: int | None = None


@dataclass
class HistoryEntry:
    id: int
    name: str
    request: Request
    result: ExecutionResult
    timestamp: int = field(default_factory=now_timestamp)
