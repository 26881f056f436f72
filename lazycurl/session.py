"""lazycurl session - the interaction state machine.

A Session owns the request under construction and coordinates the builder,
the executor and the store. It is driven from outside:

    session.dispatch(intent)   # apply one discrete input event
    session.tick()             # poll the running request, never blocks
    session.view()             # read-only projection for rendering

States: NORMAL, EDITING, METHOD_SELECT, IMPORTING, EXITING. Every error
raised while applying an intent is a LazycurlError; dispatch() turns it
into ``status_message`` and the session carries on.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from lazycurl.builder import build_command
from lazycurl.core import Config
from lazycurl.errors import (
    AlreadyRunningError,
    ImportRejectedError,
    LazycurlError,
    PersistenceError,
    SpawnError,
    ValidationError,
)
from lazycurl.executor import Executor
from lazycurl.importers import ImportedRequest, parse_curl, parse_openapi, to_template
from lazycurl.models import (
    DEFAULT_REQUEST_NAME,
    METHODS,
    BinaryBody,
    Environment,
    ExecutionResult,
    FormDataBody,
    FormField,
    Header,
    HistoryEntry,
    IdGenerator,
    NoBody,
    Option,
    QueryParam,
    RawBody,
    Request,
    RunStatus,
    Template,
    empty_body,
    now_timestamp,
)
from lazycurl.options import ValidationReport, validate_request
from lazycurl.output import parse_response, strip_status_marker
from lazycurl.store import Store

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_NAME = "New Template"
UNDO_DEPTH = 10

TABS = ("url", "params", "headers", "body", "options")


class SessionState(str, Enum):
    NORMAL = "normal"
    EDITING = "editing"
    METHOD_SELECT = "method_select"
    IMPORTING = "importing"
    EXITING = "exiting"


class FieldKind(str, Enum):
    URL = "url"
    NAME = "name"
    DESCRIPTION = "description"
    HEADER_KEY = "header_key"
    HEADER_VALUE = "header_value"
    QUERY_KEY = "query_key"
    QUERY_VALUE = "query_value"
    OPTION_FLAG = "option_flag"
    OPTION_VALUE = "option_value"
    FORM_KEY = "form_key"
    FORM_VALUE = "form_value"
    RAW_BODY = "raw_body"
    BINARY_PATH = "binary_path"


# kind -> (item class, attribute)
_ITEM_FIELDS = {
    FieldKind.HEADER_KEY: (Header, "key"),
    FieldKind.HEADER_VALUE: (Header, "value"),
    FieldKind.QUERY_KEY: (QueryParam, "key"),
    FieldKind.QUERY_VALUE: (QueryParam, "value"),
    FieldKind.OPTION_FLAG: (Option, "flag"),
    FieldKind.OPTION_VALUE: (Option, "value"),
    FieldKind.FORM_KEY: (FormField, "key"),
    FieldKind.FORM_VALUE: (FormField, "value"),
}


@dataclass(frozen=True)
class FieldRef:
    """Which field of the current request an edit targets."""

    kind: FieldKind
    item_id: int | None = None


@dataclass
class EditBuffer:
    text: str = ""
    cursor: int = 0

    @classmethod
    def seeded(cls, text: str) -> EditBuffer:
        return cls(text, len(text))

    def set(self, text: str) -> None:
        self.text = text
        self.cursor = len(text)

    def insert(self, text: str) -> None:
        self.text = self.text[: self.cursor] + text + self.text[self.cursor :]
        self.cursor += len(text)

    def delete_backward(self) -> None:
        if self.cursor == 0:
            return
        self.text = self.text[: self.cursor - 1] + self.text[self.cursor :]
        self.cursor -= 1

    def move(self, delta: int) -> None:
        self.cursor = max(0, min(len(self.text), self.cursor + delta))


# ── Intents ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MoveSelection:
    delta: int = 1


@dataclass(frozen=True)
class FocusTab:
    tab: str


@dataclass(frozen=True)
class BeginEdit:
    field: FieldRef


@dataclass(frozen=True)
class CommitEdit:
    pass


@dataclass(frozen=True)
class CancelEdit:
    pass


@dataclass(frozen=True)
class SetBuffer:
    text: str


@dataclass(frozen=True)
class InsertText:
    text: str


@dataclass(frozen=True)
class DeleteBackward:
    pass


@dataclass(frozen=True)
class MoveCursor:
    delta: int


@dataclass(frozen=True)
class ToggleEnabled:
    item_id: int


@dataclass(frozen=True)
class AddItem:
    """kind: header, query_param, option or form_field."""

    kind: str
    key: str = ""
    value: str | None = ""


@dataclass(frozen=True)
class RemoveItem:
    item_id: int


@dataclass(frozen=True)
class SetBodyKind:
    kind: str


@dataclass(frozen=True)
class OpenMethodSelect:
    pass


@dataclass(frozen=True)
class SelectMethod:
    index: int


@dataclass(frozen=True)
class Execute:
    pass


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class BeginImport:
    pass


@dataclass(frozen=True)
class SubmitImport:
    """``data`` is curl/OpenAPI text or a sequence of ImportedRequest."""

    data: Any
    category: str | None = None


@dataclass(frozen=True)
class CancelImport:
    pass


@dataclass(frozen=True)
class SelectEnvironment:
    index: int | None


@dataclass(frozen=True)
class SaveTemplate:
    name: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class LoadTemplate:
    template_id: int


@dataclass(frozen=True)
class DuplicateTemplate:
    template_id: int


@dataclass(frozen=True)
class DeleteTemplate:
    template_id: int


@dataclass(frozen=True)
class UndoDelete:
    pass


@dataclass(frozen=True)
class LoadHistory:
    index: int


@dataclass(frozen=True)
class Quit:
    pass


# ── Application context ──────────────────────────────────────────────────


@dataclass
class AppContext:
    """Everything one running session shares: ids, config, collections."""

    ids: IdGenerator
    config: Config
    store: Store
    templates: list[Template] = field(default_factory=list)
    environments: list[Environment] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    active_env_index: int | None = None
    # Per-run variable overrides layered over the active environment; never saved.
    overrides: dict[str, str] = field(default_factory=dict)

    @classmethod
    def bootstrap(
        cls,
        store: Store,
        config: Config | None = None,
        ids: IdGenerator | None = None,
    ) -> AppContext:
        """Load all three collections, seeding the ones that are absent.

        PersistenceError from a malformed document propagates.
        """
        config = config or Config()
        ids = ids or IdGenerator()
        ctx = cls(
            ids=ids,
            config=config,
            store=store,
            templates=store.load_templates(ids),
            environments=store.load_environments(ids),
            history=store.load_history(ids),
        )
        ctx.active_env_index = 0 if ctx.environments else None
        if config.environment:
            ctx.active_env_index = ctx.find_environment(config.environment)
        return ctx

    @property
    def selected_environment(self) -> Environment | None:
        if self.active_env_index is None:
            return None
        if 0 <= self.active_env_index < len(self.environments):
            return self.environments[self.active_env_index]
        return None

    @property
    def active_environment(self) -> Environment | None:
        """The environment used for substitution, overrides included."""
        env = self.selected_environment
        if not self.overrides:
            return env
        if env is None:
            env = Environment(id=0, name="")
        return env.layered(self.overrides)

    def find_environment(self, name: str) -> int | None:
        for idx, env in enumerate(self.environments):
            if env.name == name:
                return idx
        return None

    def find_template(self, template_id: int) -> int:
        for idx, template in enumerate(self.templates):
            if template.id == template_id:
                return idx
        raise ValidationError(f"No template with id {template_id}")

    def flush(self) -> None:
        self.store.save_templates(self.templates)
        self.store.save_environments(self.environments)
        self.store.save_history(self.history)


# ── Run record and read-only view ────────────────────────────────────────


@dataclass
class RunRecord:
    """The in-flight (or last finished) run."""

    request: Request
    command: str
    status: RunStatus = RunStatus.RUNNING
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None
    duration_ms: float = 0
    status_code: int | None = None
    started_at: int = field(default_factory=now_timestamp)


@dataclass(frozen=True)
class SessionView:
    state: SessionState
    tab: str
    selection: int
    selected_item_id: int | None
    field: FieldRef | None
    buffer: str
    cursor: int
    method_index: int
    request: Request
    preview: str
    validation: ValidationReport
    environment: str | None
    environments: tuple[str, ...]
    templates: tuple[tuple[int, str, str | None], ...]
    history: tuple[tuple[str, RunStatus, int], ...]
    run: RunRecord | None
    is_running: bool
    status_message: str | None
    status_is_error: bool


# ── Session ──────────────────────────────────────────────────────────────


class Session:
    def __init__(self, ctx: AppContext, executor: Executor | None = None):
        self.ctx = ctx
        self.executor = executor or Executor(binary=ctx.config.curl_path)
        self.request = Request.new(ctx.ids)
        self.state = SessionState.NORMAL
        self.tab = TABS[0]
        self.selection = 0
        self.field: FieldRef | None = None
        self.buffer: EditBuffer | None = None
        self.method_index = 0
        self.run: RunRecord | None = None
        self.status_message: str | None = None
        self.status_is_error = False
        self._deleted: deque[tuple[int, Template]] = deque(maxlen=UNDO_DEPTH)
        self._handlers = {
            MoveSelection: self._move_selection,
            FocusTab: self._focus_tab,
            BeginEdit: self._begin_edit,
            CommitEdit: self._commit_edit,
            CancelEdit: self._cancel_edit,
            SetBuffer: self._set_buffer,
            InsertText: self._insert_text,
            DeleteBackward: self._delete_backward,
            MoveCursor: self._move_cursor,
            ToggleEnabled: self._toggle_enabled,
            AddItem: self._add_item,
            RemoveItem: self._remove_item,
            SetBodyKind: self._set_body_kind,
            OpenMethodSelect: self._open_method_select,
            SelectMethod: self._select_method,
            Execute: self._execute,
            Cancel: self._cancel,
            BeginImport: self._begin_import,
            SubmitImport: self._submit_import,
            CancelImport: self._cancel_import,
            SelectEnvironment: self._select_environment,
            SaveTemplate: self._save_template,
            LoadTemplate: self._load_template,
            DuplicateTemplate: self._duplicate_template,
            DeleteTemplate: self._delete_template,
            UndoDelete: self._undo_delete,
            LoadHistory: self._load_history,
            Quit: self._quit,
        }

    # Intents accepted in each state; Quit and Cancel are always accepted.
    _ALLOWED = {
        SessionState.EDITING: (
            CommitEdit,
            CancelEdit,
            SetBuffer,
            InsertText,
            DeleteBackward,
            MoveCursor,
        ),
        SessionState.METHOD_SELECT: (MoveSelection, SelectMethod, CommitEdit, CancelEdit),
        SessionState.IMPORTING: (SubmitImport, CancelImport),
    }
    _NOT_IN_NORMAL = (
        CommitEdit,
        CancelEdit,
        SetBuffer,
        InsertText,
        DeleteBackward,
        MoveCursor,
        SelectMethod,
        SubmitImport,
        CancelImport,
    )

    @property
    def is_running(self) -> bool:
        return self.executor.is_running

    @property
    def is_exiting(self) -> bool:
        return self.state == SessionState.EXITING

    def dispatch(self, intent) -> None:
        """Apply one intent. Errors become a status message, never a crash."""
        if self.state == SessionState.EXITING:
            return
        handler = self._handlers.get(type(intent))
        try:
            if handler is None:
                raise ValidationError(f"Unknown intent: {intent!r}")
            self._check_allowed(intent)
            handler(intent)
        except LazycurlError as e:
            self._error(e.detail)

    def tick(self) -> None:
        """Poll the executor once and fold a finished run into history."""
        run = self.run
        if run is None or run.status.is_terminal:
            return
        polled = self.executor.poll()
        run.stdout += polled.stdout
        run.stderr += polled.stderr
        if polled.done:
            self._finish_run()

    def view(self) -> SessionView:
        env = self.ctx.selected_environment
        return SessionView(
            state=self.state,
            tab=self.tab,
            selection=self.selection,
            selected_item_id=self.selected_item_id,
            field=self.field,
            buffer=self.buffer.text if self.buffer else "",
            cursor=self.buffer.cursor if self.buffer else 0,
            method_index=self.method_index,
            request=copy.deepcopy(self.request),
            preview=self.preview(),
            validation=validate_request(self.request),
            environment=env.name if env else None,
            environments=tuple(e.name for e in self.ctx.environments),
            templates=tuple((t.id, t.name, t.category) for t in self.ctx.templates),
            history=tuple((h.name, h.result.status, h.timestamp) for h in self.ctx.history),
            run=copy.deepcopy(self.run),
            is_running=self.is_running,
            status_message=self.status_message,
            status_is_error=self.status_is_error,
        )

    def preview(self) -> str:
        """The command as displayed: secret variables stay masked."""
        env = self.ctx.active_environment
        return build_command(self.request, env.masked() if env else None)

    @property
    def selected_item_id(self) -> int | None:
        items = self._tab_items()
        if 0 <= self.selection < len(items):
            return items[self.selection].id
        return None

    # ── State checks and status ───────────────────────────────────────

    def _check_allowed(self, intent) -> None:
        if isinstance(intent, (Quit, Cancel)):
            return
        if self.state == SessionState.NORMAL:
            allowed = not isinstance(intent, self._NOT_IN_NORMAL)
        else:
            allowed = isinstance(intent, self._ALLOWED[self.state])
        if not allowed:
            raise ValidationError(
                f"{type(intent).__name__} is not available in {self.state.value} mode",
            )

    def _info(self, message: str) -> None:
        self.status_message = message
        self.status_is_error = False

    def _error(self, message: str) -> None:
        logger.debug("session error: %s", message)
        self.status_message = message
        self.status_is_error = True

    def _persist(self, save, *args) -> None:
        try:
            save(*args)
        except PersistenceError as e:
            self._error(e.detail)

    # ── Navigation ────────────────────────────────────────────────────

    def _tab_items(self) -> list:
        if self.tab == "params":
            return self.request.query_params
        if self.tab == "headers":
            return self.request.headers
        if self.tab == "options":
            return self.request.options
        if self.tab == "body" and isinstance(self.request.body, FormDataBody):
            return self.request.body.fields
        return []

    def _move_selection(self, intent: MoveSelection) -> None:
        if self.state == SessionState.METHOD_SELECT:
            self.method_index = max(0, min(len(METHODS) - 1, self.method_index + intent.delta))
            return
        count = len(self._tab_items())
        self.selection = max(0, min(count - 1, self.selection + intent.delta)) if count else 0

    def _focus_tab(self, intent: FocusTab) -> None:
        if intent.tab not in TABS:
            raise ValidationError(f"Unknown tab: {intent.tab!r}")
        self.tab = intent.tab
        self.selection = 0

    # ── Editing ───────────────────────────────────────────────────────

    def _item_for(self, ref: FieldRef):
        cls, attr = _ITEM_FIELDS[ref.kind]
        item = self.request.find_item(ref.item_id) if ref.item_id is not None else None
        if not isinstance(item, cls):
            raise ValidationError(f"No {cls.__name__.lower()} with id {ref.item_id}")
        return item, attr

    def _check_body_kind(self, ref: FieldRef) -> None:
        """Body text edits never replace a body of another kind."""
        expected = RawBody if ref.kind == FieldKind.RAW_BODY else BinaryBody
        body = self.request.body
        if not isinstance(body, (NoBody, expected)):
            raise ValidationError(
                f"Body is {type(body).__name__}; switch the body kind before editing"
            )

    def _read_field(self, ref: FieldRef) -> str:
        if ref.kind == FieldKind.URL:
            return self.request.url
        if ref.kind == FieldKind.NAME:
            return self.request.name
        if ref.kind == FieldKind.DESCRIPTION:
            return self.request.description or ""
        if ref.kind == FieldKind.RAW_BODY:
            body = self.request.body
            return body.text if isinstance(body, RawBody) else ""
        if ref.kind == FieldKind.BINARY_PATH:
            body = self.request.body
            return body.path if isinstance(body, BinaryBody) else ""
        item, attr = self._item_for(ref)
        return getattr(item, attr) or ""

    def _write_field(self, ref: FieldRef, text: str) -> None:
        if ref.kind == FieldKind.URL:
            self.request.url = text
        elif ref.kind == FieldKind.NAME:
            self.request.name = text
        elif ref.kind == FieldKind.DESCRIPTION:
            self.request.description = text or None
        elif ref.kind == FieldKind.RAW_BODY:
            self._check_body_kind(ref)
            self.request.body = RawBody(text)
        elif ref.kind == FieldKind.BINARY_PATH:
            self._check_body_kind(ref)
            self.request.body = BinaryBody(text)
        else:
            item, attr = self._item_for(ref)
            if ref.kind == FieldKind.OPTION_VALUE and text == "":
                text = None
            setattr(item, attr, text)
        self.request.touch()

    def _begin_edit(self, intent: BeginEdit) -> None:
        if intent.field.kind in (FieldKind.RAW_BODY, FieldKind.BINARY_PATH):
            self._check_body_kind(intent.field)
        self.buffer = EditBuffer.seeded(self._read_field(intent.field))
        self.field = intent.field
        self.state = SessionState.EDITING

    def _end_edit(self) -> None:
        self.buffer = None
        self.field = None
        self.state = SessionState.NORMAL

    def _commit_edit(self, intent: CommitEdit) -> None:
        if self.state == SessionState.METHOD_SELECT:
            self.request.method = METHODS[self.method_index]
            self.request.touch()
            self.state = SessionState.NORMAL
            return
        try:
            self._write_field(self.field, self.buffer.text)
        finally:
            self._end_edit()

    def _cancel_edit(self, intent: CancelEdit) -> None:
        if self.state == SessionState.METHOD_SELECT:
            self.state = SessionState.NORMAL
            return
        self._end_edit()

    def _set_buffer(self, intent: SetBuffer) -> None:
        self.buffer.set(intent.text)

    def _insert_text(self, intent: InsertText) -> None:
        self.buffer.insert(intent.text)

    def _delete_backward(self, intent: DeleteBackward) -> None:
        self.buffer.delete_backward()

    def _move_cursor(self, intent: MoveCursor) -> None:
        self.buffer.move(intent.delta)

    # ── Request items ─────────────────────────────────────────────────

    def _toggle_enabled(self, intent: ToggleEnabled) -> None:
        item = self.request.find_item(intent.item_id)
        if item is None:
            raise ValidationError(f"No item with id {intent.item_id}")
        item.enabled = not item.enabled
        self.request.touch()

    def _add_item(self, intent: AddItem) -> None:
        ids = self.ctx.ids
        if intent.kind == "header":
            self.request.add_header(ids, intent.key, intent.value or "")
        elif intent.kind == "query_param":
            self.request.add_query_param(ids, intent.key, intent.value or "")
        elif intent.kind == "option":
            self.request.add_option(ids, intent.key, intent.value or None)
        elif intent.kind == "form_field":
            self.request.add_form_field(ids, intent.key, intent.value or "")
        else:
            raise ValidationError(f"Unknown item kind: {intent.kind!r}")
        self.request.touch()

    def _remove_item(self, intent: RemoveItem) -> None:
        if not self.request.remove_item(intent.item_id):
            raise ValidationError(f"No item with id {intent.item_id}")
        self.request.touch()
        count = len(self._tab_items())
        self.selection = min(self.selection, max(count - 1, 0))

    def _set_body_kind(self, intent: SetBodyKind) -> None:
        if self.request.body.kind == intent.kind:
            return
        self.request.body = empty_body(intent.kind)
        self.request.touch()

    # ── Method selection ──────────────────────────────────────────────

    def _open_method_select(self, intent: OpenMethodSelect) -> None:
        self.method_index = METHODS.index(self.request.method)
        self.state = SessionState.METHOD_SELECT

    def _select_method(self, intent: SelectMethod) -> None:
        if not 0 <= intent.index < len(METHODS):
            raise ValidationError(f"Method index out of range: {intent.index}")
        self.method_index = intent.index

    # ── Execution ─────────────────────────────────────────────────────

    def _execute(self, intent: Execute) -> None:
        if self.is_running:
            raise AlreadyRunningError()
        command = build_command(
            self.request,
            self.ctx.active_environment,
            for_execution=self.ctx.config.status_marker,
        )
        # The record keeps the masked preview; secrets never reach the view.
        self.run = RunRecord(request=self.request.clone(self.ctx.ids), command=self.preview())
        try:
            self.executor.start(command)
        except SpawnError:
            self._finish_run()
            raise
        self._info("Running...")

    def _cancel(self, intent: Cancel) -> None:
        if not self.is_running:
            raise ValidationError("No request is running")
        self.executor.cancel()
        self._finish_run()

    def _finish_run(self) -> None:
        run = self.run
        result = self.executor.result()
        result.status_code = parse_response(result.stdout).status_code if result.stdout else None
        result.stdout, _ = strip_status_marker(result.stdout)
        run.status = result.status
        run.stdout = result.stdout
        run.stderr = result.stderr
        run.exit_code = result.exit_code
        run.error = result.error
        run.duration_ms = result.duration_ms
        run.status_code = result.status_code

        entry = HistoryEntry(
            id=self.ctx.ids.next_id(),
            name=run.request.display_name(),
            request=run.request,
            result=result,
        )
        self.ctx.history.insert(0, entry)
        del self.ctx.history[self.ctx.config.max_history :]
        self._info(self._run_summary(run))
        self._persist(self.ctx.store.save_history, self.ctx.history)

    @staticmethod
    def _run_summary(run: RunRecord) -> str:
        if run.status == RunStatus.FAILED:
            return f"Failed: {run.error}"
        if run.status == RunStatus.CANCELLED:
            return "Cancelled"
        if run.status_code is not None:
            return f"Completed: HTTP {run.status_code} ({int(run.duration_ms)}ms)"
        return f"Completed: exit code {run.exit_code} ({int(run.duration_ms)}ms)"

    # ── Import ────────────────────────────────────────────────────────

    def _begin_import(self, intent: BeginImport) -> None:
        self.state = SessionState.IMPORTING

    def _cancel_import(self, intent: CancelImport) -> None:
        self.state = SessionState.NORMAL

    def _submit_import(self, intent: SubmitImport) -> None:
        self.state = SessionState.NORMAL
        batch = self._parse_import(intent.data, intent.category)
        if not batch:
            raise ImportRejectedError("Nothing to import")
        try:
            converted = [to_template(item, self.ctx.ids) for item in batch]
        except (AttributeError, TypeError, ValueError) as e:
            raise ImportRejectedError(f"Import rejected: {e}") from e
        self.ctx.templates.extend(converted)
        self._info(f"Imported {len(converted)} template(s)")
        self._persist(self.ctx.store.save_templates, self.ctx.templates)

    @staticmethod
    def _parse_import(data, category: str | None) -> list[ImportedRequest]:
        if isinstance(data, str):
            text = data.strip()
            if text.startswith("curl "):
                imported = parse_curl(text)
                imported.category = category
                return [imported]
            return parse_openapi(text, category)
        if isinstance(data, ImportedRequest):
            return [data]
        if isinstance(data, Sequence):
            return list(data)
        raise ImportRejectedError(f"Unsupported import data: {type(data).__name__}")

    # ── Environments, templates, history ──────────────────────────────

    def _select_environment(self, intent: SelectEnvironment) -> None:
        if intent.index is not None and not 0 <= intent.index < len(self.ctx.environments):
            raise ValidationError(f"Environment index out of range: {intent.index}")
        self.ctx.active_env_index = intent.index
        env = self.ctx.selected_environment
        self._info(f"Environment: {env.name}" if env else "No environment")

    def _save_template(self, intent: SaveTemplate) -> None:
        request = self.request.clone(self.ctx.ids)
        name = intent.name
        if not name:
            name = request.name.strip()
            if not name or name == DEFAULT_REQUEST_NAME:
                name = DEFAULT_TEMPLATE_NAME
        request.name = name
        template = Template(
            id=self.ctx.ids.next_id(),
            name=name,
            request=request,
            description=request.description,
            category=intent.category,
        )
        self.ctx.templates.append(template)
        self._info(f"Saved template '{name}'")
        self._persist(self.ctx.store.save_templates, self.ctx.templates)

    def _load_template(self, intent: LoadTemplate) -> None:
        template = self.ctx.templates[self.ctx.find_template(intent.template_id)]
        self.request = template.request.clone(self.ctx.ids)
        self.selection = 0
        self._info(f"Loaded template '{template.name}'")

    def _copy_name(self, base: str) -> str:
        names = {t.name for t in self.ctx.templates}
        candidate = f"{base} Copy"
        n = 2
        while candidate in names:
            candidate = f"{base} Copy {n}"
            n += 1
        return candidate

    def _duplicate_template(self, intent: DuplicateTemplate) -> None:
        idx = self.ctx.find_template(intent.template_id)
        source = self.ctx.templates[idx]
        name = self._copy_name(source.name)
        request = source.request.clone(self.ctx.ids)
        request.name = name
        copy_ = Template(
            id=self.ctx.ids.next_id(),
            name=name,
            request=request,
            description=source.description,
            category=source.category,
        )
        self.ctx.templates.insert(idx + 1, copy_)
        self._info(f"Duplicated as '{name}'")
        self._persist(self.ctx.store.save_templates, self.ctx.templates)

    def _delete_template(self, intent: DeleteTemplate) -> None:
        idx = self.ctx.find_template(intent.template_id)
        template = self.ctx.templates.pop(idx)
        self._deleted.append((idx, template))
        self._info(f"Deleted template '{template.name}'")
        self._persist(self.ctx.store.save_templates, self.ctx.templates)

    def _undo_delete(self, intent: UndoDelete) -> None:
        if not self._deleted:
            raise ValidationError("Nothing to undo")
        idx, template = self._deleted.pop()
        self.ctx.templates.insert(min(idx, len(self.ctx.templates)), template)
        self._info(f"Restored template '{template.name}'")
        self._persist(self.ctx.store.save_templates, self.ctx.templates)

    def _load_history(self, intent: LoadHistory) -> None:
        if not 0 <= intent.index < len(self.ctx.history):
            raise ValidationError(f"History index out of range: {intent.index}")
        entry = self.ctx.history[intent.index]
        self.request = entry.request.clone(self.ctx.ids)
        self.selection = 0
        if not self.is_running:
            self.run = _record_from_history(entry, self.request)
        self._info(f"Loaded '{entry.name}' from history")

    # ── Exit ──────────────────────────────────────────────────────────

    def _quit(self, intent: Quit) -> None:
        if self.is_running:
            self.executor.cancel()
            self._finish_run()
        self.buffer = None
        self.field = None
        self.state = SessionState.EXITING
        try:
            self.ctx.flush()
        except PersistenceError as e:
            # stay open so Quit can be retried
            self.state = SessionState.NORMAL
            self._error(e.detail)
            return
        self._info("Saved")


def _record_from_history(entry: HistoryEntry, request: Request) -> RunRecord:
    result: ExecutionResult = entry.result
    return RunRecord(
        request=request,
        command="",
        status=result.status,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
        error=result.error,
        duration_ms=result.duration_ms,
        status_code=result.status_code,
        started_at=entry.timestamp,
    )
