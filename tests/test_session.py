"""Tests for the interaction state machine."""

import json

import pytest

from lazycurl.builder import STATUS_MARKER_PREFIX
from lazycurl.core import Config
from lazycurl.importers import ImportedRequest
from lazycurl.models import (
    METHODS,
    BinaryBody,
    Environment,
    EnvironmentVariable,
    HttpMethod,
    RawBody,
    RunStatus,
)
from lazycurl.session import (
    UNDO_DEPTH,
    AddItem,
    AppContext,
    BeginEdit,
    BeginImport,
    Cancel,
    CancelEdit,
    CancelImport,
    CommitEdit,
    DeleteBackward,
    DeleteTemplate,
    DuplicateTemplate,
    Execute,
    FieldKind,
    FieldRef,
    FocusTab,
    InsertText,
    LoadHistory,
    LoadTemplate,
    MoveCursor,
    MoveSelection,
    OpenMethodSelect,
    Quit,
    RemoveItem,
    SaveTemplate,
    SelectEnvironment,
    SelectMethod,
    Session,
    SessionState,
    SetBodyKind,
    SetBuffer,
    SubmitImport,
    ToggleEnabled,
    UndoDelete,
)
from lazycurl.store import Store
from tests.conftest import FakeExecutor, curl_stdout


def _edit(session, kind, text, item_id=None):
    session.dispatch(BeginEdit(FieldRef(kind, item_id)))
    session.dispatch(SetBuffer(text))
    session.dispatch(CommitEdit())


def _run_to_completion(session):
    session.dispatch(Execute())
    for _ in range(100):
        if not session.is_running:
            break
        session.tick()


# ── Scenario 1: Startup ──────────────────────────────────────────────────


class TestStartup:
    """A fresh data dir gives the seed collections and an empty history."""

    def test_fresh_bootstrap(self, session):
        view = session.view()
        assert view.state == SessionState.NORMAL
        assert [name for _, name, _ in view.templates] == ["GET Example", "POST JSON"]
        assert view.environments == ("Default",)
        assert view.environment == "Default"
        assert view.history == ()
        assert view.run is None
        assert not view.is_running

    def test_configured_environment(self, store):
        store.save_environments(
            [Environment(id=1, name="dev"), Environment(id=2, name="prod")],
        )
        ctx = AppContext.bootstrap(store, Config(environment="prod"))
        assert ctx.selected_environment.name == "prod"

    def test_unknown_configured_environment_selects_none(self, store):
        ctx = AppContext.bootstrap(store, Config(environment="nope"))
        assert ctx.active_env_index is None
        assert ctx.selected_environment is None


# ── Scenario 2: Editing ──────────────────────────────────────────────────


class TestEditing:
    """BeginEdit → buffer ops → CommitEdit/CancelEdit."""

    def test_begin_edit_enters_editing(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.URL)))
        view = session.view()
        assert view.state == SessionState.EDITING
        assert view.buffer == "https://"
        assert view.cursor == len("https://")

    def test_commit_writes_field(self, session):
        _edit(session, FieldKind.URL, "http://x")
        assert session.request.url == "http://x"
        assert session.state == SessionState.NORMAL
        assert session.view().buffer == ""

    def test_cancel_leaves_field(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.URL)))
        session.dispatch(SetBuffer("http://changed"))
        session.dispatch(CancelEdit())
        assert session.request.url == "https://"
        assert session.state == SessionState.NORMAL

    def test_buffer_operations(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.NAME)))
        session.dispatch(SetBuffer("helo"))
        session.dispatch(MoveCursor(-1))
        session.dispatch(InsertText("l"))
        session.dispatch(MoveCursor(10))
        session.dispatch(InsertText("!!"))
        session.dispatch(DeleteBackward())
        assert session.view().buffer == "hello!"
        session.dispatch(CommitEdit())
        assert session.request.name == "hello!"

    def test_edit_item_keeps_id_and_position(self, session):
        session.dispatch(AddItem("header", "A", "1"))
        session.dispatch(AddItem("header", "B", "2"))
        first, second = session.request.headers
        _edit(session, FieldKind.HEADER_VALUE, "changed", first.id)
        assert [(h.id, h.key, h.value) for h in session.request.headers] == [
            (first.id, "A", "changed"),
            (second.id, "B", "2"),
        ]

    def test_edit_body(self, session):
        _edit(session, FieldKind.RAW_BODY, '{"a": 1}')
        assert session.request.body == RawBody('{"a": 1}')

    def test_body_edit_does_not_replace_form(self, session):
        session.dispatch(SetBodyKind("form_data"))
        session.dispatch(AddItem("form_field", "k", "v"))
        session.dispatch(BeginEdit(FieldRef(FieldKind.RAW_BODY)))
        assert session.state == SessionState.NORMAL
        assert session.status_is_error
        assert "switch the body kind" in session.status_message
        assert [(f.key, f.value) for f in session.request.body.fields] == [("k", "v")]

        session.dispatch(SetBodyKind("binary"))
        _edit(session, FieldKind.BINARY_PATH, "/tmp/blob")
        assert session.request.body == BinaryBody("/tmp/blob")

    def test_clearing_option_value_makes_it_flag_only(self, session):
        session.dispatch(AddItem("option", "--max-time", "10"))
        option = session.request.options[0]
        _edit(session, FieldKind.OPTION_VALUE, "", option.id)
        assert option.value is None

    def test_edit_unknown_item(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.HEADER_KEY, 999)))
        assert session.state == SessionState.NORMAL
        assert session.status_is_error
        assert "999" in session.status_message

    def test_edit_intents_rejected_in_normal(self, session):
        session.dispatch(InsertText("x"))
        assert session.status_is_error
        assert "not available in normal mode" in session.status_message

    def test_normal_intents_rejected_while_editing(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.URL)))
        session.dispatch(AddItem("header", "A", "1"))
        assert session.request.headers == []
        assert session.state == SessionState.EDITING
        assert session.status_is_error


# ── Scenario 3: Items, tabs and method ───────────────────────────────────


class TestItems:
    """Toggling, removing and selecting list items."""

    def test_toggle_enabled(self, session):
        session.dispatch(AddItem("query_param", "page", "2"))
        param = session.request.query_params[0]
        session.dispatch(ToggleEnabled(param.id))
        assert not param.enabled
        assert "page" not in session.preview()
        session.dispatch(ToggleEnabled(param.id))
        assert "page=2" in session.preview()

    def test_remove_item_clamps_selection(self, session):
        session.dispatch(FocusTab("headers"))
        session.dispatch(AddItem("header", "A", "1"))
        session.dispatch(AddItem("header", "B", "2"))
        session.dispatch(MoveSelection(5))
        assert session.selection == 1
        session.dispatch(RemoveItem(session.selected_item_id))
        assert session.selection == 0
        assert [h.key for h in session.request.headers] == ["A"]

    def test_form_field_switches_body(self, session):
        session.dispatch(AddItem("form_field", "name", "x"))
        assert session.request.body.kind == "form_data"
        session.dispatch(SetBodyKind("raw"))
        assert session.request.body == RawBody("")

    def test_unknown_tab(self, session):
        session.dispatch(FocusTab("cookies"))
        assert session.status_is_error
        assert session.tab == "url"

    def test_unknown_item_kind(self, session):
        session.dispatch(AddItem("cookie", "a", "b"))
        assert session.status_is_error


class TestMethodSelect:
    """OpenMethodSelect → pick → CommitEdit applies, CancelEdit discards."""

    def test_commit(self, session):
        session.dispatch(OpenMethodSelect())
        assert session.state == SessionState.METHOD_SELECT
        session.dispatch(SelectMethod(METHODS.index(HttpMethod.PATCH)))
        session.dispatch(CommitEdit())
        assert session.request.method == HttpMethod.PATCH
        assert session.state == SessionState.NORMAL

    def test_move_and_cancel(self, session):
        session.dispatch(OpenMethodSelect())
        session.dispatch(MoveSelection(2))
        assert session.view().method_index == 2
        session.dispatch(CancelEdit())
        assert session.request.method == HttpMethod.GET
        assert session.state == SessionState.NORMAL

    def test_out_of_range(self, session):
        session.dispatch(OpenMethodSelect())
        session.dispatch(SelectMethod(len(METHODS)))
        assert session.status_is_error
        assert session.state == SessionState.METHOD_SELECT


# ── Scenario 4: Execution and history ────────────────────────────────────


class TestExecution:
    """Execute → tick → history entry; one run at a time."""

    def test_completed_run_goes_to_history(self, session, fake_executor):
        fake_executor.stdout = curl_stdout('{"ok": true}')
        _edit(session, FieldKind.URL, "https://example.com/a")
        _edit(session, FieldKind.NAME, "Fetch A")
        _run_to_completion(session)
        view = session.view()
        assert view.run.status == RunStatus.COMPLETED
        assert view.run.status_code == 200
        assert view.history[0][:2] == ("Fetch A", RunStatus.COMPLETED)
        assert view.status_message == "Completed: HTTP 200 (42ms)"
        assert session.ctx.store.history_path.exists()
        assert view.run.stdout == '{"ok": true}'
        assert STATUS_MARKER_PREFIX not in session.ctx.store.history_path.read_text()

    def test_history_name_falls_back_to_url(self, session):
        _edit(session, FieldKind.URL, "https://example.com/b")
        _run_to_completion(session)
        assert session.ctx.history[0].name == "https://example.com/b"

    def test_history_newest_first_and_capped(self, session):
        session.ctx.config.max_history = 2
        for n in range(3):
            _edit(session, FieldKind.URL, f"https://example.com/{n}")
            _run_to_completion(session)
        assert [h.name for h in session.ctx.history] == [
            "https://example.com/2",
            "https://example.com/1",
        ]

    def test_history_request_is_a_snapshot(self, session):
        _edit(session, FieldKind.URL, "https://example.com/snap")
        _run_to_completion(session)
        _edit(session, FieldKind.URL, "https://example.com/edited")
        assert session.ctx.history[0].request.url == "https://example.com/snap"

    def test_execute_while_running_rejected(self, ctx):
        executor = FakeExecutor(polls=5)
        session = Session(ctx, executor=executor)
        _edit(session, FieldKind.URL, "https://example.com/slow")
        session.dispatch(Execute())
        session.dispatch(Execute())
        assert session.status_is_error
        assert session.status_message == "A request is already running"
        assert len(executor.commands) == 1
        assert session.is_running

    def test_tick_does_not_finish_early(self, ctx):
        session = Session(ctx, executor=FakeExecutor(polls=3))
        _edit(session, FieldKind.URL, "https://example.com/slow")
        session.dispatch(Execute())
        session.tick()
        assert session.run.status == RunStatus.RUNNING
        assert session.ctx.history == []
        session.tick()
        session.tick()
        assert session.run.status == RunStatus.COMPLETED

    def test_tick_when_idle(self, session):
        session.tick()
        assert session.run is None

    def test_cancel(self, ctx):
        session = Session(ctx, executor=FakeExecutor(polls=10))
        _edit(session, FieldKind.URL, "https://example.com/slow")
        session.dispatch(Execute())
        session.dispatch(Cancel())
        assert not session.is_running
        assert session.run.status == RunStatus.CANCELLED
        assert session.ctx.history[0].result.status == RunStatus.CANCELLED
        assert session.status_message == "Cancelled"

    def test_cancel_when_idle(self, session):
        session.dispatch(Cancel())
        assert session.status_message == "No request is running"

    def test_spawn_failure(self, ctx):
        session = Session(ctx, executor=FakeExecutor(spawn_error="curl: command not found"))
        _edit(session, FieldKind.URL, "https://example.com/x")
        session.dispatch(Execute())
        assert session.status_is_error
        assert session.status_message == "curl: command not found"
        assert session.run.status == RunStatus.FAILED
        assert session.ctx.history[0].result.status == RunStatus.FAILED
        assert session.state == SessionState.NORMAL

    def test_command_carries_status_marker(self, session, fake_executor):
        _edit(session, FieldKind.URL, "https://example.com/x")
        _run_to_completion(session)
        assert STATUS_MARKER_PREFIX in fake_executor.commands[0]
        assert STATUS_MARKER_PREFIX not in session.run.command

    def test_status_marker_disabled(self, ctx, fake_executor):
        ctx.config.status_marker = False
        session = Session(ctx, executor=fake_executor)
        _edit(session, FieldKind.URL, "https://example.com/x")
        _run_to_completion(session)
        assert STATUS_MARKER_PREFIX not in fake_executor.commands[0]

    def test_load_history(self, session, fake_executor):
        fake_executor.stdout = curl_stdout("body")
        _edit(session, FieldKind.URL, "https://example.com/old")
        session.dispatch(AddItem("header", "A", "1"))
        _run_to_completion(session)
        _edit(session, FieldKind.URL, "https://example.com/new")
        session.dispatch(LoadHistory(0))
        assert session.request.url == "https://example.com/old"
        assert session.request.headers[0].id != session.ctx.history[0].request.headers[0].id
        assert session.run.stdout == "body"

    def test_load_history_out_of_range(self, session):
        session.dispatch(LoadHistory(3))
        assert session.status_message == "History index out of range: 3"


# ── Scenario 5: Environments and secrets ─────────────────────────────────


@pytest.fixture
def secret_session(store, fake_executor):
    store.save_environments(
        [
            Environment(
                id=1,
                name="prod",
                variables=[
                    EnvironmentVariable("host", "api.example.com"),
                    EnvironmentVariable("token", "s3cr3t", secret=True),
                ],
            ),
        ],
    )
    session = Session(AppContext.bootstrap(store), executor=fake_executor)
    _edit(session, FieldKind.URL, "https://{{host}}/me")
    session.dispatch(AddItem("header", "Authorization", "Bearer {{token}}"))
    return session


class TestEnvironments:
    """Secrets are masked in everything the view exposes."""

    def test_preview_masks_secret(self, secret_session):
        view = secret_session.view()
        assert "s3cr3t" not in view.preview
        assert "Bearer ********" in view.preview
        assert "https://api.example.com/me" in view.preview

    def test_executed_command_uses_real_value(self, secret_session, fake_executor):
        _run_to_completion(secret_session)
        assert "Bearer s3cr3t" in fake_executor.commands[0]
        assert "s3cr3t" not in secret_session.view().run.command

    def test_overrides_layered_not_saved(self, secret_session):
        secret_session.ctx.overrides = {"host": "localhost:8080"}
        assert "https://localhost:8080/me" in secret_session.preview()
        assert secret_session.ctx.selected_environment.get("host") == "api.example.com"

    def test_deselect_environment(self, secret_session):
        secret_session.dispatch(SelectEnvironment(None))
        assert secret_session.view().environment is None
        assert "{{host}}" in secret_session.preview()
        assert secret_session.status_message == "No environment"

    def test_select_out_of_range(self, secret_session):
        secret_session.dispatch(SelectEnvironment(4))
        assert secret_session.status_is_error
        assert secret_session.view().environment == "prod"


# ── Scenario 6: Templates ────────────────────────────────────────────────


def _template_names(session):
    return [t.name for t in session.ctx.templates]


class TestTemplates:
    """Save, load, duplicate, delete and undo."""

    def test_save_default_name(self, session):
        session.dispatch(SaveTemplate())
        assert _template_names(session)[-1] == "New Template"
        saved = json.loads(session.ctx.store.templates_path.read_text())
        assert saved["templates"][-1]["name"] == "New Template"

    def test_save_uses_request_name(self, session):
        _edit(session, FieldKind.NAME, "Users")
        session.dispatch(SaveTemplate(category="API"))
        template = session.ctx.templates[-1]
        assert (template.name, template.category) == ("Users", "API")
        assert template.request is not session.request

    def test_load(self, session):
        template = session.ctx.templates[1]
        session.dispatch(LoadTemplate(template.id))
        assert session.request.url == template.request.url
        assert session.request.method == HttpMethod.POST
        assert session.request.id != template.request.id

    def test_load_unknown(self, session):
        session.dispatch(LoadTemplate(12345))
        assert session.status_message == "No template with id 12345"

    def test_duplicate_names_and_position(self, session):
        first = session.ctx.templates[0]
        session.dispatch(DuplicateTemplate(first.id))
        session.dispatch(DuplicateTemplate(first.id))
        assert _template_names(session) == [
            "GET Example",
            "GET Example Copy 2",
            "GET Example Copy",
            "POST JSON",
        ]

    def test_delete_and_undo(self, session):
        first = session.ctx.templates[0]
        session.dispatch(DeleteTemplate(first.id))
        assert _template_names(session) == ["POST JSON"]
        session.dispatch(UndoDelete())
        assert _template_names(session) == ["GET Example", "POST JSON"]
        assert session.ctx.templates[0] is first

    def test_undo_depth(self, session):
        for n in range(UNDO_DEPTH + 2):
            session.dispatch(SaveTemplate(name=f"t{n}"))
        for template in list(session.ctx.templates):
            session.dispatch(DeleteTemplate(template.id))
        restored = 0
        while True:
            session.dispatch(UndoDelete())
            if session.status_message == "Nothing to undo":
                break
            restored += 1
        assert restored == UNDO_DEPTH


# ── Scenario 7: Import ───────────────────────────────────────────────────


class TestImport:
    """Imports are applied as one batch or not at all."""

    def test_curl_text(self, session):
        session.dispatch(BeginImport())
        assert session.state == SessionState.IMPORTING
        session.dispatch(SubmitImport("curl -X POST https://x.io/items -d a=1", "Mine"))
        template = session.ctx.templates[-1]
        assert (template.name, template.category) == ("POST /items", "Mine")
        assert session.state == SessionState.NORMAL
        assert session.status_message == "Imported 1 template(s)"

    def test_openapi_text(self, session):
        doc = {"openapi": "3.0.0", "paths": {"/a": {"get": {}, "post": {}}}}
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport(json.dumps(doc)))
        assert _template_names(session)[-2:] == ["GET /a", "POST /a"]

    def test_rejected_batch_adds_nothing(self, session):
        before = _template_names(session)
        good = ImportedRequest(name="good", url="https://x.io")
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport([good, {"name": "not an import"}]))
        assert _template_names(session) == before
        assert session.status_is_error
        assert session.state == SessionState.NORMAL

    def test_method_given_as_text(self, session):
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport([ImportedRequest(name="x", url="https://x.io", method="post")]))
        template = session.ctx.templates[-1]
        assert template.request.method == HttpMethod.POST
        assert not session.status_is_error
        saved = session.ctx.store.load_templates(session.ctx.ids)
        assert saved[-1].request.method == HttpMethod.POST

    def test_unknown_method_rejects_batch(self, session):
        before = _template_names(session)
        batch = [
            ImportedRequest(name="good", url="https://x.io"),
            ImportedRequest(name="bad", url="https://x.io", method="BREW"),
        ]
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport(batch))
        assert _template_names(session) == before
        assert session.status_is_error
        assert "Unknown HTTP method" in session.status_message

    def test_unparsable_text(self, session):
        before = _template_names(session)
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport("not an api document"))
        assert _template_names(session) == before
        assert session.status_is_error

    def test_empty_batch(self, session):
        session.dispatch(BeginImport())
        session.dispatch(SubmitImport([]))
        assert session.status_message == "Nothing to import"

    def test_cancel_import(self, session):
        session.dispatch(BeginImport())
        session.dispatch(CancelImport())
        assert session.state == SessionState.NORMAL

    def test_submit_outside_import_mode(self, session):
        session.dispatch(SubmitImport("curl https://x.io"))
        assert session.status_is_error
        assert len(session.ctx.templates) == 2


# ── Scenario 8: Quit ─────────────────────────────────────────────────────


class TestQuit:
    """Quit cancels any run, flushes every collection and stops dispatching."""

    def test_flushes_all_documents(self, session):
        store = session.ctx.store
        session.dispatch(Quit())
        assert session.is_exiting
        assert store.templates_path.exists()
        assert store.environments_path.exists()
        assert json.loads(store.history_path.read_text()) == {"history": []}

    def test_cancels_running_request(self, ctx):
        executor = FakeExecutor(polls=10)
        session = Session(ctx, executor=executor)
        _edit(session, FieldKind.URL, "https://example.com/slow")
        session.dispatch(Execute())
        session.dispatch(Quit())
        assert executor.status == RunStatus.CANCELLED
        assert session.ctx.history[0].result.status == RunStatus.CANCELLED

    def test_quit_while_editing_discards_buffer(self, session):
        session.dispatch(BeginEdit(FieldRef(FieldKind.URL)))
        session.dispatch(SetBuffer("http://discarded"))
        session.dispatch(Quit())
        assert session.request.url == "https://"
        assert session.is_exiting

    def test_intents_ignored_after_quit(self, session):
        session.dispatch(Quit())
        session.dispatch(AddItem("header", "A", "1"))
        assert session.request.headers == []

    def test_reload_after_quit(self, session, tmp_path):
        session.dispatch(SaveTemplate(name="Kept"))
        session.dispatch(Quit())
        reloaded = AppContext.bootstrap(Store(tmp_path / "data"))
        assert [t.name for t in reloaded.templates][-1] == "Kept"

    def test_flush_failure_keeps_session_open(self, tmp_path, fake_executor):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        session = Session(AppContext.bootstrap(Store(blocker / "data")), executor=fake_executor)
        session.dispatch(Quit())
        assert not session.is_exiting
        assert session.state == SessionState.NORMAL
        assert session.status_is_error
        assert "could not write" in session.status_message

        blocker.unlink()
        session.dispatch(Quit())
        assert session.is_exiting
        assert not session.status_is_error
        assert (blocker / "data" / "templates.json").exists()


def test_view_is_detached(session):
    view = session.view()
    view.request.url = "http://mutated"
    assert session.request.url == "https://"
