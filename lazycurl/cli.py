"""lazycurl CLI - build, preview and run curl requests from the command line."""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path

import click

SECRET_MARKERS = ("SECRET", "TOKEN", "PASSWORD", "KEY")

TOOL_HELP = """\
lazycurl - build curl requests, keep them as templates, replay history.

Every request is run through the real curl binary. Templates, environments
and history are JSON documents under the data dir
($XDG_DATA_HOME/lazycurl or ~/.local/share/lazycurl).

\b
MODES
─────
  Direct:     lazycurl METHOD URL [options]
  Template:   lazycurl -t TEMPLATE [options]
  Replay:     lazycurl --replay INDEX

\b
DIRECT MODE
───────────
  lazycurl GET https://httpbin.org/get -q page=2
  lazycurl POST https://httpbin.org/post -H 'Content-Type: application/json' \\
      -b '{"name": "test"}'
  lazycurl POST https://httpbin.org/post --form name=test --form file=@photo.jpg
  lazycurl GET https://httpbin.org/get -o -i -o '--max-time 10'

\b
VARIABLES
─────────
  {{name}} and {{name:default}} are resolved against the active environment
  (-e NAME, or defaults.environment in the config). -v key=value overrides
  a variable for this run only. Secret values are masked in --preview.

    lazycurl GET '{{base_url}}/users/{{id:1}}' -e staging -v id=42

\b
TEMPLATES AND HISTORY
─────────────────────
  lazycurl --list-templates          List stored templates
  lazycurl -t 'GET Example'          Run a template
  lazycurl --history                 Show recent runs (newest first)
  lazycurl --replay 0                Re-run history entry 0

\b
IMPORT
──────
  lazycurl --import-curl "curl -X POST https://api.example.com -d '{}'"
  lazycurl --import-openapi openapi.yaml --category 'My API'
  lazycurl --import-openapi https://petstore3.swagger.io/api/v3/openapi.json
  lazycurl --import-env .env --env-name staging

\b
CONFIG (.lazycurl.yaml)
───────────────────────
  defaults:
    curl_path: /usr/local/bin/curl
    data_dir: .lazycurl               # relative to this file
    max_history: 100
    environment: Default
    status_marker: true               # recover the HTTP status via -w
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("method", required=False)
@click.argument("url", required=False)
@click.option(
    "-t",
    "--template",
    "template_name",
    default=None,
    help="Template name. Use --list-templates to see available.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .lazycurl.yaml in CWD, then <data dir>/config.yaml.",
)
@click.option(
    "--data-dir",
    "data_dir_override",
    default=None,
    help="Override the directory holding templates, environments and history.",
)
@click.option(
    "-e",
    "--env",
    "env_name",
    default=None,
    help="Environment used for {{variable}} substitution.",
)
@click.option(
    "-v",
    "--var",
    multiple=True,
    help="Variable override as key=value. Not saved. Repeatable.",
)
@click.option(
    "-H",
    "--header",
    multiple=True,
    help="HTTP header as 'Name: Value'. Repeatable.",
)
@click.option(
    "-q",
    "--query",
    multiple=True,
    help="Query parameter as key=value. Repeatable.",
)
@click.option("-b", "--body", default=None, help="Raw request body.")
@click.option(
    "--form",
    "form_fields",
    multiple=True,
    help="Form field as KEY=VALUE or KEY=@FILE. Repeatable. "
    "Mutually exclusive with --body.",
)
@click.option(
    "-o",
    "--option",
    "curl_options",
    multiple=True,
    help="Extra curl option, e.g. -o -i or -o '--max-time 10'. Repeatable.",
)
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Transfer timeout in seconds (curl --max-time).",
)
@click.option(
    "--preview",
    is_flag=True,
    default=False,
    help="Print the curl command instead of running it.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers and curl's stderr in output.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output the response body only. Useful for piping.",
)
@click.option("--history", is_flag=True, default=False, help="Show request history.")
@click.option(
    "--replay",
    type=int,
    default=None,
    metavar="INDEX",
    help="Replay a request from history by index.",
)
@click.option(
    "--list-templates",
    "show_list_templates",
    is_flag=True,
    default=False,
    help="List stored templates.",
)
@click.option(
    "--list-envs",
    "show_list_envs",
    is_flag=True,
    default=False,
    help="List environments and their variables (secrets masked).",
)
@click.option(
    "--import-curl",
    "import_curl",
    default=None,
    help="Save a curl command string as a template.",
)
@click.option(
    "--import-openapi",
    "import_openapi",
    default=None,
    metavar="PATH|URL",
    help="Import every operation of an OpenAPI/Swagger document as templates.",
)
@click.option(
    "--category",
    default=None,
    help="Category for imported templates.",
)
@click.option(
    "--import-env",
    "import_env",
    default=None,
    metavar="FILE",
    help="Create or update an environment from a .env file.",
)
@click.option(
    "--env-name",
    "import_env_name",
    default=None,
    help="Environment name for --import-env. Default: the file name.",
)
@click.option("--debug", is_flag=True, default=False, help="Log debug output to stderr.")
def main(
    method,
    url,
    template_name,
    config_file,
    data_dir_override,
    env_name,
    var,
    header,
    query,
    body,
    form_fields,
    curl_options,
    timeout,
    preview,
    verbose,
    raw,
    history,
    replay,
    show_list_templates,
    show_list_envs,
    import_curl,
    import_openapi,
    category,
    import_env,
    import_env_name,
    debug,
):
    """Build, preview and run curl requests."""
    from lazycurl.core import data_dir, load_config, resolve_config_path
    from lazycurl.errors import LazycurlError
    from lazycurl.session import AppContext, Session
    from lazycurl.store import Store

    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )

    # --- Validate mutually exclusive options ---
    if form_fields and body:
        click.echo("ERROR: --form and --body are mutually exclusive.", err=True)
        sys.exit(1)

    # --- Load config and collections ---
    try:
        config = load_config(resolve_config_path(config_file))
        store = Store(data_dir(config, data_dir_override), max_history=config.max_history)
        ctx = AppContext.bootstrap(store, config)
    except LazycurlError as e:
        click.echo(f"ERROR: {e.detail}", err=True)
        sys.exit(1)

    if env_name:
        idx = ctx.find_environment(env_name)
        if idx is None:
            names = ", ".join(e.name for e in ctx.environments) or "(none)"
            click.echo(f"ERROR: Environment '{env_name}' not found. Available: {names}", err=True)
            sys.exit(1)
        ctx.active_env_index = idx
    ctx.overrides = dict(_parse_pairs(var))

    session = Session(ctx)
    extras = {
        "header": header,
        "query": query,
        "options": curl_options,
        "timeout": timeout,
    }

    # --- Dispatch ---

    if show_list_templates:
        _cmd_list_templates(ctx)
        return

    if show_list_envs:
        _cmd_list_envs(ctx)
        return

    if history:
        _cmd_history(ctx)
        return

    if import_env:
        _cmd_import_env(session, import_env, import_env_name)
        return

    if import_curl:
        _cmd_import_curl(session, import_curl, category)
        return

    if import_openapi:
        _cmd_import_openapi(session, import_openapi, category)
        return

    if replay is not None:
        from lazycurl.session import LoadHistory

        _dispatch_or_exit(session, LoadHistory(replay))
        _apply_extras(session, extras)
        _run_or_preview(session, preview, verbose, raw)
        return

    if template_name:
        _cmd_template(session, template_name, extras, preview, verbose, raw)
        return

    if method and url:
        _cmd_direct(session, method, url, body, form_fields, extras, preview, verbose, raw)
        return

    # Nothing matched: show help
    click_ctx = click.get_current_context()
    click.echo(click_ctx.get_help())
    click_ctx.exit(1)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_list_templates(ctx):
    if not ctx.templates:
        click.echo("No templates.")
        return
    click.echo(f"Templates from: {ctx.store.templates_path}")
    click.echo(f"{len(ctx.templates)} available:\n")

    groups: dict[str, list] = {}
    for template in ctx.templates:
        groups.setdefault(template.category or "Ungrouped", []).append(template)
    for group, templates in groups.items():
        click.echo(f"{group}:")
        for template in templates:
            req = template.request
            click.echo(f"  {req.method.value:<7} {template.name}")
            detail = req.url
            if template.description:
                detail += f" | {template.description}"
            click.echo(f"          {detail}")
        click.echo()


def _cmd_list_envs(ctx):
    if not ctx.environments:
        click.echo("No environments.")
        return
    for idx, env in enumerate(ctx.environments):
        marker = "*" if idx == ctx.active_env_index else " "
        click.echo(f"{marker} {env.name}")
        for variable in env.variables:
            click.echo(f"    {variable.key}={variable.display_value()}")


def _cmd_history(ctx):
    if not ctx.history:
        click.echo("No request history.")
        return
    click.echo("Request history:\n")
    for i, entry in enumerate(ctx.history):
        ts = datetime.fromtimestamp(entry.timestamp).isoformat(timespec="seconds")
        result = entry.result
        status = result.status_code or result.status.value
        click.echo(f"  [{i}] {entry.request.method.value:<6} {entry.name}  ({status}, {ts})")


def _cmd_import(session, data, category):
    from lazycurl.session import BeginImport, SubmitImport

    before = len(session.ctx.templates)
    session.dispatch(BeginImport())
    _dispatch_or_exit(session, SubmitImport(data, category))
    for template in session.ctx.templates[before:]:
        click.echo(f"Imported template '{template.name}'")
    _quit(session)


def _cmd_import_curl(session, curl_str, category):
    from lazycurl.errors import LazycurlError
    from lazycurl.importers import parse_curl

    try:
        imported = parse_curl(curl_str)
    except LazycurlError as e:
        click.echo(f"Error parsing curl: {e.detail}", err=True)
        sys.exit(1)
    imported.category = category
    _cmd_import(session, [imported], category)


def _cmd_import_openapi(session, source, category):
    from lazycurl.errors import LazycurlError
    from lazycurl.importers import fetch_openapi

    try:
        if source.startswith(("http://", "https://")):
            text = fetch_openapi(source)
        else:
            text = Path(source).read_text()
    except LazycurlError as e:
        click.echo(f"ERROR: {e.detail}", err=True)
        sys.exit(1)
    except OSError as e:
        click.echo(f"ERROR: Could not read {source}: {e}", err=True)
        sys.exit(1)
    _cmd_import(session, text, category)


def _cmd_import_env(session, env_file, name):
    from lazycurl.core import load_env_file
    from lazycurl.errors import LazycurlError
    from lazycurl.models import Environment

    try:
        values = load_env_file(env_file)
    except LazycurlError as e:
        click.echo(f"ERROR: {e.detail}", err=True)
        sys.exit(1)

    ctx = session.ctx
    name = name or Path(env_file).name
    idx = ctx.find_environment(name)
    if idx is None:
        env = Environment(id=ctx.ids.next_id(), name=name)
        ctx.environments.append(env)
    else:
        env = ctx.environments[idx]
    for key, value in values.items():
        env.set(key, value, secret=any(m in key.upper() for m in SECRET_MARKERS))
    click.echo(f"Environment '{name}': {len(values)} variable(s)")
    _quit(session)


def _cmd_template(session, template_name, extras, preview, verbose, raw):
    from lazycurl.session import LoadTemplate

    template = _find_template(session.ctx, template_name)
    if template is None:
        names = "\n".join(f"  - {t.name}" for t in session.ctx.templates)
        click.echo(
            f"Template '{template_name}' not found. Available:\n{names}\n"
            "For direct requests use: lazycurl GET <url>",
            err=True,
        )
        sys.exit(1)
    _dispatch_or_exit(session, LoadTemplate(template.id))
    _apply_extras(session, extras)
    _run_or_preview(session, preview, verbose, raw)


def _cmd_direct(session, method, url, body, form_fields, extras, preview, verbose, raw):
    from lazycurl.errors import ValidationError
    from lazycurl.models import HttpMethod, RawBody, Request

    try:
        http_method = HttpMethod.parse(method)
    except ValidationError as e:
        click.echo(f"ERROR: {e.detail}", err=True)
        sys.exit(1)

    ids = session.ctx.ids
    request = Request.new(ids, url, method=http_method)
    if body is not None:
        request.body = RawBody(body)
    for key, value in _parse_pairs(form_fields):
        request.add_form_field(ids, key, value)
    session.request = request
    _apply_extras(session, extras)
    _run_or_preview(session, preview, verbose, raw)


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_pairs(pairs):
    """Parse key=value tuples into (key, value) pairs; repeated keys are kept."""
    parsed = []
    for pair in pairs:
        if "=" in pair:
            k, v = pair.split("=", 1)
            parsed.append((k.strip(), v.strip()))
    return parsed


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into (name, value) pairs."""
    headers = []
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers.append((k.strip(), v.strip()))
    return headers


def _find_template(ctx, name):
    for template in ctx.templates:
        if template.name == name:
            return template
    for template in ctx.templates:
        if template.name.lower() == name.lower():
            return template
    return None


def _apply_extras(session, extras):
    """Add CLI headers, query params and options through session intents."""
    from lazycurl.session import AddItem

    intents = [AddItem("header", k, v) for k, v in _parse_headers(extras["header"])]
    intents += [AddItem("query_param", k, v) for k, v in _parse_pairs(extras["query"])]
    for raw_option in extras["options"]:
        flag, _, value = raw_option.strip().partition(" ")
        intents.append(AddItem("option", flag, value.strip() or None))
    if extras["timeout"]:
        intents.append(AddItem("option", "--max-time", str(extras["timeout"])))
    for intent in intents:
        _dispatch_or_exit(session, intent)


def _dispatch_or_exit(session, intent):
    session.dispatch(intent)
    if session.status_is_error:
        click.echo(f"ERROR: {session.status_message}", err=True)
        sys.exit(1)


def _run_or_preview(session, preview, verbose, raw):
    if preview:
        click.echo(session.preview())
        for warning in session.view().validation.warnings:
            click.echo(f"WARNING: {warning}", err=True)
        return
    _run(session, verbose, raw)


def _run(session, verbose, raw):
    """Drive the session's tick loop until the run is over."""
    from lazycurl.models import RunStatus
    from lazycurl.output import format_run
    from lazycurl.session import Cancel, Execute

    for problem in session.view().validation.errors:
        click.echo(f"WARNING: {problem}", err=True)

    previous = session.run
    session.dispatch(Execute())
    run = session.run
    if run is None or run is previous:
        click.echo(f"ERROR: {session.status_message}", err=True)
        sys.exit(1)

    interval = session.ctx.config.tick_interval
    try:
        while not run.status.is_terminal:
            session.tick()
            if not run.status.is_terminal:
                time.sleep(interval)
    except KeyboardInterrupt:
        session.dispatch(Cancel())

    result = session.executor.result()
    if result.status == RunStatus.FAILED:
        click.echo(f"ERROR: {result.error}", err=True)
        sys.exit(1)

    click.echo(format_run(result, verbose=verbose, raw=raw))
    if session.status_is_error:
        # history could not be written
        click.echo(f"WARNING: {session.status_message}", err=True)
    if result.status == RunStatus.CANCELLED or result.exit_code:
        sys.exit(1)


def _quit(session):
    from lazycurl.session import Quit

    session.dispatch(Quit())
    if session.status_is_error:
        click.echo(f"ERROR: {session.status_message}", err=True)
        sys.exit(1)
