"""rest CLI - call stored HTTP services from the command line."""

import logging
import sqlite3
import sys
from pathlib import Path

import click
import yaml

from restcli import core
from restcli import service as services
from restcli.errors import RestError
from restcli.executor import RetryPolicy, prepare_request, send
from restcli.filters import load_response, set_parameters
from restcli.hooks import HookEngine
from restcli.resolve import DATA_METHODS, METHODS, Request, load_alias, resolve_settings
from restcli.settings import MAP_NAMES, SCALAR_NAMES, Settings, selector
from restcli.store import Store

logger = logging.getLogger(__name__)

TOOL_HELP = """\
rest — call HTTP services you have configured once.

Services keep scheme, host, port, headers, queries, parameters, auth,
output and retry settings in a local database. Requests inherit them.

\b
QUICK START
───────────
  rest service init github --host api.github.com --header Accept=application/json
  rest get /users/:user --parameter user=octocat --filter login --pretty

\b
SETTING PRECEDENCE (lowest first)
─────────────────────────────────
  built-in defaults < service < path < method < alias < command-line flags

  rest service set github /users/:user --parameter user=octocat
  rest service set github /users/:user get --filter name

\b
PARAMETERS
──────────
  :name, {name} and {{name}} in the path, data, header values and query
  values are replaced with --parameter values. $VAR and ${VAR} are then
  expanded from the environment and the --env-file file. A header or
  query that is only an unresolved parameter is not sent.

\b
ALIASES
───────
  rest service alias add me get /user --description "who am I"
  rest me

  Parameters used by an alias become flags: an alias on /users/:user
  accepts --user octocat.

\b
FEEDBACK
────────
  rest service set api --set-parameter token=access_token
  rest post /login '{"user": "ann"}'

  stores the response's access_token as the service's token parameter.
  Address a path or method with paths./login.token or paths./login.post.token.

\b
EXIT CODES
──────────
  0 on 2xx, 1 on errors, otherwise the status class (404 -> 4, 503 -> 5).
"""


class ClickHandler(logging.Handler):
    """Route log records through click so they land on the current stderr."""

    def emit(self, record):
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(verbose: int) -> None:
    root = logging.getLogger("restcli")
    for handler in list(root.handlers):
        if isinstance(handler, ClickHandler):
            root.removeHandler(handler)
    handler = ClickHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root.addHandler(handler)
    if verbose >= 2:
        root.setLevel(logging.DEBUG)
    elif verbose == 1:
        root.setLevel(logging.INFO)
    else:
        root.setLevel(logging.WARNING)


class AppContext:
    def __init__(self, verbose: int, db_path: Path, env: dict[str, str]):
        self.verbose = verbose
        self.db_path = db_path
        self.env = env
        self.store = Store(db_path)


# ── Option helpers ───────────────────────────────────────────────────────


def _pairs(ctx, param, values):
    try:
        return core.parse_pairs(values)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _code(ctx, param, value):
    """Hook code given inline, or @FILE to read it from a file."""
    if value and value.startswith("@"):
        try:
            return Path(value[1:]).read_text()
        except OSError as e:
            raise click.BadParameter(f"cannot read {value[1:]}: {e}") from e
    return value


def settings_options(hidden: bool = False):
    """Attach one option per Settings field. Unused options stay None."""
    options = [
        click.option("--scheme", default=None, hidden=hidden, help="Scheme, e.g. http or https."),
        click.option("--host", default=None, hidden=hidden, help="Hostname of the service."),
        click.option("--port", type=int, default=None, hidden=hidden, help="Port of the service."),
        click.option("--base-path", default=None, hidden=hidden, help="Path prefix for every request."),
        click.option("--username", default=None, hidden=hidden, help="Basic auth username."),
        click.option("--password", default=None, hidden=hidden, help="Basic auth password."),
        click.option(
            "--header",
            "headers",
            multiple=True,
            callback=_pairs,
            hidden=hidden,
            help="Header as NAME=VALUE. Repeatable.",
        ),
        click.option(
            "--parameter",
            "parameters",
            multiple=True,
            callback=_pairs,
            hidden=hidden,
            help="Parameter as NAME=VALUE. Repeatable.",
        ),
        click.option(
            "--query",
            "queries",
            multiple=True,
            callback=_pairs,
            hidden=hidden,
            help="Query parameter as NAME=VALUE. Repeatable.",
        ),
        click.option(
            "--pretty/--no-pretty",
            default=None,
            hidden=hidden,
            help="Pretty print JSON output.",
        ),
        click.option("--pretty-indent", default=None, hidden=hidden, help="Indent string for pretty output."),
        click.option("--filter", default=None, hidden=hidden, help="JMESPath expression applied to the response."),
        click.option(
            "--set-parameter",
            "set_parameters",
            multiple=True,
            callback=_pairs,
            hidden=hidden,
            help="Store a response value as a parameter: ADDRESS=EXPRESSION. Repeatable.",
        ),
        click.option(
            "--response-hook",
            default=None,
            callback=_code,
            hidden=hidden,
            help="Lua run on the response (or @FILE).",
        ),
        click.option(
            "--request-hook",
            default=None,
            callback=_code,
            hidden=hidden,
            help="Lua run on the request (or @FILE).",
        ),
        click.option(
            "--request-data-hook",
            default=None,
            callback=_code,
            hidden=hidden,
            help="Lua run on the request body (or @FILE).",
        ),
        click.option("--retries", type=int, default=None, hidden=hidden, help="Retries after the first attempt."),
        click.option(
            "--retry-delay",
            type=int,
            default=None,
            hidden=hidden,
            help="Base delay between attempts in milliseconds.",
        ),
        click.option(
            "--exponential-backoff/--no-exponential-backoff",
            default=None,
            hidden=hidden,
            help="Grow the delay exponentially between attempts.",
        ),
        click.option(
            "--jitter/--no-jitter",
            default=None,
            hidden=hidden,
            help="Randomise the delay between attempts.",
        ),
    ]

    def decorator(f):
        for option in reversed(options):
            f = option(f)
        return f

    return decorator


def request_options(hidden: bool = False):
    def decorator(f):
        f = settings_options(hidden)(f)
        f = click.option(
            "--no-queries",
            is_flag=True,
            default=False,
            hidden=hidden,
            help="Do not send stored queries.",
        )(f)
        f = click.option(
            "--no-headers",
            is_flag=True,
            default=False,
            hidden=hidden,
            help="Do not send stored headers.",
        )(f)
        f = click.option("--service", default=None, hidden=hidden, help="Service to use instead of the current one.")(f)
        return f

    return decorator


def settings_from_options(options: dict) -> Settings:
    """Pop the Settings fields out of a command's keyword arguments."""
    fields = {name: options.pop(name) for name in SCALAR_NAMES + MAP_NAMES if name in options}
    return Settings(**{k: (dict(v) if k in MAP_NAMES else v) for k, v in fields.items()})


def _method(ctx, param, value):
    if value is None:
        return None
    if value.lower() not in METHODS:
        raise click.BadParameter(f"must be one of {', '.join(METHODS)}")
    return value.lower()


def _fail(message) -> None:
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


# ── Alias commands ───────────────────────────────────────────────────────


class RestGroup(click.Group):
    """Top-level group that also exposes the current service's aliases."""

    def _aliases(self, ctx) -> list[dict]:
        path = core.resolve_db_path(ctx.params.get("db"))
        if not path.exists():
            return []
        try:
            with Store(path) as store:
                return services.current_aliases(store)
        except (RestError, sqlite3.Error) as e:
            logger.debug("not loading aliases: %s", e)
            return []

    def list_commands(self, ctx):
        names = super().list_commands(ctx)
        extra = sorted(a["name"] for a in self._aliases(ctx) if a["name"] not in self.commands)
        return names + extra

    def get_command(self, ctx, cmd_name):
        cmd = super().get_command(ctx, cmd_name)
        if cmd is not None:
            return cmd
        for alias in self._aliases(ctx):
            if alias["name"] == cmd_name:
                return alias_command(alias)
        return None


def alias_command(alias: dict) -> click.Command:
    """Build a command for a stored alias with one flag per parameter."""
    name = alias["name"]
    method = alias["method"] or "get"

    def callback(obj, data=None, **options):
        param_values = {}
        for dest, param in flags.items():
            value = options.pop(dest)
            if value:
                param_values[param] = value
        request = _request_from_options(options, method=method, path="", data=data or "")
        request.alias = name
        request.settings.parameters.update(param_values)
        _perform(obj, request)

    f = click.pass_obj(callback)
    f = request_options(hidden=True)(f)

    taken = {"--help"}
    for p in f.__click_params__:
        taken.update(getattr(p, "opts", []))
        taken.update(getattr(p, "secondary_opts", []))
    flags: dict[str, str] = {}
    for i, param in enumerate(alias["params"]):
        flag = f"--{param}"
        if flag in taken:
            logger.debug("alias %s: parameter %s clashes with an option, use --parameter", name, param)
            continue
        dest = f"alias_param_{i}"
        flags[dest] = param
        f = click.option(flag, dest, default=None, help=f"set :{param} parameter")(f)

    if method in DATA_METHODS:
        f = click.argument("data", required=False)(f)

    description = alias["description"] or f"{method.upper()} {alias['path']}"
    help_text = f"{description}\n\nAll normal request flags are available, but hidden to keep help relevant."
    return click.command(name, help=help_text, short_help=description)(f)


# ── Root ─────────────────────────────────────────────────────────────────


@click.group(
    cls=RestGroup,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.option("-v", "--verbose", count=True, help="Verbose output. Repeat for more (up to -vvv).")
@click.option(
    "--db",
    default=None,
    envvar="REST_DB",
    help="Config database path. Default: ~/.rest.db.",
)
@click.option(
    "--env-file",
    default=core.DEFAULT_ENV_FILE,
    help="Dotenv file used for $VAR expansion. Default: .env in CWD.",
)
@click.pass_context
def main(ctx, verbose, db, env_file):
    """Call stored HTTP services."""
    _configure_logging(verbose)
    app = AppContext(verbose, core.resolve_db_path(db), core.load_env(env_file))
    ctx.obj = app
    ctx.call_on_close(app.store.close)


@main.command()
def version():
    """Show the version."""
    click.echo(f"rest {core.VERSION}")


# ── Requests ─────────────────────────────────────────────────────────────


def _request_from_options(options: dict, method: str, path: str, data: str) -> Request:
    service_name = options.pop("service", None)
    no_headers = options.pop("no_headers", False)
    no_queries = options.pop("no_queries", False)
    return Request(
        service=service_name,
        method=method,
        path=path,
        data=data,
        settings=settings_from_options(options),
        no_headers=no_headers,
        no_queries=no_queries,
    )


def _perform(app: AppContext, request: Request) -> None:
    hooks = HookEngine()
    try:
        with app.store.view() as root:
            if request.alias:
                load_alias(root, request)
            settings = resolve_settings(root, request)

        prepared = prepare_request(request, settings, app.env, hooks)
        resp, err = send(prepared, RetryPolicy.from_settings(settings), verbose=app.verbose)
        if resp is None:
            _fail(err)

        result = load_response(resp, settings, hooks, app.verbose)
        click.echo(str(result))
        set_parameters(app.store, result.raw, settings.set_parameters)
    except RestError as e:
        _fail(e)
    except sqlite3.Error as e:
        _fail(f"database error: {e}")

    sys.exit(result.exit_code)


def _make_request_command(method: str) -> click.Command:
    def callback(obj, path, data=None, **options):
        request = _request_from_options(options, method=method, path=path, data=data or "")
        _perform(obj, request)

    f = click.pass_obj(callback)
    f = request_options()(f)
    if method in DATA_METHODS:
        f = click.argument("data", required=False)(f)
    f = click.argument("path")(f)
    return click.command(method, help=f"Perform a {method.upper()} request.")(f)


for _m in METHODS:
    main.add_command(_make_request_command(_m))


# ── Services ─────────────────────────────────────────────────────────────


@main.group("service")
def service_group():
    """Create, change and inspect services."""


@service_group.command("init")
@click.argument("name")
@settings_options()
@click.pass_obj
def service_init(app, name, **options):
    """Create a service. The first service becomes current."""
    try:
        made_current = services.init_service(app.store, name, settings_from_options(options))
    except RestError as e:
        _fail(e)
    click.echo(f"initialised service {name}" + (" (current)" if made_current else ""))


@service_group.command("remove")
@click.argument("name")
@click.pass_obj
def service_remove(app, name):
    """Delete a service and everything stored under it."""
    try:
        services.remove_service(app.store, name)
    except RestError as e:
        _fail(e)
    click.echo(f"removed service {name}")


@service_group.command("set")
@click.argument("name")
@click.argument("path", required=False)
@click.argument("method", required=False, callback=_method)
@settings_options()
@click.pass_obj
def service_set(app, name, path, method, **options):
    """Store settings for a service, or for one of its paths or methods."""
    try:
        services.set_settings(app.store, name, settings_from_options(options), path=path, method=method)
    except RestError as e:
        _fail(e)


@service_group.command("unset")
@click.argument("name")
@click.argument("path", required=False)
@click.argument("method", required=False, callback=_method)
@click.option("--all", "all_", is_flag=True, default=False, help="Delete the whole service, path or method.")
@click.option("--scheme", is_flag=True, help="Unset scheme.")
@click.option("--host", is_flag=True, help="Unset host.")
@click.option("--port", is_flag=True, help="Unset port.")
@click.option("--base-path", is_flag=True, help="Unset base path.")
@click.option("--username", is_flag=True, help="Unset username.")
@click.option("--password", is_flag=True, help="Unset password.")
@click.option("--header", "headers", multiple=True, metavar="NAME", help="Unset a header. Repeatable.")
@click.option("--parameter", "parameters", multiple=True, metavar="NAME", help="Unset a parameter. Repeatable.")
@click.option("--query", "queries", multiple=True, metavar="NAME", help="Unset a query. Repeatable.")
@click.option("--pretty", is_flag=True, help="Unset pretty.")
@click.option("--pretty-indent", is_flag=True, help="Unset pretty indent.")
@click.option("--filter", is_flag=True, help="Unset filter.")
@click.option(
    "--set-parameter",
    "set_parameters",
    multiple=True,
    metavar="ADDRESS",
    help="Unset a set-parameter rule. Repeatable.",
)
@click.option("--response-hook", is_flag=True, help="Unset response hook.")
@click.option("--request-hook", is_flag=True, help="Unset request hook.")
@click.option("--request-data-hook", is_flag=True, help="Unset request data hook.")
@click.option("--retries", is_flag=True, help="Unset retries.")
@click.option("--retry-delay", is_flag=True, help="Unset retry delay.")
@click.option("--exponential-backoff", is_flag=True, help="Unset exponential backoff.")
@click.option("--jitter", is_flag=True, help="Unset jitter.")
@click.pass_obj
def service_unset(app, name, path, method, all_, **options):
    """Remove stored settings from a service, path or method."""
    chosen = selector(
        *[n for n in SCALAR_NAMES if options.get(n)],
        **{n: list(options.get(n) or ()) for n in MAP_NAMES},
    )
    try:
        services.unset_settings(app.store, name, chosen, path=path, method=method, all_=all_)
    except RestError as e:
        _fail(e)


@service_group.command("use")
@click.argument("name")
@click.pass_obj
def service_use(app, name):
    """Make a service the current one."""
    try:
        services.use_service(app.store, name)
    except RestError as e:
        _fail(e)
    click.echo(f"using service {name}")


@service_group.command("list")
@click.pass_obj
def service_list(app):
    """List services; the current one is marked with *."""
    try:
        names, current = services.list_services(app.store)
    except RestError as e:
        _fail(e)
    if not names:
        click.echo("No services. Run 'rest service init NAME' to create one.")
        return
    for name in names:
        marker = "*" if name == current else " "
        click.echo(f"{marker} {name}")


@service_group.command("config")
@click.argument("name", required=False)
@click.argument("key", required=False)
@click.pass_obj
def service_config(app, name, key):
    """Show stored configuration, for everything, a service, or one key."""
    try:
        tree = services.config_tree(app.store, name, key)
    except RestError as e:
        _fail(e)
    if isinstance(tree, str):
        click.echo(tree)
        return
    click.echo(yaml.safe_dump(tree, sort_keys=False, default_flow_style=False, allow_unicode=True).rstrip())


# ── Alias management ─────────────────────────────────────────────────────


@service_group.group("alias")
def alias_group():
    """Define named shortcuts for requests."""


@alias_group.command("add")
@click.argument("name")
@click.argument("method", required=False, callback=_method)
@click.argument("path", required=False)
@click.argument("data", required=False)
@click.option("--service", default=None, help="Service to add the alias to. Default: current.")
@click.option("--description", default=None, help="Short description shown in help.")
@settings_options()
@click.pass_obj
def alias_add(app, name, method, path, data, service, description, **options):
    """Create or update an alias. New aliases need METHOD and PATH."""
    if name in main.commands:
        _fail(f"{name} is a built-in command and cannot be an alias")
    try:
        services.add_alias(
            app.store,
            name,
            service=service,
            method=method,
            path=path,
            data=data,
            description=description,
            settings=settings_from_options(options),
        )
    except RestError as e:
        _fail(e)


@alias_group.command("remove")
@click.argument("name")
@click.option("--service", default=None, help="Service owning the alias. Default: current.")
@click.pass_obj
def alias_remove(app, name, service):
    """Delete an alias."""
    try:
        services.remove_alias(app.store, name, service)
    except RestError as e:
        _fail(e)


@alias_group.command("list")
@click.option("--service", default=None, help="Service to list. Default: current.")
@click.pass_obj
def alias_list(app, service):
    """List aliases with their method, path and parameters."""
    try:
        aliases = services.list_aliases(app.store, service)
    except RestError as e:
        _fail(e)
    if not aliases:
        click.echo("No aliases defined.")
        return
    for alias in aliases:
        label = f"  {alias['name']} — {alias['description']}" if alias["description"] else f"  {alias['name']}"
        click.echo(label)
        detail = f"    {alias['method'].upper()} {alias['path']}"
        if alias["params"]:
            detail += f" | params: {', '.join(alias['params'])}"
        click.echo(detail)

