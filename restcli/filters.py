"""rest filters - turn a response into display output and feed values back.

Display priority: filter expression, then pretty printing, then the raw
body. Set-parameter rules run against the raw body and write their results
into the store for later requests.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import jmespath
import requests
from jmespath.exceptions import JMESPathError

from restcli.errors import FilterError, InvalidPath
from restcli.hooks import HookEngine
from restcli.resolve import current_service, describe, navigate, parse_address
from restcli.settings import Settings
from restcli.store import Store

logger = logging.getLogger(__name__)


class Response:
    """The processed result of one request."""

    def __init__(self):
        self.status_code: int = 0
        self.reason: str = ""
        self.headers: dict[str, str] = {}
        self.raw: bytes = b""  # body as received
        self.body: bytes = b""  # body after the response hook
        self.display: bytes = b""
        self.ran_hook: bool = False

    def __str__(self) -> str:
        return self.display.decode("utf-8", errors="replace")

    @property
    def exit_code(self) -> int:
        return exit_code(self.status_code)


def exit_code(status: int) -> int:
    """0 for 2xx, otherwise the hundreds digit of the status."""
    if 200 <= status < 300:
        return 0
    return status // 100


def _parse(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def search(data: bytes, expression: str) -> Any:
    """Apply a JMESPath expression to a JSON body; None means no result."""
    try:
        return jmespath.search(expression, _parse(data))
    except (ValueError, JMESPathError) as e:
        raise FilterError(expression, e) from e


def render(value: Any, pretty: bool = False, indent: str = "\t") -> bytes:
    """Serialise a filter result for display.

    Pretty output strips the quotes from a bare string so the value can be
    used directly as a shell argument.
    """
    if value is None:
        return b""
    if pretty:
        text = json.dumps(value, indent=indent, ensure_ascii=False)
        if isinstance(value, str):
            text = text[1:-1]
        return text.encode("utf-8")
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def prettify(data: bytes, indent: str = "\t") -> bytes:
    if not data.strip():
        return data
    try:
        parsed = _parse(data)
    except ValueError:
        logger.warning("response is not JSON, showing it unformatted")
        return data
    return json.dumps(parsed, indent=indent, ensure_ascii=False).encode("utf-8")


def extracted_text(value: Any) -> str:
    """Text stored for a set-parameter result: strings as is, the rest as JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def dump_response(resp: requests.Response, body: bool = False) -> str:
    lines = [f"{resp.status_code} {resp.reason or ''}".rstrip()]
    lines.extend(f"{k}: {v}" for k, v in resp.headers.items())
    if body and resp.content:
        lines.append("")
        lines.append(resp.content.decode("utf-8", errors="replace"))
    return "\n".join(lines)


def load_response(
    resp: requests.Response,
    settings: Settings,
    hooks: HookEngine | None = None,
    verbose: int = 0,
) -> Response:
    """Read the body once, run the response hook and build the display."""
    result = Response()
    try:
        result.status_code = resp.status_code
        result.reason = resp.reason or ""
        result.headers = dict(resp.headers)
        result.raw = resp.content or b""
    finally:
        resp.close()

    if verbose == 1:
        logger.info("%s %s", result.status_code, result.reason)
    elif verbose >= 2:
        logger.debug("response:\n%s", dump_response(resp, body=verbose >= 3))

    result.body = result.raw
    if settings.response_hook:
        hooks = hooks or HookEngine()
        result.ran_hook = True
        result.body = hooks.response(
            settings.response_hook,
            {
                "status": result.status_code,
                "headers": {k: [v] for k, v in result.headers.items()},
                "body": result.raw.decode("utf-8", errors="replace"),
            },
        ).encode("utf-8")

    result.display = display(result, settings)
    return result


def display(result: Response, settings: Settings) -> bytes:
    pretty = bool(settings.pretty)
    indent = settings.pretty_indent if settings.pretty_indent is not None else "\t"
    if settings.filter:
        try:
            value = search(result.body, settings.filter)
        except FilterError as e:
            if result.ran_hook:
                raise FilterError(settings.filter, f"{e.err} (body was modified by the response hook)") from e
            raise
        return render(value, pretty, indent)
    if pretty:
        return prettify(result.body, indent)
    return result.body


def set_parameters(store: Store, raw: bytes, rules: dict[str, str]) -> None:
    """Write each rule's result into the store, relative to the current service.

    A rule with no result removes the parameter; an empty body has no
    result for any rule. All rules are applied in one transaction; an error
    leaves the store untouched.
    """
    if not rules:
        return
    with store.update() as root:
        service = current_service(root)
        for address, expression in rules.items():
            value = search(raw, expression) if raw.strip() else None
            location, name = parse_address(service, address)
            bucket = navigate(root, location)
            if bucket is None:
                raise InvalidPath(describe(location))

            if value is None:
                params = bucket.bucket("parameters")
                if params is not None:
                    params.delete(name)
                logger.info("unset parameter %s at %s", name, describe(location))
                continue

            text = extracted_text(value)
            bucket.create_bucket_if_not_exists("parameters").put(name, text.encode("utf-8"))
            logger.info("set parameter %s at %s", name, describe(location))
