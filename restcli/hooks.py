"""rest hooks - run user Lua snippets against request and response data.

Each hook runs in a fresh LuaRuntime without the python bridge, os, io
or module loading, and Python objects handed to Lua expose no attributes.
The hook reads and rewrites a single global (request, response or data)
and a small json helper is available:

    response.body = json.encode(json.decode(response.body).items)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from lupa import LuaError, LuaRuntime, lua_type

from restcli.errors import HookError

logger = logging.getLogger(__name__)

_BLOCKED_GLOBALS = ("python", "os", "io", "debug", "package", "require", "dofile", "loadfile", "load")


def _to_python(value: Any) -> Any:
    """Convert Lua tables into dicts or lists, recursively."""
    if lua_type(value) != "table":
        return value
    items = list(value.items())
    keys = [k for k, _ in items]
    if keys and all(isinstance(k, int) for k in keys) and sorted(keys) == list(range(1, len(keys) + 1)):
        return [_to_python(v) for _, v in sorted(items, key=lambda kv: kv[0])]
    return {str(k): _to_python(v) for k, v in items}


def _deny_attributes(obj, attr_name, is_setting):
    raise AttributeError(f"access to {attr_name!r} is not allowed in hooks")


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class HookEngine:
    """Runs hook code; one fresh runtime per call so nothing leaks between hooks."""

    def _runtime(self) -> LuaRuntime:
        lua = LuaRuntime(
            unpack_returned_tuples=True,
            register_eval=False,
            register_builtins=False,
            attribute_filter=_deny_attributes,
        )
        g = lua.globals()
        for name in _BLOCKED_GLOBALS:
            g[name] = None

        def decode(text):
            return lua.table_from(json.loads(text), recursive=True)

        def encode(value):
            return json.dumps(_to_python(value), separators=(",", ":"), ensure_ascii=False)

        g["json"] = lua.table_from({"encode": encode, "decode": decode})
        return lua

    def run(self, code: str, name: str, value: Any, stage: str) -> Any:
        """Expose value as global name, run code and return the global afterwards."""
        lua = self._runtime()
        g = lua.globals()
        if isinstance(value, dict | list):
            g[name] = lua.table_from(value, recursive=True)
        else:
            g[name] = value
        logger.debug("running %s hook", stage)
        try:
            lua.execute(code)
        except (LuaError, ValueError, AttributeError) as e:
            raise HookError(f"perform {stage} hook code", e) from e
        return _to_python(g[name])

    # ── hook sites ───────────────────────────────────────────────────────

    def request_data(self, code: str, data: str) -> str:
        result = self.run(code, "data", data, "request data")
        if isinstance(result, dict | list):
            raise HookError("returning request data", "expected data to be a string")
        return _to_text(result)

    def request(self, code: str, request: dict) -> dict:
        """Run the request hook over {path, data, headers, queries}."""
        result = self.run(code, "request", request, "request")
        if not isinstance(result, dict):
            raise HookError("returning request", "expected request to be a table")
        headers = result.get("headers", {})
        queries = result.get("queries", {})
        if not isinstance(headers, dict):
            raise HookError("returning request", "expected a table in headers")
        if not isinstance(queries, dict):
            raise HookError("returning request", "expected a table in queries")
        return {
            "path": _to_text(result.get("path")),
            "data": _to_text(result.get("data")),
            "headers": {k: _to_text(v) for k, v in headers.items()},
            "queries": {
                k: [_to_text(i) for i in v] if isinstance(v, list) else _to_text(v)
                for k, v in queries.items()
            },
        }

    def response(self, code: str, response: dict) -> str:
        """Run the response hook over {status, headers, body}; only body is kept."""
        result = self.run(code, "response", response, "response")
        if not isinstance(result, dict):
            raise HookError("returning response", "expected response to be a table")
        return _to_text(result.get("body"))
