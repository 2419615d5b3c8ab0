"""rest core - environment loading and parameter substitution."""

import os
import re
from collections.abc import Callable
from pathlib import Path

from dotenv import dotenv_values

VERSION = "0.3.0"

DEFAULT_DB = Path.home() / ".rest.db"
DEFAULT_ENV_FILE = ".env"

_NAME = r"[A-Za-z_][A-Za-z0-9_\-]*"

# {{name}} must be tried before {name} so the outer braces go too
PARAM_RE = re.compile(r"\{\{(" + _NAME + r")\}\}|\{(" + _NAME + r")\}|:(" + _NAME + r")")
BARE_PARAM_RE = re.compile(r"^(?:\{\{" + _NAME + r"\}\}|\{" + _NAME + r"\}|:" + _NAME + r")$")

_ENV_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def resolve_db_path(db_file: str | None) -> Path:
    """Return the database path to use: explicit flag, else ~/.rest.db."""
    if db_file:
        return Path(db_file).expanduser()
    return DEFAULT_DB


def load_env(env_file: str | None, base_dir: str = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    Returns combined dict with .env values taking precedence over os.environ
    for explicit vars, but os.environ available as fallback.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: str | None, env: dict[str, str]) -> str | None:
    """Resolve $VAR and ${VAR} references in a string value.

    Unknown variables are left as written.
    """
    if value is None:
        return None

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return _ENV_RE.sub(_replace, value)


def param_replacer(
    parameters: dict[str, str],
    env: dict[str, str] | None = None,
) -> Callable[[str], str]:
    """Build a function that substitutes bound parameters then env vars.

    Recognises :name, {name} and {{name}}. Replacement is literal; a
    reference to an unbound name is kept as is.
    """
    env = env if env is not None else dict(os.environ)
    if parameters:
        names = sorted(parameters, key=len, reverse=True)
        alternation = "|".join(re.escape(n) for n in names)
        pattern = re.compile(
            r"\{\{(" + alternation + r")\}\}|\{(" + alternation + r")\}|:(" + alternation + r")",
        )
    else:
        pattern = None

    def _replace(m: re.Match) -> str:
        name = m.group(1) or m.group(2) or m.group(3)
        return str(parameters[name])

    def replace(text: str) -> str:
        if not text:
            return text
        if pattern is not None:
            text = pattern.sub(_replace, text)
        return resolve_value(text, env)

    return replace


def is_bare_param(value: str) -> bool:
    """True if value is nothing but a single parameter reference."""
    return bool(BARE_PARAM_RE.match(value))


def substitute_map(
    values: dict[str, str],
    replace: Callable[[str], str],
) -> dict[str, str]:
    """Apply replace to every value of a header or query map."""
    return {k: replace(v) for k, v in values.items()}


def _unresolved(original: str, value: str) -> bool:
    return is_bare_param(original) and (value == "" or is_bare_param(value))


def drop_unresolved(original: dict[str, str], substituted: dict) -> dict:
    """Drop entries that were a bare parameter reference and did not resolve.

    A value counts as unresolved when it is empty or still a bare reference
    after substitution. Keys missing from original (added by a hook) are
    judged by their substituted value alone. List values, as a request hook
    may return for queries, are filtered item by item.
    """
    kept = {}
    for key, value in substituted.items():
        if isinstance(value, list):
            items = [v for v in value if not _unresolved(original.get(key, v), v)]
            if items:
                kept[key] = items
            continue
        if _unresolved(original.get(key, value), value):
            continue
        kept[key] = value
    return kept


def find_params(text: str | None) -> set[str]:
    """Return the parameter names referenced in text, in any syntax."""
    if not text:
        return set()
    return {m.group(1) or m.group(2) or m.group(3) for m in PARAM_RE.finditer(text)}


def parse_pairs(pairs: tuple[str, ...] | list[str], sep: str = "=") -> dict[str, str]:
    """Parse repeated KEY=VALUE options into a dict; later keys win."""
    result = {}
    for pair in pairs:
        if sep not in pair:
            raise ValueError(f"expected KEY{sep}VALUE, got {pair!r}")
        k, v = pair.split(sep, 1)
        result[k.strip()] = v
    return result
