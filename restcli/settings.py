"""rest settings - the layered configuration value and its storage mapping.

A Settings value is the payload at every level of a service: the service
itself, a path, a method under a path, and an alias. Scalars are None when
unset, maps are merged key by key.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from restcli.errors import NoDestination
from restcli.store import Bucket

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    scheme: str | None = None
    host: str | None = None
    port: int | None = None
    base_path: str | None = None
    username: str | None = None
    password: str | None = None

    headers: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)
    queries: dict[str, str] = field(default_factory=dict)

    pretty: bool | None = None
    pretty_indent: str | None = None
    filter: str | None = None
    response_hook: str | None = None
    set_parameters: dict[str, str] = field(default_factory=dict)

    request_hook: str | None = None
    request_data_hook: str | None = None

    retries: int | None = None
    retry_delay: int | None = None  # milliseconds
    exponential_backoff: bool | None = None
    jitter: bool | None = None


# (attribute, bucket path below the settings root, key)
SCALARS: list[tuple[str, tuple[str, ...], str, type]] = [
    ("scheme", (), "scheme", str),
    ("host", (), "host", str),
    ("port", (), "port", int),
    ("base_path", (), "base-path", str),
    ("username", (), "username", str),
    ("password", (), "password", str),
    ("pretty", ("output",), "pretty", bool),
    ("pretty_indent", ("output",), "indent", str),
    ("filter", ("output",), "filter", str),
    ("response_hook", ("output",), "response-hook", str),
    ("request_hook", ("request",), "hook", str),
    ("request_data_hook", ("request",), "data-hook", str),
    ("retries", ("retry",), "retries", int),
    ("retry_delay", ("retry",), "delay", int),
    ("exponential_backoff", ("retry",), "exponential-backoff", bool),
    ("jitter", ("retry",), "jitter", bool),
]

MAPS: list[tuple[str, tuple[str, ...]]] = [
    ("headers", ("headers",)),
    ("parameters", ("parameters",)),
    ("queries", ("queries",)),
    ("set_parameters", ("output", "set-filter-parameters")),
]

SCALAR_NAMES = [name for name, _, _, _ in SCALARS]
MAP_NAMES = [name for name, _ in MAPS]

DEFAULT_SETTINGS = Settings(
    scheme="https",
    host="localhost",
    port=443,
    pretty_indent="\t",
    retries=2,
    retry_delay=100,
    exponential_backoff=True,
    jitter=True,
)


def merge(base: Settings, overlay: Settings) -> Settings:
    """Return base with overlay applied on top.

    Overlay scalars replace base scalars only when set; maps are unioned
    with overlay keys winning. Neither argument is modified.
    """
    result = Settings()
    for name in SCALAR_NAMES:
        value = getattr(overlay, name)
        setattr(result, name, value if value is not None else getattr(base, name))
    for name in MAP_NAMES:
        setattr(result, name, {**getattr(base, name), **getattr(overlay, name)})
    return result


def merge_all(*layers: Settings) -> Settings:
    """Fold layers from lowest to highest precedence."""
    result = Settings()
    for layer in layers:
        result = merge(result, layer)
    return result


def _encode(value, kind: type) -> bytes:
    if kind is bool:
        return b"true" if value else b"false"
    return str(value).encode("utf-8")


def _decode(raw: bytes, kind: type, key: str):
    text = raw.decode("utf-8")
    if kind is bool:
        lowered = text.lower()
        if lowered in ("true", "1", "t", "yes"):
            return True
        if lowered in ("false", "0", "f", "no"):
            return False
        logger.warning("ignoring unreadable boolean %s=%r", key, text)
        return None
    if kind is int:
        try:
            return int(text)
        except ValueError:
            logger.warning("ignoring unreadable integer %s=%r", key, text)
            return None
    return text


def _sub(bucket: Bucket, path: tuple[str, ...], create: bool) -> Bucket | None:
    for name in path:
        if bucket is None:
            return None
        bucket = bucket.create_bucket_if_not_exists(name) if create else bucket.bucket(name)
    return bucket


def write(bucket: Bucket | None, settings: Settings) -> None:
    """Persist the set fields of settings into bucket.

    Unset scalars are skipped so previously stored values survive.
    """
    if bucket is None:
        raise NoDestination()
    for name, path, key, kind in SCALARS:
        value = getattr(settings, name)
        if value is None:
            continue
        _sub(bucket, path, create=True).put(key, _encode(value, kind))
    for name, path in MAPS:
        entries = getattr(settings, name)
        if not entries:
            continue
        target = _sub(bucket, path, create=True)
        for k, v in entries.items():
            target.put(k, str(v).encode("utf-8"))


def read(bucket: Bucket | None) -> Settings:
    """Load a Settings value from bucket; missing keys come back unset."""
    settings = Settings()
    if bucket is None:
        return settings
    for name, path, key, kind in SCALARS:
        sub = _sub(bucket, path, create=False)
        if sub is None:
            continue
        raw = sub.get(key)
        if raw is not None:
            setattr(settings, name, _decode(raw, kind, key))
    for name, path in MAPS:
        sub = _sub(bucket, path, create=False)
        if sub is None:
            continue
        setattr(
            settings,
            name,
            {k: v.decode("utf-8") for k, v in sub.items() if v is not None},
        )
    return settings


def unset(bucket: Bucket | None, selector: Settings) -> None:
    """Delete every stored field that is set in selector.

    Map fields select by key; the selector's map values are ignored.
    """
    if bucket is None:
        raise NoDestination()
    for name, path, key, _ in SCALARS:
        if getattr(selector, name) is None:
            continue
        sub = _sub(bucket, path, create=False)
        if sub is not None:
            sub.delete(key)
    for name, path in MAPS:
        keys = getattr(selector, name)
        if not keys:
            continue
        sub = _sub(bucket, path, create=False)
        if sub is None:
            continue
        for k in keys:
            sub.delete(k)


def selector(*names: str, **maps: list[str]) -> Settings:
    """Build a Settings used only to pick fields for unset().

    selector("host", headers=["Accept"]) selects the host scalar and the
    Accept header.
    """
    s = Settings()
    for name in names:
        if name not in SCALAR_NAMES:
            raise ValueError(f"unknown setting {name!r}")
        s = dataclasses.replace(s, **{name: True})
    for name, keys in maps.items():
        if name not in MAP_NAMES:
            raise ValueError(f"unknown setting map {name!r}")
        setattr(s, name, {k: "" for k in keys})
    return s
