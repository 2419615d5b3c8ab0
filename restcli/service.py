"""rest service - create, change and inspect stored services and aliases."""

from __future__ import annotations

import logging

from restcli import core
from restcli import settings as settings_mod
from restcli.errors import InitDB, InvalidPath, NoAlias, NoAliases, NoSuchService, ServiceExists
from restcli.resolve import (
    AliasStep,
    MethodStep,
    PathStep,
    ServiceStep,
    current_service,
    navigate,
    service_bucket,
)
from restcli.settings import DEFAULT_SETTINGS, Settings
from restcli.store import Bucket, Store

logger = logging.getLogger(__name__)


def init_service(store: Store, name: str, settings: Settings) -> bool:
    """Create a service seeded with the defaults under settings.

    The first service created becomes the current one. Returns True when
    it was made current.
    """
    with store.update() as root:
        services = root.create_bucket_if_not_exists("services")
        if services.bucket(name) is not None:
            raise ServiceExists(name)
        bucket = services.create_bucket_if_not_exists(name)
        settings_mod.write(bucket, settings_mod.merge(DEFAULT_SETTINGS, settings))

        info = root.create_bucket_if_not_exists("info")
        info.put("version", core.VERSION.encode())
        if info.get("current") is None:
            info.put("current", name.encode())
            logger.info("service %s is now current", name)
            return True
    return False


def remove_service(store: Store, name: str) -> None:
    with store.update() as root:
        services = root.bucket("services")
        if services is None or not services.delete_bucket(name):
            raise NoSuchService(name)
        info = root.bucket("info")
        if info is not None and info.get("current") == name.encode():
            info.delete("current")
            logger.info("removed current service %s, no service is current now", name)


def use_service(store: Store, name: str) -> None:
    with store.update() as root:
        services = root.bucket("services")
        if services is None:
            raise InitDB()
        if services.bucket(name) is None:
            raise NoSuchService(name)
        root.create_bucket_if_not_exists("info").put("current", name.encode())


def list_services(store: Store) -> tuple[list[str], str | None]:
    """Return (service names, current service name or None)."""
    with store.view() as root:
        services = root.bucket("services")
        names = services.buckets() if services is not None else []
        info = root.bucket("info")
        current = info.get("current") if info is not None else None
    return names, current.decode("utf-8") if current else None


def _target(root: Bucket, service: str, path: str | None, method: str | None, create: bool) -> Bucket:
    """Return the service, path or method bucket for a set/unset call."""
    _, bucket = service_bucket(root, service)
    if not path:
        return bucket
    location = (ServiceStep(service), PathStep(path))
    if method:
        location += (MethodStep(method),)
    target = navigate(root, location, create=create)
    if target is None:
        raise InvalidPath(path if not method else f"{path} {method}")
    return target


def set_settings(
    store: Store,
    service: str,
    settings: Settings,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Write settings at service, path or method level.

    Path and method buckets are created on demand; the service must exist.
    """
    with store.update() as root:
        settings_mod.write(_target(root, service, path, method, create=True), settings)


def unset_settings(
    store: Store,
    service: str,
    selector: Settings,
    path: str | None = None,
    method: str | None = None,
    all_: bool = False,
) -> None:
    """Delete the selected fields, or the whole bucket when all_ is set."""
    with store.update() as root:
        if all_:
            _delete_level(root, service, path, method)
            return
        settings_mod.unset(_target(root, service, path, method, create=False), selector)


def _delete_level(root: Bucket, service: str, path: str | None, method: str | None) -> None:
    if not path:
        services = root.bucket("services")
        if services is None or not services.delete_bucket(service):
            raise NoSuchService(service)
        info = root.bucket("info")
        if info is not None and info.get("current") == service.encode():
            info.delete("current")
        return
    if method:
        parent = _target(root, service, path, None, create=False)
        if not parent.delete_bucket(method.lower()):
            raise InvalidPath(f"{path} {method}")
        return
    _, bucket = service_bucket(root, service)
    paths = bucket.bucket("paths")
    if paths is None or not paths.delete_bucket(path):
        raise InvalidPath(path)


def config_tree(store: Store, service: str | None = None, key: str | None = None):
    """Return stored configuration as nested dicts, or a single value.

    Without a service the info and services trees are returned. With a key
    the named value or sub-tree of the service is returned.
    """
    with store.view() as root:
        if not service:
            info = root.bucket("info")
            services = root.bucket("services")
            return {
                "info": info.to_dict() if info is not None else {},
                "services": services.to_dict() if services is not None else {},
            }
        _, bucket = service_bucket(root, service)
        if not key:
            return bucket.to_dict()
        value = bucket.get(key)
        if value is not None:
            return value.decode("utf-8")
        sub = bucket.bucket(key)
        if sub is None:
            raise InvalidPath(f"services.{service}.{key}")
        return sub.to_dict()


# ── Aliases ──────────────────────────────────────────────────────────────


def add_alias(
    store: Store,
    name: str,
    service: str | None = None,
    method: str | None = None,
    path: str | None = None,
    data: str | None = None,
    description: str | None = None,
    settings: Settings | None = None,
) -> None:
    """Create or update an alias.

    A new alias needs both method and path; updates may leave them out.
    """
    with store.update() as root:
        service, _ = service_bucket(root, service)
        alias = navigate(root, (ServiceStep(service), AliasStep(name)), create=True)

        if alias.get("method") is None and not method:
            raise NoAlias(name)
        if alias.get("path") is None and not path:
            raise NoAlias(name)
        if method:
            alias.put("method", method.lower().encode())
        if path:
            alias.put("path", path.encode())
        if description:
            alias.put("description", description.encode())
        if data:
            alias.put("data", data.encode())
        if settings is not None:
            settings_mod.write(alias, settings)


def remove_alias(store: Store, name: str, service: str | None = None) -> None:
    with store.update() as root:
        _, bucket = service_bucket(root, service)
        aliases = bucket.bucket("aliases")
        if aliases is None:
            raise NoAliases()
        if not aliases.delete_bucket(name):
            raise NoAlias(name)


def list_aliases(store: Store, service: str | None = None) -> list[dict]:
    """Return alias summaries (name, method, path, description, params)."""
    with store.view() as root:
        _, bucket = service_bucket(root, service)
        aliases = bucket.bucket("aliases")
        if aliases is None:
            return []
        return [describe_alias(aliases.bucket(name)) for name in aliases.buckets()]


def current_aliases(store: Store) -> list[dict]:
    """Aliases of the current service, or [] when nothing is set up yet."""
    with store.view() as root:
        info = root.bucket("info")
        if info is None or info.get("current") is None:
            return []
        _, bucket = service_bucket(root, current_service(root))
        aliases = bucket.bucket("aliases")
        if aliases is None:
            return []
        return [describe_alias(aliases.bucket(name)) for name in aliases.buckets()]


def describe_alias(bucket: Bucket) -> dict:
    def text(key: str) -> str:
        value = bucket.get(key)
        return value.decode("utf-8") if value is not None else ""

    return {
        "name": bucket.name,
        "method": text("method"),
        "path": text("path"),
        "data": text("data"),
        "description": text("description"),
        "params": sorted(alias_params(bucket)),
    }


def alias_params(bucket: Bucket) -> set[str]:
    """Collect parameter names used by an alias's path, headers, queries and data."""
    params = core.find_params((bucket.get("path") or b"").decode("utf-8"))
    params |= core.find_params((bucket.get("data") or b"").decode("utf-8"))
    for sub in ("headers", "queries"):
        values = bucket.bucket(sub)
        if values is None:
            continue
        for _, value in values.items():
            if value is not None:
                params |= core.find_params(value.decode("utf-8"))
    return params
