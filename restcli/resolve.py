"""rest resolve - find the stored settings layers that apply to a request.

Buckets are addressed with typed steps instead of dotted strings:

    (ServiceStep("api"), PathStep("/users"), MethodStep("get"))

maps to services/api/paths//users/get in the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from restcli import settings as settings_mod
from restcli.errors import InvalidPath, MalformedDatabase, NoAlias, NoAliases, NoServiceSet, NoSuchService
from restcli.settings import DEFAULT_SETTINGS, Settings
from restcli.store import Bucket

logger = logging.getLogger(__name__)

METHODS = ("get", "post", "put", "delete", "patch", "head", "options")
DATA_METHODS = ("post", "put", "patch")


@dataclass(frozen=True)
class ServiceStep:
    name: str

    def keys(self) -> tuple[str, ...]:
        return ("services", self.name)


@dataclass(frozen=True)
class PathStep:
    name: str

    def keys(self) -> tuple[str, ...]:
        return ("paths", self.name)


@dataclass(frozen=True)
class MethodStep:
    name: str

    def keys(self) -> tuple[str, ...]:
        return (self.name.lower(),)


@dataclass(frozen=True)
class AliasStep:
    name: str

    def keys(self) -> tuple[str, ...]:
        return ("aliases", self.name)


Step = ServiceStep | PathStep | MethodStep | AliasStep
Location = tuple[Step, ...]


@dataclass
class Request:
    """One invocation: what to call and the command-line settings layer."""

    service: str | None = None
    method: str = "get"
    path: str = ""
    data: str = ""
    alias: str | None = None
    settings: Settings = field(default_factory=Settings)
    no_headers: bool = False
    no_queries: bool = False


def navigate(root: Bucket, steps: Sequence[Step], create: bool = False) -> Bucket | None:
    """Walk steps from the root bucket, optionally creating buckets."""
    bucket: Bucket | None = root
    for step in steps:
        for key in step.keys():
            if bucket is None:
                return None
            bucket = bucket.create_bucket_if_not_exists(key) if create else bucket.bucket(key)
    return bucket


def current_service(root: Bucket) -> str:
    info = root.bucket("info")
    if info is None:
        raise MalformedDatabase("info")
    current = info.get("current")
    if not current:
        raise NoServiceSet()
    return current.decode("utf-8")


def service_bucket(root: Bucket, name: str | None = None) -> tuple[str, Bucket]:
    """Return (name, bucket) for the named or current service."""
    if not name:
        name = current_service(root)
    services = root.bucket("services")
    bucket = services.bucket(name) if services is not None else None
    if bucket is None:
        raise NoSuchService(name)
    return name, bucket


def alias_bucket(service: Bucket, name: str) -> Bucket:
    aliases = service.bucket("aliases")
    if aliases is None:
        raise NoAliases()
    bucket = aliases.bucket(name)
    if bucket is None:
        raise NoAlias(name)
    return bucket


def match_path(service: Bucket, path: str) -> str | None:
    """Return the stored path key that applies to path.

    Matching is exact string equality. Template or prefix matching would
    hook in here.
    """
    paths = service.bucket("paths")
    if paths is None or paths.bucket(path) is None:
        return None
    return path


def locate(root: Bucket, request: Request) -> list[Location]:
    """Return the store locations for request, lowest precedence first.

    An alias replaces path and method matching entirely.
    """
    name, service = service_bucket(root, request.service)
    base: Location = (ServiceStep(name),)
    layers = [base]

    if request.alias:
        alias_bucket(service, request.alias)
        layers.append(base + (AliasStep(request.alias),))
        return layers

    path = match_path(service, request.path)
    if path is None:
        return layers
    path_location = base + (PathStep(path),)
    layers.append(path_location)

    method = request.method.lower()
    if navigate(root, path_location + (MethodStep(method),)) is not None:
        layers.append(path_location + (MethodStep(method),))
    return layers


def resolve_settings(root: Bucket, request: Request) -> Settings:
    """Merge defaults, every stored layer and the command-line settings."""
    layers = [DEFAULT_SETTINGS]
    for location in locate(root, request):
        logger.debug("applying settings from %s", describe(location))
        layers.append(settings_mod.read(navigate(root, location)))
    layers.append(request.settings)
    return settings_mod.merge_all(*layers)


def load_alias(root: Bucket, request: Request) -> Request:
    """Fill request method, path and data from its alias.

    Data given on the command line wins over the alias's stored data.
    """
    _, service = service_bucket(root, request.service)
    bucket = alias_bucket(service, request.alias)
    method = bucket.get("method")
    path = bucket.get("path")
    if method is None or path is None:
        raise NoAlias(request.alias)
    request.method = method.decode("utf-8")
    request.path = path.decode("utf-8")
    if not request.data:
        stored = bucket.get("data")
        request.data = stored.decode("utf-8") if stored else ""
    return request


def parse_address(service: str, address: str) -> tuple[Location, str]:
    """Split a dotted set-parameter address into (location, parameter).

    "token" targets the service, "paths./login.token" a path,
    "paths./login.post.token" a method and "aliases.login.token" an alias.
    A "parameters" segment right before the name is accepted and ignored.
    Paths containing dots cannot be addressed this way.
    """
    parts = address.split(".")
    name = parts[-1]
    prefix = parts[:-1]
    if prefix and prefix[-1] == "parameters":
        prefix = prefix[:-1]

    location: Location = (ServiceStep(service),)
    if not prefix:
        return location, name
    if prefix[0] == "paths" and len(prefix) in (2, 3):
        location += (PathStep(prefix[1]),)
        if len(prefix) == 3:
            location += (MethodStep(prefix[2]),)
        return location, name
    if prefix[0] == "aliases" and len(prefix) == 2:
        return location + (AliasStep(prefix[1]),), name
    raise InvalidPath(".".join(["services", service, *prefix]))


def describe(location: Location) -> str:
    return ".".join(key for step in location for key in step.keys())
