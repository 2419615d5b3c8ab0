"""rest errors - everything the CLI reports as a non-HTTP failure."""


class RestError(Exception):
    """Base class for configuration, resolution and processing failures."""


class StoreError(RestError):
    """The underlying database could not be read or written."""


class MalformedDatabase(RestError):
    def __init__(self, bucket: str):
        self.bucket = bucket
        super().__init__(f"malformed database no {bucket} bucket")


class InitDB(RestError):
    def __init__(self):
        super().__init__("no services, run service init")


class NoServiceSet(RestError):
    def __init__(self):
        super().__init__("no current service set")


class NoSuchService(RestError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"no service {name} found")


class ServiceExists(RestError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"service {name} already exists, use service set to change it")


class InvalidPath(RestError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"path {path} not valid")


class NoAlias(RestError):
    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"no alias {alias} defined")


class NoAliases(RestError):
    def __init__(self):
        super().__init__("no aliases defined")


class NoDestination(RestError):
    def __init__(self):
        super().__init__("no bucket to write to")


class HookError(RestError):
    """A script hook failed; context names the stage that failed."""

    def __init__(self, context: str, err: Exception | str):
        self.context = context
        self.err = err
        super().__init__(f"hook error during {context}: {err}")


class FilterError(RestError):
    def __init__(self, expression: str, err: Exception | str):
        self.expression = expression
        self.err = err
        super().__init__(f"filter {expression!r} failed: {err}")


class InvalidRequest(RestError):
    def __init__(self, url: str, err: Exception | str):
        self.url = url
        self.err = err
        super().__init__(f"cannot build request for {url}: {err}")
