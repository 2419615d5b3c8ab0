"""rest executor - assemble the HTTP request and send it with retries."""

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import requests
import tenacity
from requests.auth import HTTPBasicAuth

from restcli import core
from restcli.errors import InvalidRequest
from restcli.hooks import HookEngine
from restcli.resolve import Request
from restcli.settings import DEFAULT_SETTINGS, Settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


@dataclass
class RetryPolicy:
    """How many times to retry and how long to wait in between.

    The wait before retry n (0-based) is delay, times e**n with exponential
    backoff, replaced by a uniform pick from [0, wait) with jitter.
    """

    retries: int = 2
    delay: float = 0.1  # seconds
    exponential_backoff: bool = True
    jitter: bool = True
    rand: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        def pick(name):
            value = getattr(settings, name)
            return value if value is not None else getattr(DEFAULT_SETTINGS, name)

        return cls(
            retries=max(0, pick("retries")),
            delay=max(0, pick("retry_delay")) / 1000,
            exponential_backoff=pick("exponential_backoff"),
            jitter=pick("jitter"),
        )

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delay_for(self, index: int) -> float:
        delay = self.delay
        if self.exponential_backoff:
            delay *= math.exp(index)
        if self.jitter:
            delay = self.rand() * delay
        return delay

    def __call__(self, retry_state: tenacity.RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number - 1)


def build_url(settings: Settings, path: str) -> str:
    """Join scheme, host, port and base path with the request path."""
    scheme = settings.scheme or DEFAULT_SETTINGS.scheme
    host = settings.host or DEFAULT_SETTINGS.host
    port = settings.port if settings.port is not None else DEFAULT_SETTINGS.port

    base = (settings.base_path or "").strip()
    full = base.rstrip("/")
    if path:
        full += "/" + path.lstrip("/")
    elif base.endswith("/"):
        full += "/"
    if full and not full.startswith("/"):
        full = "/" + full
    return f"{scheme}://{host}:{port}{full}"


def prepare_request(
    request: Request,
    settings: Settings,
    env: dict[str, str] | None = None,
    hooks: HookEngine | None = None,
) -> requests.PreparedRequest:
    """Build the outgoing request from resolved settings.

    Parameters are substituted into path, body, header and query values,
    then the data hook and request hook run, and only then are header and
    query values that stayed unresolved parameter references dropped.
    """
    replace = core.param_replacer(settings.parameters, env)

    path = replace(request.path)
    data = replace(request.data or "")

    raw_headers = {} if request.no_headers else dict(settings.headers)
    raw_queries = {} if request.no_queries else dict(settings.queries)
    headers = core.substitute_map(raw_headers, replace)
    queries = core.substitute_map(raw_queries, replace)

    if settings.request_data_hook or settings.request_hook:
        hooks = hooks or HookEngine()
    if settings.request_data_hook:
        data = hooks.request_data(settings.request_data_hook, data)
    if settings.request_hook:
        modified = hooks.request(
            settings.request_hook,
            {"path": path, "data": data, "headers": headers, "queries": queries},
        )
        path = modified["path"]
        data = modified["data"]
        headers = modified["headers"]
        queries = modified["queries"]

    headers = core.drop_unresolved(raw_headers, headers)
    queries = core.drop_unresolved(raw_queries, queries)

    auth = None
    if settings.username and settings.password:
        auth = HTTPBasicAuth(settings.username, settings.password)

    url = build_url(settings, path)
    try:
        prepared = requests.Request(
            method=request.method.upper(),
            url=url,
            headers=headers,
            params=queries,
            data=data.encode("utf-8") if data else None,
            auth=auth,
        ).prepare()
    except requests.RequestException as e:
        raise InvalidRequest(url, e) from e
    logger.info("%s %s", prepared.method, prepared.url)
    return prepared


def dump_request(prepared: requests.PreparedRequest, body: bool = False) -> str:
    """Render a prepared request roughly as it goes on the wire."""
    lines = [f"{prepared.method} {prepared.url}"]
    lines.extend(f"{k}: {v}" for k, v in prepared.headers.items())
    if body and prepared.body:
        raw = prepared.body
        lines.append("")
        lines.append(raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw))
    return "\n".join(lines)


def send(
    prepared: requests.PreparedRequest,
    policy: RetryPolicy,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout: float = DEFAULT_TIMEOUT,
    verbose: int = 0,
) -> tuple[requests.Response | None, requests.RequestException | None]:
    """Send prepared with the retry policy.

    Transport errors and 5xx responses are retried; anything below 500 is
    final. Returns the last attempt's (response, error) pair, so a
    response that is still 5xx after the last retry is returned as is.
    A session is opened and closed here when none is given.
    """
    if session is None:
        with requests.Session() as own:
            return send(prepared, policy, own, sleep=sleep, timeout=timeout, verbose=verbose)

    if verbose >= 2:
        logger.debug("request:\n%s", dump_request(prepared, body=verbose >= 3))

    count = 0

    def attempt():
        nonlocal count
        count += 1
        logger.info("attempt %d of %d", count, policy.attempts)
        try:
            return session.send(prepared, timeout=timeout), None
        except requests.RequestException as e:
            logger.info("attempt %d failed: %s", count, e)
            return None, e

    def should_retry(outcome) -> bool:
        response, error = outcome
        return error is not None or response.status_code >= 500

    def log_retry(retry_state: tenacity.RetryCallState) -> None:
        logger.info("retrying in %.3fs", retry_state.next_action.sleep)

    retrying = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(policy.attempts),
        wait=policy,
        retry=tenacity.retry_if_result(should_retry),
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        before_sleep=log_retry,
        sleep=sleep,
    )
    return retrying(attempt)
