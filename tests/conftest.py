"""Shared fixtures for rest tests."""

import json

import pytest
import requests
from click.testing import CliRunner
from requests.structures import CaseInsensitiveDict

from restcli import core
from restcli.settings import Settings
from restcli.store import Store


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_env(tmp_path, monkeypatch):
    """Keep tests away from ~/.rest.db, REST_DB and any .env in the CWD."""
    monkeypatch.delenv("REST_DB", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the default database at a temp file."""
    path = tmp_path / "rest.db"
    monkeypatch.setattr(core, "DEFAULT_DB", path)
    return path


@pytest.fixture
def store(db_path):
    s = Store(db_path)
    yield s
    s.close()


@pytest.fixture
def api_store(store):
    """A store with one current service called api."""
    from restcli import service

    service.init_service(store, "api", Settings(scheme="http", host="api.test", port=8080))
    return store


def make_response(status_code=200, body=b"", headers=None, reason="OK"):
    """Factory for requests.Response objects with a preloaded body."""
    if isinstance(body, dict | list):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    resp = requests.Response()
    resp.status_code = status_code
    resp.reason = reason
    resp.headers = CaseInsensitiveDict(headers or {"Content-Type": "application/json"})
    resp._content = body
    resp._content_consumed = True
    return resp
