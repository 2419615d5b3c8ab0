"""Tests for settings layer resolution, aliases and set-parameter addresses."""

import pytest

from restcli import service
from restcli.errors import InvalidPath, MalformedDatabase, NoAlias, NoAliases, NoServiceSet, NoSuchService
from restcli.resolve import (
    AliasStep,
    MethodStep,
    PathStep,
    Request,
    ServiceStep,
    describe,
    load_alias,
    locate,
    navigate,
    parse_address,
    resolve_settings,
)
from restcli.settings import Settings


@pytest.fixture
def layered(api_store):
    """api with a /users path layer and a GET method layer under it."""
    service.set_settings(api_store, "api", Settings(filter="service", headers={"X-Level": "service"}))
    service.set_settings(
        api_store,
        "api",
        Settings(filter="path", headers={"X-Level": "path", "X-Path": "1"}),
        path="/users",
    )
    service.set_settings(api_store, "api", Settings(filter="method"), path="/users", method="get")
    return api_store


def _resolve(store, request):
    with store.view() as root:
        return resolve_settings(root, request)


class TestPrecedence:
    def test_defaults_fill_gaps(self, api_store):
        s = _resolve(api_store, Request(path="/anything"))
        assert s.host == "api.test"
        assert s.retries == 2
        assert s.pretty_indent == "\t"

    def test_method_beats_path_beats_service(self, layered):
        s = _resolve(layered, Request(method="get", path="/users"))
        assert s.filter == "method"
        assert s.headers == {"X-Level": "path", "X-Path": "1"}

    def test_path_without_method_layer(self, layered):
        s = _resolve(layered, Request(method="post", path="/users"))
        assert s.filter == "path"

    def test_unmatched_path(self, layered):
        s = _resolve(layered, Request(method="get", path="/users/1"))
        assert s.filter == "service"
        assert "X-Path" not in s.headers

    def test_cli_wins(self, layered):
        request = Request(method="get", path="/users", settings=Settings(filter="cli"))
        assert _resolve(layered, request).filter == "cli"

    def test_named_service(self, layered):
        service.init_service(layered, "other", Settings(host="other.test"))
        s = _resolve(layered, Request(service="other", path="/users"))
        assert s.host == "other.test"
        assert s.filter is None


class TestAliasResolution:
    def test_alias_skips_path_and_method(self, layered):
        service.add_alias(layered, "people", method="get", path="/users", settings=Settings(pretty=True))
        request = Request(alias="people", method="get", path="/users")
        s = _resolve(layered, request)
        assert s.filter == "service"
        assert s.pretty is True
        assert s.headers == {"X-Level": "service"}

    def test_alias_layer_beats_service(self, layered):
        service.add_alias(layered, "people", method="get", path="/users", settings=Settings(filter="alias"))
        assert _resolve(layered, Request(alias="people")).filter == "alias"

    def test_locate_alias(self, layered):
        service.add_alias(layered, "people", method="get", path="/users")
        with layered.view() as root:
            layers = locate(root, Request(alias="people"))
        assert layers == [
            (ServiceStep("api"),),
            (ServiceStep("api"), AliasStep("people")),
        ]

    def test_unknown_alias(self, layered):
        service.add_alias(layered, "people", method="get", path="/users")
        with pytest.raises(NoAlias):
            _resolve(layered, Request(alias="nobody"))

    def test_no_aliases(self, api_store):
        with pytest.raises(NoAliases):
            _resolve(api_store, Request(alias="nobody"))

    def test_load_alias(self, api_store):
        service.add_alias(api_store, "login", method="post", path="/login", data='{"u": 1}')
        request = Request(alias="login")
        with api_store.view() as root:
            load_alias(root, request)
        assert request.method == "post"
        assert request.path == "/login"
        assert request.data == '{"u": 1}'

    def test_cli_data_wins(self, api_store):
        service.add_alias(api_store, "login", method="post", path="/login", data='{"u": 1}')
        request = Request(alias="login", data='{"u": 2}')
        with api_store.view() as root:
            load_alias(root, request)
        assert request.data == '{"u": 2}'


class TestServiceLookup:
    def test_empty_database(self, store):
        with pytest.raises(MalformedDatabase, match="no info bucket"):
            _resolve(store, Request(path="/"))

    def test_no_current(self, api_store):
        service.remove_service(api_store, "api")
        with pytest.raises(NoServiceSet):
            _resolve(api_store, Request(path="/"))

    def test_unknown_service(self, api_store):
        with pytest.raises(NoSuchService):
            _resolve(api_store, Request(service="ghost", path="/"))


class TestAddresses:
    @pytest.mark.parametrize(
        ("address", "location", "name"),
        [
            ("token", (ServiceStep("api"),), "token"),
            ("parameters.token", (ServiceStep("api"),), "token"),
            ("paths./login.token", (ServiceStep("api"), PathStep("/login")), "token"),
            (
                "paths./login.post.parameters.token",
                (ServiceStep("api"), PathStep("/login"), MethodStep("post")),
                "token",
            ),
            ("aliases.login.token", (ServiceStep("api"), AliasStep("login")), "token"),
        ],
    )
    def test_parse(self, address, location, name):
        assert parse_address("api", address) == (location, name)

    @pytest.mark.parametrize("address", ["headers.token", "paths.token", "aliases.a.b.token"])
    def test_invalid(self, address):
        with pytest.raises(InvalidPath):
            parse_address("api", address)

    def test_describe(self):
        location = (ServiceStep("api"), PathStep("/login"), MethodStep("POST"))
        assert describe(location) == "services.api.paths./login.post"


class TestNavigate:
    def test_missing(self, api_store):
        with api_store.view() as root:
            assert navigate(root, (ServiceStep("api"), PathStep("/nope"))) is None

    def test_create(self, api_store):
        with api_store.update() as root:
            bucket = navigate(root, (ServiceStep("api"), PathStep("/new"), MethodStep("GET")), create=True)
            assert bucket.path == ("services", "api", "paths", "/new", "get")
