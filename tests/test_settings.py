"""Tests for the Settings value, layering and its storage mapping."""

import logging

import pytest

from restcli import settings as settings_mod
from restcli.errors import NoDestination
from restcli.settings import DEFAULT_SETTINGS, Settings, merge, merge_all, selector


class TestMerge:
    def test_overlay_scalar_wins_when_set(self):
        merged = merge(Settings(host="a", port=80), Settings(host="b"))
        assert merged.host == "b"
        assert merged.port == 80

    def test_unset_overlay_keeps_base(self):
        merged = merge(Settings(pretty=True), Settings())
        assert merged.pretty is True

    def test_false_is_a_value(self):
        """An explicit False overrides a True below it."""
        merged = merge(Settings(jitter=True), Settings(jitter=False))
        assert merged.jitter is False

    def test_maps_union_overlay_wins(self):
        base = Settings(headers={"Accept": "text/plain", "X-A": "1"})
        overlay = Settings(headers={"Accept": "application/json"})
        merged = merge(base, overlay)
        assert merged.headers == {"Accept": "application/json", "X-A": "1"}

    def test_inputs_not_modified(self):
        base = Settings(headers={"A": "1"})
        overlay = Settings(headers={"B": "2"})
        merge(base, overlay)
        assert base.headers == {"A": "1"}
        assert overlay.headers == {"B": "2"}

    def test_merge_all_lowest_first(self):
        merged = merge_all(
            DEFAULT_SETTINGS,
            Settings(host="service"),
            Settings(host="path", filter="f"),
            Settings(host="cli"),
        )
        assert merged.host == "cli"
        assert merged.filter == "f"
        assert merged.scheme == "https"
        assert merged.retries == 2


class TestStorage:
    def test_round_trip(self, store):
        s = Settings(
            host="api.test",
            port=8080,
            pretty=True,
            pretty_indent="  ",
            headers={"Accept": "application/json"},
            set_parameters={"token": "access_token"},
            retries=5,
            retry_delay=250,
            jitter=False,
        )
        with store.update() as root:
            settings_mod.write(root.create_bucket_if_not_exists("svc"), s)
        with store.view() as root:
            loaded = settings_mod.read(root.bucket("svc"))
        assert loaded == s

    def test_encoding(self, store):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            settings_mod.write(bucket, Settings(port=443, pretty=True, jitter=False, filter="a.b"))
        with store.view() as root:
            bucket = root.bucket("svc")
            assert bucket.get("port") == b"443"
            output = bucket.bucket("output")
            assert output.get("pretty") == b"true"
            assert output.get("filter") == b"a.b"
            assert bucket.bucket("retry").get("jitter") == b"false"

    def test_unset_fields_not_written(self, store):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            settings_mod.write(bucket, Settings(host="first", port=1))
            settings_mod.write(bucket, Settings(host="second"))
        with store.view() as root:
            loaded = settings_mod.read(root.bucket("svc"))
        assert loaded.host == "second"
        assert loaded.port == 1

    def test_write_to_nothing(self, store):
        with store.update():
            with pytest.raises(NoDestination):
                settings_mod.write(None, Settings(host="x"))

    def test_read_missing_bucket(self):
        assert settings_mod.read(None) == Settings()

    def test_unreadable_value_reads_unset(self, store, caplog):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            bucket.put("port", b"eighty")
            bucket.put("host", b"h")
        with caplog.at_level(logging.WARNING, logger="restcli"):
            with store.view() as root:
                loaded = settings_mod.read(root.bucket("svc"))
        assert loaded.port is None
        assert loaded.host == "h"
        assert "unreadable integer" in caplog.text


class TestUnset:
    def test_unset_scalar_and_map_key(self, store):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            settings_mod.write(
                bucket,
                Settings(host="h", port=1, headers={"A": "1", "B": "2"}),
            )
            settings_mod.unset(bucket, selector("host", headers=["A"]))
        with store.view() as root:
            loaded = settings_mod.read(root.bucket("svc"))
        assert loaded.host is None
        assert loaded.port == 1
        assert loaded.headers == {"B": "2"}

    def test_unset_only_host(self, store):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            settings_mod.write(bucket, Settings(scheme="http", host="h", port=1, headers={"A": "1"}))
            settings_mod.unset(bucket, selector("host"))
        with store.view() as root:
            loaded = settings_mod.read(root.bucket("svc"))
        assert loaded == Settings(scheme="http", port=1, headers={"A": "1"})

    def test_unset_missing_is_noop(self, store):
        with store.update() as root:
            bucket = root.create_bucket_if_not_exists("svc")
            settings_mod.unset(bucket, selector("filter", queries=["q"]))
        with store.view() as root:
            assert settings_mod.read(root.bucket("svc")) == Settings()

    def test_selector_rejects_unknown(self):
        with pytest.raises(ValueError, match="unknown setting"):
            selector("colour")
        with pytest.raises(ValueError, match="unknown setting map"):
            selector(cookies=["a"])
