"""Tests for the sqlite-backed bucket store."""

import pytest

from restcli.errors import StoreError
from restcli.store import Store


class TestBuckets:
    def test_put_get(self, store):
        with store.update() as root:
            root.create_bucket_if_not_exists("a").put("k", b"v")
        with store.view() as root:
            assert root.bucket("a").get("k") == b"v"
            assert root.bucket("a").get("missing") is None

    def test_nested(self, store):
        with store.update() as root:
            leaf = root.create_bucket_if_not_exists("a").create_bucket_if_not_exists("b")
            leaf.put("k", b"1")
        with store.view() as root:
            assert root.bucket("a").bucket("b").get("k") == b"1"
            assert root.bucket("b") is None

    def test_bucket_is_not_a_value(self, store):
        with store.update() as root:
            root.create_bucket_if_not_exists("a")
            assert root.get("a") is None
            with pytest.raises(StoreError):
                root.put("a", b"x")

    def test_value_is_not_a_bucket(self, store):
        with store.update() as root:
            root.put("k", b"x")
            assert root.bucket("k") is None
            with pytest.raises(StoreError):
                root.create_bucket_if_not_exists("k")

    def test_items_ordered(self, store):
        with store.update() as root:
            root.put("b", b"2")
            root.put("a", b"1")
            root.create_bucket_if_not_exists("c")
        with store.view() as root:
            assert root.items() == [("a", b"1"), ("b", b"2"), ("c", None)]
            assert root.buckets() == ["c"]
            assert root.keys() == ["a", "b", "c"]

    def test_delete_bucket_removes_subtree(self, store):
        with store.update() as root:
            a = root.create_bucket_if_not_exists("a")
            a.create_bucket_if_not_exists("b").put("k", b"1")
            a.put("x", b"2")
            root.create_bucket_if_not_exists("ab").put("keep", b"3")
        with store.update() as root:
            assert root.delete_bucket("a") is True
            assert root.delete_bucket("a") is False
        with store.update() as root:
            # recreating must not resurrect old children
            a = root.create_bucket_if_not_exists("a")
            assert a.items() == []
            assert root.bucket("ab").get("keep") == b"3"

    def test_to_dict(self, store):
        with store.update() as root:
            a = root.create_bucket_if_not_exists("a")
            a.put("x", b"1")
            a.create_bucket_if_not_exists("b").put("y", b"2")
        with store.view() as root:
            assert root.to_dict() == {"a": {"b": {"y": "2"}, "x": "1"}}


class TestTransactions:
    def test_view_is_read_only(self, store):
        with store.view() as root:
            with pytest.raises(StoreError, match="read-only"):
                root.put("k", b"v")

    def test_rollback_on_error(self, store):
        with store.update() as root:
            root.put("k", b"before")
        with pytest.raises(RuntimeError):
            with store.update() as root:
                root.put("k", b"after")
                root.create_bucket_if_not_exists("new")
                raise RuntimeError("boom")
        with store.view() as root:
            assert root.get("k") == b"before"
            assert root.bucket("new") is None

    def test_persists_across_reopen(self, db_path):
        with Store(db_path) as s:
            with s.update() as root:
                root.put("k", b"v")
        with Store(db_path) as s:
            with s.view() as root:
                assert root.get("k") == b"v"

    def test_opens_lazily(self, tmp_path):
        path = tmp_path / "sub" / "lazy.db"
        s = Store(path)
        assert not path.exists()
        with s.view() as root:
            assert root.items() == []
        s.close()
        assert path.exists()
