"""rest store - hierarchical buckets on top of a single sqlite table.

Every node lives in one row keyed by (parent, name). Buckets have a NULL
value, leaves hold bytes. The parent column is the encoded bucket path,
each segment prefixed with a unit separator, so the root is "".
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path

from restcli.errors import StoreError

logger = logging.getLogger(__name__)

SEP = "\x1f"

SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    parent TEXT NOT NULL,
    name   TEXT NOT NULL,
    value  BLOB,
    PRIMARY KEY (parent, name)
)
"""


def _encode(path: tuple[str, ...]) -> str:
    return "".join(SEP + segment for segment in path)


class Bucket:
    """A view of one bucket inside an open transaction."""

    def __init__(self, conn: sqlite3.Connection, path: tuple[str, ...], writable: bool):
        self._conn = conn
        self.path = path
        self.writable = writable
        self._key = _encode(path)

    def __repr__(self) -> str:
        return f"Bucket({'.'.join(self.path) or '<root>'})"

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ""

    def _row(self, name: str):
        return self._conn.execute(
            "SELECT value FROM nodes WHERE parent = ? AND name = ?",
            (self._key, name),
        ).fetchone()

    def _check_writable(self) -> None:
        if not self.writable:
            raise StoreError("write attempted in a read-only transaction")

    # ── leaves ───────────────────────────────────────────────────────────

    def get(self, key: str) -> bytes | None:
        """Return the value stored at key, or None for missing keys and buckets."""
        row = self._row(key)
        if row is None or row[0] is None:
            return None
        return bytes(row[0])

    def put(self, key: str, value: bytes) -> None:
        self._check_writable()
        row = self._row(key)
        if row is not None and row[0] is None:
            raise StoreError(f"cannot overwrite bucket {key!r} with a value")
        self._conn.execute(
            "INSERT OR REPLACE INTO nodes (parent, name, value) VALUES (?, ?, ?)",
            (self._key, key, sqlite3.Binary(value)),
        )

    def delete(self, key: str) -> None:
        """Delete a leaf value. Missing keys are ignored."""
        self._check_writable()
        self._conn.execute(
            "DELETE FROM nodes WHERE parent = ? AND name = ? AND value IS NOT NULL",
            (self._key, key),
        )

    # ── nested buckets ───────────────────────────────────────────────────

    def bucket(self, name: str) -> Bucket | None:
        row = self._row(name)
        if row is None or row[0] is not None:
            return None
        return Bucket(self._conn, self.path + (name,), self.writable)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        self._check_writable()
        row = self._row(name)
        if row is None:
            self._conn.execute(
                "INSERT INTO nodes (parent, name, value) VALUES (?, ?, NULL)",
                (self._key, name),
            )
        elif row[0] is not None:
            raise StoreError(f"{name!r} is a value, not a bucket")
        return Bucket(self._conn, self.path + (name,), self.writable)

    def delete_bucket(self, name: str) -> bool:
        """Delete a nested bucket and everything under it.

        Returns False when there was no such bucket.
        """
        self._check_writable()
        if self.bucket(name) is None:
            return False
        child = _encode(self.path + (name,))
        prefix = child + SEP
        self._conn.execute(
            "DELETE FROM nodes WHERE parent = ? OR substr(parent, 1, ?) = ?",
            (child, len(prefix), prefix),
        )
        self._conn.execute(
            "DELETE FROM nodes WHERE parent = ? AND name = ?",
            (self._key, name),
        )
        return True

    def items(self) -> list[tuple[str, bytes | None]]:
        """Return (name, value) pairs in key order. Buckets have value None."""
        rows = self._conn.execute(
            "SELECT name, value FROM nodes WHERE parent = ? ORDER BY name",
            (self._key,),
        ).fetchall()
        return [(name, None if value is None else bytes(value)) for name, value in rows]

    def keys(self) -> list[str]:
        return [name for name, _ in self.items()]

    def buckets(self) -> list[str]:
        return [name for name, value in self.items() if value is None]

    def to_dict(self) -> dict:
        """Decode the whole subtree into nested dicts of strings."""
        tree: dict = {}
        for name, value in self.items():
            if value is None:
                tree[name] = self.bucket(name).to_dict()
            else:
                tree[name] = value.decode("utf-8", errors="replace")
        return tree


class Store:
    """The persistent database file.

    All access goes through view() (read-only) or update() (read-write),
    both of which yield the root bucket and commit or roll back as a unit.
    """

    def __init__(self, filename: str | Path):
        self.filename = Path(filename).expanduser()
        self._conn: sqlite3.Connection | None = None

    def open(self) -> Store:
        if self._conn is not None:
            return self
        try:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.filename), isolation_level=None, timeout=30.0)
            self._conn.execute(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open {self.filename}: {e}") from e
        logger.debug("opened store %s", self.filename)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Store:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @contextlib.contextmanager
    def _transaction(self, writable: bool) -> Iterator[Bucket]:
        if self._conn is None:
            self.open()
        conn = self._conn
        try:
            conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
        except sqlite3.Error as e:
            raise StoreError(f"cannot start transaction: {e}") from e
        try:
            yield Bucket(conn, (), writable)
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"commit failed: {e}") from e

    def view(self):
        """Read-only transaction yielding the root bucket."""
        return self._transaction(writable=False)

    def update(self):
        """Read-write transaction yielding the root bucket."""
        return self._transaction(writable=True)
