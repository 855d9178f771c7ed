"""
Key-Value Backends
==================

The storage seam of the shell. Handlers talk to a KeyValueBackend and
nothing else; the engine behind it owns the on-disk format.

Contract
--------
    open(path, create_if_missing)  →  backend      (classmethod)
    close()                        →  None         (idempotent)
    get(key)                       →  bytes        (KeyNotFound if absent)
    put(key, value, sync)          →  None
    iterate()                      →  (key, value) pairs, key order

Keys and values are bytes. Iteration is lazy, finite and single-pass,
in the engine's native key order.

Failures surface as BackendError carrying the engine's own status text.

SQLite Engine
-------------
SqliteBackend keeps everything in one table of a single SQLite file:

    CREATE TABLE kv (key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID

BLOBs compare with memcmp(), so ``ORDER BY key`` is plain bytewise
order. A synced put commits with ``PRAGMA synchronous=FULL`` so an OK
means the write reached the disk.

LevelDB Engine
--------------
LevelDbBackend opens a LevelDB directory through plyvel. Keys are
ordered bytewise by LevelDB itself, and ``sync`` maps onto its own
synced write option.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Optional

from kvrepl_commands.errors import BackendError, KeyNotFound

logger = logging.getLogger(__name__)


class KeyValueBackend(ABC):
    """Base class for storage engines the shell can drive."""

    @classmethod
    @abstractmethod
    def open(cls, path: str, create_if_missing: bool = True) -> KeyValueBackend:
        """Open (or create) the store at ``path``.

        Raises
        ------
        BackendError
            If the store cannot be opened.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the store. Calling it again does nothing."""
        ...

    @abstractmethod
    def get(self, key: bytes) -> bytes:
        ...

    @abstractmethod
    def put(self, key: bytes, value: bytes, sync: bool = True) -> None:
        ...

    @abstractmethod
    def iterate(self) -> Iterator[tuple[bytes, bytes]]:
        ...


class SqliteBackend(KeyValueBackend):
    """A KeyValueBackend stored in a single SQLite file."""

    _SCHEMA = (
        "CREATE TABLE IF NOT EXISTS kv ("
        "key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID"
    )

    def __init__(self, path: str, connection: sqlite3.Connection):
        self.path = path
        self._connection: Optional[sqlite3.Connection] = connection
        self._synchronous: Optional[str] = None

    @classmethod
    def open(cls, path: str, create_if_missing: bool = True) -> SqliteBackend:
        if not create_if_missing and not Path(path).exists():
            raise BackendError(
                f"Invalid argument: {path}: does not exist (create_if_missing is false)"
            )

        try:
            connection = sqlite3.connect(path)
        except (sqlite3.Error, ValueError) as e:
            # ValueError: a NUL byte in the path, or a path that is not encodable
            raise BackendError(f"IO error: {path}: {e}") from e

        try:
            connection.execute(cls._SCHEMA)
            connection.commit()
        except sqlite3.Error as e:
            connection.close()
            raise BackendError(f"IO error: {path}: {e}") from e

        logger.info(f"Opened SQLite store: {path}")
        return cls(path, connection)

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def close(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        connection.close()
        logger.info(f"Closed SQLite store: {self.path}")

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise BackendError(f"IO error: {self.path}: store is closed")
        return self._connection

    def _set_synchronous(self, sync: bool) -> None:
        mode = "FULL" if sync else "OFF"
        if self._synchronous != mode:
            self._require_connection().execute(f"PRAGMA synchronous={mode}")
            self._synchronous = mode

    def get(self, key: bytes) -> bytes:
        connection = self._require_connection()
        try:
            row = connection.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise BackendError(f"IO error: {e}") from e

        if row is None:
            raise KeyNotFound(key)
        return bytes(row[0])

    def put(self, key: bytes, value: bytes, sync: bool = True) -> None:
        connection = self._require_connection()
        try:
            self._set_synchronous(sync)
            connection.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, value),
            )
            connection.commit()
        except sqlite3.Error as e:
            connection.rollback()
            raise BackendError(f"IO error: {e}") from e

    def iterate(self) -> Iterator[tuple[bytes, bytes]]:
        connection = self._require_connection()
        try:
            cursor = connection.execute("SELECT key, value FROM kv ORDER BY key")
        except sqlite3.Error as e:
            raise BackendError(f"IO error: {e}") from e

        try:
            for key, value in cursor:
                yield bytes(key), bytes(value)
        except sqlite3.Error as e:
            raise BackendError(f"IO error: {e}") from e
        finally:
            cursor.close()


class LevelDbBackend(KeyValueBackend):
    """A KeyValueBackend on a LevelDB directory, through plyvel.

    plyvel is an optional dependency (``pip install kvrepl[leveldb]``)
    and is only imported when a store is opened with this engine.
    """

    def __init__(self, path: str, db, errors: tuple[type[Exception], ...]):
        self.path = path
        self._db = db
        self._errors = errors

    @classmethod
    def open(cls, path: str, create_if_missing: bool = True) -> LevelDbBackend:
        try:
            import plyvel
        except ImportError as e:
            raise BackendError(
                "Not supported: the leveldb engine needs plyvel (pip install kvrepl[leveldb])"
            ) from e

        try:
            db = plyvel.DB(path, create_if_missing=create_if_missing)
        except (plyvel.Error, ValueError) as e:
            raise BackendError(f"IO error: {path}: {e}") from e

        logger.info(f"Opened LevelDB store: {path}")
        return cls(path, db, (plyvel.Error,))

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def close(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        db.close()
        logger.info(f"Closed LevelDB store: {self.path}")

    def _require_db(self):
        if self._db is None:
            raise BackendError(f"IO error: {self.path}: store is closed")
        return self._db

    def get(self, key: bytes) -> bytes:
        db = self._require_db()
        try:
            value = db.get(key)
        except self._errors as e:
            raise BackendError(f"IO error: {e}") from e

        if value is None:
            raise KeyNotFound(key)
        return value

    def put(self, key: bytes, value: bytes, sync: bool = True) -> None:
        db = self._require_db()
        try:
            db.put(key, value, sync=sync)
        except self._errors as e:
            raise BackendError(f"IO error: {e}") from e

    def iterate(self) -> Iterator[tuple[bytes, bytes]]:
        db = self._require_db()
        try:
            with db.iterator() as entries:
                for key, value in entries:
                    yield key, value
        except self._errors as e:
            raise BackendError(f"IO error: {e}") from e


# Engine names accepted in the config file and by --engine
BACKENDS = {
    "sqlite": SqliteBackend,
    "leveldb": LevelDbBackend,
}
