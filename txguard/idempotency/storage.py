# SPDX-License-Identifier: MIT
"""Storage backends for request records.

Three persistence strategies are available:

``MEMORY``
    A process-local dictionary. Nothing survives a restart.
``SESSION``
    A JSON document scoped to a session identifier. Re-creating the service
    inside the same session sees the same records; the document is removed
    when an ephemeral backend is closed.
``LOCAL``
    A SQLite database file that persists across restarts.

Backends exchange JSON-compatible mappings so that every strategy observes the
same copy semantics: a caller can never mutate a stored record in place.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import sqlite3
import tempfile
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Protocol

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type hints
    from txguard.config import StorageConfig

__all__ = [
    "MemoryBackend",
    "SessionFileBackend",
    "SQLiteBackend",
    "StorageBackend",
    "StorageStrategy",
    "create_backend",
    "iter_prefixed",
]

LOGGER = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SESSION_ID_RE = re.compile(r"[^A-Za-z0-9_.-]")


class StorageStrategy(str, Enum):
    MEMORY = "MEMORY"
    SESSION = "SESSION"
    LOCAL = "LOCAL"


class StorageBackend(Protocol):
    """Minimal key/value surface consumed by :class:`RequestStore`."""

    def get(self, key: str) -> dict[str, Any] | None:  # pragma: no cover - protocol
        ...

    def set(self, key: str, record: Mapping[str, Any]) -> None:  # pragma: no cover - protocol
        ...

    def delete(self, key: str) -> bool:  # pragma: no cover - protocol
        ...

    def list(self) -> list[tuple[str, dict[str, Any]]]:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...


class MemoryBackend:
    """Dictionary-backed storage that lives as long as the process."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        return copy.deepcopy(entry) if entry is not None else None

    def set(self, key: str, record: Mapping[str, Any]) -> None:
        self._entries[key] = copy.deepcopy(dict(record))

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def list(self) -> list[tuple[str, dict[str, Any]]]:
        return [(key, copy.deepcopy(entry)) for key, entry in self._entries.items()]

    def close(self) -> None:
        self._entries.clear()


class SessionFileBackend:
    """JSON document shared by every service created for one session."""

    def __init__(
        self,
        session_id: str,
        *,
        directory: Path | str | None = None,
        ephemeral: bool = True,
    ) -> None:
        if not session_id:
            raise ValueError("session_id must be provided")
        safe_id = _SESSION_ID_RE.sub("_", session_id)
        base = Path(directory) if directory is not None else Path(tempfile.gettempdir()) / "txguard-sessions"
        self._path = base / f"{safe_id}.json"
        self._ephemeral = ephemeral
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, record: Mapping[str, Any]) -> None:
        with self._lock:
            entries = self._read()
            entries[key] = dict(record)
            self._write(entries)

    def delete(self, key: str) -> bool:
        with self._lock:
            entries = self._read()
            if entries.pop(key, None) is None:
                return False
            self._write(entries)
            return True

    def list(self) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return list(self._read().items())

    def close(self) -> None:
        if self._ephemeral:
            with self._lock:
                self._path.unlink(missing_ok=True)

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Discarding unreadable session store", extra={"path": str(self._path)})
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _write(self, entries: Mapping[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(entries, fh, sort_keys=True, separators=(",", ":"))
        os.replace(tmp_path, self._path)


class SQLiteBackend:
    """Durable storage in a SQLite database file."""

    def __init__(self, path: Path | str, *, table: str = "idempotency_requests") -> None:
        if not _IDENTIFIER_RE.match(table):
            raise ValueError(f"Invalid SQL identifier: {table!r}")
        self._path = Path(path)
        self._table = f'"{table}"'
        if str(path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(str(self._path), check_same_thread=False)
        with self._transaction() as cursor:
            cursor.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "storage_key TEXT PRIMARY KEY"
                ", payload TEXT NOT NULL"
                ")"
            )

    def get(self, key: str) -> dict[str, Any] | None:
        with self._transaction() as cursor:
            cursor.execute(f"SELECT payload FROM {self._table} WHERE storage_key = ?", (key,))
            row = cursor.fetchone()
        return json.loads(row[0]) if row is not None else None

    def set(self, key: str, record: Mapping[str, Any]) -> None:
        payload = json.dumps(dict(record), sort_keys=True, separators=(",", ":"))
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO {self._table} (storage_key, payload) VALUES (?, ?) "
                "ON CONFLICT (storage_key) DO UPDATE SET payload = excluded.payload",
                (key, payload),
            )

    def delete(self, key: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute(f"DELETE FROM {self._table} WHERE storage_key = ?", (key,))
            return cursor.rowcount > 0

    def list(self) -> list[tuple[str, dict[str, Any]]]:
        with self._transaction() as cursor:
            cursor.execute(f"SELECT storage_key, payload FROM {self._table} ORDER BY storage_key")
            rows = cursor.fetchall()
        return [(str(key), json.loads(payload)) for key, payload in rows]

    def close(self) -> None:
        with self._lock:
            self._connection.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor guarded by commit/rollback handlers."""

        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
            except Exception:
                self._connection.rollback()
                raise
            else:
                self._connection.commit()
            finally:
                cursor.close()


def create_backend(config: "StorageConfig") -> StorageBackend:
    """Instantiate the backend selected by *config*."""

    if config.strategy is StorageStrategy.MEMORY:
        return MemoryBackend()
    if config.strategy is StorageStrategy.SESSION:
        session_id = config.session_id or f"pid-{os.getpid()}"
        return SessionFileBackend(session_id, directory=config.session_dir, ephemeral=config.ephemeral_session)
    if config.strategy is StorageStrategy.LOCAL:
        return SQLiteBackend(config.local_path)
    raise ValueError(f"Unsupported storage strategy: {config.strategy!r}")


def iter_prefixed(backend: StorageBackend, prefix: str) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield ``(key, payload)`` pairs stored under ``{prefix}:``."""

    marker = f"{prefix}:"
    for storage_key, payload in backend.list():
        if storage_key.startswith(marker):
            yield storage_key[len(marker):], payload
