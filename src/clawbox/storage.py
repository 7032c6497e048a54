"""
Secret store — durable persistence for encrypted blobs, metadata, and audit rows.

The vault talks to storage through the narrow SecretStore contract;
SqliteStore is the shipped implementation. Values arrive here already
encrypted (``nonce ‖ ciphertext``); this layer never sees plaintext.

Schema:
    vault_meta  key -> blob (salt, verification_nonce, verification_data)
    secrets     one row per path, unique on path
    audit_log   hash-chained audit rows (written by clawbox.audit)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import StorageError
from .models import AccessLevel, SecretInfo, utcnow

logger = logging.getLogger("clawbox.storage")

SCHEMA = """
CREATE TABLE IF NOT EXISTS vault_meta (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS secrets (
    id TEXT PRIMARY KEY,
    path TEXT UNIQUE NOT NULL,
    encrypted_value BLOB NOT NULL,
    access_level INTEGER NOT NULL DEFAULT 1,
    tags TEXT,
    note TEXT,
    ttl_expires_at INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    created_by TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_secrets_path ON secrets(path);
CREATE INDEX IF NOT EXISTS idx_secrets_ttl ON secrets(ttl_expires_at);

CREATE TABLE IF NOT EXISTS audit_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    timestamp INTEGER NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    key_path TEXT NOT NULL,
    success INTEGER NOT NULL,
    error_message TEXT,
    source TEXT NOT NULL,
    hash TEXT NOT NULL,
    prev_hash TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_key_path ON audit_log(key_path);
"""

_SECRET_COLUMNS = (
    "path, access_level, tags, note, created_at, updated_at, "
    "ttl_expires_at, created_by"
)


def to_unix(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def glob_to_like(pattern: str) -> str:
    """Translate a ``*`` wildcard pattern into a LIKE pattern.

    LIKE's own wildcards (``%`` and ``_``) are escaped with ``\\`` so
    paths such as ``aws/secret_key`` match literally.
    """
    escaped = (
        pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return escaped.replace("*", "%")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class SecretStore(ABC):
    """Key-value persistence consumed by the vault and the audit ledger."""

    @abstractmethod
    def get_meta(self, key: str) -> Optional[bytes]:
        """Read a vault metadata value."""

    @abstractmethod
    def set_meta(self, key: str, value: bytes) -> None:
        """Write a vault metadata value (insert or replace)."""

    @abstractmethod
    def set_meta_many(self, values: dict[str, bytes]) -> None:
        """Write several metadata values in one transaction."""

    @abstractmethod
    def get(self, path: str) -> Optional[bytes]:
        """Encrypted blob stored at path, or None."""

    @abstractmethod
    def get_info(self, path: str) -> Optional[SecretInfo]:
        """Metadata for path, or None."""

    @abstractmethod
    def upsert(self, path: str, value: bytes, info: SecretInfo) -> None:
        """Insert or replace the secret at path.

        An existing row keeps its created_at and created_by.
        """

    @abstractmethod
    def delete(self, path: str) -> bool:
        """Delete path; True if a row existed."""

    @abstractmethod
    def list(self, pattern: Optional[str] = None) -> list[SecretInfo]:
        """Metadata for every path matching the ``*`` pattern, sorted by path."""

    @abstractmethod
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager yielding a connection inside a write transaction."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


class SqliteStore(SecretStore):
    """SQLite-backed secret store.

    Args:
        db_path: Path to the database file. Parent directories are created.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Cannot open store at {db_path}: {exc}") from exc
        self._tx_lock = threading.RLock()
        logger.debug("Opened secret store %s", self.db_path)

    @classmethod
    def open(cls, db_path: Path) -> "SqliteStore":
        return cls(db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

        Any exception rolls the whole block back and is re-raised as
        StorageError (sqlite errors) or unchanged (everything else).
        """
        with self._tx_lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"Cannot begin transaction: {exc}") from exc
            try:
                yield self._conn
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK")
                raise StorageError(str(exc)) from exc
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def fetch(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    # -- metadata -----------------------------------------------------------

    def get_meta(self, key: str) -> Optional[bytes]:
        rows = self.fetch("SELECT value FROM vault_meta WHERE key = ?", (key,))
        return bytes(rows[0][0]) if rows else None

    def set_meta(self, key: str, value: bytes) -> None:
        self.set_meta_many({key: value})

    def set_meta_many(self, values: dict[str, bytes]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO vault_meta (key, value) VALUES (?, ?)",
                list(values.items()),
            )

    # -- secrets ------------------------------------------------------------

    def get(self, path: str) -> Optional[bytes]:
        rows = self.fetch(
            "SELECT encrypted_value FROM secrets WHERE path = ?", (path,)
        )
        return bytes(rows[0][0]) if rows else None

    def get_info(self, path: str) -> Optional[SecretInfo]:
        rows = self.fetch(
            f"SELECT {_SECRET_COLUMNS} FROM secrets WHERE path = ?", (path,)
        )
        return self._row_to_info(rows[0]) if rows else None

    def upsert(self, path: str, value: bytes, info: SecretInfo) -> None:
        now = to_unix(info.updated_at)
        expires = to_unix(info.expires_at) if info.expires_at else None
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO secrets (id, path, encrypted_value, access_level,
                    tags, note, ttl_expires_at, created_at, updated_at, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    encrypted_value = excluded.encrypted_value,
                    access_level = excluded.access_level,
                    tags = excluded.tags,
                    note = excluded.note,
                    ttl_expires_at = excluded.ttl_expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    str(uuid.uuid4()),
                    path,
                    value,
                    int(info.access),
                    json.dumps(info.tags),
                    info.note,
                    expires,
                    to_unix(info.created_at),
                    now,
                    info.created_by,
                ),
            )

    def delete(self, path: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM secrets WHERE path = ?", (path,))
            return cur.rowcount > 0

    def list(self, pattern: Optional[str] = None) -> list[SecretInfo]:
        if pattern is None:
            rows = self.fetch(
                f"SELECT {_SECRET_COLUMNS} FROM secrets ORDER BY path"
            )
        else:
            rows = self.fetch(
                f"SELECT {_SECRET_COLUMNS} FROM secrets "
                "WHERE path LIKE ? ESCAPE '\\' ORDER BY path",
                (glob_to_like(pattern),),
            )
        return [self._row_to_info(row) for row in rows]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every secret whose TTL has passed. Returns the count."""
        cutoff = to_unix(now or utcnow())
        with self.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM secrets WHERE ttl_expires_at IS NOT NULL "
                "AND ttl_expires_at <= ?",
                (cutoff,),
            )
            return cur.rowcount

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            logger.warning("Error closing store %s: %s", self.db_path, exc)

    @staticmethod
    def _row_to_info(row: tuple) -> SecretInfo:
        path, level, tags_json, note, created, updated, expires, created_by = row
        try:
            tags = json.loads(tags_json) if tags_json else []
        except json.JSONDecodeError:
            tags = []
        try:
            access = AccessLevel(level)
        except ValueError:
            access = AccessLevel.NORMAL
        return SecretInfo(
            path=path,
            access=access,
            tags=tags,
            note=note,
            created_at=from_unix(created),
            updated_at=from_unix(updated),
            expires_at=from_unix(expires),
            created_by=created_by,
        )
