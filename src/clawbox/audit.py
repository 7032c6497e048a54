"""
Audit ledger — append-only, hash-chained log of vault operations.

Each entry's hash covers its own fields plus the hash of the entry
before it:

    hash_n = SHA-256(id | timestamp | actor_type | action | key_path
                     | success | hash_{n-1})

Editing, deleting, or reordering any historical row breaks every link
after it, so verify_integrity() can detect tampering by replaying the
chain from the oldest entry.

Reading the previous hash and inserting the new row happen inside one
``BEGIN IMMEDIATE`` transaction, so concurrent appenders can never fork
the chain. A failed append rolls back and leaves the chain as it was.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Optional

from .models import Action, ActorInfo, AuditEntry, AuditFilter
from .storage import SqliteStore, from_unix, to_unix

logger = logging.getLogger("clawbox.audit")

_ENTRY_COLUMNS = (
    "id, timestamp, actor, action, key_path, success, error_message, "
    "source, hash, prev_hash"
)


def compute_hash(
    entry_id: str,
    timestamp: int,
    actor_type: str,
    action: str,
    key_path: str,
    success: bool,
    prev_hash: Optional[str],
) -> str:
    """SHA-256 hex digest over an entry's chained fields.

    Args:
        entry_id: Entry UUID.
        timestamp: Unix seconds.
        actor_type: human / ai / app.
        action: Action value (e.g. "read").
        key_path: Secret path the entry refers to.
        success: Whether the operation succeeded.
        prev_hash: Hash of the preceding entry, None for the first.

    Returns:
        Hex-encoded digest.
    """
    parts = [
        entry_id,
        str(timestamp),
        actor_type,
        action,
        key_path,
        "1" if success else "0",
    ]
    if prev_hash is not None:
        parts.append(prev_hash)
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class AuditLedger:
    """Hash-chained audit log stored in the vault database.

    Args:
        store: The SqliteStore whose audit_log table holds the chain.
    """

    def __init__(self, store: SqliteStore) -> None:
        self._store = store

    def log(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry, linking it to the current head of the chain.

        Args:
            entry: Entry to append. Its hash fields are ignored.

        Returns:
            The stored entry with hash and prev_hash filled in.

        Raises:
            StorageError: If the append could not be committed.
        """
        ts = to_unix(entry.timestamp)
        with self._store.transaction() as conn:
            row = conn.execute(
                "SELECT hash FROM audit_log ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            prev_hash = row[0] if row else None

            digest = compute_hash(
                entry.id,
                ts,
                entry.actor.actor_type,
                entry.action.value,
                entry.key_path,
                entry.success,
                prev_hash,
            )
            conn.execute(
                f"INSERT INTO audit_log ({_ENTRY_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.id,
                    ts,
                    entry.actor.model_dump_json(),
                    entry.action.value,
                    entry.key_path,
                    1 if entry.success else 0,
                    entry.error_message,
                    json.dumps(entry.source.model_dump()),
                    digest,
                    prev_hash,
                ),
            )

        logger.debug(
            "Audit %s %s %s success=%s",
            entry.actor.actor_type,
            entry.action.value,
            entry.key_path,
            entry.success,
        )
        return entry.model_copy(
            update={"hash": digest, "prev_hash": prev_hash, "timestamp": from_unix(ts)}
        )

    def query(self, flt: Optional[AuditFilter] = None) -> list[AuditEntry]:
        """Return matching entries, newest first.

        Args:
            flt: Filter criteria; None returns everything.

        Returns:
            list[AuditEntry]: Matching entries.
        """
        flt = flt or AuditFilter()
        clauses: list[str] = []
        params: list = []

        if flt.key_path:
            clauses.append("instr(key_path, ?) > 0")
            params.append(flt.key_path)
        if flt.since is not None:
            clauses.append("timestamp >= ?")
            params.append(to_unix(flt.since))
        if flt.until is not None:
            clauses.append("timestamp <= ?")
            params.append(to_unix(flt.until))
        if flt.action is not None:
            clauses.append("action = ?")
            params.append(flt.action.value)
        if flt.actor_type:
            clauses.append("json_extract(actor, '$.actor_type') = ?")
            params.append(flt.actor_type.lower())

        sql = f"SELECT {_ENTRY_COLUMNS} FROM audit_log"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq DESC"
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(flt.limit)

        rows = self._store.fetch(sql, tuple(params))
        return [self._row_to_entry(row) for row in rows]

    def verify_integrity(self) -> bool:
        """Replay the chain oldest-first and check every link.

        Returns:
            True if every entry's hash and prev_hash are consistent.
        """
        return self.first_broken_entry() is None

    def first_broken_entry(self) -> Optional[str]:
        """ID of the first entry whose hash or link does not check out."""
        rows = self._store.fetch(
            "SELECT id, timestamp, actor, action, key_path, success, "
            "hash, prev_hash FROM audit_log ORDER BY seq ASC"
        )
        previous: Optional[str] = None
        for entry_id, ts, actor_json, action, key_path, success, digest, prev in rows:
            if prev != previous:
                logger.warning("Audit chain link broken at %s", entry_id)
                return entry_id
            try:
                actor_type = json.loads(actor_json).get("actor_type", "")
            except (json.JSONDecodeError, AttributeError):
                return entry_id
            expected = compute_hash(
                entry_id, ts, actor_type, action, key_path, bool(success), previous
            )
            if expected != digest:
                logger.warning("Audit hash mismatch at %s", entry_id)
                return entry_id
            previous = digest
        return None

    def head(self) -> Optional[str]:
        """Hash of the most recent entry, or None for an empty ledger."""
        rows = self._store.fetch(
            "SELECT hash FROM audit_log ORDER BY seq DESC LIMIT 1"
        )
        return rows[0][0] if rows else None

    def count(self) -> int:
        return self._store.fetch("SELECT COUNT(*) FROM audit_log")[0][0]

    @staticmethod
    def _row_to_entry(row: tuple) -> AuditEntry:
        (entry_id, ts, actor_json, action, key_path, success,
         error_message, source_json, digest, prev_hash) = row
        return AuditEntry(
            id=entry_id,
            timestamp=from_unix(ts),
            actor=ActorInfo.model_validate_json(actor_json),
            action=Action(action),
            key_path=key_path,
            success=bool(success),
            error_message=error_message,
            source=json.loads(source_json),
            hash=digest,
            prev_hash=prev_hash,
        )
