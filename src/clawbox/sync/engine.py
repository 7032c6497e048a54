"""
Sync Manager -- whole-vault, version-counter reconciliation.

    local == remote  ->  nothing to do
    remote > local   ->  pull: download -> decrypt -> back up vault.db -> replace
    local > remote   ->  push: read vault.db -> encrypt -> upload -> version + 1

Conflicts resolve as last-writer-wins for the whole vault. If two
devices edit between syncs, whichever syncs second sees a newer remote
version and pulls it, discarding its own unpushed edits. There is no
per-secret merge.

The bundle is encrypted with a copy of the unlocked vault's key, handed
over through set_key(). The manager wipes that copy in clear_key() and
when used as a context manager. Callers must keep the vault closed (or
at least idle) while a pull replaces vault.db.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..crypto import NONCE_LEN, DerivedKey, decrypt_blob, encrypt_blob
from ..errors import DecryptionError, SyncConfigError, SyncError, VaultIOError
from .backends import SyncBackend, atomic_write
from .models import SyncMeta, SyncResult, SyncState

logger = logging.getLogger("clawbox.sync.engine")

DB_FILE = "vault.db"
BACKUP_FILE = "vault.db.backup"
LOCAL_META_FILE = "sync.meta"
STATE_FILE = "sync-state.json"


class SyncManager:
    """Reconciles a local vault directory with a remote backend.

    Args:
        vault_dir: Directory containing vault.db.
        backend: Transport for the encrypted bundle.
    """

    def __init__(self, vault_dir: Path, backend: SyncBackend) -> None:
        self.vault_dir = Path(vault_dir).expanduser()
        self.backend = backend
        self._key: Optional[DerivedKey] = None
        self.state = self._load_state()

    @classmethod
    def for_vault(cls, vault, backend: SyncBackend) -> "SyncManager":
        """Manager for an unlocked Vault, holding a copy of its key."""
        manager = cls(vault.path, backend)
        manager.set_key(vault.export_sync_key())
        return manager

    def __enter__(self) -> "SyncManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear_key()

    # -- key ----------------------------------------------------------------

    def set_key(self, key: DerivedKey) -> None:
        """Take ownership of the key used to encrypt sync bundles."""
        self.clear_key()
        self._key = key

    def clear_key(self) -> None:
        if self._key is not None:
            self._key.wipe()
            self._key = None

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def _require_key(self) -> DerivedKey:
        if self._key is None:
            raise SyncConfigError("Encryption key not set; unlock the vault first")
        return self._key

    # -- versions -----------------------------------------------------------

    @property
    def local_meta_path(self) -> Path:
        return self.vault_dir / LOCAL_META_FILE

    def local_meta(self) -> Optional[SyncMeta]:
        if not self.local_meta_path.exists():
            return None
        try:
            return SyncMeta.from_file(self.local_meta_path)
        except OSError as exc:
            raise VaultIOError(f"Cannot read {self.local_meta_path}: {exc}") from exc

    def local_version(self) -> int:
        meta = self.local_meta()
        return meta.version if meta else 0

    def remote_version(self) -> int:
        """Version recorded at the remote location (0 if never pushed).

        Raises:
            SyncError: If the backend is unavailable.
        """
        if not self.backend.available():
            raise SyncError(f"{self.backend.name} sync location not available")
        return self.backend.remote_version()

    def needs_pull(self) -> bool:
        return self.remote_version() > self.local_version()

    def needs_push(self) -> bool:
        return self.local_version() > self.remote_version()

    def record_local_change(self) -> int:
        """Mark the local vault as ahead of the last known remote version.

        Called after local mutations so the next sync() pushes them.

        Returns:
            The local version after the change.
        """
        local = self.local_version()
        if local > self.state.remote_version:
            return local
        new_version = self.state.remote_version + 1
        self._write_local_meta(SyncMeta(version=new_version))
        self.state.local_version = new_version
        self._save_state()
        return new_version

    # -- transfer -----------------------------------------------------------

    def push(self) -> SyncMeta:
        """Encrypt vault.db and upload it as version local + 1.

        Raises:
            SyncConfigError: If no key has been set.
            VaultIOError: If vault.db cannot be read.
            SyncError: If the upload fails (local meta is left untouched).
        """
        key = self._require_key()
        db_path = self.vault_dir / DB_FILE
        try:
            vault_data = db_path.read_bytes()
        except OSError as exc:
            raise VaultIOError(f"Cannot read {db_path}: {exc}") from exc

        bundle = encrypt_blob(vault_data, key)
        meta = SyncMeta(version=self.local_version() + 1)

        try:
            self.backend.upload(bundle, meta)
        except SyncError as exc:
            self._record_error(exc)
            raise
        self._write_local_meta(meta)

        self.state.local_version = meta.version
        self.state.remote_version = meta.version
        self.state.push_count += 1
        self._record_success(SyncResult.PUSHED)
        logger.info("Pushed vault version %d via %s", meta.version, self.backend.name)
        return meta

    def pull(self) -> SyncMeta:
        """Download, decrypt, back up the local vault, and replace it.

        Raises:
            SyncConfigError: If no key has been set.
            SyncError: If the remote bundle is missing or malformed.
            DecryptionError: If the bundle fails authentication.
        """
        key = self._require_key()
        remote_meta = self.backend.read_meta()
        if remote_meta is None:
            raise SyncError(f"No remote vault metadata at {self.backend.name}")

        try:
            bundle = self.backend.download()
            if len(bundle) < NONCE_LEN:
                raise SyncError("Invalid sync data: bundle shorter than a nonce")
            vault_data = decrypt_blob(bundle, key)
        except (SyncError, DecryptionError) as exc:
            self._record_error(exc)
            raise

        db_path = self.vault_dir / DB_FILE
        try:
            self.vault_dir.mkdir(parents=True, exist_ok=True)
            if db_path.exists():
                shutil.copy2(db_path, self.vault_dir / BACKUP_FILE)
            atomic_write(db_path, vault_data)
        except OSError as exc:
            raise VaultIOError(f"Cannot replace {db_path}: {exc}") from exc
        self._write_local_meta(remote_meta)

        self.state.local_version = remote_meta.version
        self.state.remote_version = remote_meta.version
        self.state.pull_count += 1
        self._record_success(SyncResult.PULLED)
        logger.info(
            "Pulled vault version %d from %s (device %s)",
            remote_meta.version,
            self.backend.name,
            remote_meta.device_id,
        )
        return remote_meta

    def sync(self) -> SyncResult:
        """Pull if the remote is newer, push if local is newer.

        Returns:
            SyncResult describing what happened.
        """
        if not self.backend.available():
            logger.info("Sync location %s not available", self.backend.name)
            return SyncResult.UNAVAILABLE

        local = self.local_version()
        remote = self.remote_version()
        self.state.remote_version = remote

        if remote > local:
            self.pull()
            return SyncResult.PULLED
        if local > remote:
            self.push()
            return SyncResult.PUSHED

        self._record_success(SyncResult.UP_TO_DATE)
        return SyncResult.UP_TO_DATE

    def status(self) -> dict:
        """Current sync status.

        Returns:
            Dict with versions, backend availability, and saved state.
        """
        available = self.backend.available()
        remote = self.backend.remote_version() if available else None
        local = self.local_version()
        if remote is None:
            direction = "unavailable"
        elif remote > local:
            direction = "pull"
        elif local > remote:
            direction = "push"
        else:
            direction = "up_to_date"
        return {
            "backend": self.backend.name,
            "available": available,
            "local_version": local,
            "remote_version": remote,
            "direction": direction,
            "state": self.state.model_dump(mode="json"),
        }

    # -- persistence --------------------------------------------------------

    def _write_local_meta(self, meta: SyncMeta) -> None:
        try:
            self.vault_dir.mkdir(parents=True, exist_ok=True)
            atomic_write(self.local_meta_path, meta.render().encode("utf-8"))
        except OSError as exc:
            raise VaultIOError(f"Cannot write {self.local_meta_path}: {exc}") from exc

    def _load_state(self) -> SyncState:
        state_file = self.vault_dir / STATE_FILE
        if state_file.exists():
            try:
                data = json.loads(state_file.read_text(encoding="utf-8"))
                return SyncState(**data)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncState()

    def _save_state(self) -> None:
        state_file = self.vault_dir / STATE_FILE
        try:
            state_file.write_text(
                self.state.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as exc:
            logger.warning("Failed to save sync state: %s", exc)

    def _record_success(self, result: SyncResult) -> None:
        self.state.last_sync = datetime.now(timezone.utc)
        self.state.last_result = result
        self.state.last_error = None
        self._save_state()

    def _record_error(self, exc: Exception) -> None:
        self.state.last_error = str(exc)
        self._save_state()
