"""
The Vault — lock state, key lifetime, and every secret operation.

    Uninitialized --init()--> Unlocked --lock()--> Locked --unlock()--> Unlocked

The vault is the only component that holds the derived key and the only
one that writes secrets or audit rows. Every operation is serialized
under a per-instance lock and recorded in the audit ledger, whether it
succeeds or not. Audit failures are logged and swallowed so they never
change the result a caller sees.

Access levels are stored and reported but not enforced here; see
clawbox.policy for the layer that decides who may read what.

Usage:
    with Vault.open("~/.clawbox") as vault:
        vault.unlock(password)
        vault.set("github/token", "ghp_xxx")
        token = vault.get("github/token")
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from .audit import AuditLedger
from .crypto import (
    DerivedKey,
    EncryptedEnvelope,
    decrypt,
    decrypt_blob,
    encrypt,
    encrypt_blob,
    key_from_password,
    derive_key,
)
from .errors import (
    ClawBoxError,
    DecryptionError,
    InvalidPassword,
    StorageError,
    VaultAlreadyInitialized,
    VaultLocked,
)
from .models import (
    Action,
    Actor,
    ActorInfo,
    AppSource,
    AuditEntry,
    AuditFilter,
    ExportedSecret,
    HumanActor,
    SecretInfo,
    SetOptions,
    Source,
    utcnow,
)
from .storage import SqliteStore

logger = logging.getLogger("clawbox.vault")

DB_FILE = "vault.db"
VERIFICATION_TOKEN = b"clawbox-verification-token"

META_SALT = "salt"
META_VERIFICATION_NONCE = "verification_nonce"
META_VERIFICATION_DATA = "verification_data"


class Vault:
    """Password-protected store of named secrets.

    Args:
        path: Vault directory. Created (with an empty database) if absent.
        actor: Who is operating the vault; recorded in every audit entry.
        source: Where operations originate (CLI, app, API).
        auto_lock_seconds: Lock automatically after this many idle seconds.
        clock: Monotonic clock used for idle tracking.
    """

    def __init__(
        self,
        path: os.PathLike,
        actor: Optional[Actor] = None,
        source: Optional[Source] = None,
        auto_lock_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = Path(path).expanduser()
        self.db_path = self.path / DB_FILE
        self._store = SqliteStore(self.db_path)
        self._ledger = AuditLedger(self._store)
        self._actor = ActorInfo.from_actor(actor or HumanActor())
        self._source = source or AppSource()
        self._key: Optional[DerivedKey] = None
        self._lock = threading.RLock()
        self.auto_lock_seconds = auto_lock_seconds
        self._clock = clock
        self._last_activity = clock()

    @classmethod
    def open(cls, path: os.PathLike, **kwargs) -> "Vault":
        """Bind to the vault at path, creating an empty one if needed.

        Never derives or holds a key; a fresh vault is uninitialized.
        """
        vault = cls(path, **kwargs)
        logger.debug("Opened vault at %s", vault.path)
        return vault

    # -- lifecycle ----------------------------------------------------------

    def is_initialized(self) -> bool:
        """True once a salt has been persisted."""
        return self._store.get_meta(META_SALT) is not None

    def init(self, password: str, force: bool = False) -> None:
        """Create the vault's salt and verification token, then unlock.

        Args:
            password: New master password.
            force: Overwrite an existing salt/token. Every secret stored
                under the old password becomes permanently unreadable.

        Raises:
            VaultAlreadyInitialized: If initialized and force is False.
        """
        with self._lock:
            if self.is_initialized() and not force:
                raise VaultAlreadyInitialized(str(self.path))

            key, salt = key_from_password(password)
            try:
                token = encrypt(VERIFICATION_TOKEN, key)
                self._store.set_meta_many({
                    META_SALT: salt,
                    META_VERIFICATION_NONCE: token.nonce,
                    META_VERIFICATION_DATA: token.ciphertext,
                })
            except BaseException:
                key.wipe()
                raise

            self._replace_key(key)
            if force:
                logger.warning("Vault at %s re-initialized", self.path)
            else:
                logger.info("Vault initialized at %s", self.path)
            self._audit(Action.INIT, "vault", True)

    def unlock(self, password: str) -> None:
        """Re-derive the key and check it against the verification token.

        Raises:
            InvalidPassword: Wrong password, uninitialized vault, or a
                corrupted verification record. The cases are not
                distinguished.
        """
        with self._lock:
            salt = self._store.get_meta(META_SALT)
            nonce = self._store.get_meta(META_VERIFICATION_NONCE)
            data = self._store.get_meta(META_VERIFICATION_DATA)
            if salt is None or nonce is None or data is None:
                self._audit(Action.UNLOCK, "vault", False, "Invalid password")
                raise InvalidPassword()

            key = derive_key(password, salt)
            try:
                plain = decrypt(EncryptedEnvelope(nonce, data), key)
                if not hmac.compare_digest(plain, VERIFICATION_TOKEN):
                    raise InvalidPassword()
            except (DecryptionError, InvalidPassword):
                key.wipe()
                self._audit(Action.UNLOCK, "vault", False, "Invalid password")
                raise InvalidPassword() from None

            self._replace_key(key)
            logger.info("Vault unlocked")
            self._audit(Action.UNLOCK, "vault", True)

    def lock(self) -> None:
        """Wipe the key. No-op when already locked."""
        with self._lock:
            if self._key is None:
                return
            self._wipe_key()
            logger.info("Vault locked")
            self._audit(Action.LOCK, "vault", True)

    def is_unlocked(self) -> bool:
        with self._lock:
            return self._key is not None

    def lock_if_idle(self, now: Optional[float] = None) -> bool:
        """Lock when idle longer than auto_lock_seconds.

        Returns:
            True if this call locked the vault.
        """
        with self._lock:
            if self._key is None or not self.auto_lock_seconds:
                return False
            now = self._clock() if now is None else now
            if now - self._last_activity < self.auto_lock_seconds:
                return False
            logger.info("Auto-locking vault after %.0fs idle",
                        now - self._last_activity)
            self.lock()
            return True

    def close(self) -> None:
        """Lock and release the database connection."""
        with self._lock:
            self.lock()
            self._store.close()

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self._wipe_key()
        except AttributeError:
            pass

    # -- secrets ------------------------------------------------------------

    def get(self, path: str) -> Optional[str]:
        """Decrypt and return the secret at path, or None if absent.

        Raises:
            VaultLocked: If the vault is locked.
            DecryptionError: If the stored blob is malformed or fails
                authentication.
        """
        with self._lock:
            key = self._require_key("read secrets")
            try:
                blob = self._store.get(path)
                info = self._store.get_info(path) if blob is not None else None
            except StorageError as exc:
                self._audit(Action.READ, path, False, str(exc))
                raise

            if blob is None:
                self._audit(Action.READ, path, False, "Not found")
                return None
            if info is not None and info.is_expired():
                self._audit(Action.READ, path, False, "Expired")
                return None

            try:
                value = self._decrypt_value(blob, key)
            except DecryptionError as exc:
                self._audit(Action.READ, path, False, str(exc))
                raise

            self._audit(Action.READ, path, True)
            return value

    def set(
        self, path: str, value: str, options: Optional[SetOptions] = None
    ) -> None:
        """Encrypt and store a secret, replacing any existing value.

        Re-setting a path keeps its original created_at.

        Raises:
            VaultLocked: If the vault is locked.
            StorageError: If the write fails.
        """
        opts = options or SetOptions()
        with self._lock:
            key = self._require_key("write secrets")
            blob = encrypt_blob(value.encode("utf-8"), key)
            now = utcnow()
            info = SecretInfo(
                path=path,
                access=opts.access,
                tags=list(opts.tags),
                note=opts.note,
                created_at=now,
                updated_at=now,
                expires_at=now + opts.ttl if opts.ttl is not None else None,
                created_by=self._actor.identifier,
            )
            try:
                self._store.upsert(path, blob, info)
            except StorageError as exc:
                self._audit(Action.WRITE, path, False, str(exc))
                raise
            self._audit(Action.WRITE, path, True)

    def delete(self, path: str) -> bool:
        """Delete the secret at path.

        Returns:
            True if a secret existed; False (not an error) otherwise.
        """
        with self._lock:
            self._require_key("delete secrets")
            try:
                existed = self._store.delete(path)
            except StorageError as exc:
                self._audit(Action.DELETE, path, False, str(exc))
                raise
            self._audit(
                Action.DELETE, path, existed, None if existed else "Not found"
            )
            return existed

    def list(self, pattern: Optional[str] = None) -> list[SecretInfo]:
        """Metadata for secrets whose path matches pattern (``*`` wildcard).

        Never decrypts values.
        """
        with self._lock:
            self._require_key("list secrets")
            return self._store.list(pattern)

    def export(self, pattern: Optional[str] = None) -> list[ExportedSecret]:
        """Decrypt every matching, unexpired secret for export.

        Recorded as a single EXPORT audit entry.
        """
        with self._lock:
            key = self._require_key("export secrets")
            scope = pattern or "*"
            exported: list[ExportedSecret] = []
            try:
                for info in self._store.list(pattern):
                    if info.is_expired():
                        continue
                    blob = self._store.get(info.path)
                    if blob is None:
                        continue
                    exported.append(ExportedSecret(
                        path=info.path,
                        value=self._decrypt_value(blob, key),
                        access=info.access,
                        tags=info.tags,
                        note=info.note,
                    ))
            except ClawBoxError as exc:
                self._audit(Action.EXPORT, scope, False, str(exc))
                raise
            self._audit(Action.EXPORT, scope, True)
            return exported

    def purge_expired(self) -> int:
        """Delete every secret whose TTL has passed."""
        with self._lock:
            self._require_key("purge secrets")
            removed = self._store.purge_expired()
            if removed:
                self._audit(Action.DELETE, "ttl:expired", True)
            return removed

    # -- audit & sync -------------------------------------------------------

    def audit(self, flt: Optional[AuditFilter] = None) -> list[AuditEntry]:
        """Query the audit log, newest first."""
        return self._ledger.query(flt)

    def verify_audit_integrity(self) -> bool:
        """Replay the audit hash chain; False if anything was altered."""
        return self._ledger.verify_integrity()

    @property
    def ledger(self) -> AuditLedger:
        return self._ledger

    def export_sync_key(self) -> DerivedKey:
        """Copy of the vault key for the sync manager, which must wipe it."""
        with self._lock:
            return self._require_key("export the sync key").export()

    # -- internals ----------------------------------------------------------

    def _require_key(self, operation: str) -> DerivedKey:
        self.lock_if_idle()
        if self._key is None:
            raise VaultLocked(operation)
        self._last_activity = self._clock()
        return self._key

    def _replace_key(self, key: DerivedKey) -> None:
        self._wipe_key()
        self._key = key
        self._last_activity = self._clock()

    def _wipe_key(self) -> None:
        if self._key is not None:
            self._key.wipe()
            self._key = None

    @staticmethod
    def _decrypt_value(blob: bytes, key: DerivedKey) -> str:
        plain = decrypt_blob(blob, key)
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError(f"Secret is not valid UTF-8: {exc}") from exc

    def _audit(
        self,
        action: Action,
        key_path: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        entry = AuditEntry(
            actor=self._actor,
            action=action,
            key_path=key_path,
            success=success,
            error_message=error,
            source=self._source,
        )
        try:
            self._ledger.log(entry)
        except (ClawBoxError, OSError) as exc:
            logger.warning(
                "Audit log failed for %s %s: %s", action.value, key_path, exc
            )
