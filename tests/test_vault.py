"""
Tests for the Vault -- lifecycle, secrets, TTL, auto-lock, and auditing.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import pytest

from clawbox.errors import (
    DecryptionError,
    InvalidPassword,
    StorageError,
    VaultAlreadyInitialized,
    VaultLocked,
)
from clawbox.models import AccessLevel, Action, AIActor, AuditFilter, SetOptions, utcnow
from clawbox.vault import Vault

from conftest import PASSWORD


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestLifecycle:
    """init / unlock / lock transitions."""

    def test_fresh_vault_is_uninitialized_and_locked(self, vault_dir: Path):
        v = Vault.open(vault_dir)
        assert not v.is_initialized()
        assert not v.is_unlocked()
        assert (vault_dir / "vault.db").exists()
        v.close()

    def test_init_unlocks(self, vault):
        assert vault.is_initialized()
        assert vault.is_unlocked()

    def test_lock_then_unlock(self, vault):
        vault.set("a", "1")
        vault.lock()
        assert not vault.is_unlocked()
        vault.unlock(PASSWORD)
        assert vault.get("a") == "1"

    def test_lock_is_idempotent(self, vault):
        vault.lock()
        vault.lock()
        assert not vault.is_unlocked()
        locks = vault.audit(AuditFilter(action=Action.LOCK))
        assert len(locks) == 1

    def test_wrong_password(self, vault):
        vault.lock()
        with pytest.raises(InvalidPassword):
            vault.unlock("wrong")
        assert not vault.is_unlocked()
        (entry,) = vault.audit(AuditFilter(action=Action.UNLOCK, limit=1))
        assert entry.success is False

    def test_unlock_uninitialized_is_invalid_password(self, vault_dir: Path):
        v = Vault.open(vault_dir)
        with pytest.raises(InvalidPassword):
            v.unlock(PASSWORD)
        v.close()

    def test_reopen_persists(self, vault_dir: Path):
        with Vault.open(vault_dir) as v:
            v.init(PASSWORD)
            v.set("github/token", "ghp_123")
        with Vault.open(vault_dir) as v:
            assert not v.is_unlocked()
            v.unlock(PASSWORD)
            assert v.get("github/token") == "ghp_123"

    def test_reinit_refused(self, vault):
        with pytest.raises(VaultAlreadyInitialized):
            vault.init("another")
        vault.lock()
        vault.unlock(PASSWORD)

    def test_forced_reinit_orphans_secrets(self, vault):
        vault.set("a", "1")
        vault.init("another", force=True)
        vault.lock()
        with pytest.raises(InvalidPassword):
            vault.unlock(PASSWORD)
        vault.unlock("another")
        with pytest.raises(DecryptionError):
            vault.get("a")

    @pytest.mark.parametrize("op", [
        lambda v: v.get("a"),
        lambda v: v.set("a", "1"),
        lambda v: v.delete("a"),
        lambda v: v.list(),
        lambda v: v.export(),
        lambda v: v.export_sync_key(),
    ])
    def test_locked_operations_raise(self, vault, op):
        vault.lock()
        with pytest.raises(VaultLocked):
            op(vault)


class TestSecrets:
    """get / set / delete / list semantics."""

    def test_set_get(self, vault):
        vault.set("github/token", "ghp_abc")
        assert vault.get("github/token") == "ghp_abc"

    def test_unicode_and_empty_values(self, vault):
        vault.set("u", "pässwörd ☃")
        vault.set("empty", "")
        assert vault.get("u") == "pässwörd ☃"
        assert vault.get("empty") == ""

    def test_missing_returns_none(self, vault):
        assert vault.get("nope") is None

    def test_values_encrypted_at_rest(self, vault):
        vault.set("plain", "super-secret-value")
        data = vault.db_path.read_bytes()
        assert b"super-secret-value" not in data

    def test_overwrite_preserves_created_at(self, vault):
        vault.set("a", "1", SetOptions(tags=["x"]))
        first = vault.list("a")[0]
        vault.set("a", "2", SetOptions(access=AccessLevel.SENSITIVE))
        (info,) = vault.list("a")
        assert vault.get("a") == "2"
        assert info.created_at == first.created_at
        assert info.access == AccessLevel.SENSITIVE
        assert info.tags == []

    def test_delete(self, vault):
        vault.set("a", "1")
        assert vault.delete("a") is True
        assert vault.get("a") is None
        assert vault.delete("a") is False

    def test_list_pattern(self, vault):
        for path in ("github/token", "github/ssh", "openai/key"):
            vault.set(path, "v")
        assert [i.path for i in vault.list("github/*")] == ["github/ssh", "github/token"]
        assert len(vault.list()) == 3

    def test_metadata_round_trip(self, vault):
        vault.set("a", "1", SetOptions(access=AccessLevel.CRITICAL, tags=["prod", "db"],
                                       note="rotate monthly"))
        (info,) = vault.list()
        assert info.access == AccessLevel.CRITICAL
        assert info.tags == ["prod", "db"]
        assert info.note == "rotate monthly"
        assert info.created_by

    def test_export_decrypts_and_audits_once(self, vault):
        vault.set("github/token", "t1")
        vault.set("openai/key", "k1")
        exported = vault.export("github/*")
        assert [(s.path, s.value) for s in exported] == [("github/token", "t1")]
        exports = vault.audit(AuditFilter(action=Action.EXPORT))
        assert len(exports) == 1
        assert exports[0].key_path == "github/*"


class TestTTL:
    def test_expired_secret_reads_as_missing(self, vault, monkeypatch):
        vault.set("temp", "v", SetOptions(ttl=timedelta(hours=1)))
        (info,) = vault.list()
        assert info.expires_at is not None
        assert vault.get("temp") == "v"

        future = utcnow() + timedelta(hours=2)
        monkeypatch.setattr("clawbox.models.utcnow", lambda: future)
        assert vault.get("temp") is None
        assert vault.export() == []

    def test_purge_expired(self, vault):
        vault.set("gone", "v", SetOptions(ttl=timedelta(seconds=-1)))
        vault.set("kept", "v")
        assert vault.purge_expired() == 1
        assert [i.path for i in vault.list()] == ["kept"]


class TestAutoLock:
    def test_idle_vault_locks(self, vault_dir: Path):
        clock = FakeClock()
        v = Vault(vault_dir, auto_lock_seconds=60, clock=clock)
        v.init(PASSWORD)
        v.set("a", "1")

        clock.now += 30
        assert v.get("a") == "1"
        clock.now += 59
        assert v.lock_if_idle() is False

        clock.now += 61
        with pytest.raises(VaultLocked):
            v.get("a")
        assert not v.is_unlocked()
        v.close()

    def test_no_timeout_never_locks(self, vault):
        assert vault.lock_if_idle(now=10**9) is False
        assert vault.is_unlocked()


class TestAudit:
    def test_operations_are_audited(self, vault):
        vault.set("a", "1")
        vault.get("a")
        vault.get("missing")
        vault.delete("a")
        actions = [(e.action, e.key_path, e.success) for e in vault.audit()]
        assert actions[:4] == [
            (Action.DELETE, "a", True),
            (Action.READ, "missing", False),
            (Action.READ, "a", True),
            (Action.WRITE, "a", True),
        ]
        assert actions[-1] == (Action.INIT, "vault", True)
        assert vault.verify_audit_integrity() is True

    def test_actor_recorded(self, vault_dir: Path):
        with Vault.open(vault_dir, actor=AIActor(agent="build-bot")) as v:
            v.init(PASSWORD)
            v.set("a", "1")
            (entry,) = v.audit(AuditFilter(action=Action.WRITE))
        assert entry.actor.actor_type == "ai"
        assert entry.actor.identifier == "build-bot"

    def test_tampering_detected(self, vault):
        vault.set("a", "1")
        vault.get("nope")
        vault._store.connection.execute(
            "UPDATE audit_log SET success = 1 WHERE key_path = 'nope'"
        )
        assert vault.verify_audit_integrity() is False

    def test_audit_failure_does_not_fail_operation(self, vault, monkeypatch):
        from clawbox.errors import StorageError

        def broken(entry):
            raise StorageError("disk full")

        monkeypatch.setattr(vault.ledger, "log", broken)
        vault.set("a", "1")
        assert vault.get("a") == "1"

    def test_failed_decrypt_is_audited(self, vault):
        vault.set("a", "1")
        (info,) = vault.list("a")
        vault._store.upsert("a", b"short", info)

        with pytest.raises(DecryptionError):
            vault.get("a")
        (entry,) = vault.audit(AuditFilter(action=Action.READ, limit=1))
        assert entry.key_path == "a"
        assert entry.success is False
        assert entry.error_message
        assert vault.verify_audit_integrity() is True

    def test_failed_write_is_audited(self, vault, monkeypatch):
        def broken(path, value, info):
            raise StorageError("disk full")

        monkeypatch.setattr(vault._store, "upsert", broken)
        with pytest.raises(StorageError):
            vault.set("a", "1")
        (entry,) = vault.audit(AuditFilter(action=Action.WRITE, limit=1))
        assert entry.key_path == "a"
        assert entry.success is False
        assert "disk full" in entry.error_message
        assert vault.verify_audit_integrity() is True


class TestConcurrency:
    def test_threaded_writes_are_serialized(self, vault):
        errors = []

        def worker(n):
            try:
                for i in range(5):
                    vault.set(f"t{n}/{i}", f"{n}-{i}")
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(vault.list()) == 20
        assert vault.get("t3/4") == "3-4"
        writes = vault.audit(AuditFilter(action=Action.WRITE, limit=100))
        assert len(writes) == 20
        assert vault.verify_audit_integrity() is True
