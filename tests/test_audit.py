"""
Tests for the hash-chained audit ledger.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import pytest

from clawbox.audit import AuditLedger, compute_hash
from clawbox.models import Action, ActorInfo, AuditEntry, AuditFilter, utcnow
from clawbox.storage import SqliteStore, to_unix


@pytest.fixture
def store(tmp_path: Path):
    s = SqliteStore(tmp_path / "vault.db")
    yield s
    s.close()


@pytest.fixture
def ledger(store) -> AuditLedger:
    return AuditLedger(store)


def _entry(key_path: str = "github/token", **kwargs) -> AuditEntry:
    kwargs.setdefault("action", Action.READ)
    kwargs.setdefault("success", True)
    return AuditEntry(key_path=key_path, **kwargs)


class TestChain:
    def test_first_entry_has_no_prev(self, ledger):
        stored = ledger.log(_entry())
        assert stored.prev_hash is None
        assert stored.hash == compute_hash(
            stored.id, to_unix(stored.timestamp), "human", "read",
            "github/token", True, None,
        )

    def test_entries_link(self, ledger):
        a = ledger.log(_entry("a"))
        b = ledger.log(_entry("b"))
        c = ledger.log(_entry("c"))
        assert b.prev_hash == a.hash
        assert c.prev_hash == b.hash
        assert ledger.head() == c.hash
        assert ledger.count() == 3

    def test_hash_covers_success_flag(self):
        ok = compute_hash("id", 1, "human", "read", "k", True, None)
        failed = compute_hash("id", 1, "human", "read", "k", False, None)
        assert ok != failed

    def test_empty_ledger_verifies(self, ledger):
        assert ledger.verify_integrity() is True
        assert ledger.head() is None

    def test_intact_chain_verifies(self, ledger):
        for i in range(5):
            ledger.log(_entry(f"k{i}", success=i % 2 == 0))
        assert ledger.verify_integrity() is True

    def test_concurrent_appends_keep_single_chain(self, ledger):
        def worker(n):
            for i in range(10):
                ledger.log(_entry(f"t{n}/{i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert ledger.count() == 40
        assert ledger.verify_integrity() is True


class TestTamper:
    def test_flipped_success_detected(self, ledger, store):
        ledger.log(_entry("a"))
        target = ledger.log(_entry("b", success=False))
        ledger.log(_entry("c"))
        store.connection.execute(
            "UPDATE audit_log SET success = 1 WHERE id = ?", (target.id,)
        )
        assert ledger.verify_integrity() is False
        assert ledger.first_broken_entry() == target.id

    def test_deleted_row_detected(self, ledger, store):
        ledger.log(_entry("a"))
        middle = ledger.log(_entry("b"))
        ledger.log(_entry("c"))
        store.connection.execute("DELETE FROM audit_log WHERE id = ?", (middle.id,))
        assert ledger.verify_integrity() is False

    def test_edited_key_path_detected(self, ledger, store):
        first = ledger.log(_entry("a"))
        store.connection.execute(
            "UPDATE audit_log SET key_path = 'z' WHERE id = ?", (first.id,)
        )
        assert ledger.first_broken_entry() == first.id


class TestQuery:
    def test_newest_first_with_limit(self, ledger):
        for i in range(5):
            ledger.log(_entry(f"k{i}"))
        entries = ledger.query(AuditFilter(limit=2))
        assert [e.key_path for e in entries] == ["k4", "k3"]

    def test_key_path_substring(self, ledger):
        ledger.log(_entry("github/token"))
        ledger.log(_entry("openai/key"))
        assert [e.key_path for e in ledger.query(AuditFilter(key_path="hub"))] == [
            "github/token"
        ]

    def test_filter_by_action_and_actor(self, ledger):
        ledger.log(_entry("a", action=Action.WRITE))
        ledger.log(_entry("b", actor=ActorInfo(actor_type="ai", identifier="bot")))
        writes = ledger.query(AuditFilter(action=Action.WRITE))
        assert [e.key_path for e in writes] == ["a"]
        ai = ledger.query(AuditFilter(actor_type="ai"))
        assert [e.actor.identifier for e in ai] == ["bot"]

    def test_filter_by_time(self, ledger):
        old = utcnow() - timedelta(days=3)
        ledger.log(_entry("old", timestamp=old))
        ledger.log(_entry("new"))
        recent = ledger.query(AuditFilter(since=utcnow() - timedelta(days=1)))
        assert [e.key_path for e in recent] == ["new"]
        before = ledger.query(AuditFilter(until=utcnow() - timedelta(days=1)))
        assert [e.key_path for e in before] == ["old"]

    def test_round_trips_fields(self, ledger):
        stored = ledger.log(_entry("x", success=False, error_message="Not found"))
        (loaded,) = ledger.query()
        assert loaded.id == stored.id
        assert loaded.error_message == "Not found"
        assert loaded.hash == stored.hash
        assert loaded.source.kind == "app"
