"""
Tests for the handle-based bridge and its status codes.
"""

from __future__ import annotations

import pytest

from clawbox import bridge
from clawbox.bridge import Status
from clawbox.errors import (
    DecryptionError,
    InvalidPassword,
    SecretNotFound,
    StorageError,
    VaultLocked,
)

from conftest import PASSWORD


@pytest.fixture
def handle(vault_dir):
    h = bridge.open_vault(str(vault_dir))
    assert h is not None
    yield h
    bridge.close(h)


def test_status_codes():
    assert [int(s) for s in Status] == [0, 1, 2, 3, 4, -1]


@pytest.mark.parametrize("exc,status", [
    (VaultLocked(), Status.LOCKED),
    (InvalidPassword(), Status.INVALID_PASSWORD),
    (SecretNotFound("x"), Status.NOT_FOUND),
    (StorageError("disk"), Status.IO_ERROR),
    (OSError("io"), Status.IO_ERROR),
    (DecryptionError("bad"), Status.UNKNOWN),
])
def test_status_for(exc, status):
    assert bridge.status_for(exc) == status


class TestLifecycle:
    def test_init_get_set_delete(self, handle):
        assert bridge.init(handle, PASSWORD) == Status.OK
        assert bridge.is_unlocked(handle)
        assert bridge.set(handle, "github/token", "ghp_x") == Status.OK

        status, value = bridge.get(handle, "github/token")
        assert status == Status.OK
        assert value.value() == "ghp_x"
        bridge.free_string(value)

        assert bridge.delete(handle, "github/token") == Status.OK
        assert bridge.delete(handle, "github/token") == Status.NOT_FOUND
        assert bridge.get(handle, "github/token") == (Status.NOT_FOUND, None)

    def test_locked_and_wrong_password(self, handle):
        bridge.init(handle, PASSWORD)
        bridge.lock(handle)
        assert not bridge.is_unlocked(handle)
        assert bridge.get(handle, "a") == (Status.LOCKED, None)
        assert bridge.set(handle, "a", "1") == Status.LOCKED
        assert bridge.unlock(handle, "nope") == Status.INVALID_PASSWORD
        assert bridge.unlock(handle, PASSWORD) == Status.OK

    def test_unknown_access_level_stored_as_normal(self, handle):
        from clawbox.models import AccessLevel

        bridge.init(handle, PASSWORD)
        assert bridge.set(handle, "a/b", "v", access=7) == Status.OK
        assert bridge.set(handle, "c/d", "v", access=3) == Status.OK
        vault = bridge._handles[handle]
        assert vault.list("a/b")[0].access == AccessLevel.NORMAL
        assert vault.list("c/d")[0].access == AccessLevel.CRITICAL

    def test_unknown_handle(self):
        assert bridge.get(987654, "a") == (Status.UNKNOWN, None)
        assert bridge.unlock(987654, "pw") == Status.UNKNOWN
        assert not bridge.is_unlocked(987654)
        bridge.close(987654)

    def test_close_releases_handle(self, vault_dir):
        h = bridge.open_vault(str(vault_dir))
        bridge.init(h, PASSWORD)
        bridge.close(h)
        assert bridge.set(h, "a", "1") == Status.UNKNOWN


class TestOwnedString:
    def test_free_wipes_buffer(self):
        s = bridge.OwnedString("secret")
        buf = s._buf
        bridge.free_string(s)
        assert s.freed
        assert bytes(buf) == b"\x00" * len("secret")
        with pytest.raises(ValueError):
            s.value()

    def test_free_none_is_noop(self):
        bridge.free_string(None)
