"""
Bridge — a status-code surface over the vault for other runtimes.

Desktop and mobile shells talk to the vault through opaque integer
handles and small integer status codes instead of Python exceptions.
Every call returns a Status; values come back as OwnedString objects
that the caller must release with free_string(), which wipes the
buffer.

    handle = open_vault("~/.clawbox")
    status = unlock(handle, password)
    status, value = get(handle, "github/token")
    ...
    free_string(value)
    close(handle)
"""

from __future__ import annotations

import itertools
import logging
import threading
from enum import IntEnum
from typing import Optional

from .errors import (
    ClawBoxError,
    InvalidPassword,
    SecretNotFound,
    StorageError,
    SyncError,
    VaultIOError,
    VaultLocked,
    VaultNotFound,
)
from .models import AccessLevel, SetOptions
from .vault import Vault

logger = logging.getLogger("clawbox.bridge")


class Status(IntEnum):
    """Status codes returned across the bridge."""

    OK = 0
    LOCKED = 1
    INVALID_PASSWORD = 2
    NOT_FOUND = 3
    IO_ERROR = 4
    UNKNOWN = -1


_STATUS_BY_ERROR = (
    (VaultLocked, Status.LOCKED),
    (InvalidPassword, Status.INVALID_PASSWORD),
    (SecretNotFound, Status.NOT_FOUND),
    (VaultNotFound, Status.NOT_FOUND),
    (StorageError, Status.IO_ERROR),
    (VaultIOError, Status.IO_ERROR),
    (SyncError, Status.IO_ERROR),
)


def status_for(exc: BaseException) -> Status:
    """Map an exception to its bridge status code."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    if isinstance(exc, OSError):
        return Status.IO_ERROR
    return Status.UNKNOWN


class OwnedString:
    """A secret value handed across the bridge.

    The holder reads it with value() and must release it with
    free_string(); after that the buffer is zeroed and unreadable.
    """

    __slots__ = ("_buf", "_freed")

    def __init__(self, value: str) -> None:
        self._buf = bytearray(value.encode("utf-8"))
        self._freed = False

    def value(self) -> str:
        if self._freed:
            raise ValueError("String has already been freed")
        return self._buf.decode("utf-8")

    @property
    def freed(self) -> bool:
        return self._freed

    def free(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._freed = True

    def __del__(self) -> None:
        try:
            self.free()
        except AttributeError:
            pass


_handles: dict[int, Vault] = {}
_handles_lock = threading.Lock()
_next_handle = itertools.count(1)


def _vault(handle: int) -> Optional[Vault]:
    with _handles_lock:
        return _handles.get(handle)


def open_vault(path: str) -> Optional[int]:
    """Open (or create) a vault; returns a handle, or None on failure."""
    try:
        vault = Vault.open(path)
    except ClawBoxError as exc:
        logger.error("Bridge open failed for %s: %s", path, exc)
        return None
    with _handles_lock:
        handle = next(_next_handle)
        _handles[handle] = vault
    return handle


def close(handle: int) -> None:
    """Lock the vault and release the handle. Unknown handles are ignored."""
    with _handles_lock:
        vault = _handles.pop(handle, None)
    if vault is not None:
        vault.close()


def _call(handle: int, fn) -> Status:
    vault = _vault(handle)
    if vault is None:
        return Status.UNKNOWN
    try:
        fn(vault)
    except ClawBoxError as exc:
        logger.debug("Bridge call failed: %s", exc)
        return status_for(exc)
    return Status.OK


def init(handle: int, password: str) -> Status:
    return _call(handle, lambda v: v.init(password))


def unlock(handle: int, password: str) -> Status:
    return _call(handle, lambda v: v.unlock(password))


def lock(handle: int) -> None:
    vault = _vault(handle)
    if vault is not None:
        vault.lock()


def is_unlocked(handle: int) -> bool:
    vault = _vault(handle)
    return vault is not None and vault.is_unlocked()


def get(handle: int, path: str) -> tuple[Status, Optional[OwnedString]]:
    """Read a secret. NOT_FOUND when the path holds nothing."""
    vault = _vault(handle)
    if vault is None:
        return Status.UNKNOWN, None
    try:
        value = vault.get(path)
    except ClawBoxError as exc:
        return status_for(exc), None
    if value is None:
        return Status.NOT_FOUND, None
    return Status.OK, OwnedString(value)


def free_string(s: Optional[OwnedString]) -> None:
    """Release a string returned by get(). None is accepted."""
    if s is not None:
        s.free()


def _access_level(value: int) -> AccessLevel:
    """Unknown levels fall back to NORMAL."""
    try:
        return AccessLevel(value)
    except ValueError:
        return AccessLevel.NORMAL


def set(
    handle: int,
    path: str,
    value: str,
    access: int = int(AccessLevel.NORMAL),
) -> Status:
    options = SetOptions(access=_access_level(access))
    return _call(handle, lambda v: v.set(path, value, options))


def delete(handle: int, path: str) -> Status:
    """Delete a secret. NOT_FOUND when nothing was stored at path."""
    vault = _vault(handle)
    if vault is None:
        return Status.UNKNOWN
    try:
        existed = vault.delete(path)
    except ClawBoxError as exc:
        return status_for(exc)
    return Status.OK if existed else Status.NOT_FOUND
