"""
ClawBox error taxonomy.

Every vault, crypto, audit, and sync failure surfaces as a subclass of
ClawBoxError. Messages name the path and the operation involved, never
the secret value.
"""

from __future__ import annotations

from typing import Optional


class ClawBoxError(Exception):
    """Base class for all ClawBox failures."""


class VaultLocked(ClawBoxError):
    """Raised when an operation needs the vault key but the vault is locked."""

    def __init__(self, operation: Optional[str] = None) -> None:
        self.operation = operation
        msg = "Vault is locked"
        if operation:
            msg = f"Vault is locked (cannot {operation})"
        super().__init__(msg)


class VaultNotFound(ClawBoxError):
    """Raised when no vault exists at the requested location."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Vault not found at {path}")


class VaultAlreadyInitialized(ClawBoxError):
    """Raised when init() would overwrite an existing salt and token."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(
            f"Vault at {path} is already initialized; "
            "re-initializing makes every stored secret unreadable"
        )


class SecretNotFound(ClawBoxError):
    """Raised by callers that require a secret to exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Secret not found: {path}")


class InvalidPassword(ClawBoxError):
    """Wrong password, missing vault, or corrupted verification record.

    The three cases are reported identically on purpose.
    """

    def __init__(self) -> None:
        super().__init__("Invalid master password")


class AccessDenied(ClawBoxError):
    """Raised by the policy layer when an actor may not touch a secret."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Access denied: {reason}")


class EncryptionError(ClawBoxError):
    """Cipher or key-derivation construction failure."""


class DecryptionError(ClawBoxError):
    """Authentication failure or malformed envelope."""


class StorageError(ClawBoxError):
    """The underlying secret store failed."""


class VaultIOError(ClawBoxError):
    """Filesystem failure around the vault or a sync location."""


class SyncError(ClawBoxError):
    """Sync transport failure or corrupted remote bundle."""


class SyncConfigError(SyncError):
    """Sync invoked without the configuration it needs (e.g. no key)."""
