"""
Crypto engine — Argon2id key derivation and AES-256-GCM envelopes.

Key hierarchy:
    master password + per-vault salt
    └── DerivedKey (Argon2id, 64 MiB / 3 passes / 4 lanes, 32 bytes)
        ├── encrypts every secret value
        ├── encrypts the password verification token
        └── (exported copy) encrypts sync bundles

Envelope wire format:
    nonce (12 bytes) ‖ ciphertext (GCM tag appended)

Key bytes live in a mutable buffer that is overwritten with zeros when
the key is wiped, leaves a ``with`` block, or is garbage-collected.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DecryptionError, EncryptionError

logger = logging.getLogger("clawbox.crypto")

# Argon2id cost parameters
ARGON2_MEMORY_KIB = 65536  # 64 MiB
ARGON2_ITERATIONS = 3
ARGON2_PARALLELISM = 4

SALT_LEN = 32
KEY_LEN = 32  # 256 bits
NONCE_LEN = 12  # 96 bits for GCM


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


class DerivedKey:
    """256-bit symmetric key held in a wipeable buffer.

    Use as a context manager to guarantee the bytes are zeroized when
    the block exits, including on exceptions::

        with derive_key(password, salt) as key:
            envelope = encrypt(data, key)
    """

    __slots__ = ("_buf", "_wiped")

    def __init__(self, raw: bytearray) -> None:
        if len(raw) != KEY_LEN:
            raise EncryptionError(
                f"Key must be {KEY_LEN} bytes, got {len(raw)}"
            )
        self._buf = raw
        self._wiped = False

    @classmethod
    def from_bytes(cls, raw: bytes) -> "DerivedKey":
        """Build a key from raw bytes (copied into a fresh buffer)."""
        return cls(bytearray(raw))

    def export(self) -> "DerivedKey":
        """Return an independent copy for the sync manager.

        The copy owns its own buffer; its holder must wipe it.
        """
        return DerivedKey(bytearray(self._material()))

    def _material(self) -> bytearray:
        """The live buffer, handed to ciphers without an immutable copy."""
        if self._wiped:
            raise EncryptionError("Key material has been wiped")
        return self._buf

    def as_bytes(self) -> bytes:
        """Immutable copy of the key bytes. Not zeroed by wipe()."""
        return bytes(self._material())

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        """Overwrite the key bytes with zeros. Safe to call twice."""
        if self._wiped:
            return
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._wiped = True

    def __enter__(self) -> "DerivedKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __del__(self) -> None:
        try:
            self.wipe()
        except AttributeError:
            # __init__ failed before the slots were set
            pass

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DerivedKey):
            return NotImplemented
        return secrets.compare_digest(self._material(), other._material())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else "live"
        return f"<DerivedKey {state}>"


class EncryptedEnvelope:
    """Nonce plus ciphertext, the storage unit for any protected payload."""

    __slots__ = ("nonce", "ciphertext")

    def __init__(self, nonce: bytes, ciphertext: bytes) -> None:
        self.nonce = nonce
        self.ciphertext = ciphertext

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedEnvelope":
        """Split a stored blob into nonce and ciphertext.

        Raises:
            DecryptionError: If the blob is shorter than one nonce.
        """
        if len(blob) < NONCE_LEN:
            raise DecryptionError(
                f"Invalid data format: {len(blob)} bytes is shorter "
                f"than a {NONCE_LEN}-byte nonce"
            )
        return cls(bytes(blob[:NONCE_LEN]), bytes(blob[NONCE_LEN:]))


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def generate_salt() -> bytes:
    """Random per-vault salt, generated once at init."""
    return secrets.token_bytes(SALT_LEN)


def derive_key(password: str, salt: bytes) -> DerivedKey:
    """Derive the vault key from a password with Argon2id.

    Deterministic for a given (password, salt) pair so that unlock can
    re-derive the key and compare.

    Args:
        password: Master password.
        salt: Per-vault salt from generate_salt().

    Returns:
        DerivedKey owning the 32-byte result.

    Raises:
        EncryptionError: If the Argon2 parameters are rejected.
    """
    try:
        raw = hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=ARGON2_ITERATIONS,
            memory_cost=ARGON2_MEMORY_KIB,
            parallelism=ARGON2_PARALLELISM,
            hash_len=KEY_LEN,
            type=Type.ID,
        )
    except HashingError as exc:
        raise EncryptionError(f"Key derivation failed: {exc}") from exc
    return DerivedKey(bytearray(raw))


def encrypt(plaintext: bytes, key: DerivedKey) -> EncryptedEnvelope:
    """Encrypt with AES-256-GCM under a fresh random nonce.

    Raises:
        EncryptionError: If the cipher cannot be constructed.
    """
    try:
        cipher = AESGCM(key._material())
    except ValueError as exc:
        raise EncryptionError(f"Cipher construction failed: {exc}") from exc

    nonce = secrets.token_bytes(NONCE_LEN)
    ciphertext = cipher.encrypt(nonce, plaintext, None)
    return EncryptedEnvelope(nonce, ciphertext)


def decrypt(envelope: EncryptedEnvelope, key: DerivedKey) -> bytes:
    """Decrypt and authenticate an envelope.

    A wrong key and a tampered ciphertext are indistinguishable here;
    callers must treat both as "wrong password".

    Raises:
        DecryptionError: On tag mismatch or malformed nonce.
    """
    if len(envelope.nonce) != NONCE_LEN:
        raise DecryptionError(
            f"Nonce must be {NONCE_LEN} bytes, got {len(envelope.nonce)}"
        )
    try:
        cipher = AESGCM(key._material())
        return cipher.decrypt(envelope.nonce, envelope.ciphertext, None)
    except EncryptionError as exc:
        raise DecryptionError(str(exc)) from exc
    except (InvalidTag, ValueError) as exc:
        raise DecryptionError("Authentication failed") from exc


def encrypt_blob(plaintext: bytes, key: DerivedKey) -> bytes:
    """encrypt() serialized straight to ``nonce ‖ ciphertext``."""
    return encrypt(plaintext, key).to_bytes()


def decrypt_blob(blob: bytes, key: DerivedKey) -> bytes:
    """decrypt() from the ``nonce ‖ ciphertext`` wire format."""
    return decrypt(EncryptedEnvelope.from_bytes(blob), key)


def key_from_password(
    password: str, salt: Optional[bytes] = None
) -> tuple[DerivedKey, bytes]:
    """Derive a key, generating a salt when none is supplied.

    Returns:
        (key, salt) — the caller persists the salt.
    """
    salt = salt if salt is not None else generate_salt()
    logger.debug("Deriving key (argon2id m=%d t=%d p=%d)",
                 ARGON2_MEMORY_KIB, ARGON2_ITERATIONS, ARGON2_PARALLELISM)
    return derive_key(password, salt), salt
