"""
Sync storage backends -- where the encrypted vault travels.

Each backend stores exactly two files at its location:

    vault.encrypted   nonce ‖ AES-256-GCM(vault.db)
    vault.meta        version / timestamp / device_id

Local: plain directory. For USB drives, NAS, or any mounted cloud drive.
iCloud: the ClawBox container inside iCloud Drive (macOS).

Uploads go through temp files and os.replace(), so a failed push never
leaves a half-written bundle behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..errors import SyncError
from .models import SyncBackendConfig, SyncBackendType, SyncMeta

logger = logging.getLogger("clawbox.sync.backends")

VAULT_FILE = "vault.encrypted"
META_FILE = "vault.meta"


def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to path via a sibling temp file and os.replace()."""
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class SyncBackend(ABC):
    """Abstract sync transport backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""

    @abstractmethod
    def available(self) -> bool:
        """Check if this backend is currently usable."""

    @abstractmethod
    def read_meta(self) -> Optional[SyncMeta]:
        """Remote version record, or None if nothing has been pushed yet.

        Raises:
            SyncError: If the location cannot be read.
        """

    @abstractmethod
    def upload(self, data: bytes, meta: SyncMeta) -> None:
        """Store the encrypted bundle and its version record.

        Raises:
            SyncError: On any transport failure.
        """

    @abstractmethod
    def download(self) -> bytes:
        """Fetch the encrypted bundle.

        Raises:
            SyncError: If no bundle exists or it cannot be read.
        """

    def remote_version(self) -> int:
        meta = self.read_meta()
        return meta.version if meta else 0


class LocalBackend(SyncBackend):
    """Directory backend for USB, NAS, or mounted drives.

    Args:
        target: Directory holding vault.encrypted and vault.meta.
        create: Create the directory if it does not exist.
    """

    def __init__(self, target: Path, create: bool = True) -> None:
        self.target = Path(target).expanduser()
        if create:
            try:
                self.target.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("Cannot create sync dir %s: %s", self.target, exc)

    @property
    def name(self) -> str:
        return "local"

    @property
    def location(self) -> Path:
        return self.target

    def available(self) -> bool:
        return self.target.is_dir()

    def read_meta(self) -> Optional[SyncMeta]:
        meta_path = self.target / META_FILE
        if not meta_path.exists():
            return None
        try:
            return SyncMeta.from_file(meta_path)
        except OSError as exc:
            raise SyncError(f"Cannot read {meta_path}: {exc}") from exc

    def upload(self, data: bytes, meta: SyncMeta) -> None:
        if not self.available():
            raise SyncError(f"Sync location unavailable: {self.target}")
        vault_path = self.target / VAULT_FILE
        try:
            previous = vault_path.read_bytes() if vault_path.exists() else None
            atomic_write(vault_path, data)
        except OSError as exc:
            raise SyncError(f"Upload to {self.target} failed: {exc}") from exc
        try:
            atomic_write(self.target / META_FILE, meta.render().encode("utf-8"))
        except OSError as exc:
            self._restore_bundle(previous)
            raise SyncError(f"Upload to {self.target} failed: {exc}") from exc
        logger.info("Vault pushed to %s (version %d)", self.target, meta.version)

    def _restore_bundle(self, previous: Optional[bytes]) -> None:
        """Put back the bundle that matches the unchanged meta file."""
        vault_path = self.target / VAULT_FILE
        try:
            if previous is None:
                vault_path.unlink(missing_ok=True)
            else:
                atomic_write(vault_path, previous)
        except OSError as exc:
            logger.error("Could not restore %s after failed push: %s", vault_path, exc)

    def download(self) -> bytes:
        vault_path = self.target / VAULT_FILE
        if not vault_path.exists():
            raise SyncError(f"No remote vault found at {self.target}")
        try:
            data = vault_path.read_bytes()
        except OSError as exc:
            raise SyncError(f"Cannot read {vault_path}: {exc}") from exc
        logger.info("Vault downloaded from %s (%d bytes)", self.target, len(data))
        return data


class ICloudBackend(LocalBackend):
    """iCloud Drive container backend (macOS).

    Available only when ``~/Library/Mobile Documents`` exists; the
    container's Documents folder is created on first use.

    Args:
        container: iCloud container directory name.
        home: Home directory to resolve iCloud Drive under.
    """

    def __init__(
        self,
        container: str = "iCloud~com~clawbox~ClawBox",
        home: Optional[Path] = None,
    ) -> None:
        self.icloud_base = (home or Path.home()) / "Library" / "Mobile Documents"
        target = self.icloud_base / container / "Documents"
        super().__init__(target, create=self.icloud_base.is_dir())

    @property
    def name(self) -> str:
        return "icloud"

    def available(self) -> bool:
        return self.icloud_base.is_dir() and self.target.is_dir()


def create_backend(config: SyncBackendConfig, vault_dir: Path) -> SyncBackend:
    """Factory function to create the configured backend.

    Args:
        config: Backend configuration.
        vault_dir: Vault directory (used for the default local target).

    Returns:
        Instantiated SyncBackend.

    Raises:
        ValueError: If the backend type is not supported.
    """
    if config.backend == SyncBackendType.LOCAL:
        target = (
            config.local_path.expanduser()
            if config.local_path
            else vault_dir / "sync" / "local-backup"
        )
        return LocalBackend(target)
    if config.backend == SyncBackendType.ICLOUD:
        return ICloudBackend(config.icloud_container)
    raise ValueError(f"Unsupported backend: {config.backend}")
