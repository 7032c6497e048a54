"""
Sync data models -- metadata, state, and backend configuration.
"""

from __future__ import annotations

import socket
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class SyncBackendType(str, Enum):
    """Supported sync transport backends."""

    LOCAL = "local"
    ICLOUD = "icloud"


class SyncResult(str, Enum):
    """Outcome of SyncManager.sync()."""

    PULLED = "pulled"
    PUSHED = "pushed"
    UP_TO_DATE = "up_to_date"
    UNAVAILABLE = "unavailable"

    def describe(self) -> str:
        return {
            SyncResult.PULLED: "Pulled remote vault",
            SyncResult.PUSHED: "Pushed local vault",
            SyncResult.UP_TO_DATE: "Already up to date",
            SyncResult.UNAVAILABLE: "Sync location not available",
        }[self]


def device_id() -> str:
    """Identifier of this device (its hostname)."""
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


class SyncMeta(BaseModel):
    """Version record stored next to the vault and next to the remote blob.

    On disk it is three plain lines: version, unix timestamp, device id.
    """

    version: int = 0
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    device_id: str = Field(default_factory=device_id)

    @classmethod
    def parse(cls, text: str) -> "SyncMeta":
        """Parse the three-line format; missing or bad lines fall back to 0/''."""
        lines = text.splitlines()

        def _int(idx: int) -> int:
            try:
                return int(lines[idx].strip())
            except (IndexError, ValueError):
                return 0

        return cls(
            version=_int(0),
            timestamp=_int(1),
            device_id=lines[2].strip() if len(lines) > 2 else "",
        )

    def render(self) -> str:
        return f"{self.version}\n{self.timestamp}\n{self.device_id}"

    @classmethod
    def from_file(cls, path: Path) -> "SyncMeta":
        return cls.parse(path.read_text(encoding="utf-8"))

    def to_file(self, path: Path) -> None:
        path.write_text(self.render(), encoding="utf-8")


class SyncBackendConfig(BaseModel):
    """Configuration for the sync transport."""

    backend: SyncBackendType = SyncBackendType.LOCAL
    enabled: bool = False
    local_path: Optional[Path] = None
    icloud_container: str = "iCloud~com~clawbox~ClawBox"


class SyncState(BaseModel):
    """Sync bookkeeping persisted as sync-state.json next to the vault."""

    local_version: int = 0
    remote_version: int = 0
    last_sync: Optional[datetime] = None
    last_result: Optional[SyncResult] = None
    push_count: int = 0
    pull_count: int = 0
    last_error: Optional[str] = None
