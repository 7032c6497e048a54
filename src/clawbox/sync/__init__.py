"""
ClawBox sync -- the encrypted vault travels, the plaintext never does.

The whole vault.db is encrypted with the vault key and dropped at a
remote location (a directory, a USB stick, iCloud Drive) next to a
small version file. Version counters decide whether to push or pull.
"""

from .backends import ICloudBackend, LocalBackend, SyncBackend, create_backend
from .engine import SyncManager
from .models import SyncBackendConfig, SyncBackendType, SyncMeta, SyncResult, SyncState

__all__ = [
    "ICloudBackend",
    "LocalBackend",
    "SyncBackend",
    "SyncBackendConfig",
    "SyncBackendType",
    "SyncManager",
    "SyncMeta",
    "SyncResult",
    "SyncState",
    "create_backend",
]
