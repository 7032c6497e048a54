"""
ClawBox — encrypted secret vault for humans, apps, and AI agents.

Secrets live encrypted at rest, every access lands in a hash-chained
audit log, and the whole vault can travel between devices as a single
encrypted bundle.
"""

import os

__version__ = "0.1.0"
__author__ = "ClawBox contributors"

CLAWBOX_HOME = os.environ.get("CLAWBOX_HOME", "~/.clawbox")

from .errors import (  # noqa: E402
    ClawBoxError,
    DecryptionError,
    EncryptionError,
    InvalidPassword,
    VaultLocked,
)
from .models import AccessLevel, SetOptions  # noqa: E402
from .vault import Vault  # noqa: E402

__all__ = [
    "AccessLevel",
    "ClawBoxError",
    "CLAWBOX_HOME",
    "DecryptionError",
    "EncryptionError",
    "InvalidPassword",
    "SetOptions",
    "Vault",
    "VaultLocked",
    "__version__",
]
