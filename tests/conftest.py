"""Shared test fixtures for clawbox."""

from __future__ import annotations

from pathlib import Path

import pytest

PASSWORD = "correct horse battery staple"


@pytest.fixture(autouse=True)
def fast_kdf(request, monkeypatch):
    """Shrink Argon2id cost so each derivation takes milliseconds.

    Tests marked ``real_kdf`` keep the production parameters.
    """
    if request.node.get_closest_marker("real_kdf"):
        return
    import clawbox.crypto as crypto

    monkeypatch.setattr(crypto, "ARGON2_MEMORY_KIB", 1024)
    monkeypatch.setattr(crypto, "ARGON2_ITERATIONS", 1)
    monkeypatch.setattr(crypto, "ARGON2_PARALLELISM", 1)


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    """Provide a temporary vault directory."""
    return tmp_path / ".clawbox"


@pytest.fixture
def vault(vault_dir: Path):
    """An initialized, unlocked vault."""
    from clawbox.vault import Vault

    v = Vault.open(vault_dir)
    v.init(PASSWORD)
    yield v
    v.close()


@pytest.fixture
def key():
    """A derived key for crypto-level tests."""
    from clawbox.crypto import key_from_password

    derived, _salt = key_from_password(PASSWORD)
    yield derived
    derived.wipe()
