"""
Export and import of secrets as JSON, YAML, or dotenv text.

Exports contain plaintext values. They are produced only through
Vault.export(), which records an EXPORT audit entry, and are meant to be
written straight to a file the operator controls.

dotenv keys are derived from paths: ``github/token`` <-> ``GITHUB_TOKEN``.
The mapping is lossy (underscores in a path come back as slashes).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable

import yaml

from .models import AccessLevel, ExportedSecret, SetOptions

logger = logging.getLogger("clawbox.transfer")

FORMATS = ("json", "yaml", "env")

_ESCAPE = re.compile(r"\\(.)")


def env_key(path: str) -> str:
    return path.replace("/", "_").replace("-", "_").upper()


def env_path(key: str) -> str:
    return key.strip().lower().replace("_", "/")


def _record(secret: ExportedSecret) -> dict:
    data = {
        "path": secret.path,
        "value": secret.value,
        "access": secret.access.label,
        "tags": list(secret.tags),
    }
    if secret.note is not None:
        data["note"] = secret.note
    return data


def dump_secrets(secrets: Iterable[ExportedSecret], fmt: str = "json") -> str:
    """Render exported secrets in the given format.

    Raises:
        ValueError: If fmt is not json, yaml, or env.
    """
    secrets = list(secrets)
    if fmt == "json":
        return json.dumps([_record(s) for s in secrets], indent=2) + "\n"
    if fmt == "yaml":
        return "# ClawBox export\n" + yaml.safe_dump(
            [_record(s) for s in secrets], default_flow_style=False, sort_keys=False
        )
    if fmt == "env":
        lines = []
        for s in secrets:
            escaped = s.value.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{env_key(s.path)}="{escaped}"')
        return "\n".join(lines) + ("\n" if lines else "")
    raise ValueError(f"Unsupported format: {fmt}")


def _from_mapping(data: dict) -> ExportedSecret:
    return ExportedSecret(
        path=data["path"],
        value=str(data["value"]),
        access=AccessLevel.parse(data.get("access", AccessLevel.NORMAL)),
        tags=data.get("tags") or [],
        note=data.get("note"),
    )


def _parse_env_value(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        quote, raw = raw[0], raw[1:-1]
        if quote == '"':
            raw = _ESCAPE.sub(r"\1", raw)
    return raw


def load_secrets(text: str, fmt: str = "json") -> list[ExportedSecret]:
    """Parse secrets from exported text.

    JSON and YAML accept a list of records. YAML additionally accepts a
    mapping of ``path: value`` or ``path: {value: ..., access: ...}``.

    Raises:
        ValueError: On an unknown format or malformed content.
    """
    if fmt == "env":
        secrets = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            if line.startswith("export "):
                line = line[len("export "):]
            key, raw = line.split("=", 1)
            secrets.append(ExportedSecret(path=env_path(key), value=_parse_env_value(raw)))
        return secrets

    if fmt == "json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON: {exc}") from exc
    elif fmt == "yaml":
        try:
            data = yaml.safe_load(text) or []
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML: {exc}") from exc
        if isinstance(data, dict):
            data = [
                {"path": path, **entry} if isinstance(entry, dict)
                else {"path": path, "value": entry}
                for path, entry in data.items()
            ]
    else:
        raise ValueError(f"Unsupported format: {fmt}")

    if not isinstance(data, list):
        raise ValueError("Expected a list of secrets")
    try:
        return [_from_mapping(item) for item in data]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed secret record: {exc}") from exc


def import_secrets(
    vault, secrets: Iterable[ExportedSecret], skip_existing: bool = False
) -> tuple[int, int]:
    """Write parsed secrets into an unlocked vault.

    Args:
        vault: Unlocked Vault.
        secrets: Records from load_secrets().
        skip_existing: Leave paths that already exist untouched.

    Returns:
        (imported, skipped) counts.
    """
    imported = skipped = 0
    for secret in secrets:
        if skip_existing and any(
            info.path == secret.path for info in vault.list(secret.path)
        ):
            skipped += 1
            continue
        vault.set(
            secret.path,
            secret.value,
            SetOptions(access=secret.access, tags=secret.tags, note=secret.note),
        )
        imported += 1
    logger.info("Imported %d secrets (%d skipped)", imported, skipped)
    return imported, skipped
