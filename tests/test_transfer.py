"""
Tests for export/import of secrets (json, yaml, env).
"""

from __future__ import annotations

import json

import pytest

from clawbox.models import AccessLevel, ExportedSecret, SetOptions
from clawbox.transfer import dump_secrets, env_key, env_path, import_secrets, load_secrets

SECRETS = [
    ExportedSecret(path="github/token", value="ghp_1", access=AccessLevel.SENSITIVE,
                   tags=["ci"], note="bot account"),
    ExportedSecret(path="openai/api-key", value='sk "quoted" \\ back'),
]


class TestDump:
    def test_json(self):
        data = json.loads(dump_secrets(SECRETS, "json"))
        assert data[0] == {
            "path": "github/token",
            "value": "ghp_1",
            "access": "sensitive",
            "tags": ["ci"],
            "note": "bot account",
        }
        assert "note" not in data[1]

    def test_yaml_header(self):
        text = dump_secrets(SECRETS, "yaml")
        assert text.startswith("# ClawBox export\n")
        assert "github/token" in text

    def test_env(self):
        text = dump_secrets(SECRETS, "env")
        lines = text.splitlines()
        assert lines[0] == 'GITHUB_TOKEN="ghp_1"'
        assert lines[1] == 'OPENAI_API_KEY="sk \\"quoted\\" \\\\ back"'

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            dump_secrets(SECRETS, "toml")


class TestLoad:
    @pytest.mark.parametrize("fmt", ["json", "yaml"])
    def test_structured_formats_keep_metadata(self, fmt):
        loaded = load_secrets(dump_secrets(SECRETS, fmt), fmt)
        assert loaded == SECRETS

    def test_env_values(self):
        loaded = load_secrets(dump_secrets(SECRETS, "env"), "env")
        assert [s.value for s in loaded] == ["ghp_1", 'sk "quoted" \\ back']
        assert loaded[0].path == "github/token"

    def test_env_comments_export_and_quotes(self):
        text = "# comment\n\nexport DB_URL='postgres://x'\nPLAIN=abc\nnot a pair\n"
        loaded = load_secrets(text, "env")
        assert [(s.path, s.value) for s in loaded] == [
            ("db/url", "postgres://x"),
            ("plain", "abc"),
        ]

    def test_yaml_mapping_form(self):
        text = "github/token: ghp_x\naws/key:\n  value: AKIA\n  access: critical\n"
        loaded = load_secrets(text, "yaml")
        assert loaded[0].value == "ghp_x"
        assert loaded[1].access == AccessLevel.CRITICAL

    @pytest.mark.parametrize("text,fmt", [
        ("{not json", "json"),
        ('{"path": "a"}', "json"),
        ('[{"value": "no path"}]', "json"),
        ("- [unclosed", "yaml"),
        ('[{"path": "a", "value": "b", "access": "top-secret"}]', "json"),
    ])
    def test_malformed_rejected(self, text, fmt):
        with pytest.raises(ValueError):
            load_secrets(text, fmt)

    def test_env_key_mapping(self):
        assert env_key("aws/secret-key") == "AWS_SECRET_KEY"
        assert env_path("AWS_SECRET") == "aws/secret"


class TestImport:
    def test_import_into_vault(self, vault):
        imported, skipped = import_secrets(vault, SECRETS)
        assert (imported, skipped) == (2, 0)
        assert vault.get("openai/api-key") == 'sk "quoted" \\ back'
        (info,) = vault.list("github/token")
        assert info.access == AccessLevel.SENSITIVE
        assert info.note == "bot account"

    def test_skip_existing(self, vault):
        vault.set("github/token", "keep-me", SetOptions())
        imported, skipped = import_secrets(vault, SECRETS, skip_existing=True)
        assert (imported, skipped) == (1, 1)
        assert vault.get("github/token") == "keep-me"

    def test_export_import_round_trip(self, vault, vault_dir, tmp_path):
        from clawbox.vault import Vault

        import_secrets(vault, SECRETS)
        text = dump_secrets(vault.export(), "json")

        with Vault.open(tmp_path / "second") as other:
            other.init("pw")
            import_secrets(other, load_secrets(text, "json"))
            assert other.get("github/token") == "ghp_1"
            assert len(other.list()) == 2
