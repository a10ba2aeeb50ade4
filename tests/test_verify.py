"""Tests for local and packaged snapshot verification."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from claude_profiles.models import IssueLevel
from claude_profiles.verify import verify_local, verify_packaged

from conftest import flat_record, wrapped_record


def _messages(result, level=None) -> list[str]:
    return [i.message for i in result.issues if level is None or i.level == level]


class TestVerifyLocal:
    def test_complete_install(self, config, linux_bridge):
        result = verify_local(config, linux_bridge)
        assert result.valid
        assert ".claude.json" in result.found
        assert ".claude/.credentials.json" in result.found

    def test_missing_required_config(self, config, linux_bridge):
        (config.home_path / ".claude.json").unlink()
        result = verify_local(config, linux_bridge)
        assert not result.valid
        assert "Missing required file: Claude configuration" in _messages(result, IssueLevel.ERROR)

    def test_missing_optional_is_warning(self, config, linux_bridge):
        (config.home_path / ".claude.json.backup").unlink()
        result = verify_local(config, linux_bridge)
        assert result.valid
        assert any("Configuration backup" in m for m in _messages(result, IssueLevel.WARNING))

    def test_linux_requires_credential_file(self, config, linux_bridge):
        config.credentials_path().unlink()
        result = verify_local(config, linux_bridge)
        assert not result.valid

    def test_unparseable_credentials(self, config, linux_bridge):
        config.credentials_path().write_text("{broken")
        result = verify_local(config, linux_bridge)
        assert not result.valid
        assert any("is not valid JSON" in m for m in _messages(result))

    def test_flat_credentials_accepted(self, config, linux_bridge):
        config.credentials_path().write_text(json.dumps(flat_record()))
        result = verify_local(config, linux_bridge)
        assert result.valid
        assert any("Missing: " in m for m in _messages(result, IssueLevel.WARNING))

    def test_missing_token(self, config, linux_bridge):
        config.credentials_path().write_text(json.dumps(wrapped_record(refresh="")))
        result = verify_local(config, linux_bridge)
        assert not result.valid
        assert any("missing required tokens" in m for m in _messages(result))

    def test_darwin_keychain_skips_file_check(self, config, darwin_bridge, fake_keyring):
        fake_keyring.set_password("Claude Code-credentials", "octo", json.dumps(wrapped_record()))
        config.credentials_path().write_text("{broken")
        result = verify_local(config, darwin_bridge)
        assert result.valid
        assert ".macos.credentials.json" in result.found

    def test_darwin_file_check_is_optional(self, config, darwin_bridge):
        config.credentials_path().unlink()
        result = verify_local(config, darwin_bridge)
        assert result.valid
        assert _messages(result, IssueLevel.WARNING)


@pytest.fixture
def unpacked(tmp_path: Path) -> Path:
    root = tmp_path / "unpacked"
    (root / ".claude").mkdir(parents=True)
    (root / ".claude.json").write_text("{}")
    (root / ".claude.json.backup").write_text("{}")
    return root


class TestVerifyPackaged:
    def test_generic_export_only(self, unpacked, config):
        (unpacked / ".claude" / ".credentials.json").write_text(json.dumps(flat_record()))
        result = verify_packaged(unpacked, config)
        assert result.valid

    def test_native_export_only(self, unpacked, config):
        (unpacked / ".macos.credentials.json").write_text(json.dumps(wrapped_record()))
        result = verify_packaged(unpacked, config)
        assert result.valid
        assert ".macos.credentials.json" in result.found

    def test_no_export(self, unpacked, config):
        result = verify_packaged(unpacked, config)
        assert not result.valid
        assert any("Missing: Claude credentials" in m for m in _messages(result))

    def test_unparseable_export_is_reported(self, unpacked, config):
        (unpacked / ".macos.credentials.json").write_text("not json at all")
        (unpacked / ".claude" / ".credentials.json").write_text(json.dumps(wrapped_record()))
        result = verify_packaged(unpacked, config)
        assert not result.valid
        assert any(
            m.startswith("macOS credentials") and "is not valid JSON" in m
            for m in _messages(result)
        )

    def test_native_export_must_be_wrapped(self, unpacked, config):
        (unpacked / ".macos.credentials.json").write_text(json.dumps(flat_record()))
        result = verify_packaged(unpacked, config)
        assert not result.valid
        assert any("missing claudeAiOauth wrapper object" in m for m in _messages(result))

    def test_missing_config_file(self, unpacked, config):
        (unpacked / ".macos.credentials.json").write_text(json.dumps(wrapped_record()))
        (unpacked / ".claude.json").unlink()
        result = verify_packaged(unpacked, config)
        assert not result.valid
        assert "Missing: Claude configuration" in _messages(result, IssueLevel.ERROR)

    def test_missing_optional_fields_warn(self, unpacked, config):
        record = {"claudeAiOauth": {"accessToken": "a", "refreshToken": "r"}}
        (unpacked / ".macos.credentials.json").write_text(json.dumps(record))
        result = verify_packaged(unpacked, config)
        assert result.valid
        assert any("claudeAiOauth.expiresAt" in m for m in _messages(result, IssueLevel.WARNING))
