"""Tests for the credential bridge and record conversion."""

from __future__ import annotations

import json
import stat

import pytest
from keyring.errors import KeyringError

from claude_profiles.credentials import (
    WRAPPER_KEY,
    convert,
    describe_fields,
    detect_shape,
    is_usable,
)
from claude_profiles.models import CredentialShape, Platform

from conftest import FakeKeyring, flat_record, wrapped_record


class TestShapes:
    def test_detect(self):
        assert detect_shape(wrapped_record()) == CredentialShape.WRAPPED
        assert detect_shape(flat_record()) == CredentialShape.FLAT_LEGACY
        assert detect_shape({"accessToken": "a", "refreshToken": "r"}) == CredentialShape.BARE
        assert detect_shape({"token": "x"}) == CredentialShape.UNKNOWN
        assert detect_shape(["not", "a", "dict"]) == CredentialShape.UNKNOWN

    def test_usable_requires_both_tokens(self):
        assert is_usable(wrapped_record())
        assert is_usable(flat_record())
        assert not is_usable(wrapped_record(refresh=""))
        assert not is_usable({WRAPPER_KEY: {"accessToken": "a"}})
        assert not is_usable({"token": "x"})

    def test_describe_fields_wrapped(self):
        present, missing = describe_fields({WRAPPER_KEY: {"accessToken": "a", "refreshToken": "r"}})
        assert "claudeAiOauth.accessToken" in present
        assert "claudeAiOauth.expiresAt" in missing

    def test_describe_fields_flat(self):
        present, missing = describe_fields(flat_record())
        assert present == ["access_token", "refresh_token", "expiry_date"]
        assert missing == ["scopes", "subscriptionType"]


class TestConvert:
    def test_flat_to_wrapped_fills_defaults(self):
        result = convert(flat_record(), Platform.DARWIN)
        oauth = result[WRAPPER_KEY]
        assert oauth["accessToken"] == "legacy-access"
        assert oauth["refreshToken"] == "legacy-refresh"
        assert oauth["expiresAt"] == 1767225600000
        assert oauth["scopes"] == ["user:inference"]
        assert oauth["subscriptionType"] == "max"

    def test_custom_defaults(self):
        result = convert(flat_record(), Platform.LINUX, default_scopes=["a"], default_subscription="pro")
        assert result[WRAPPER_KEY]["scopes"] == ["a"]
        assert result[WRAPPER_KEY]["subscriptionType"] == "pro"

    def test_bare_is_wrapped(self):
        bare = {"accessToken": "a", "refreshToken": "r"}
        assert convert(bare, Platform.DARWIN) == {WRAPPER_KEY: bare}

    def test_unknown_passes_through(self):
        record = {"token": "x"}
        assert convert(record, Platform.LINUX) is record

    @pytest.mark.parametrize("platform", list(Platform))
    @pytest.mark.parametrize("record", [wrapped_record(), flat_record(), {"accessToken": "a", "refreshToken": "r"}])
    def test_idempotent(self, record, platform):
        once = convert(record, platform)
        assert convert(once, platform) == once

    def test_round_trip_keeps_tokens(self):
        original = wrapped_record()
        there = convert(original, Platform.LINUX)
        back = convert(there, Platform.DARWIN)
        for key in ("accessToken", "refreshToken"):
            assert back[WRAPPER_KEY][key] == original[WRAPPER_KEY][key]


class TestBridgeLinux:
    def test_read_file(self, linux_bridge):
        assert linux_bridge.read() == wrapped_record()

    def test_read_missing(self, linux_bridge, config):
        config.credentials_path().unlink()
        assert linux_bridge.read() is None

    def test_read_garbage(self, linux_bridge, config):
        config.credentials_path().write_text("{not json")
        assert linux_bridge.read() is None

    def test_write_converts_and_restricts_mode(self, linux_bridge, config):
        assert linux_bridge.write(flat_record()) is True
        path = config.credentials_path()
        data = json.loads(path.read_text())
        assert data[WRAPPER_KEY]["accessToken"] == "legacy-access"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_write_creates_directory(self, linux_bridge, config):
        import shutil

        shutil.rmtree(config.home_path / ".claude")
        assert linux_bridge.write(wrapped_record())
        assert config.credentials_path().is_file()


class TestBridgeDarwin:
    def test_round_trip_through_keychain(self, darwin_bridge, fake_keyring):
        assert darwin_bridge.write(flat_record()) is True
        stored = fake_keyring.record()
        assert stored[WRAPPER_KEY]["refreshToken"] == "legacy-refresh"
        assert darwin_bridge.read() == stored

    def test_read_empty_keychain(self, darwin_bridge):
        assert darwin_bridge.read() is None

    def test_keychain_errors_are_reported_not_raised(self, config):
        class BrokenKeyring(FakeKeyring):
            def get_password(self, service, account):
                raise KeyringError("locked")

            def set_password(self, service, account, password):
                raise KeyringError("locked")

        from claude_profiles.credentials import CredentialBridge

        bridge = CredentialBridge(config, platform=Platform.DARWIN, keyring_backend=BrokenKeyring())
        assert bridge.read() is None
        assert bridge.write(wrapped_record()) is False

    def test_uses_configured_service(self, darwin_bridge, fake_keyring, monkeypatch):
        monkeypatch.setenv("USER", "octo")
        darwin_bridge.write(wrapped_record())
        assert ("Claude Code-credentials", "octo") in fake_keyring.passwords
