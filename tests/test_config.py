"""Tests for configuration loading and the logging context."""

from __future__ import annotations

import io
import logging
from pathlib import Path

from rich.console import Console

from claude_profiles.config import MIB, ProfilesConfig, StoreBackend, load_config, save_config
from claude_profiles.log import LogContext, default_log_path, setup_logging


class TestConfig:
    def test_defaults(self):
        config = ProfilesConfig()
        assert [s.archive_name for s in config.sources] == [".claude", ".claude.json", ".claude.json.backup"]
        assert config.limits.api_limit == 40 * MIB
        assert config.watch.debounce_seconds == 2.0
        assert config.backend == StoreBackend.GIST
        assert config.blob_name("work") == "work.zip.base64"

    def test_expand_against_home(self, tmp_path):
        config = ProfilesConfig(home=tmp_path)
        assert config.expand("~/.claude") == tmp_path / ".claude"
        assert config.expand("~") == tmp_path
        assert config.expand("/etc/hosts") == Path("/etc/hosts")
        assert config.credentials_path() == tmp_path / ".claude" / ".credentials.json"

    def test_round_trip(self, tmp_path):
        path = tmp_path / "cfg" / "config.yaml"
        original = ProfilesConfig(home=tmp_path, backend=StoreBackend.LOCAL)
        original.watch.min_save_interval_seconds = 10.0
        save_config(original, path)

        loaded = load_config(path)
        assert loaded.backend == StoreBackend.LOCAL
        assert loaded.watch.min_save_interval_seconds == 10.0
        assert loaded.home == tmp_path

    def test_broken_file_falls_back(self, tmp_path, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("claude_profiles"), "propagate", True)
        path = tmp_path / "config.yaml"
        path.write_text("limits: [not, a, mapping")
        with caplog.at_level(logging.WARNING, logger="claude_profiles.config"):
            config = load_config(path)
        assert config == ProfilesConfig()
        assert "Failed to load config" in caplog.text

    def test_missing_file_defaults(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == ProfilesConfig()


class TestLogContext:
    def _ctx(self, verbose=False):
        buffer = io.StringIO()
        ctx = LogContext(
            console=Console(file=buffer, width=200, color_system=None),
            logger=logging.getLogger("claude_profiles.tests"),
            verbose=verbose,
        )
        return ctx, buffer

    def test_debug_hidden_unless_verbose(self):
        ctx, buffer = self._ctx()
        ctx.debug("hidden detail")
        ctx.info("shown")
        assert "hidden detail" not in buffer.getvalue()
        assert "shown" in buffer.getvalue()

    def test_background_mutes_info_only(self):
        ctx, buffer = self._ctx()
        quiet = ctx.background()
        quiet.info("routine")
        quiet.success("saved")
        quiet.warn("careful")
        quiet.error("broken")
        out = buffer.getvalue()
        assert "routine" not in out and "saved" not in out
        assert "careful" in out and "broken" in out
        assert ctx.interactive is True

    def test_markup_in_messages_is_literal(self):
        ctx, buffer = self._ctx(verbose=True)
        ctx.info("path [bold]x[/bold]")
        ctx.debug("list [1, 2]")
        assert "path [bold]x[/bold]" in buffer.getvalue()
        assert "[DEBUG] list [1, 2]" in buffer.getvalue()

    def test_setup_writes_file(self, tmp_path):
        log_file = tmp_path / "out.log"
        ctx = setup_logging(verbose=False, log_file=log_file, console=Console(file=io.StringIO()))
        ctx.warn("disk nearly full")
        for handler in ctx.logger.handlers:
            handler.flush()
        text = log_file.read_text()
        assert text.startswith("Claude Profiles Log")
        assert "[WARNING] disk nearly full" in text

    def test_default_log_path(self):
        name = default_log_path().name
        assert name.startswith("claude-profiles-") and name.endswith(".txt.log")
