"""
Profile engine configuration.

Everything the engine treats as configuration data lives here:
which paths make up a snapshot, where credentials are kept on
each platform, what the remote collection is called, the size
ceilings of the store, and the watch-mode timings.

Loaded from YAML (``~/.config/claude-profiles/config.yaml`` by
default). A missing or broken file falls back to the defaults.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import CONFIG_PATH, PROFILES_HOME
from .models import SourceEntry

logger = logging.getLogger("claude_profiles.config")

MIB = 1024 * 1024


def _default_sources() -> list[SourceEntry]:
    return [
        SourceEntry(source_path="~/.claude", archive_name=".claude", can_exclude_subtree=True),
        SourceEntry(source_path="~/.claude.json", archive_name=".claude.json"),
        SourceEntry(source_path="~/.claude.json.backup", archive_name=".claude.json.backup"),
    ]


class StoreBackend(str, Enum):
    """Where profiles are kept."""

    GIST = "gist"
    LOCAL = "local"


class CheckItem(BaseModel):
    """A file or directory the verifier looks for.

    Attributes:
        archive_name: Archive-relative path (also home-relative locally).
        description: Label shown in reports.
        required: Missing item invalidates the result when True.
        directory: Item is a directory rather than a file.
    """

    archive_name: str
    description: str
    required: bool = True
    directory: bool = False


def _default_checks() -> list[CheckItem]:
    return [
        CheckItem(archive_name=".claude.json", description="Claude configuration"),
        CheckItem(
            archive_name=".claude.json.backup",
            description="Configuration backup",
            required=False,
        ),
        CheckItem(
            archive_name=".claude",
            description="Claude directory",
            required=False,
            directory=True,
        ),
    ]


class SizeLimits(BaseModel):
    """Size ceilings of the remote store, in bytes.

    The API and web limits apply to the transport-encoded size.
    """

    api_limit: int = 40 * MIB
    web_limit: int = 20 * MIB
    warning: int = 10 * MIB
    encoding_overhead: float = 1.33


class WatchConfig(BaseModel):
    """Watch-mode timings, in seconds."""

    debounce_seconds: float = 2.0
    min_save_interval_seconds: float = 30.0
    keychain_poll_seconds: float = 5.0
    stop_timeout_seconds: float = 30.0


class ProfilesConfig(BaseModel):
    """Complete configuration for one invocation."""

    home: Path = Path(PROFILES_HOME)
    sources: list[SourceEntry] = Field(default_factory=_default_sources)
    checks: list[CheckItem] = Field(default_factory=_default_checks)

    root_name: str = ".claude"
    excluded_subtree: str = "projects"
    home_alias: str = "~"

    credentials_file: str = ".claude/.credentials.json"
    native_export_name: str = ".macos.credentials.json"
    keychain_service: str = "Claude Code-credentials"
    default_scope: str = "user:inference"
    default_subscription: str = "max"

    backend: StoreBackend = StoreBackend.GIST
    collection_description: str = "claude-profiles-backup"
    blob_suffix: str = ".zip.base64"
    local_store_path: Optional[Path] = None

    limits: SizeLimits = Field(default_factory=SizeLimits)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    @property
    def home_path(self) -> Path:
        return self.home.expanduser()

    def expand(self, path: str) -> Path:
        """Resolve a ``~``-prefixed source path against the profiles home."""
        if path == "~":
            return self.home_path
        if path.startswith("~/"):
            return self.home_path / path[2:]
        return Path(path)

    def credentials_path(self) -> Path:
        """Local path of the file-based credential store."""
        return self.home_path / self.credentials_file

    def blob_name(self, profile: str) -> str:
        return f"{profile}{self.blob_suffix}"


def load_config(path: Optional[Path] = None) -> ProfilesConfig:
    """Load configuration from YAML, falling back to defaults.

    Args:
        path: Config file. Defaults to CLAUDE_PROFILES_CONFIG or
            ~/.config/claude-profiles/config.yaml.

    Returns:
        ProfilesConfig.
    """
    config_file = (path or Path(CONFIG_PATH)).expanduser()
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return ProfilesConfig(**data)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return ProfilesConfig()


def save_config(config: ProfilesConfig, path: Optional[Path] = None) -> Path:
    """Persist configuration to YAML.

    Returns:
        Path the config was written to.
    """
    config_file = (path or Path(CONFIG_PATH)).expanduser()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    return config_file
