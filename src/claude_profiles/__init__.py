"""
Claude Profiles -- named snapshots of your Claude configuration.

Store, restore, verify and auto-save the ~/.claude state to a
secret GitHub Gist. Credentials travel between macOS Keychain
and Linux credential files in whichever shape the target expects.

A smilinTux Open Source Project.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

PROFILES_HOME = os.environ.get("CLAUDE_PROFILES_HOME", "~")
CONFIG_PATH = os.environ.get(
    "CLAUDE_PROFILES_CONFIG", "~/.config/claude-profiles/config.yaml"
)
