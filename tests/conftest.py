"""Shared test fixtures for claude-profiles."""

from __future__ import annotations

import io
import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

import pytest
from rich.console import Console

from claude_profiles.config import ProfilesConfig, StoreBackend
from claude_profiles.credentials import CredentialBridge
from claude_profiles.log import LogContext
from claude_profiles.models import Platform


def wrapped_record(access: str = "sk-ant-oat01-access", refresh: str = "sk-ant-ort01-refresh") -> dict:
    return {
        "claudeAiOauth": {
            "accessToken": access,
            "refreshToken": refresh,
            "expiresAt": 1767225600000,
            "scopes": ["user:inference", "user:profile"],
            "subscriptionType": "pro",
        }
    }


def flat_record() -> dict:
    return {
        "access_token": "legacy-access",
        "refresh_token": "legacy-refresh",
        "expiry_date": 1767225600000,
    }


class FakeKeyring:
    """In-memory stand-in for the ``keyring`` module."""

    def __init__(self, initial: Optional[dict] = None):
        self.passwords: dict[tuple[str, str], str] = dict(initial or {})

    def get_password(self, service: str, account: str) -> Optional[str]:
        return self.passwords.get((service, account))

    def set_password(self, service: str, account: str, password: str) -> None:
        self.passwords[(service, account)] = password

    def record(self, service: str = "Claude Code-credentials") -> Optional[dict]:
        for (svc, _account), value in self.passwords.items():
            if svc == service:
                return json.loads(value)
        return None


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            import requests

            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeGh:
    """Simulates the subset of the ``gh`` CLI the gist store drives.

    Gists live in memory. Set ``fail`` to map a subcommand
    (``"create"``, ``"edit"``, ``"find"``, ``"fetch"``, ``"patch"``)
    to ``(returncode, output)`` to simulate failures.
    """

    RAW_PREFIX = "https://gist.githubusercontent.com/raw/"

    def __init__(self, truncate_over: int = 10_000_000):
        self.gists: dict[str, dict] = {}
        self.calls: list[list[str]] = []
        self.fail: dict[str, tuple[int, str]] = {}
        self.create_output_on_failure = False
        self.truncate_over = truncate_over
        self.auth_output = (
            "github.com\n"
            "  ✓ Logged in to github.com account octo (keyring)\n"
            "  - Git operations protocol: https\n"
            "  - Token: gho_************************************\n"
            "  - Token scopes: 'gist', 'read:org', 'repo'\n"
        )
        self._next_id = 1

    def _result(self, cmd, returncode: int = 0, stdout: str = "", stderr: str = ""):
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    def add_gist(self, description: str, files: Optional[dict[str, str]] = None) -> str:
        gist_id = f"g{self._next_id:04d}"
        self._next_id += 1
        self.gists[gist_id] = {"description": description, "files": dict(files or {})}
        return gist_id

    def http_get(self, url: str, timeout: float = 0):
        name = url[len(self.RAW_PREFIX):]
        for gist in self.gists.values():
            if name in gist["files"]:
                return FakeResponse(gist["files"][name])
        return FakeResponse("", status_code=404)

    def __call__(self, cmd, input=None, capture_output=True, text=True, check=False):
        self.calls.append(list(cmd))
        args = cmd[1:]

        if args[:2] == ["auth", "status"]:
            return self._result(cmd, stdout=self.auth_output)

        if args[:2] == ["api", "/gists"]:
            if "find" in self.fail:
                code, out = self.fail["find"]
                return self._result(cmd, code, stderr=out)
            query = args[args.index("--jq") + 1]
            desc = query.split('"')[1]
            ids = [gid for gid, g in self.gists.items() if g["description"] == desc]
            return self._result(cmd, stdout="".join(f"{gid}\n" for gid in ids))

        if args[:2] == ["gist", "create"]:
            desc = args[args.index("--desc") + 1]
            if "create" in self.fail:
                code, out = self.fail["create"]
                if self.create_output_on_failure:
                    gist_id = self.add_gist(desc, {Path(args[2]).name: Path(args[2]).read_text()})
                    out = f"{out}\nhttps://gist.github.com/octo/{gist_id}\n"
                return self._result(cmd, code, stderr=out)
            gist_id = self.add_gist(desc, {Path(args[2]).name: Path(args[2]).read_text()})
            return self._result(cmd, stdout=f"https://gist.github.com/octo/{gist_id}\n")

        if args[:2] == ["gist", "edit"]:
            if "edit" in self.fail:
                code, out = self.fail["edit"]
                return self._result(cmd, code, stderr=out)
            gist_id = args[2]
            path = Path(args[args.index("--add") + 1])
            self.gists[gist_id]["files"][path.name] = path.read_text()
            return self._result(cmd)

        if args[0] == "api" and args[1].startswith("/gists/"):
            gist_id = args[1].split("/")[-1]
            if "--method" in args:
                if "patch" in self.fail:
                    code, out = self.fail["patch"]
                    return self._result(cmd, code, stderr=out)
                payload = json.loads(input)
                for name, value in payload["files"].items():
                    if value is None:
                        self.gists[gist_id]["files"].pop(name, None)
                return self._result(cmd, stdout="{}")
            if "fetch" in self.fail:
                code, out = self.fail["fetch"]
                return self._result(cmd, code, stderr=out)
            gist = self.gists.get(gist_id)
            if gist is None:
                return self._result(cmd, 1, stderr="gh: Not Found (HTTP 404)")
            files = {}
            for name, content in gist["files"].items():
                truncated = len(content) > self.truncate_over
                files[name] = {
                    "filename": name,
                    "size": len(content),
                    "truncated": truncated,
                    "content": content[: self.truncate_over] if truncated else content,
                    "raw_url": f"{self.RAW_PREFIX}{name}",
                }
            return self._result(
                cmd, stdout=json.dumps({"id": gist_id, "description": gist["description"], "files": files})
            )

        return self._result(cmd, 1, stderr=f"unknown command: {' '.join(cmd)}")


@pytest.fixture(autouse=True)
def keychain_account(monkeypatch) -> str:
    """Pin the Keychain account name the bridge derives from $USER."""
    monkeypatch.setenv("USER", "octo")
    return "octo"


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """A home directory with a typical Claude installation."""
    home = tmp_path / "home"
    claude = home / ".claude"
    (claude / "projects" / "-Users-octo-app").mkdir(parents=True)
    (claude / "todos").mkdir()

    (claude / "settings.json").write_text(json.dumps({"theme": "dark"}))
    (claude / "todos" / "list.json").write_text("[]")
    (claude / "projects" / "-Users-octo-app" / "session.jsonl").write_text('{"msg": "hi"}\n')
    (claude / ".credentials.json").write_text(json.dumps(wrapped_record()))
    (home / ".claude.json").write_text(json.dumps({"numStartups": 3}))
    (home / ".claude.json.backup").write_text(json.dumps({"numStartups": 2}))
    return home


@pytest.fixture
def config(home: Path, tmp_path: Path) -> ProfilesConfig:
    return ProfilesConfig(
        home=home,
        backend=StoreBackend.LOCAL,
        local_store_path=tmp_path / "store",
    )


@pytest.fixture
def fake_keyring() -> FakeKeyring:
    return FakeKeyring()


@pytest.fixture
def linux_bridge(config: ProfilesConfig, fake_keyring: FakeKeyring) -> CredentialBridge:
    return CredentialBridge(config, platform=Platform.LINUX, keyring_backend=fake_keyring)


@pytest.fixture
def darwin_bridge(config: ProfilesConfig, fake_keyring: FakeKeyring) -> CredentialBridge:
    return CredentialBridge(config, platform=Platform.DARWIN, keyring_backend=fake_keyring)


@pytest.fixture
def log_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def log(log_output: io.StringIO) -> LogContext:
    """A verbose LogContext printing to a buffer."""
    console = Console(file=log_output, width=200, color_system=None)
    return LogContext(
        console=console,
        logger=logging.getLogger("claude_profiles.tests"),
        verbose=True,
    )


@pytest.fixture
def fake_gh() -> FakeGh:
    return FakeGh()
