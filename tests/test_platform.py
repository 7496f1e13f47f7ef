"""
Tests for per-user state paths.

Tests:
- is_windows follows sys.platform
- State directory: env override, Windows APPDATA, home fallback
- Trust store and config file locations
- expand_path handling of ~ and environment variables
"""
from __future__ import annotations

from pathlib import Path

import pytest

from pocket_ssh.platform import (
    STATE_DIR_ENV,
    expand_path,
    get_config_path,
    get_state_dir,
    get_trust_store_path,
    is_windows,
)


class TestIsWindows:
    @pytest.mark.parametrize("platform,expected", [
        ("win32", True),
        ("linux", False),
        ("darwin", False),
    ])
    def test_matches_sys_platform(
        self, monkeypatch: pytest.MonkeyPatch, platform: str, expected: bool
    ) -> None:
        monkeypatch.setattr("sys.platform", platform)
        assert is_windows() is expected


class TestStateDir:
    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path / "state"))
        assert get_state_dir() == tmp_path / "state"

    def test_env_override_expands_tilde(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(STATE_DIR_ENV, "~/custom-state")
        assert get_state_dir() == Path.home() / "custom-state"

    def test_unix_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(STATE_DIR_ENV, raising=False)
        monkeypatch.setattr("sys.platform", "linux")
        assert get_state_dir() == Path.home() / ".pocket_ssh"

    def test_windows_appdata(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(STATE_DIR_ENV, raising=False)
        monkeypatch.setattr("sys.platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path))
        assert get_state_dir() == tmp_path / "pocket-ssh"

    def test_windows_without_appdata(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(STATE_DIR_ENV, raising=False)
        monkeypatch.setattr("sys.platform", "win32")
        monkeypatch.delenv("APPDATA", raising=False)
        assert get_state_dir() == Path.home() / ".pocket_ssh"

    def test_files_live_in_state_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path))
        assert get_trust_store_path() == tmp_path / "known_hosts.json"
        assert get_config_path() == tmp_path / "config.json"


class TestExpandPath:
    def test_tilde(self) -> None:
        assert expand_path("~/keys/id") == Path.home() / "keys" / "id"

    def test_path_object(self) -> None:
        assert expand_path(Path("/tmp/key")) == Path("/tmp/key")

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POCKET_TEST_DIR", "/opt/keys")
        assert expand_path("$POCKET_TEST_DIR/id") == Path("/opt/keys/id")

    def test_absolute_unchanged(self) -> None:
        assert expand_path("/etc/ssh/key") == Path("/etc/ssh/key")
