"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from inkchat.services.settings import SecretVault, SettingsStore


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer credentials and log files out of the test run."""

    for name in list(os.environ):
        if name.startswith("INKCHAT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("INKCHAT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def settings_store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


@pytest.fixture
def user_transcript() -> str:
    return "```turn\nrole: user\n```\nHi\n"
