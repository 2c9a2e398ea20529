"""Shared fixtures for Tunegate tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all Tunegate runtime files to a temporary directory.

    Patches ``tunegate.config.get_base_dir`` so that nothing touches the real
    ``~/.tunegate/``.
    """
    fake_base = tmp_path / ".tunegate"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("tunegate.config.get_base_dir", lambda: fake_base)

    return fake_base
