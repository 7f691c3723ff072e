from __future__ import annotations

import stat
from pathlib import Path
from typing import Any, Callable

import pytest

from mcptools.config import ProxySettings


@pytest.fixture
def registry_path(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point the proxy at a registry file inside a temporary HOME."""

    home = tmp_path / "home"
    home.mkdir()
    path = home / ".mcpt" / "proxy_config.json"
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("MCPTOOLS_PROXY_CONFIG", str(path))
    for name in ("MCPTOOLS_SHELL", "MCPTOOLS_TOOL_TIMEOUT", "MCPTOOLS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture
def settings(registry_path: Path) -> ProxySettings:
    return ProxySettings(registry_path=registry_path)


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable POSIX shell script and return its path."""

    def _make(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
