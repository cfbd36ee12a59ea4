"""Shared fixtures for layered-settings tests."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

XML_HEADER = '<?xml version="1.0" encoding="utf-8"?>\n'


@pytest.fixture(autouse=True)
def isolated_user_settings(monkeypatch):
    """Point the user-wide settings directory at a throwaway location."""
    with TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("LAYERED_SETTINGS_HOME", str(Path(tmpdir) / "home"))
        yield Path(tmpdir) / "home"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_config():
    """Write a settings file whose <configuration> holds the given body."""

    def _write(directory: Path, body: str = "", file_name: str = "settings.config") -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / file_name
        path.write_text(f"{XML_HEADER}<configuration>\n{body}</configuration>\n", encoding="utf-8")
        return path

    return _write
