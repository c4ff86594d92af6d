"""Shared pytest fixtures and configuration."""

import shutil
from pathlib import Path
from typing import Dict

import pytest
from git import Repo

from bdm import core


def create_test_files(base: Path, files: Dict[str, str]) -> None:
    """Create ``files`` (relative path -> content) under ``base``."""
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def use_home(monkeypatch: pytest.MonkeyPatch, home: Path) -> None:
    """Point bdm and git at ``home`` until the test finishes."""
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(home)
    for key, value in core.get_bdm_paths(home).items():
        monkeypatch.setattr(core, key.upper(), value)


requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git executable not available"
)


@pytest.fixture(autouse=True)
def isolated_git_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's git configuration out of the tests."""
    for var in (
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_INDEX_FILE",
        "XDG_CONFIG_HOME",
        "GIT_AUTHOR_NAME",
        "GIT_AUTHOR_EMAIL",
        "GIT_COMMITTER_NAME",
        "GIT_COMMITTER_EMAIL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def temp_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create a temporary home directory and point bdm at it."""
    home = tmp_path.resolve() / "home"
    home.mkdir()
    use_home(monkeypatch, home)
    return home


@pytest.fixture
def initialized_home(temp_home: Path) -> Path:
    """A temporary home directory with an initialized bdm repository."""
    assert core.init_repo(quiet=True) is True
    return temp_home


@pytest.fixture
def server_repo(tmp_path: Path) -> Path:
    """A bare repository acting as the shared remote."""
    path = tmp_path / "server.git"
    Repo.init(str(path), mkdir=True, bare=True, initial_branch="master")
    return path


@pytest.fixture
def sample_config() -> dict:
    """Sample configuration for testing."""
    return {
        "branch": "main",
        "remote": "upstream",
        "identity": {"name": "Test User", "email": "test@example.com"},
        "push": {"username": ""},
    }
