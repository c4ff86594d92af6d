"""
Test data builders for bdm tests.

Builders create home directories full of dotfiles and bdm configuration
objects, so individual tests only spell out what they care about.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from faker import Faker

from bdm import core

fake = Faker()


class ConfigBuilder:
    """Builder for bdm configuration objects."""

    def __init__(self):
        """Initialize with the default configuration."""
        self._config = copy.deepcopy(core.DEFAULT_CONFIG)

    def with_branch(self, branch: str) -> "ConfigBuilder":
        self._config["branch"] = branch
        return self

    def with_remote(self, remote: str) -> "ConfigBuilder":
        self._config["remote"] = remote
        return self

    def with_identity(self, name: str, email: str) -> "ConfigBuilder":
        self._config["identity"] = {"name": name, "email": email}
        return self

    def with_push_username(self, username: str) -> "ConfigBuilder":
        self._config["push"]["username"] = username
        return self

    def build(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def write(self, config_file: Path) -> Path:
        """Write the configuration to ``config_file``."""
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(json.dumps(self._config, indent=2))
        return config_file


class DotfileTreeBuilder:
    """Builder for a home directory populated with dotfiles."""

    def __init__(self, home: Path):
        self.home = home
        self._files: Dict[str, str] = {}

    def with_file(self, rel: str, content: Optional[str] = None) -> "DotfileTreeBuilder":
        """Add a file; content is generated when not given."""
        if content is None:
            content = "\n".join(f"# {fake.sentence()}" for _ in range(3)) + "\n"
        self._files[rel] = content
        return self

    def with_shell_rc(self, name: str = ".bashrc") -> "DotfileTreeBuilder":
        lines = [f"export {fake.word().upper()}={fake.word()}" for _ in range(3)]
        return self.with_file(name, "\n".join(lines) + "\n")

    def with_git_config(self) -> "DotfileTreeBuilder":
        content = f"[user]\n    name = {fake.name()}\n    email = {fake.email()}\n"
        return self.with_file(".gitconfig", content)

    def with_app_config(self, app: Optional[str] = None) -> "DotfileTreeBuilder":
        app = app or fake.word()
        return self.with_file(f".config/{app}/{app}.conf", f"theme = {fake.color_name()}\n")

    @property
    def paths(self) -> List[str]:
        return list(self._files)

    def build(self) -> Dict[str, Path]:
        """Write every file and return relative path -> absolute path."""
        created = {}
        for rel, content in self._files.items():
            path = self.home / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            created[rel] = path
        return created
