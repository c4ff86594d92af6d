"""
bdm - a bare-repository dotfiles manager.

bdm keeps your configuration files in a bare Git repository whose work tree
is your home directory, and syncs them with a remote using push and pull.
"""

__version__ = "0.1.0"
__license__ = "GPL-3.0-or-later"

from .core import (
    add_files,
    commit_changes,
    get_repo_status,
    init_repo,
    list_tracked_files,
    pull_repo,
    push_repo,
    set_remote,
)

__all__ = [
    "init_repo",
    "add_files",
    "commit_changes",
    "set_remote",
    "push_repo",
    "pull_repo",
    "get_repo_status",
    "list_tracked_files",
]
