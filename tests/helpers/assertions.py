"""
Custom assertion helpers for bdm tests.

These make checks on symlinks and on the bdm repository read naturally and
give clear failure messages.
"""

from pathlib import Path
from typing import List, Optional, Union

from git import Repo


def assert_symlink_correct(
    symlink_path: Union[str, Path], target_path: Union[str, Path], message: str = ""
) -> None:
    """
    Assert that a symlink points to the correct target.

    Args:
        symlink_path: Path to the symlink
        target_path: Expected target path
        message: Optional custom error message
    """
    symlink = Path(symlink_path)
    target = Path(target_path)

    assert symlink.exists(), f"Symlink does not exist: {symlink} {message}".strip()
    assert symlink.is_symlink(), f"Path is not a symlink: {symlink} {message}".strip()
    assert symlink.resolve() == target.resolve(), (
        f"Symlink {symlink} points to {symlink.resolve()}, "
        f"expected {target.resolve()} {message}".strip()
    )


def assert_in_head_tree(repo_dir: Union[str, Path], rel: str, content: Optional[str] = None) -> None:
    """Assert that ``rel`` is committed on HEAD, optionally with ``content``."""
    repo = Repo(str(repo_dir))
    tree = repo.head.commit.tree
    try:
        blob = tree / rel
    except KeyError:
        raise AssertionError(f"{rel} is not in the HEAD tree of {repo_dir}")
    if content is not None:
        actual = blob.data_stream.read().decode()
        assert actual == content, f"{rel} in HEAD is {actual!r}, expected {content!r}"


def assert_commit_parents(repo_dir: Union[str, Path], expected: List[str]) -> None:
    """Assert that HEAD's parents are exactly ``expected`` (in order)."""
    repo = Repo(str(repo_dir))
    actual = [p.hexsha for p in repo.head.commit.parents]
    assert actual == expected, f"HEAD parents are {actual}, expected {expected}"
