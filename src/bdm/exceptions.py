"""Exception classes for bdm - a bare-repository dotfiles manager."""

from typing import List, Optional, TypedDict


# Type definitions for structured data
class RepoStatusDict(TypedDict):
    """Type definition for repository status data."""

    branch: str
    staged: List[str]
    modified: List[str]
    ahead: int
    behind: int
    merging: bool


class PullResultDict(TypedDict):
    """Type definition for the outcome of a pull.

    ``status`` is one of ``unborn``, ``up-to-date``, ``fast-forward``,
    ``merged`` or ``conflict``.
    """

    status: str
    commit: Optional[str]
    conflicts: List[str]


class CommitInfoDict(TypedDict):
    """Type definition for a single log entry."""

    sha: str
    summary: str
    author: str
    date: str
    parents: int


class BdmError(Exception):
    """Base exception for all bdm-related errors."""

    pass


class BdmRepositoryError(BdmError):
    """Errors related to bdm repository operations."""

    pass


class BdmRepositoryNotFoundError(BdmRepositoryError):
    """Raised when the bdm repository is not initialized or not found."""

    pass


class BdmRemoteError(BdmRepositoryError):
    """Raised when the configured remote is missing."""

    pass


class BdmFileOperationError(BdmError):
    """Errors related to file operations."""

    pass


class BdmFileNotFoundError(BdmFileOperationError):
    """Raised when a file or directory cannot be found."""

    pass


class BdmSymlinkError(BdmFileOperationError):
    """Errors related to moving files into the link store."""

    pass


class BdmConfigurationError(BdmError):
    """Errors related to configuration management."""

    pass


class BdmValidationError(BdmError):
    """Errors related to input or data validation."""

    pass
