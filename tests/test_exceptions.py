"""Tests for bdm exception classes."""

import pytest

from bdm.exceptions import (
    BdmConfigurationError,
    BdmError,
    BdmFileNotFoundError,
    BdmFileOperationError,
    BdmRemoteError,
    BdmRepositoryError,
    BdmRepositoryNotFoundError,
    BdmSymlinkError,
    BdmValidationError,
)


class TestExceptionHierarchy:
    """Test exception class hierarchy and behavior."""

    def test_base_exception(self):
        error = BdmError("Test error")
        assert str(error) == "Test error"
        assert isinstance(error, Exception)

    @pytest.mark.parametrize(
        "exc_class,parent",
        [
            (BdmRepositoryError, BdmError),
            (BdmRepositoryNotFoundError, BdmRepositoryError),
            (BdmRemoteError, BdmRepositoryError),
            (BdmFileOperationError, BdmError),
            (BdmFileNotFoundError, BdmFileOperationError),
            (BdmSymlinkError, BdmFileOperationError),
            (BdmConfigurationError, BdmError),
            (BdmValidationError, BdmError),
        ],
    )
    def test_parents(self, exc_class, parent):
        error = exc_class("boom")
        assert isinstance(error, parent)
        assert isinstance(error, BdmError)
        assert str(error) == "boom"

    def test_catch_as_base(self):
        """A single except clause on BdmError covers every bdm failure."""
        with pytest.raises(BdmError):
            raise BdmRemoteError("No 'origin' remote found.")

    def test_exception_chaining(self):
        try:
            try:
                raise FileNotFoundError("missing")
            except FileNotFoundError as e:
                raise BdmFileNotFoundError(".bashrc not found") from e
        except BdmFileNotFoundError as error:
            assert isinstance(error.__cause__, FileNotFoundError)
