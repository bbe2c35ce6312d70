"""Error types raised by the zipflow pipelines.

The pipelines never leak raw ``OSError``/``zlib.error`` values to callers.
Low-level failures are converted into one of the taxonomy errors below and
then wrapped, at the pipeline boundary, into an ``ExtractionError`` or a
``PackError`` that names the archive being read or written.
"""

from pathlib import Path


class ArchiveError(Exception):
    """Base class for every zipflow error.

    Attributes:
        message (str): Human readable description of the failure.
        target (str | None): The archive, asset, URL or path the error is about.
    """

    def __init__(self, message: str, target: str | Path | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.target = str(target) if target is not None else None

    @property
    def reason(self) -> "ArchiveError | None":
        """The taxonomy error this failure was wrapped from, if any."""
        cause = self.__cause__
        return cause if isinstance(cause, ArchiveError) else None


class NotFoundError(ArchiveError):
    """The input path does not exist."""


class OpenError(ArchiveError):
    """A stream, packaged asset or URL could not be opened."""


class ArchiveIOError(ArchiveError):
    """Reading or writing failed while copying entry data."""


class MalformedArchiveError(ArchiveError):
    """The ZIP container is structurally invalid or unsafe to extract."""


class OperationCancelled(ArchiveError):
    """The caller's cancel event was set between two entries."""


class ExtractionError(ArchiveError):
    """Raised by the extraction operations."""


class PackError(ArchiveError):
    """Raised by archive creation."""
