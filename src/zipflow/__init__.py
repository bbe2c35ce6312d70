"""zipflow package initializer.

This module provides the package-level public surface of the `zipflow`
library:

- __version__: Package version string.
- extract_archive / extract_packaged_asset / extract_url: extract a ZIP from
  a local file, a packaged resource or an HTTP(S) URL.
- create_archive: pack a file or directory tree into a ZIP.
- ProgressSample: what progress sinks receive.
- The error types raised by the operations.
- cli: The CLI entrypoint function (click group).

Example:
    from zipflow import create_archive, extract_archive
    create_archive("site/", "site.zip", progress=print)
    extract_archive("site.zip", "restored/")

"""

# Public version string
__version__ = "0.1.0"

from .ArchiveEngine import create_archive, extract_archive, extract_packaged_asset, extract_url
from .Errors import (
    ArchiveError,
    ArchiveIOError,
    ExtractionError,
    MalformedArchiveError,
    NotFoundError,
    OpenError,
    OperationCancelled,
    PackError,
)
from .Progress import ProgressReporter, ProgressSample
from .Protocols import ProgressSink
from .ZipStream import ArchiveEntry, ZipEntryReader

# Expose the CLI command object so callers can reuse or register it in other tools.
from .CLI import cli

# Define the public API
__all__ = [
    "__version__",
    "create_archive",
    "extract_archive",
    "extract_packaged_asset",
    "extract_url",
    "ArchiveEntry",
    "ZipEntryReader",
    "ProgressReporter",
    "ProgressSample",
    "ProgressSink",
    "ArchiveError",
    "ArchiveIOError",
    "ExtractionError",
    "MalformedArchiveError",
    "NotFoundError",
    "OpenError",
    "OperationCancelled",
    "PackError",
    "cli",
]
