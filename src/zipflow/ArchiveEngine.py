"""Public archive operations.

These functions are what callers (the CLI, an application's worker thread,
an async wrapper using ``loop.run_in_executor``) invoke. Each one runs to
completion on the calling thread, reports progress through the optional
`progress` sink and echoes its destination back on success.
"""

import logging
import threading
from pathlib import Path

import httpx

from .Errors import ExtractionError, OpenError
from .Extractor import extract_stream
from .FileIO import RemoteStream, open_asset, open_local
from .Packer import create_zip
from .Protocols import ProgressSink

logger = logging.getLogger(__name__)


def extract_archive(
    archive_path: str | Path,
    destination: str | Path,
    progress: ProgressSink | None = None,
    cancel: threading.Event | None = None,
) -> Path:
    """Extract a ZIP file from the local filesystem.

    Args:
        archive_path (str | Path): The archive to read.
        destination (str | Path): Directory to extract into, created if missing.
        progress (callable | None): Receives `ProgressSample` values labelled
            with `archive_path`.
        cancel (threading.Event | None): Set it to stop between two entries.

    Returns:
        Path: `destination`.

    Raises:
        ExtractionError: If the archive cannot be opened or extracted.
    """
    try:
        stream, size = open_local(archive_path)
    except OpenError as e:
        raise ExtractionError(e.message, e.target) from e
    return extract_stream(stream, destination, str(archive_path), size, progress, cancel)


def extract_packaged_asset(
    asset: str,
    destination: str | Path,
    progress: ProgressSink | None = None,
    cancel: threading.Event | None = None,
) -> Path:
    """Extract a ZIP bundled inside an installed package.

    Args:
        asset (str): ``"package:path/inside/package.zip"``.
        destination (str | Path): Directory to extract into.

    Returns:
        Path: `destination`.

    Raises:
        ExtractionError: If the asset cannot be opened or extracted.
    """
    try:
        stream, size = open_asset(asset)
    except OpenError as e:
        raise ExtractionError(e.message, e.target) from e
    return extract_stream(stream, destination, asset, size, progress, cancel)


def extract_url(
    url: str,
    destination: str | Path,
    progress: ProgressSink | None = None,
    cancel: threading.Event | None = None,
    client: httpx.Client | None = None,
) -> Path:
    """Download and extract a remote ZIP in a single pass.

    The response body is fed straight to the extractor as it arrives;
    nothing is written to disk except the extracted entries.

    Args:
        url (str): HTTP(S) URL of the archive.
        destination (str | Path): Directory to extract into.
        client (httpx.Client | None): Optional preconfigured client.

    Returns:
        Path: `destination`.

    Raises:
        ExtractionError: If the download fails or the archive is invalid.
    """
    try:
        stream = RemoteStream(url, client=client)
    except OpenError as e:
        raise ExtractionError(e.message, e.target) from e
    logger.debug("Streaming %s (%s bytes)", url, stream.size or "unknown")
    return extract_stream(stream, destination, url, stream.size, progress, cancel)


def create_archive(
    source: str | Path,
    archive_path: str | Path,
    progress: ProgressSink | None = None,
    include_folders: bool = True,
    flatten: bool = False,
    cancel: threading.Event | None = None,
) -> Path:
    """Create a ZIP archive from a file or a directory tree.

    Args:
        source (str | Path): File or directory to pack.
        archive_path (str | Path): Archive to write; replaced if it exists.
        progress (callable | None): Receives `ProgressSample` values labelled
            with `archive_path`.
        include_folders (bool): Store entries for sub-directories.
        flatten (bool): Name entries by base name only.
        cancel (threading.Event | None): Set it to stop between two entries.

    Returns:
        Path: `archive_path`.

    Raises:
        PackError: If the source is missing or writing fails.
    """
    return create_zip(source, archive_path, progress, include_folders, flatten, cancel)
