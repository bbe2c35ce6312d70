"""ZIP extraction pipeline.

`ZipExtractor` drains a `ZipEntryReader` into a destination directory:
every file entry is written below the destination (creating the parent
directories it needs) while progress is reported against the archive's
total size. Entries are never buffered in memory; the flow is
input stream -> ZipEntryReader -> local file, one chunk at a time.
"""

import io
import logging
import threading
from pathlib import Path
from typing import BinaryIO

from .Errors import ArchiveError, ArchiveIOError, ExtractionError, MalformedArchiveError, OperationCancelled
from .Progress import ProgressReporter
from .Protocols import ProgressSink
from .ZipStream import ArchiveEntry, ZipEntryReader

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024  # 8 KiB


def safe_join(destination: Path, name: str) -> Path:
    """Return the path `name` extracts to below `destination`.

    Raises:
        MalformedArchiveError: If the entry is absolute or climbs out of
            `destination` through ``..`` segments or symlinks.
    """
    parts = [part for part in name.replace("\\", "/").split("/") if part not in ("", ".")]
    target = destination.joinpath(*parts)
    root = destination.resolve()
    if name.startswith(("/", "\\")) or not target.resolve().is_relative_to(root):
        raise MalformedArchiveError(f"Entry {name!r} would be extracted outside of {destination}", name)
    return target


class ZipExtractor:
    """Extract every entry of a ZIP byte stream to a directory.

    Attributes:
        stream (BinaryIO): Archive bytes, positioned at the first record.
        label (str): Archive identifier used for progress and error messages.
        total_size (int): Archive length in bytes; only scales progress.
        cancel (threading.Event | None): Checked between entries.
    """

    def __init__(
        self,
        stream: BinaryIO,
        label: str,
        total_size: int = 0,
        progress: ProgressSink | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.stream = stream
        self.label = label
        self.total_size = total_size
        self.cancel = cancel
        self._reporter = ProgressReporter(label, progress)

    def extract_all(self, destination: str | Path) -> Path:
        """Extract the archive below `destination`.

        Args:
            destination (str | Path): Target directory, created if missing.

        Returns:
            Path: `destination`.

        Raises:
            ExtractionError: If the stream is not a valid archive or an entry
                cannot be written. The taxonomy error is available as
                ``__cause__``/``reason``.
        """
        destination = Path(destination)
        logger.info("Extracting %s to %s", self.label, destination)
        self._reporter.start()
        try:
            try:
                destination.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ArchiveIOError(f"Couldn't create directory {destination}: {e.strerror or e}",
                                     destination) from e

            # Buffered reads keep header parsing from issuing tiny reads on the raw stream
            buffered = self.stream if isinstance(self.stream, io.BufferedIOBase) else io.BufferedReader(
                self.stream, CHUNK_SIZE)
            with ZipEntryReader(buffered, self.label) as reader:
                for entry in reader:
                    if self.cancel is not None and self.cancel.is_set():
                        raise OperationCancelled(f"Extraction of {self.label} was cancelled", self.label)
                    self._extract_entry(reader, entry, destination)
                logger.debug("%s: %d entries processed", self.label, reader.entries_read)
        except ArchiveError as e:
            raise ExtractionError(f"Couldn't extract {self.label}: {e.message}", self.label) from e
        except OSError as e:
            cause = ArchiveIOError(f"Read failed: {e}", self.label)
            cause.__cause__ = e
            raise ExtractionError(f"Couldn't extract {self.label}: {cause.message}", self.label) from cause
        finally:
            self.stream.close()

        self._reporter.finish()
        logger.info("Extracted %s", self.label)
        return destination

    def _extract_entry(self, reader: ZipEntryReader, entry: ArchiveEntry, destination: Path) -> None:
        target = safe_join(destination, entry.name)
        if entry.is_dir:
            # Directory markers carry no data; the directory is still created so empty ones survive
            self._mkdir(target)
            return
        if target == destination:
            raise MalformedArchiveError(f"Entry {entry.name!r} has no file name", self.label)

        logger.debug("Processing: %s", entry.name)
        self._mkdir(target.parent)
        try:
            with open(target, "wb") as target_file:
                while chunk := reader.read(CHUNK_SIZE):
                    target_file.write(chunk)
                    self._report(reader)
        except OSError as e:
            raise ArchiveIOError(f"Couldn't write {target}: {e.strerror or e}", target) from e

    @staticmethod
    def _mkdir(path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveIOError(f"Couldn't create directory {path}: {e.strerror or e}", path) from e

    def _report(self, reader: ZipEntryReader) -> None:
        if self.total_size > 0:
            self._reporter.report(reader.bytes_consumed, self.total_size)


def extract_stream(
    stream: BinaryIO,
    destination: str | Path,
    label: str,
    total_size: int = 0,
    progress: ProgressSink | None = None,
    cancel: threading.Event | None = None,
) -> Path:
    """Extract a ZIP byte stream to `destination`. See `ZipExtractor`."""
    return ZipExtractor(stream, label, total_size, progress, cancel).extract_all(destination)
