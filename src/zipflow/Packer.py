"""ZIP creation pipeline.

`ZipPacker` turns a file or a directory tree into a DEFLATE-compressed ZIP
archive. Directory sources are walked depth-first, each directory listed
before its contents, and every file is streamed into the archive in fixed
size chunks so memory use does not depend on file sizes.
"""

import logging
import threading
import zipfile
from pathlib import Path
from typing import List

from .Errors import ArchiveError, ArchiveIOError, NotFoundError, OperationCancelled, PackError
from .Progress import ProgressReporter
from .Protocols import ProgressSink

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024  # 8 KiB


def collect_paths(root: Path, include_folders: bool = True) -> List[Path]:
    """Walk `root` depth-first and list what it contains.

    Files are always listed. Sub-directories are listed only when
    `include_folders` is set, and always ahead of their own contents.
    Children are visited in name order so the result is deterministic.

    Args:
        root (Path): Directory to walk. `root` itself is not listed.
        include_folders (bool): Whether to list directories.

    Returns:
        List[Path]: Absolute paths in walk order.
    """
    paths: List[Path] = []
    for child in sorted(root.iterdir(), key=lambda p: p.name):
        if child.is_dir() and not child.is_symlink():
            if include_folders:
                paths.append(child.absolute())
            paths.extend(collect_paths(child, include_folders))
        elif child.is_file():
            paths.append(child.absolute())
    return paths


class ZipPacker:
    """Create a ZIP archive from a file or a directory.

    Entries are named relative to the packed directory (``sub/y.txt``).
    With `flatten` enabled every entry is named by its base name only
    (``y.txt``), which is how older archives produced by this tool were laid
    out; files sharing a base name then produce duplicate entries.

    Attributes:
        source (Path): File or directory to pack.
        archive_path (Path): Archive to create; an existing file is replaced.
        include_folders (bool): Store directory entries for sub-directories.
        flatten (bool): Name entries by base name only.
    """

    def __init__(
        self,
        source: str | Path,
        archive_path: str | Path,
        progress: ProgressSink | None = None,
        include_folders: bool = True,
        flatten: bool = False,
        cancel: threading.Event | None = None,
    ) -> None:
        self.source = Path(source)
        self.archive_path = Path(archive_path)
        self.include_folders = include_folders
        self.flatten = flatten
        self.cancel = cancel
        self._reporter = ProgressReporter(str(self.archive_path), progress)

    def resolve_sources(self) -> List[Path]:
        """Return the paths to store, in the order they are written.

        Raises:
            NotFoundError: If the source does not exist.
        """
        if not self.source.exists():
            raise NotFoundError(f"Couldn't open file/directory {self.source}.", self.source)
        if not self.source.is_dir():
            return [self.source.absolute()]
        archive = self.archive_path.resolve()
        # Never pack the archive into itself when it is created inside the source tree
        return [p for p in collect_paths(self.source, self.include_folders) if p.resolve() != archive]

    def entry_name(self, path: Path) -> str:
        """Name under which `path` is stored (directories get a trailing ``/``)."""
        if self.flatten or not self.source.is_dir():
            name = path.name
        else:
            name = path.relative_to(self.source.absolute()).as_posix()
        return name + "/" if path.is_dir() else name

    def pack(self) -> Path:
        """Write the archive.

        Returns:
            Path: `archive_path`.

        Raises:
            PackError: If the source is missing or anything fails while
                writing. A partially written archive is removed.
        """
        try:
            paths = self.resolve_sources()
        except NotFoundError as e:
            raise PackError(e.message, self.archive_path) from e

        logger.info("Creating archive: %s (%d entries)", self.archive_path, len(paths))
        try:
            self._prepare_destination()
            self._write(paths)
        except (ArchiveError, OSError, ValueError, RuntimeError, zipfile.LargeZipFile) as e:
            self._reporter.abandon()
            self._remove_partial()
            cause = e
            if not isinstance(e, ArchiveError):
                cause = ArchiveIOError(str(e), self.archive_path)
                cause.__cause__ = e
            logger.error("Couldn't zip %s: %s", self.archive_path, e)
            raise PackError(f"Couldn't zip {self.archive_path}", self.archive_path) from cause

        logger.info("Archive created: %s", self.archive_path)
        return self.archive_path

    def _prepare_destination(self) -> None:
        parent = self.archive_path.parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)
        if self.archive_path.exists():
            self.archive_path.unlink()

    def _write(self, paths: List[Path]) -> None:
        total = sum(p.stat().st_size for p in paths if p.is_file())
        done = 0
        with (
            open(self.archive_path, "wb") as output,
            zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as archive,
        ):
            self._reporter.start()
            for path in paths:
                if self.cancel is not None and self.cancel.is_set():
                    raise OperationCancelled(f"Packing of {self.archive_path} was cancelled", self.archive_path)

                info = zipfile.ZipInfo.from_file(path, self.entry_name(path), strict_timestamps=False)
                if info.is_dir():
                    archive.writestr(info, b"")
                    continue

                info.compress_type = zipfile.ZIP_DEFLATED
                with open(path, "rb") as source_file, archive.open(info, "w") as entry:
                    while chunk := source_file.read(CHUNK_SIZE):
                        entry.write(chunk)
                        done += len(chunk)
                if total > 0:
                    self._reporter.report(done, total)
            self._reporter.finish()

    def _remove_partial(self) -> None:
        try:
            self.archive_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Couldn't remove partial archive %s: %s", self.archive_path, e)


def create_zip(
    source: str | Path,
    archive_path: str | Path,
    progress: ProgressSink | None = None,
    include_folders: bool = True,
    flatten: bool = False,
    cancel: threading.Event | None = None,
) -> Path:
    """Pack `source` into `archive_path`. See `ZipPacker`."""
    return ZipPacker(source, archive_path, progress, include_folders, flatten, cancel).pack()
