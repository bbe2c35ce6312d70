"""Forward-only ZIP entry reader.

`zipfile.ZipFile` needs a seekable file because it starts from the central
directory at the end of the archive. `ZipEntryReader` instead walks the
local file headers in the order they appear in the byte stream, so it can
consume a pipe, an HTTP response body or a packaged asset without seeking.

Entries whose sizes and CRC-32 are stored in a data descriptor after the
entry data ("streamed" ZIPs, as written by `zipfile` to an unseekable
output) are supported for both DEFLATED and STORED entries. For STORED
entries the end of the data is found by scanning for a descriptor, with or
without its optional signature, whose sizes and CRC-32 match the bytes
in front of it.
"""

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from .Errors import MalformedArchiveError

logger = logging.getLogger(__name__)

# Signatures, as they appear on disk
LOCAL_FILE_HEADER = b"PK\x03\x04"
CENTRAL_DIR_HEADER = b"PK\x01\x02"
END_OF_CENTRAL_DIR = b"PK\x05\x06"
ZIP64_END_OF_CENTRAL_DIR = b"PK\x06\x06"
DATA_DESCRIPTOR = b"PK\x07\x08"  # Also the marker of a single-segment spanned archive

# Anything that may legally follow the data of an entry
NEXT_RECORD_SIGNATURES = (LOCAL_FILE_HEADER, CENTRAL_DIR_HEADER, END_OF_CENTRAL_DIR, ZIP64_END_OF_CENTRAL_DIR)

METHOD_STORED = 0
METHOD_DEFLATED = 8

FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

ZIP64_EXTRA_TAG = 0x0001
ZIP64_LIMIT = 0xFFFFFFFF

LOCAL_HEADER_STRUCT = struct.Struct("<4sHHHHHIIIHH")
DESCRIPTOR_STRUCT = struct.Struct("<III")
DESCRIPTOR64_STRUCT = struct.Struct("<IQQ")
EXTRA_HEADER_STRUCT = struct.Struct("<HH")

CHUNK_SIZE = 8192
# Longest data descriptor (signature + Zip64 sizes) plus the next record signature
_SCAN_MARGIN = 4 + DESCRIPTOR64_STRUCT.size + 4


@dataclass(frozen=True)
class ArchiveEntry:
    """An entry as described by its local file header.

    Attributes:
        name (str): Stored name, relative to the archive root, ``/`` separated.
        is_dir (bool): True for directory markers (names ending in ``/``).
        size (int | None): Uncompressed size, ``None`` when it is only recorded
            in the data descriptor following the entry data.
        compressed_size (int | None): Compressed size, ``None`` in the same case.
        method (int): Compression method (0 stored, 8 deflated).
        crc (int | None): CRC-32 from the header, ``None`` when deferred.
    """
    name: str
    is_dir: bool
    size: int | None
    compressed_size: int | None
    method: int
    crc: int | None = None
    has_descriptor: bool = False
    zip64: bool = False


class _Source:
    """Pushback buffer over a binary stream that counts the bytes handed out."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.buffer = bytearray()
        self.consumed = 0

    def _fill(self, size: int) -> None:
        while len(self.buffer) < size:
            chunk = self.stream.read(max(size - len(self.buffer), CHUNK_SIZE))
            if not chunk:
                break
            self.buffer += chunk

    def peek(self, size: int) -> bytes:
        """Return up to `size` bytes without consuming them (fewer only at EOF)."""
        self._fill(size)
        return bytes(self.buffer[:size])

    def read(self, size: int) -> bytes:
        if not self.buffer:
            data = self.stream.read(size)
        else:
            data = bytes(self.buffer[:size])
            del self.buffer[:size]
        self.consumed += len(data)
        return data

    def read_exact(self, size: int, what: str) -> bytes:
        self._fill(size)
        if len(self.buffer) < size:
            raise MalformedArchiveError(f"Unexpected end of stream while reading {what}")
        return self.read(size)

    def unread(self, data: bytes) -> None:
        self.buffer[0:0] = data
        self.consumed -= len(data)


def _decode_name(raw: bytes, flags: int) -> str:
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")


def _parse_zip64_extra(extra: bytes, size: int, compressed_size: int) -> tuple[int, int, bool]:
    """Replace 0xFFFFFFFF placeholders with the values of the Zip64 extra field."""
    offset = 0
    while offset + EXTRA_HEADER_STRUCT.size <= len(extra):
        tag, length = EXTRA_HEADER_STRUCT.unpack_from(extra, offset)
        offset += EXTRA_HEADER_STRUCT.size
        body = extra[offset:offset + length]
        offset += length
        if tag != ZIP64_EXTRA_TAG:
            continue
        pos = 0
        if size == ZIP64_LIMIT and pos + 8 <= len(body):
            (size,) = struct.unpack_from("<Q", body, pos)
            pos += 8
        if compressed_size == ZIP64_LIMIT and pos + 8 <= len(body):
            (compressed_size,) = struct.unpack_from("<Q", body, pos)
        return size, compressed_size, True
    return size, compressed_size, False


class ZipEntryReader:
    """Iterate over the entries of a ZIP byte stream in stream order.

    Usage::

        with ZipEntryReader(stream, "archive.zip") as reader:
            for entry in reader:
                while chunk := reader.read(8192):
                    ...

    Data of the current entry is read with `read`; moving to the next entry
    skips whatever was left unread. Every entry is checked against its
    CRC-32 and sizes once its data is exhausted.

    Attributes:
        label (str): Name of the archive, used in error messages.
        entries_read (int): Number of local file headers parsed so far.
    """

    def __init__(self, stream: BinaryIO, label: str = "<stream>") -> None:
        self.label = label
        self._stream = stream
        self._source = _Source(stream)
        self._entry: ArchiveEntry | None = None
        self._finished = False
        self.entries_read = 0

        # Per-entry state
        self._inflater = None
        self._remaining: int | None = None
        self._descriptor_format: tuple[bool, struct.Struct] | None = None
        self._in_count = 0
        self._out_count = 0
        self._crc = 0
        self._data_done = True

    def __enter__(self) -> "ZipEntryReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __iter__(self) -> Iterator[ArchiveEntry]:
        while (entry := self.next_entry()) is not None:
            yield entry

    @property
    def bytes_consumed(self) -> int:
        """Raw archive bytes consumed so far."""
        return self._source.consumed

    def close(self) -> None:
        """Close the underlying stream."""
        self._stream.close()

    def next_entry(self) -> ArchiveEntry | None:
        """Advance to the next entry.

        Returns:
            ArchiveEntry | None: The next entry, or ``None`` once the central
            directory (or the end of the stream) is reached.

        Raises:
            MalformedArchiveError: On unknown records, unsupported entries or a
                failed integrity check of the entry being skipped.
        """
        if self._entry is not None and not self._data_done:
            while self.read(CHUNK_SIZE):
                pass
        self._entry = None
        if self._finished:
            return None

        signature = self._source.peek(4)
        if signature == DATA_DESCRIPTOR and self._source.consumed == 0:
            # Single-segment spanned archive marker
            self._source.read(4)
            signature = self._source.peek(4)
        if not signature and self.entries_read:
            # Central directory missing; every entry was read already.
            logger.debug("%s ends without a central directory", self.label)
            self._finished = True
            return None
        if len(signature) < 4:
            raise MalformedArchiveError(f"{self.label} is not a ZIP archive (empty or truncated)", self.label)
        if signature in (CENTRAL_DIR_HEADER, END_OF_CENTRAL_DIR, ZIP64_END_OF_CENTRAL_DIR):
            self._finished = True
            return None
        if signature != LOCAL_FILE_HEADER:
            raise MalformedArchiveError(
                f"Unexpected record signature {signature.hex().upper()} in {self.label}", self.label)

        entry = self._read_local_header()
        self.entries_read += 1
        self._start_entry(entry)
        return entry

    def _read_local_header(self) -> ArchiveEntry:
        header = self._source.read_exact(LOCAL_HEADER_STRUCT.size, "a local file header")
        (_, _version, flags, method, _time, _date, crc, compressed_size, size,
         name_length, extra_length) = LOCAL_HEADER_STRUCT.unpack(header)
        raw_name = self._source.read_exact(name_length, "an entry name")
        extra = self._source.read_exact(extra_length, "an extra field")
        name = _decode_name(raw_name, flags)

        if "\x00" in name:
            raise MalformedArchiveError(f"Entry name {name!r} contains a NUL byte", self.label)
        if flags & FLAG_ENCRYPTED:
            raise MalformedArchiveError(f"Entry {name!r} is encrypted, which is not supported", self.label)
        if method not in (METHOD_STORED, METHOD_DEFLATED):
            raise MalformedArchiveError(f"Entry {name!r} uses unsupported compression method {method}", self.label)

        size, compressed_size, zip64 = _parse_zip64_extra(extra, size, compressed_size)
        has_descriptor = bool(flags & FLAG_DATA_DESCRIPTOR)
        return ArchiveEntry(
            name=name,
            is_dir=name.endswith("/"),
            size=None if has_descriptor else size,
            compressed_size=None if has_descriptor and not compressed_size else compressed_size,
            method=method,
            crc=None if has_descriptor else crc,
            has_descriptor=has_descriptor,
            zip64=zip64,
        )

    def _start_entry(self, entry: ArchiveEntry) -> None:
        self._entry = entry
        self._in_count = 0
        self._out_count = 0
        self._crc = 0
        self._data_done = False
        self._descriptor_format = None
        self._inflater = zlib.decompressobj(-zlib.MAX_WBITS) if entry.method == METHOD_DEFLATED else None
        # None means "delimited by the deflate stream or the descriptor"
        if entry.method == METHOD_DEFLATED and entry.has_descriptor:
            self._remaining = None
        else:
            self._remaining = entry.compressed_size

    def read(self, size: int = CHUNK_SIZE) -> bytes:
        """Read up to `size` decompressed bytes of the current entry.

        Returns:
            bytes: Entry data, or ``b""`` once the entry is exhausted.
        """
        if self._entry is None or self._data_done:
            return b""
        size = max(size, 1)
        try:
            if self._inflater is not None:
                data = self._read_deflated(size)
            elif self._remaining is None:
                data = self._read_stored_scanning(size)
            else:
                data = self._read_stored(size)
        except zlib.error as e:
            raise MalformedArchiveError(f"Corrupt data in entry {self._entry.name!r}: {e}", self.label) from e

        if data:
            self._out_count += len(data)
            self._crc = zlib.crc32(data, self._crc)
            return data
        self._finish_entry()
        return b""

    def _read_stored(self, size: int) -> bytes:
        if not self._remaining:
            return b""
        data = self._source.read(min(size, self._remaining))
        if not data:
            raise MalformedArchiveError(f"Unexpected end of stream in entry {self._entry.name!r}", self.label)
        self._remaining -= len(data)
        self._in_count += len(data)
        return data

    def _read_compressed_chunk(self) -> bytes:
        if self._remaining is None:
            data = self._source.read(CHUNK_SIZE)
        elif self._remaining == 0:
            return b""
        else:
            data = self._source.read(min(CHUNK_SIZE, self._remaining))
            self._remaining -= len(data)
        self._in_count += len(data)
        return data

    def _read_deflated(self, size: int) -> bytes:
        inflater = self._inflater
        while not inflater.eof:
            if inflater.unconsumed_tail:
                data = inflater.unconsumed_tail
            else:
                data = self._read_compressed_chunk()
                if not data and self._remaining == 0 and self._in_count == 0:
                    # Some writers store empty files as DEFLATED with no data at all
                    return b""
                if not data:
                    raise MalformedArchiveError(
                        f"Unexpected end of stream in entry {self._entry.name!r}", self.label)
            out = inflater.decompress(data, size)
            if inflater.eof and inflater.unused_data:
                # Bytes past the deflate stream belong to the descriptor or the next record
                self._source.unread(inflater.unused_data)
                self._in_count -= len(inflater.unused_data)
                if self._remaining is not None:
                    self._remaining += len(inflater.unused_data)
            if out:
                return out
        return b""

    def _read_stored_scanning(self, size: int) -> bytes:
        want = max(size, CHUNK_SIZE) + _SCAN_MARGIN
        window = self._source.peek(want)
        at_eof = len(window) < want
        end = self._find_descriptor(window, at_eof)
        if end is not None:
            if end == 0:
                return b""
            count = min(size, end)
        else:
            if at_eof:
                raise MalformedArchiveError(
                    f"No data descriptor found for entry {self._entry.name!r}", self.label)
            count = min(size, len(window) - _SCAN_MARGIN)
        data = self._source.read(count)
        self._in_count += len(data)
        return data

    def _find_descriptor(self, window: bytes, at_eof: bool) -> int | None:
        """Return the offset in `window` where the current entry's data ends.

        The descriptor may start with its optional ``PK\\x07\\x08`` signature
        or go without it, in which case it is located through the record
        signature that follows it. Either way a candidate only counts when
        the sizes and CRC-32 it holds describe the bytes in front of it.
        The layout of the match is kept in `_descriptor_format` for
        `_read_descriptor`.
        """
        limit = len(window) if at_eof else len(window) - _SCAN_MARGIN + 1
        candidates = set()
        start = 0
        while (index := window.find(b"PK", start)) != -1:
            start = index + 1
            signature = window[index:index + 4]
            if signature == DATA_DESCRIPTOR:
                candidates.add((index, True))
            elif signature in NEXT_RECORD_SIGNATURES:
                candidates.add((index - DESCRIPTOR_STRUCT.size, False))
                candidates.add((index - DESCRIPTOR64_STRUCT.size, False))
        if at_eof:
            candidates.add((len(window) - DESCRIPTOR_STRUCT.size, False))
            candidates.add((len(window) - DESCRIPTOR64_STRUCT.size, False))

        for end, signed in sorted(candidates):
            if end < 0 or end >= limit:
                continue
            layout = self._descriptor_matches(window, end, signed, at_eof)
            if layout is not None:
                self._descriptor_format = (signed, layout)
                return end
        return None

    def _descriptor_matches(self, window: bytes, end: int, signed: bool, at_eof: bool) -> struct.Struct | None:
        length = self._in_count + end
        offset = end + 4 if signed else end
        for layout in (DESCRIPTOR_STRUCT, DESCRIPTOR64_STRUCT):
            body_end = offset + layout.size
            if body_end > len(window):
                continue
            crc, compressed_size, size = layout.unpack_from(window, offset)
            if compressed_size != length or size != length:
                continue
            following = window[body_end:body_end + 4]
            if following not in NEXT_RECORD_SIGNATURES and not (at_eof and body_end == len(window)):
                continue
            if zlib.crc32(window[:end], self._crc) == crc:
                return layout
        return None

    def _read_descriptor(self) -> tuple[int, int, int]:
        if self._descriptor_format is not None:
            # Scanned entries: read exactly what the scan matched
            signed, layout = self._descriptor_format
            if signed:
                self._source.read_exact(4, "a data descriptor signature")
            return layout.unpack(self._source.read_exact(layout.size, "a data descriptor"))
        if self._source.peek(4) == DATA_DESCRIPTOR:
            self._source.read(4)
        layout = DESCRIPTOR64_STRUCT if self._entry.zip64 else DESCRIPTOR_STRUCT
        return layout.unpack(self._source.read_exact(layout.size, "a data descriptor"))

    def _finish_entry(self) -> None:
        entry = self._entry
        self._data_done = True
        if entry.has_descriptor:
            crc, compressed_size, size = self._read_descriptor()
        else:
            crc, compressed_size, size = entry.crc, entry.compressed_size, entry.size

        if compressed_size != self._in_count or size != self._out_count:
            raise MalformedArchiveError(
                f"Size mismatch in entry {entry.name!r}: expected {size} bytes, got {self._out_count}", self.label)
        if (self._crc & 0xFFFFFFFF) != crc:
            raise MalformedArchiveError(f"Bad CRC-32 for entry {entry.name!r}", self.label)
