from __future__ import annotations

import io
import struct
import zipfile
import zlib
from collections.abc import Callable
from pathlib import Path

import pytest

from zipflow.Progress import ProgressSample


class UnseekableWriter(io.RawIOBase):
    """Write-only sink that refuses to seek, so zipfile emits data descriptors."""

    def __init__(self) -> None:
        super().__init__()
        self.data = io.BytesIO()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        return self.data.write(b)

    def getvalue(self) -> bytes:
        return self.data.getvalue()


def build_zip(
    entries: dict[str, bytes],
    compression: int = zipfile.ZIP_DEFLATED,
    streamed: bool = False,
) -> bytes:
    """Build an archive in memory; names ending in '/' become directory entries."""
    sink: io.BytesIO | UnseekableWriter = UnseekableWriter() if streamed else io.BytesIO()
    with zipfile.ZipFile(sink, "w", compression=compression) as z:
        for name, data in entries.items():
            if name.endswith("/"):
                z.writestr(zipfile.ZipInfo(name), b"")
            else:
                z.writestr(name, data)
    return sink.getvalue()


def local_entry(name: bytes, data: bytes, flags: int = 0, descriptor: bytes | None = None) -> bytes:
    """Hand-build a STORED local file header, its data and an optional descriptor.

    With `descriptor` set, bit 3 is raised and the header carries zero sizes
    and CRC, as streaming writers leave them.
    """
    crc = zlib.crc32(data)
    if descriptor is not None:
        flags |= 0x08
        header = struct.pack("<4sHHHHHIIIHH", b"PK\x03\x04", 20, flags, 0, 0, 0x21, 0, 0, 0, len(name), 0)
        return header + name + data + descriptor
    header = struct.pack("<4sHHHHHIIIHH", b"PK\x03\x04", 20, flags, 0, 0, 0x21, crc, len(data), len(data), len(name), 0)
    return header + name + data


END_OF_CENTRAL_DIR = b"PK\x05\x06" + bytes(18)


@pytest.fixture()
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    def _make(entries: dict[str, bytes], name: str = "archive.zip", **kwargs) -> Path:
        p = tmp_path / name
        p.write_bytes(build_zip(entries, **kwargs))
        return p

    return _make


@pytest.fixture()
def samples() -> list[ProgressSample]:
    return []


@pytest.fixture()
def sink(samples: list[ProgressSample]) -> Callable[[ProgressSample], None]:
    return samples.append


@pytest.fixture()
def source_tree(tmp_path: Path) -> Path:
    root = tmp_path / "src_tree"
    (root / "sub").mkdir(parents=True)
    (root / "x.txt").write_bytes(b"x content\n")
    (root / "sub" / "y.txt").write_bytes(b"y content\n" * 100)
    return root
