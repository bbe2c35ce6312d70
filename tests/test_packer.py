import threading
import zipfile
from pathlib import Path

import pytest

from zipflow.ArchiveEngine import create_archive, extract_archive
from zipflow.Errors import NotFoundError, OperationCancelled, PackError
from zipflow.Packer import ZipPacker, collect_paths


def entry_names(archive: Path) -> list[str]:
    with zipfile.ZipFile(archive) as z:
        return z.namelist()


def test_single_file(tmp_path: Path):
    source = tmp_path / "notes.txt"
    source.write_bytes(b"some notes\n" * 20)
    archive = tmp_path / "out" / "notes.zip"
    assert create_archive(source, archive) == archive
    with zipfile.ZipFile(archive) as z:
        assert z.namelist() == ["notes.txt"]
        assert z.read("notes.txt") == source.read_bytes()
        assert z.getinfo("notes.txt").compress_type == zipfile.ZIP_DEFLATED


def test_directory_with_folders_flattened(source_tree: Path, tmp_path: Path):
    archive = tmp_path / "flat.zip"
    create_archive(source_tree, archive, flatten=True)
    with zipfile.ZipFile(archive) as z:
        assert z.namelist() == ["sub/", "y.txt", "x.txt"]
        assert z.getinfo("sub/").is_dir()
        assert z.getinfo("sub/").file_size == 0
        assert z.read("y.txt") == (source_tree / "sub" / "y.txt").read_bytes()
        assert z.read("x.txt") == (source_tree / "x.txt").read_bytes()


def test_directory_without_folders(source_tree: Path, tmp_path: Path):
    archive = tmp_path / "nofolders.zip"
    create_archive(source_tree, archive, include_folders=False, flatten=True)
    assert entry_names(archive) == ["y.txt", "x.txt"]


def test_directory_relative_names_by_default(source_tree: Path, tmp_path: Path):
    archive = tmp_path / "tree.zip"
    create_archive(source_tree, archive)
    assert entry_names(archive) == ["sub/", "sub/y.txt", "x.txt"]


def test_collect_paths_lists_directory_before_contents(source_tree: Path):
    paths = collect_paths(source_tree)
    names = [p.name for p in paths]
    assert names == ["sub", "y.txt", "x.txt"]
    assert all(p.is_absolute() for p in paths)
    assert [p.name for p in collect_paths(source_tree, include_folders=False)] == ["y.txt", "x.txt"]


def test_existing_archive_is_replaced(source_tree: Path, tmp_path: Path):
    archive = tmp_path / "tree.zip"
    archive.write_bytes(b"stale content that is not a zip")
    create_archive(source_tree / "x.txt", archive)
    assert entry_names(archive) == ["x.txt"]


def test_archive_inside_source_is_not_packed_into_itself(source_tree: Path):
    archive = source_tree / "self.zip"
    create_archive(source_tree, archive)
    assert "self.zip" not in entry_names(archive)


def test_archive_path_with_dotdot_is_not_packed_into_itself(source_tree: Path):
    archive = source_tree / ".." / source_tree.name / "self.zip"
    archive.write_bytes(b"left over from an earlier run")
    create_archive(source_tree, archive)
    assert entry_names(archive) == ["sub/", "sub/y.txt", "x.txt"]


def test_missing_source(tmp_path: Path, samples, sink):
    with pytest.raises(PackError) as info:
        create_archive(tmp_path / "nope", tmp_path / "nope.zip", progress=sink)
    assert isinstance(info.value.reason, NotFoundError)
    assert not (tmp_path / "nope.zip").exists()


def test_progress_bounds(source_tree: Path, tmp_path: Path, samples, sink):
    archive = tmp_path / "tree.zip"
    create_archive(source_tree, archive, progress=sink)
    fractions = [s.fraction for s in samples]
    assert fractions[0] == 0.0
    assert fractions[-1] == 1.0
    assert fractions == sorted(fractions)
    assert {s.label for s in samples} == {str(archive)}


def test_progress_for_zero_byte_file(tmp_path: Path, samples, sink):
    source = tmp_path / "empty.txt"
    source.touch()
    create_archive(source, tmp_path / "empty.zip", progress=sink)
    assert [s.fraction for s in samples] == [0.0, 1.0]


def test_failure_abandons_progress_and_removes_archive(source_tree: Path, tmp_path: Path, samples):
    cancel = threading.Event()

    def sink(sample):
        samples.append(sample)
        cancel.set()

    archive = tmp_path / "partial.zip"
    packer = ZipPacker(source_tree, archive, progress=sink, cancel=cancel)
    with pytest.raises(PackError) as info:
        packer.pack()
    assert isinstance(info.value.reason, OperationCancelled)
    assert info.value.target == str(archive)
    assert samples[-1].fraction == 0.0
    assert not archive.exists()


def test_roundtrip_preserves_base_names(make_zip, tmp_path: Path):
    original = make_zip({"a/": b"", "a/b/": b"", "a/b/c.txt": b"c", "x.txt": b"x", "e.txt": b""})
    extracted = extract_archive(original, tmp_path / "extracted")
    repacked = create_archive(extracted, tmp_path / "repacked.zip", flatten=True)

    def base_names(names):
        return sorted(name.rstrip("/").rsplit("/", 1)[-1] for name in names)

    assert base_names(entry_names(repacked)) == base_names(entry_names(original))


def test_roundtrip_keeps_structure_by_default(source_tree: Path, tmp_path: Path):
    archive = create_archive(source_tree, tmp_path / "tree.zip")
    out = extract_archive(archive, tmp_path / "out")
    assert (out / "sub" / "y.txt").read_bytes() == (source_tree / "sub" / "y.txt").read_bytes()
    assert (out / "x.txt").read_bytes() == (source_tree / "x.txt").read_bytes()
