import zipfile
from pathlib import Path

from click.testing import CliRunner

from zipflow.CLI import cli


def test_zip_then_unzip(source_tree: Path, tmp_path: Path):
    runner = CliRunner()
    archive = tmp_path / "tree.zip"
    result = runner.invoke(cli, ["zip", str(source_tree), str(archive)])
    assert result.exit_code == 0, result.output
    assert "Archive created" in result.output
    with zipfile.ZipFile(archive) as z:
        assert z.namelist() == ["sub/", "sub/y.txt", "x.txt"]

    out = tmp_path / "out"
    result = runner.invoke(cli, ["unzip", str(archive), "-o", str(out), "--list"])
    assert result.exit_code == 0, result.output
    assert "Extraction complete" in result.output
    assert (out / "sub" / "y.txt").read_bytes() == (source_tree / "sub" / "y.txt").read_bytes()


def test_zip_flags(source_tree: Path, tmp_path: Path):
    archive = tmp_path / "flat.zip"
    result = CliRunner().invoke(cli, ["zip", str(source_tree), str(archive), "--no-folders", "--flatten"])
    assert result.exit_code == 0, result.output
    with zipfile.ZipFile(archive) as z:
        assert z.namelist() == ["y.txt", "x.txt"]


def test_output_from_environment(make_zip, tmp_path: Path):
    archive = make_zip({"f.txt": b"env"})
    out = tmp_path / "from_env"
    result = CliRunner().invoke(cli, ["unzip", str(archive)], env={"ZIPFLOW_OUTPUT": str(out)})
    assert result.exit_code == 0, result.output
    assert (out / "f.txt").read_bytes() == b"env"


def test_unzip_missing_archive_fails(tmp_path: Path):
    result = CliRunner().invoke(cli, ["unzip", str(tmp_path / "missing.zip"), "-o", str(tmp_path / "out")])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_zip_missing_source_fails(tmp_path: Path):
    result = CliRunner().invoke(cli, ["zip", str(tmp_path / "missing"), str(tmp_path / "a.zip")])
    assert result.exit_code == 1
    assert "Couldn't open file/directory" in result.output


def test_help():
    result = CliRunner().invoke(cli, ["-h"])
    assert result.exit_code == 0
    for command in ("unzip", "unzip-asset", "unzip-url", "zip"):
        assert command in result.output
