"""zipflow CLI entrypoint.

This module provides the `cli` click group with one command per archive
operation. Each command runs the operation while a rich progress bar
follows the samples it reports, then prints a short summary.

Usage example (from shell):
    zipflow unzip bundle.zip -o extracted/
    zipflow unzip-url https://example.com/bundle.zip -o extracted/
    zipflow unzip-asset mypackage:data/bundle.zip -o extracted/
    zipflow zip extracted/ bundle.zip --no-folders

The commands only deal with user interaction; archive handling lives in
`zipflow.ArchiveEngine`.
"""

import logging
from pathlib import Path
from typing import Callable, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .ArchiveEngine import create_archive, extract_archive, extract_packaged_asset, extract_url
from .Errors import ArchiveError
from .Progress import LoggingSink, ProgressSample

# Create a single console instance for the CLI UI (rich console handles colors/formatting)
console = Console()

output_option = click.option(
    "--output", "-o",
    type=click.Path(file_okay=False, dir_okay=True, writable=True, path_type=Path),
    default=Path("extracted"), envvar="ZIPFLOW_OUTPUT", show_default=True,
    help="Output directory for extracted files",
)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _run_with_progress(description: str, operation: Callable[[Callable[[ProgressSample], None]], Path]) -> Path:
    """Run `operation` with a progress sink that drives a rich progress bar."""
    log_sink = LoggingSink()
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=1.0)

        def progress_callback(sample: ProgressSample) -> None:
            log_sink(sample)
            progress.update(task, completed=sample.fraction)

        return operation(progress_callback)


def _print_tree(destination: Path) -> None:
    # Present a simple table of what ended up on disk
    table = Table(title="Extracted Files")
    table.add_column("File Path", justify="left")
    table.add_column("Size", justify="right")
    for path in sorted(destination.rglob("*")):
        if path.is_file():
            table.add_row(str(path.relative_to(destination)), f"{path.stat().st_size:,}")
    console.print(table)


def _fail(e: ArchiveError) -> NoReturn:
    reason = f" ({e.reason.message})" if e.reason is not None and e.reason.message != e.message else ""
    console.print(f"[red]Error:[/red] {e.message}{reason}")
    raise SystemExit(1)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option("--verbose", "-v", is_flag=True, envvar="ZIPFLOW_VERBOSE", help="Log every step and progress sample")
def cli(verbose: bool):
    """Create and extract ZIP archives."""
    _setup_logging(verbose)


@cli.command()
@click.argument("archive", type=click.Path(dir_okay=False, path_type=Path))
@output_option
@click.option("--list", "list_files", is_flag=True, help="Show the extracted files when done")
def unzip(archive: Path, output: Path, list_files: bool):
    """Extract ARCHIVE into the output directory."""
    try:
        destination = _run_with_progress(
            f"Extracting {archive.name}...",
            lambda sink: extract_archive(archive, output, progress=sink),
        )
    except ArchiveError as e:
        _fail(e)
    if list_files:
        _print_tree(destination)
    console.print(f"Extraction complete: {destination}")


@cli.command("unzip-asset")
@click.argument("asset", type=str)
@output_option
def unzip_asset(asset: str, output: Path):
    """Extract a ZIP packaged inside an installed Python package.

    ASSET has the form package:path/inside/package.zip.
    """
    try:
        destination = _run_with_progress(
            f"Extracting {asset}...",
            lambda sink: extract_packaged_asset(asset, output, progress=sink),
        )
    except ArchiveError as e:
        _fail(e)
    console.print(f"Extraction complete: {destination}")


@cli.command("unzip-url")
@click.argument("url", type=str)
@output_option
def unzip_url(url: str, output: Path):
    """Download a ZIP from URL and extract it while it downloads."""
    try:
        destination = _run_with_progress(
            "Downloading and extracting...",
            lambda sink: extract_url(url, output, progress=sink),
        )
    except ArchiveError as e:
        _fail(e)
    console.print(f"Extraction complete: {destination}")


@cli.command("zip")
@click.argument("source", type=click.Path(path_type=Path))
@click.argument("archive", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--no-folders", is_flag=True, help="Do not store entries for sub-directories")
@click.option("--flatten", is_flag=True, help="Store entries by base name only (legacy layout)")
def zip_command(source: Path, archive: Path, no_folders: bool, flatten: bool):
    """Pack SOURCE (a file or a directory) into ARCHIVE."""
    try:
        created = _run_with_progress(
            f"Creating {archive.name}...",
            lambda sink: create_archive(source, archive, progress=sink,
                                        include_folders=not no_folders, flatten=flatten),
        )
    except ArchiveError as e:
        _fail(e)
    console.print(f"Archive created: {created} ({created.stat().st_size:,} bytes)")
