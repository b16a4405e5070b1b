"""Command-line interface for storage-janitor."""

import logging
import sys
from pathlib import Path
from typing import Callable, Iterator, Optional

import click
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from storage_janitor import __version__
from storage_janitor.core.classifier import MB, DirectoryClassifier
from storage_janitor.core.detector import DuplicateDetectionPipeline
from storage_janitor.core.hashing import HashService
from storage_janitor.core.inventory import FileInventory
from storage_janitor.core.models import ProgressEvent
from storage_janitor.core.packages import StaticPackageRegistry
from storage_janitor.core.progress import CancellationToken, ProgressStream
from storage_janitor.core.quality import BlurQualityAnalyzer, PillowExifReader
from storage_janitor.core.safety import DefaultSafetyPolicy
from storage_janitor.core.selector import BestFileSelector
from storage_janitor.ui.report import ReportUI, duplicate_report, junk_report, photo_report
from storage_janitor.utils.config import Config
from storage_janitor.utils.formatting import save_json
from storage_janitor.utils.logger import PACKAGE_LOGGER, setup_logger

console = Console()
err_console = Console(stderr=True)
logger = setup_logger(__name__)

PATHS_OPTION = click.option(
    "--path",
    "-p",
    "paths",
    multiple=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    required=True,
    help="Directory path(s) to scan",
)
OUTPUT_OPTION = click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Output file for the report (JSON)",
)
PROGRESS_OPTION = click.option(
    "--show-progress/--no-progress",
    default=True,
    help="Show progress bars",
)


@click.group()
@click.version_option(version=__version__, prog_name="storage-janitor")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """
    Storage Janitor - find duplicate files and disposable junk.

    Scans are read-only: results are reported, nothing is deleted.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logger(PACKAGE_LOGGER, level=logging.DEBUG if verbose else logging.WARNING)


def _build_analyzer(config: Config) -> BlurQualityAnalyzer:
    return BlurQualityAnalyzer(
        blur_threshold=float(config.get("quality.blur_threshold", 100.0)),
        low_quality_threshold=float(config.get("quality.low_quality_threshold", 0.6)),
        exif_reader=PillowExifReader() if config.get("quality.use_exif", True) else None,
    )


def _run_stream(
    producer: Callable[[CancellationToken], Iterator[ProgressEvent]],
    description: str,
    show_progress: bool,
) -> ProgressEvent:
    """
    Drive a scan on a worker thread, mirroring its progress on a tqdm bar.

    Ctrl+C cancels the scan; the partial result is still returned.
    """
    terminal: Optional[ProgressEvent] = None
    bar = tqdm(total=100, desc=description, unit="%", disable=not show_progress)
    stream = ProgressStream(producer)
    events = iter(stream)
    try:
        while True:
            try:
                event = next(events)
            except StopIteration:
                break
            except KeyboardInterrupt:
                err_console.print("[yellow]Cancelling... (partial results will be shown)[/yellow]")
                stream.token.cancel()
                # The interrupted generator is finished; resume reading the queue
                events = iter(stream)
                continue
            bar.update(max(event.percent_complete - bar.n, 0))
            bar.set_postfix_str(event.message[:40], refresh=True)
            if event.is_terminal:
                terminal = event
    finally:
        bar.close()
        stream.close()

    if terminal is None:
        raise click.ClickException("Scan ended without a result")
    return terminal


def _fail_on_error(event: ProgressEvent) -> None:
    if event.error is not None:
        err_console.print(f"[red]✗ Scan failed:[/red] {event.error}")
        sys.exit(1)


@cli.command()
@PATHS_OPTION
@OUTPUT_OPTION
@click.option(
    "--threshold",
    "-t",
    type=int,
    help="Perceptual similarity threshold (Hamming distance, default: from config)",
)
@click.option(
    "--recursive/--no-recursive",
    "-r/-R",
    default=True,
    help="Recursively scan subdirectories",
)
@PROGRESS_OPTION
@click.pass_context
def duplicates(
    ctx: click.Context,
    paths: tuple,
    output: Optional[Path],
    threshold: Optional[int],
    recursive: bool,
    show_progress: bool,
) -> None:
    """
    Find exact and visually similar duplicate files.

    Example:
        storage-janitor duplicates --path ~/Pictures --output duplicates.json
    """
    config = Config()
    if threshold is None:
        threshold = int(config.get("duplicates.similarity_threshold", 5))

    console.print(f"\n[bold cyan]Storage Janitor v{__version__}[/bold cyan] - Duplicate Detection\n")

    inventory = FileInventory(config, show_progress=show_progress)
    records = inventory.collect_many(list(paths), recursive=recursive, skip_hidden=True)
    if not records:
        console.print("[yellow]No files found to scan.[/yellow]")
        return

    console.print(f"[green]Total files found:[/green] {len(records)}\n")

    hash_service = HashService(
        chunk_size=int(config.get("duplicates.chunk_size", 8192)),
        grid_size=int(config.get("duplicates.hash_grid_size", 32)),
    )
    pipeline = DuplicateDetectionPipeline(
        hash_service=hash_service,
        selector=BestFileSelector(_build_analyzer(config)),
        similarity_threshold=threshold,
    )

    event = _run_stream(lambda token: pipeline.detect(records, token), "Detecting", show_progress)
    _fail_on_error(event)

    result = event.partial_result
    if not result.groups:
        console.print("[green]✓ No duplicates found![/green]")
    else:
        ReportUI(console).show_duplicates(result)

    if output:
        save_json(duplicate_report(result), output)
        console.print(f"\n[green]✓ Results saved to:[/green] {output}")


@cli.command()
@PATHS_OPTION
@OUTPUT_OPTION
@click.option(
    "--large-threshold",
    type=int,
    help="Size in MB above which a file is reported as large (default: from config)",
)
@PROGRESS_OPTION
@click.pass_context
def junk(
    ctx: click.Context,
    paths: tuple,
    output: Optional[Path],
    large_threshold: Optional[int],
    show_progress: bool,
) -> None:
    """
    Classify cache, temp, residual and other disposable files.

    Example:
        storage-janitor junk --path /sdcard --output junk.json
    """
    config = Config()
    if large_threshold is None:
        large_threshold = int(config.get("junk.large_file_threshold_mb", 100))

    console.print(f"\n[bold cyan]Storage Janitor v{__version__}[/bold cyan] - Junk Scan\n")

    classifier = DirectoryClassifier(
        safety_policy=DefaultSafetyPolicy(config.get("protected_folders", [])),
        package_registry=StaticPackageRegistry(config.get("packages.installed", {})),
        large_file_threshold=large_threshold * MB,
        progress_interval=float(config.get("junk.progress_interval_seconds", 1.0)),
    )

    event = _run_stream(lambda token: classifier.scan(paths, token), "Scanning", show_progress)
    _fail_on_error(event)

    result = event.partial_result
    ReportUI(console).show_junk(result)

    if output:
        save_json(junk_report(result), output)
        console.print(f"\n[green]✓ Results saved to:[/green] {output}")


@cli.command()
@PATHS_OPTION
@OUTPUT_OPTION
@PROGRESS_OPTION
@click.pass_context
def photos(
    ctx: click.Context,
    paths: tuple,
    output: Optional[Path],
    show_progress: bool,
) -> None:
    """
    Report blurry and low quality photos.

    Example:
        storage-janitor photos --path ~/Pictures
    """
    config = Config()

    inventory = FileInventory(config, show_progress=show_progress)
    records = inventory.collect_many(list(paths), skip_hidden=True, images_only=True)
    if not records:
        console.print("[yellow]No images found to analyze.[/yellow]")
        return

    analyzer = _build_analyzer(config)
    event = _run_stream(lambda token: analyzer.analyze_photos(records, token), "Analyzing", show_progress)
    _fail_on_error(event)

    result = event.partial_result
    ReportUI(console).show_photos(result)

    if output:
        save_json(photo_report(result), output)
        console.print(f"\n[green]✓ Results saved to:[/green] {output}")


@cli.command()
@click.option(
    "--folder", "-f", required=True, help="Folder name or pattern to protect"
)
@click.pass_context
def protect(ctx: click.Context, folder: str) -> None:
    """
    Add a folder to the protected folders list.

    Protected folders are never scanned or reported as deletable.
    """
    config = Config()
    config.add_protected_folder(folder)

    console.print(f"[green]✓ Protected folder added:[/green] {folder}")
    console.print("\n[cyan]Current protected folders:[/cyan]")
    for pf in config.get("protected_folders", []):
        console.print(f"  • {pf}")


@cli.command()
@click.option(
    "--folder", "-f", required=True, help="Folder name or pattern to unprotect"
)
@click.pass_context
def unprotect(ctx: click.Context, folder: str) -> None:
    """
    Remove a folder from the protected folders list.
    """
    config = Config()
    config.remove_protected_folder(folder)

    console.print(f"[green]✓ Protected folder removed:[/green] {folder}")


@cli.command(name="config-show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the current configuration."""
    config = Config()

    table = Table(title=f"Configuration ({config.config_file})", show_header=True, header_style="bold cyan")
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    def add_rows(prefix: str, value) -> None:
        if isinstance(value, dict) and value:
            for key in sorted(value):
                add_rows(f"{prefix}.{key}" if prefix else key, value[key])
        else:
            table.add_row(prefix, str(value))

    add_rows("", config.settings)
    console.print(table)


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
