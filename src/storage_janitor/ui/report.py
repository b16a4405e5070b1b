"""
Terminal rendering and JSON report building for scan results.

Tables are drawn with Rich; the ``*_report`` functions build plain dicts
(including derived totals) suitable for :func:`save_json`.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storage_janitor.core.models import DuplicateGroup, DuplicateScanResult, JunkScanResult
from storage_janitor.core.quality import PhotoAnalysisResult, PhotoQualityReport
from storage_janitor.utils.formatting import format_file_size, to_jsonable

PRIORITY_STYLES = {"high": "red", "medium": "yellow", "low": "green"}


def _format_mtime(last_modified_ms: int) -> str:
    return datetime.fromtimestamp(last_modified_ms / 1000).strftime("%Y-%m-%d")


class ReportUI:
    """Rich based renderer for duplicate, junk and photo results."""

    def __init__(self, console: Optional[Console] = None):
        """
        Initialize report UI.

        Args:
            console: Rich console instance (creates new one if None)
        """
        self.console = console or Console()

    def show_duplicates(self, result: DuplicateScanResult, limit: int = 10) -> None:
        """
        Show a summary table followed by the largest duplicate groups.

        Args:
            result: Terminal result of a duplicate scan
            limit: Maximum number of groups to print in detail
        """
        summary = Table(title="Duplicate Detection Summary", box=box.ROUNDED)
        summary.add_column("Metric", style="cyan")
        summary.add_column("Value", style="green")

        summary.add_row("Duplicate Groups", str(len(result.groups)))
        summary.add_row("Files in Groups", str(sum(g.duplicate_count for g in result.groups)))
        summary.add_row("Potential Space Savings", format_file_size(result.reclaimable_size))
        summary.add_row("Errors", str(result.error_count))
        if result.cancelled:
            summary.add_row("Status", "[yellow]cancelled (partial results)[/yellow]")

        self.console.print(summary)
        self.console.print()

        for index, group in enumerate(result.groups[:limit], 1):
            self._show_group(group, index, len(result.groups))
            self.console.print()

        if len(result.groups) > limit:
            self.console.print(f"[dim]... and {len(result.groups) - limit} more groups[/dim]\n")

    def _show_group(self, group: DuplicateGroup, group_num: int, total_groups: int) -> None:
        table = Table(
            title=f"Group {group_num}/{total_groups} ({group.match_kind.value})",
            box=box.DOUBLE,
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("#", style="dim", width=3)
        table.add_column("File", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Date Modified", justify="right")
        table.add_column("Action", justify="center")

        for idx, record in enumerate(group.files):
            keep = record.path == group.keep_file
            action = "[green]KEEP ✓[/green]" if keep else "[red]DUPLICATE[/red]"
            table.add_row(
                str(idx),
                record.path,
                format_file_size(record.size),
                _format_mtime(record.last_modified_ms),
                action,
            )

        self.console.print(table)

    def show_junk(self, result: JunkScanResult, files_per_category: int = 5) -> None:
        """
        Show each junk category with its size and largest files.

        Args:
            result: Terminal result of a junk scan
            files_per_category: Largest files listed under each category
        """
        summary = Table(title="Junk Scan Summary", box=box.ROUNDED)
        summary.add_column("Category", style="cyan")
        summary.add_column("Files", justify="right")
        summary.add_column("Size", justify="right", style="green")
        summary.add_column("Priority", justify="center")
        summary.add_column("Auto-clean", justify="center")

        for category in result.categories:
            style = PRIORITY_STYLES.get(category.priority.value, "white")
            summary.add_row(
                category.name,
                str(category.file_count),
                format_file_size(category.total_size),
                f"[{style}]{category.priority.value}[/{style}]",
                "yes" if category.can_auto_clean else "no",
            )

        self.console.print(summary)

        for category in result.categories:
            if not category.files:
                continue
            self.console.print(f"\n[bold]{category.name}[/bold]")
            for junk in category.files[:files_per_category]:
                flag = "" if junk.can_delete else " [dim](protected)[/dim]"
                self.console.print(
                    f"  • {junk.path} [green]{format_file_size(junk.size)}[/green]"
                    f" [dim]{junk.reason}[/dim]{flag}"
                )
            if category.file_count > files_per_category:
                self.console.print(
                    f"  [dim]... and {category.file_count - files_per_category} more[/dim]"
                )

        panel = Panel(
            f"[bold green]Total reclaimable: {format_file_size(result.total_size)}[/bold green]\n"
            f"[yellow]Errors: {result.error_count}[/yellow]",
            title="Junk Files",
            box=box.DOUBLE,
        )
        self.console.print()
        self.console.print(panel)

    def show_photos(self, result: PhotoAnalysisResult, limit: int = 20) -> None:
        """Show blurry and low-quality photos."""
        self._show_photo_table("Blurry Photos", result.blurry, limit)
        self._show_photo_table("Low Quality Photos", result.low_quality, limit)
        self.console.print(
            f"[dim]Analyzed {result.analyzed_count} photos, {result.error_count} errors[/dim]"
        )

    def _show_photo_table(self, title: str, reports: List[PhotoQualityReport], limit: int) -> None:
        if not reports:
            self.console.print(f"[green]✓ No {title.lower()} found[/green]")
            return

        table = Table(title=title, box=box.ROUNDED, header_style="bold magenta")
        table.add_column("File", style="cyan")
        table.add_column("Resolution", justify="right")
        table.add_column("Blur Score", justify="right")
        table.add_column("Quality", justify="right")
        table.add_column("Issues")

        for report in reports[:limit]:
            table.add_row(
                report.path,
                f"{report.width}x{report.height}",
                f"{report.blur_score:.1f}",
                f"{report.quality_score:.2f}",
                ", ".join(report.issues),
            )
        self.console.print(table)
        if len(reports) > limit:
            self.console.print(f"[dim]... and {len(reports) - limit} more[/dim]")


def duplicate_report(result: DuplicateScanResult) -> Dict[str, Any]:
    """JSON-ready dict for a duplicate scan, including derived sizes."""
    return {
        "cancelled": result.cancelled,
        "error_count": result.error_count,
        "reclaimable_size": result.reclaimable_size,
        "groups": [
            {
                "id": group.id,
                "match_kind": group.match_kind.value,
                "match_key": group.match_key,
                "keep_file": group.keep_file,
                "total_size": group.total_size,
                "reclaimable_size": group.reclaimable_size,
                "files": to_jsonable(group.files),
            }
            for group in result.groups
        ],
        "failures": to_jsonable(result.failures),
    }


def junk_report(result: JunkScanResult) -> Dict[str, Any]:
    """JSON-ready dict for a junk scan, including per-category totals."""
    return {
        "cancelled": result.cancelled,
        "error_count": result.error_count,
        "total_size": result.total_size,
        "categories": [
            {
                "id": category.id,
                "name": category.name,
                "can_auto_clean": category.can_auto_clean,
                "priority": category.priority.value,
                "file_count": category.file_count,
                "total_size": category.total_size,
                "files": to_jsonable(category.files),
            }
            for category in result.categories
        ],
        "failures": to_jsonable(result.failures),
    }


def photo_report(result: PhotoAnalysisResult) -> Dict[str, Any]:
    """JSON-ready dict for a photo quality analysis."""
    data = to_jsonable(result)
    data["error_count"] = result.error_count
    return data
