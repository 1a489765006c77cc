"""Rich console output with relative timestamps."""
from typing import List
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from civicwatch.models import CATEGORIES, DuplicateCandidate, Report, Viewport
from civicwatch.utils import relative_time
from civicwatch.viewport import density_ceiling


def _when(report: Report) -> str:
    if not report.created_at:
        return "—"
    return f"{report.created_at.strftime('%Y-%m-%d %H:%M')} ({relative_time(report.created_at)})"


class ConsoleFormatter:
    def format_duplicates(self, candidates: List[DuplicateCandidate]) -> str:
        console = Console(record=True, width=120)
        if not candidates:
            console.print(Panel("[bold green]✅ No likely duplicates nearby[/]", expand=False))
            return console.export_text()

        console.print(Panel(f"[bold yellow]🔁 Possible duplicates[/] — {len(candidates)} found", expand=False))
        for i, c in enumerate(candidates, 1):
            r = c.report
            console.print(f"\n[bold white]{i}. {r.title or '(untitled)'}[/]  [cyan]{c.confidence:.0%}[/]")
            console.print(f"   [dim]🏷️  {CATEGORIES.get(r.category, r.category)} | 📍 {round(c.distance_meters)}m"
                          f" | 🕐 {_when(r)} | 👍 {r.upvote_count}[/]")
            console.print(f"   [italic]{'; '.join(c.reasons)}[/]")
            if r.description:
                console.print(f"   [dim italic]{r.description[:150]}[/]")
        return console.export_text()

    def format_markers(self, reports: List[Report], viewport: Viewport, low_spec: bool = False) -> str:
        console = Console(record=True, width=120)
        ceiling = density_ceiling(viewport, low_spec=low_spec)
        console.print(Panel(
            f"[bold cyan]🗺️  Visible markers[/] — {len(reports)} of max {ceiling}"
            f" (area {viewport.area:.4f}°²)",
            expand=False,
        ))
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Category")
        table.add_column("Lat", justify="right")
        table.add_column("Lng", justify="right")
        table.add_column("👍", justify="right")
        for i, r in enumerate(reports, 1):
            table.add_row(str(i), r.title or r.id, r.category, f"{r.lat:.5f}", f"{r.lng:.5f}", str(r.upvote_count))
        console.print(table)
        return console.export_text()

    def format_submission(self, result) -> str:
        console = Console(record=True, width=120)
        r = result.report
        if result.action == "upvoted":
            console.print(Panel("[bold green]👍 Upvoted![/] Thank you for supporting the existing report"
                                " instead of creating a duplicate.", expand=False))
        elif result.flagged:
            console.print(Panel("[bold yellow]📝 Submitted for review[/] — your report was flagged because"
                                f" {len(result.candidates)} similar report(s) exist nearby.", expand=False))
        else:
            console.print(Panel("[bold green]✅ Your report has been submitted successfully![/]", expand=False))
        console.print(f"   [bold white]{r.title or '(untitled)'}[/]  [dim]{r.id} | 👍 {r.upvote_count}[/]")
        return console.export_text()
