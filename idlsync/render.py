"""
Rendering functions for idlsync output.

This module handles all pretty-printing and table formatting.
Services return data; this module makes it human-readable.
"""

from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .domain import RunReport, SourceError

console = Console(stderr=True)


def render_table(headers: List[str], rows: List[List[str]], title: Optional[str] = None,
                 out: Optional[Console] = None) -> None:
    """
    Render a generic table with the given headers and rows.

    Args:
        headers: List of column headers
        rows: List of rows, where each row is a list of values
        title: Optional table title
    """
    out = out or console
    if not rows:
        out.print("[yellow]No data to display.[/yellow]")
        return

    table = Table(
        title=title,
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta"
    )
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*[str(val) for val in row])

    out.print(table)


def render_report(report: RunReport, out: Optional[Console] = None) -> None:
    """Render a bootstrap report: per-source status, collisions, outcome."""
    out = out or console

    errors: Dict[str, SourceError] = {e.source: e for e in report.source_errors}
    rows = []
    for name in report.sources:
        if name in errors:
            rows.append([name, f"[red]✗ {errors[name].stage}[/red]", errors[name].error])
        elif not report.success:
            rows.append([name, "[yellow]-[/yellow]", ""])
        else:
            files = report.contributions.get(name, [])
            rows.append([name, "[green]✓[/green]", ", ".join(files)])
    render_table(["Source", "Status", "Files / Error"], rows, title="Sources", out=out)

    if report.collisions:
        collision_rows = [
            [c.public_name, ", ".join(c.sources), c.winner, "yes" if c.identical else "[red]no[/red]"]
            for c in report.collisions
        ]
        render_table(["Public name", "Sources", "Winner", "Identical"], collision_rows,
                     title="Collisions", out=out)

    if report.success:
        if report.committed:
            pushed = "pushed" if report.pushed else "not pushed"
            out.print(f"[bold green]Published[/bold green] {report.commit} ({pushed})")
        else:
            out.print(f"[green]No changes[/green] (HEAD {report.commit or 'unborn'})")
    else:
        stage = report.failed_stage.value if report.failed_stage else "unknown"
        out.print(f"[bold red]Failed[/bold red] at {stage}: {report.error}")

