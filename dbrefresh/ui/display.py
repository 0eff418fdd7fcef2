"""Renders refresh progress and the final report with the `rich` library."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dbrefresh.domain.models import ProgressEvent, RefreshReport
import dbrefresh.ui.formatter as formatter


class ProgressDisplay:
    """Prints progress events as they arrive and the report at the end.

    Pure rendering: receives events and the report, never touches collaborators.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def __call__(self, event: ProgressEvent) -> None:
        line = Text(event.timestamp.strftime("%H:%M:%S "), style="dim")
        line.append_text(formatter.get_phase_text(event.phase))
        line.append(f"  {event.message}")
        if event.elapsed_seconds is not None:
            line.append(f" ({formatter.format_elapsed_time(event.elapsed_seconds)})",
                        style="dim")
        self.console.print(line)

    def render_report(self, report: RefreshReport) -> None:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(style="bold")
        table.add_column()
        table.add_row("Outcome", formatter.get_outcome_text(report.outcome))
        if report.refresh_id:
            table.add_row("Refresh id", report.refresh_id)
        table.add_row("States", formatter.format_state_history(report.state_history))
        table.add_row("Overwrite", formatter.format_elapsed_time(report.overwrite_seconds))
        table.add_row("Total", formatter.format_elapsed_time(report.total_seconds))
        if report.failed_step is not None:
            table.add_row("Failed step", f"{report.failed_step}: {report.failed_step_name}")
            table.add_row("Cause", Text(f"{report.error_type}: {report.error}", style="red"))
        for record in report.compensations:
            status = Text("ok", style="green") if record.success else Text(
                f"failed: {record.error}", style="red")
            table.add_row("Compensation", Text.assemble(record.action, " ", status))

        border = formatter.OUTCOME_COLORS.get(report.outcome, "white").split()[-1]
        self.console.print(Panel(table, title="Refresh report", border_style=border))
