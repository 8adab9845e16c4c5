# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import logging
from typing import List, Sequence

from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from vps_init.tasks import Task, TaskReport, TaskStatus
from vps_init.ui import LOGGER_NAME, NordColors, console, print_step, print_success, print_warning

STATUS_STYLES = {
    TaskStatus.NOOP: "debug",
    TaskStatus.CHANGED: "success",
    TaskStatus.SKIPPED: "warning",
    TaskStatus.FAILED: "error",
}


class BatchRunner:
    """Runs every task once, in declared order, continuing past failures."""

    def __init__(self, tasks: Sequence[Task]) -> None:
        self.tasks = list(tasks)
        self.logger = logging.getLogger(LOGGER_NAME)

    def run_all(self) -> List[TaskReport]:
        print_step("Starting all setup tasks...")
        reports = []
        for task in self.tasks:
            report = task.run()
            self.logger.debug(f"{report.name}: {report.status.value} {report.message}")
            reports.append(report)

        failed = [r for r in reports if not r.ok]
        if failed:
            print_warning(f"Finished with {len(failed)} failed task(s).")
        else:
            print_success("All tasks finished.")
        show_report(reports)
        return reports


def render_report(reports: Sequence[TaskReport]) -> Panel:
    """Build the summary table for a list of task reports."""
    table = Table(title="Setup Status Report", style="banner", box=box.ROUNDED)
    table.add_column("Task", style="header")
    table.add_column("Status")
    table.add_column("Message", style=NordColors.SNOW_STORM_1)

    for report in reports:
        style = STATUS_STYLES[report.status]
        table.add_row(
            report.name,
            f"[{style}]{report.status.value.upper()}[/{style}]",
            escape(report.message),
        )

    return Panel(
        table,
        title="[banner]VPS Init Summary[/banner]",
        border_style=NordColors.FROST_3,
        box=box.ROUNDED,
    )


def show_report(reports: Sequence[TaskReport]) -> None:
    console.print(render_report(reports))
