# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
from dataclasses import dataclass
from typing import List

from rich import box
from rich.markup import escape
from rich.table import Table

from vps_init.config import AppConfig
from vps_init.probes import SystemProbe
from vps_init.ui import LEVEL_COLORS, NordColors, console


@dataclass
class StatusEntry:
    """One line of the status summary."""

    name: str
    value: str
    level: str  # "ok", "warn" or "bad"


class StatusReporter:
    """Point-in-time summary of the host built from the same probes the tasks use."""

    def __init__(self, config: AppConfig, probe: SystemProbe) -> None:
        self.config = config
        self.probe = probe

    def collect(self) -> List[StatusEntry]:
        """Gather every status entry. Read-only."""
        return [
            self._swap(),
            self._bbr(),
            self._docker(),
            self._timezone(),
            self._firewall(),
        ]

    def _swap(self) -> StatusEntry:
        if self.probe.swap_active():
            size = self.probe.swap_size() or "?"
            return StatusEntry("Swap", f"Active ({size})", "ok")
        return StatusEntry("Swap", "Inactive", "warn")

    def _bbr(self) -> StatusEntry:
        current = self.probe.congestion_control()
        if current == self.config.CONGESTION_CONTROL:
            return StatusEntry("BBR", f"Enabled ({current})", "ok")
        return StatusEntry("BBR", "Disabled", "warn")

    def _docker(self) -> StatusEntry:
        if not self.probe.docker_installed():
            return StatusEntry("Docker", "Not Installed", "bad")
        if self.probe.docker_active():
            return StatusEntry("Docker", "Installed & Running", "ok")
        return StatusEntry("Docker", "Installed (Not Running)", "warn")

    def _timezone(self) -> StatusEntry:
        current = self.probe.timezone()
        if current == self.config.TIMEZONE:
            return StatusEntry("Timezone", current, "ok")
        return StatusEntry(
            "Timezone", f"{current or 'unknown'} (not {self.config.TIMEZONE})", "warn"
        )

    def _firewall(self) -> StatusEntry:
        state = self.probe.firewall_state()
        if state is None:
            return StatusEntry("Firewall", "Not Installed", "bad")
        if state.active:
            return StatusEntry("Firewall", "Active", "ok")
        return StatusEntry("Firewall", "Inactive", "warn")

    def render(self) -> Table:
        table = Table(
            show_header=False,
            box=box.SIMPLE,
            title=f"[bold {NordColors.FROST_2}]Current System Status[/]",
            padding=(0, 1),
        )
        table.add_column("Item", style=f"bold {NordColors.FROST_2}", width=10)
        table.add_column("Value")
        for entry in self.collect():
            color = LEVEL_COLORS.get(entry.level, NordColors.SNOW_STORM_1)
            table.add_row(entry.name, f"[{color}]{escape(entry.value)}[/]")
        return table

    def show(self) -> None:
        console.print(self.render())
