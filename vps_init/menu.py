"""
Interactive menu: main menu, per-task submenu and the exit path.
"""

# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
from enum import Enum
from typing import Callable, List, Optional, Sequence

from rich.prompt import Prompt

from vps_init.runner import BatchRunner
from vps_init.status import StatusReporter
from vps_init.tasks import Task, TaskReport
from vps_init.ui import (
    NordColors,
    clear_screen,
    console,
    create_header,
    pause,
    print_error,
)


class MenuState(Enum):
    MAIN = "main"
    SUBMENU = "submenu"
    RUNNING = "running-task"
    EXITING = "exiting"


def _default_ask(prompt: str) -> str:
    return Prompt.ask(prompt, console=console)


class Menu:
    """Selection-driven menu loop. One selection is read and handled at a time."""

    def __init__(
        self,
        tasks: Sequence[Task],
        reporter: StatusReporter,
        ask: Optional[Callable[[str], str]] = None,
        wait: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.tasks = list(tasks)
        self.reporter = reporter
        self.ask = ask or _default_ask
        self.wait = wait or pause
        self.state = MenuState.MAIN
        self.reports: List[TaskReport] = []
        self._selected: List[Task] = []
        self._return_to = MenuState.MAIN
        self._batch = False

    def run(self) -> int:
        """Loop until the user quits or a full run completes; returns the exit code."""
        while self.state is not MenuState.EXITING:
            if self.state is MenuState.MAIN:
                self.state = self._main_menu()
            elif self.state is MenuState.SUBMENU:
                self.state = self._submenu()
            elif self.state is MenuState.RUNNING:
                self.state = self._run_selected()
        return 0

    def _read_choice(self, prompt: str) -> str:
        return self.ask(prompt).strip().lower()

    def _main_menu(self) -> MenuState:
        clear_screen()
        console.print(create_header())
        self.reporter.show()
        console.print()
        console.print("[bold]Choose a mode:[/]")
        console.print("[bold]1.[/] Run all tasks (recommended for a first run)")
        console.print("[bold]2.[/] Choose tasks by category")
        console.print("[bold]q.[/] Quit")
        console.print()

        choice = self._read_choice("Enter your choice [1, 2, q]")
        if choice == "1":
            return self._select(self.tasks, MenuState.EXITING, batch=True)
        if choice == "2":
            return MenuState.SUBMENU
        if choice == "q":
            return MenuState.EXITING

        print_error("Invalid option, please try again.")
        self.wait("Press Enter to continue")
        return MenuState.MAIN

    def _submenu(self) -> MenuState:
        console.print()
        console.print(f"[bold {NordColors.YELLOW}]--- Task Menu ---[/]")
        for idx, task in enumerate(self.tasks, 1):
            console.print(f"[bold]{idx}.[/] {task.title}")
        console.print("-------------------------")
        console.print("[bold]b.[/] Back to main menu")
        console.print("[bold]q.[/] Quit")

        choice = self._read_choice(f"Enter your choice [1-{len(self.tasks)}, b, q]")
        if choice == "b":
            return MenuState.MAIN
        if choice == "q":
            return MenuState.EXITING

        if choice.isdigit() and 1 <= int(choice) <= len(self.tasks):
            return self._select([self.tasks[int(choice) - 1]], MenuState.SUBMENU)

        print_error("Invalid option.")
        self.wait("Press Enter to return to the task menu")
        return MenuState.SUBMENU

    def _select(
        self, tasks: Sequence[Task], return_to: MenuState, batch: bool = False
    ) -> MenuState:
        self._selected = list(tasks)
        self._return_to = return_to
        self._batch = batch
        return MenuState.RUNNING

    def _run_selected(self) -> MenuState:
        """Run the selected task(s), then move to the state chosen at selection time."""
        if self._batch:
            self.reports = BatchRunner(self._selected).run_all()
        else:
            for task in self._selected:
                self.reports.append(task.run())
            self.wait("Task finished. Press Enter to return to the task menu")
        self._selected = []
        return self._return_to
