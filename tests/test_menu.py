import pytest

from vps_init.menu import Menu, MenuState
from vps_init.tasks import TaskReport, TaskStatus


class StubTask:
    def __init__(self, title, status=TaskStatus.CHANGED):
        self.title = title
        self.status = status
        self.runs = 0
        self.on_run = None

    def run(self):
        self.runs += 1
        if self.on_run:
            self.on_run()
        return TaskReport(self.title, self.status)


class StubReporter:
    def __init__(self):
        self.shown = 0

    def show(self):
        self.shown += 1


def scripted(*answers):
    answers = list(answers)

    def _ask(prompt):
        return answers.pop(0)

    return _ask


@pytest.fixture
def tasks():
    return [StubTask("One"), StubTask("Two", TaskStatus.FAILED), StubTask("Three")]


def make_menu(tasks, *answers):
    waits = []
    menu = Menu(tasks, StubReporter(), ask=scripted(*answers), wait=waits.append)
    return menu, waits


def test_quit_from_main_menu(tasks):
    menu, waits = make_menu(tasks, "q")
    assert menu.run() == 0
    assert menu.state is MenuState.EXITING
    assert all(t.runs == 0 for t in tasks)
    assert menu.reporter.shown == 1


def test_run_all_runs_every_task_once_and_exits(tasks):
    menu, _ = make_menu(tasks, "1")
    assert menu.run() == 0
    assert [t.runs for t in tasks] == [1, 1, 1]
    assert [r.status for r in menu.reports] == [
        TaskStatus.CHANGED,
        TaskStatus.FAILED,
        TaskStatus.CHANGED,
    ]


def test_submenu_runs_selected_tasks(tasks):
    menu, waits = make_menu(tasks, "2", "3", " 1 ", "b", "Q")
    menu.run()
    assert [t.runs for t in tasks] == [1, 0, 1]
    assert [r.name for r in menu.reports] == ["Three", "One"]
    assert len(waits) == 2
    # Back to main re-renders the status
    assert menu.reporter.shown == 2


def test_invalid_choices_do_not_run_anything(tasks):
    menu, waits = make_menu(tasks, "7", "2", "0", "x", "4", "q")
    menu.run()
    assert all(t.runs == 0 for t in tasks)
    assert len(waits) == 4


def test_failed_task_returns_to_submenu(tasks):
    menu, _ = make_menu(tasks, "2", "2", "2", "q")
    menu.run()
    assert tasks[1].runs == 2
    assert all(not r.ok for r in menu.reports)


def test_tasks_execute_in_running_state(tasks):
    menu, _ = make_menu(tasks, "2", "1", "b", "1")
    seen = []
    for task in tasks:
        task.on_run = lambda: seen.append(menu.state)

    menu.run()
    assert seen == [MenuState.RUNNING] * 4
    assert menu.state is MenuState.EXITING
