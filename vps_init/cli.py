#!/usr/bin/env python3
"""
VPS Init CLI
------------

Interactive bootstrap for a fresh Ubuntu 24 VPS. Shows the current host
status, then lets you run every setup task in one pass or pick tasks one by
one from a menu. Every task is idempotent and can be re-run safely.

Usage:
  sudo vps-init

Requires root privileges.
"""

# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import os
import signal
import sys
from typing import Any, Callable, Optional

from rich.prompt import Confirm
from rich.traceback import install as install_rich_traceback

from vps_init import VERSION
from vps_init.config import AppConfig
from vps_init.errors import EnvironmentCheckError, PrivilegeError, SetupError
from vps_init.menu import Menu
from vps_init.probes import SystemProbe
from vps_init.status import StatusReporter
from vps_init.system import CommandRunner, acquire_lock, setup_logger
from vps_init.tasks import build_tasks
from vps_init.ui import (
    NordColors,
    console,
    display_panel,
    print_error,
    print_step,
    print_success,
    print_warning,
)


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """Gracefully handle termination signals (SIGINT, SIGTERM, SIGHUP)."""
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        sig_name = f"signal {signum}"
    console.print()
    print_warning(f"Process interrupted by {sig_name}")
    sys.exit(128 + signum)


def setup_signal_handlers() -> None:
    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        signal.signal(sig, signal_handler)


# ----------------------------------------------------------------
# Preflight Checks
# ----------------------------------------------------------------
def check_root() -> None:
    """Verify the script is running with root privileges."""
    if os.geteuid() != 0:
        raise PrivilegeError(
            "This script must be run as root (for example: sudo -i)."
        )


def check_os(
    config: AppConfig,
    probe: SystemProbe,
    confirm: Optional[Callable[[str], bool]] = None,
) -> None:
    """
    Check the distribution against the supported release. On a mismatch the
    user may still choose to continue.

    Raises:
        EnvironmentCheckError: If the host is unsupported and the user declines
    """
    info = probe.os_release()
    os_id = info.get("ID", "unknown")
    version = info.get("VERSION_ID", "unknown")

    major = version.split(".")[0]
    if os_id == config.SUPPORTED_OS_ID and major == config.SUPPORTED_OS_VERSION:
        print_success(f"Detected {info.get('PRETTY_NAME', f'{os_id} {version}')}.")
        return

    print_warning(
        f"Detected {os_id} {version}; this tool targets "
        f"{config.SUPPORTED_OS_ID} {config.SUPPORTED_OS_VERSION}."
    )
    ask = confirm or (lambda q: Confirm.ask(q, default=False, console=console))
    if not ask("Continue anyway?"):
        raise EnvironmentCheckError(f"Unsupported system: {os_id} {version}")


# ----------------------------------------------------------------
# Main Entry Point
# ----------------------------------------------------------------
def main() -> int:
    """
    Main entry point for VPS Init.

    Returns:
        int: Exit code (0 for success or user quit, non-zero on a failed precondition)
    """
    install_rich_traceback(show_locals=False)
    setup_signal_handlers()

    try:
        print_step("Running preflight checks...")
        check_root()
        print_success("Running with root privileges.")

        config = AppConfig.from_env()
        logger = setup_logger(config.LOG_FILE)
        logger.debug(f"VPS Init v{VERSION} starting")
        logger.debug(f"Configuration: {config.to_dict()}")

        lock = acquire_lock(config.LOCK_FILE)
        try:
            runner = CommandRunner()
            probe = SystemProbe(config, runner)
            check_os(config, probe)

            tasks = build_tasks(config, probe, runner)
            exit_code = Menu(tasks, StatusReporter(config, probe)).run()
        finally:
            lock.close()

        display_panel(
            "VPS initialization finished. Log out and back in for shell and "
            "group changes to take effect.",
            NordColors.GREEN,
            "Done",
        )
        return exit_code

    except SetupError as e:
        print_error(str(e))
        return 1
    except KeyboardInterrupt:
        print_warning("Process interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
